"""Perceptual hash computation for duplicate detection."""

from typing import Union

import imagehash
import numpy as np
from PIL import Image

PixelSource = Union[np.ndarray, Image.Image]


class InvalidInputError(Exception):
    """Raised when a pixel buffer or hash literal cannot be used."""


class HashComputationError(Exception):
    """Raised when hash computation fails."""


def to_pil_image(pixels: PixelSource) -> Image.Image:
    """
    Wrap a pixel buffer as an RGB Pillow image.

    Raises:
        InvalidInputError: If the buffer is missing or has a zero dimension
    """
    if pixels is None:
        raise InvalidInputError("No pixel buffer provided")

    if isinstance(pixels, Image.Image):
        width, height = pixels.size
        if width == 0 or height == 0:
            raise InvalidInputError(f"Image has zero dimensions: {width}x{height}")
        return pixels if pixels.mode == 'RGB' else pixels.convert('RGB')

    array = np.asarray(pixels)
    if array.ndim not in (2, 3) or array.shape[0] == 0 or array.shape[1] == 0:
        raise InvalidInputError(f"Pixel buffer has unusable shape {array.shape}")
    if array.ndim == 3 and array.shape[2] == 1:
        array = array[:, :, 0]
    if array.dtype != np.uint8:
        array = np.clip(array, 0, 255).astype(np.uint8)

    img = Image.fromarray(array)
    return img if img.mode == 'RGB' else img.convert('RGB')


def compute_hash(pixels: PixelSource, hash_size: int = 8) -> imagehash.ImageHash:
    """
    Compute the DCT perceptual hash of a pixel buffer.

    The image is reduced to a canonical ``4 * hash_size`` square before the
    transform, so the hash is always ``hash_size ** 2`` bits long whatever
    the input resolution.

    Raises:
        InvalidInputError: If the buffer has zero width or height
        HashComputationError: If hashing fails for any other reason
    """
    img = to_pil_image(pixels)
    try:
        return imagehash.phash(img, hash_size=hash_size)
    except Exception as exc:
        raise HashComputationError(f"Failed to compute perceptual hash: {exc}") from exc


def hash_from_bits(bits: str) -> imagehash.ImageHash:
    """Build a hash from a string of ``0``/``1`` characters."""
    bits = bits.strip()
    if not bits or set(bits) - {"0", "1"}:
        raise InvalidInputError(f"Not a bit string: {bits!r}")
    return imagehash.ImageHash(np.array([c == "1" for c in bits], dtype=bool).reshape(1, -1))


def hash_from_hex(value: str) -> imagehash.ImageHash:
    """Restore a square hash previously rendered with ``str(hash)``."""
    try:
        return imagehash.hex_to_hash(value)
    except ValueError as exc:
        raise InvalidInputError(f"Not a hex hash: {value!r}") from exc
