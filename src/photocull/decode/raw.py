"""Buffer decoding for camera RAW and ordinary image formats."""

from __future__ import annotations

import io
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional, Tuple

import numpy as np
import rawpy
from PIL import Image, UnidentifiedImageError

from ..logging import get_logger

logger = get_logger(__name__)

RAW_EXTENSIONS = frozenset({
    "cr2", "cr3", "nef", "arw", "dng", "orf",
    "rw2", "raf", "srw", "pef", "x3f", "raw",
})

DecodeKind = Literal["thumbnail", "preview", "process"]
DECODE_KINDS: Tuple[str, ...] = ("thumbnail", "preview", "process")

PIXEL_FORMAT = "rgb8"

_WHITE_BALANCE = ("auto", "camera", "daylight")
_COLOR_SPACES = {
    "sRGB": rawpy.ColorSpace.sRGB,
    "AdobeRGB": rawpy.ColorSpace.Adobe,
    "ProPhotoRGB": rawpy.ColorSpace.ProPhoto,
}


class UnsupportedImageError(Exception):
    """Raised when a buffer is neither a readable RAW file nor a Pillow image."""


def is_raw_format(file_name: str) -> bool:
    """Case-insensitive check of the file extension against the RAW extension set."""
    if not file_name:
        return False
    _, ext = os.path.splitext(os.path.basename(file_name))
    return ext[1:].lower() in RAW_EXTENSIONS


@dataclass
class DecodeOptions:
    """Options for a full decode (``process`` requests)."""
    brightness: float = 1.0
    white_balance: str = "auto"
    color_space: str = "sRGB"
    size: Optional[Tuple[int, int]] = None
    half_size: bool = False

    def __post_init__(self) -> None:
        if self.white_balance not in _WHITE_BALANCE:
            raise ValueError(f"Unknown white balance: {self.white_balance}")
        if self.color_space not in _COLOR_SPACES:
            raise ValueError(f"Unknown colour space: {self.color_space}")

    def to_message(self) -> Dict[str, Any]:
        return {
            "brightness": self.brightness,
            "white_balance": self.white_balance,
            "color_space": self.color_space,
            "size": list(self.size) if self.size else None,
            "half_size": self.half_size,
        }

    @classmethod
    def from_message(cls, payload: Optional[Dict[str, Any]]) -> DecodeOptions:
        if not payload:
            return cls()
        size = payload.get("size")
        return cls(
            brightness=float(payload.get("brightness", 1.0)),
            white_balance=payload.get("white_balance", "auto"),
            color_space=payload.get("color_space", "sRGB"),
            size=tuple(size) if size else None,
            half_size=bool(payload.get("half_size", False)),
        )


@dataclass
class DecodeResult:
    pixels: np.ndarray
    width: int
    height: int
    format: str = PIXEL_FORMAT
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> Dict[str, Any]:
        return {
            "pixels": self.pixels,
            "width": self.width,
            "height": self.height,
            "format": self.format,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_message(cls, payload: Dict[str, Any]) -> DecodeResult:
        return cls(
            pixels=payload["pixels"],
            width=int(payload["width"]),
            height=int(payload["height"]),
            format=payload.get("format", PIXEL_FORMAT),
            metadata=dict(payload.get("metadata") or {}),
        )

    def to_image(self) -> Image.Image:
        return Image.fromarray(self.pixels)


def decode_buffer(
    source: bytes,
    kind: DecodeKind,
    target_width: Optional[int] = None,
    target_height: Optional[int] = None,
    options: Optional[DecodeOptions] = None,
) -> DecodeResult:
    """
    Decode an encoded image buffer to RGB pixels.

    RAW buffers go through LibRaw (via rawpy); anything LibRaw rejects is
    handed to Pillow. The decoded image is fitted inside the target box,
    keeping its aspect ratio and never upscaling.

    Args:
        source: Encoded file contents
        kind: ``thumbnail``, ``preview`` or ``process``
        target_width: Width of the bounding box (``process`` uses options.size)
        target_height: Height of the bounding box
        options: Decode options for ``process`` requests

    Returns:
        DecodeResult with an ``H x W x 3`` uint8 pixel array

    Raises:
        UnsupportedImageError: If the buffer cannot be decoded at all
    """
    if kind not in DECODE_KINDS:
        raise ValueError(f"Unknown processing type: {kind}")
    if not source:
        raise UnsupportedImageError("Empty source buffer")

    options = options or DecodeOptions()
    if kind == "process" and options.size:
        target_width, target_height = options.size

    try:
        image, source_format = _decode_raw(source, kind, options)
    except rawpy.LibRawError as exc:
        logger.debug(f"LibRaw rejected buffer ({exc}), trying Pillow")
        image, source_format = _decode_pillow(source)

    original_width, original_height = image.size
    if target_width and target_height:
        image = _fit_within(image, target_width, target_height)

    pixels = np.asarray(image.convert("RGB"), dtype=np.uint8)
    height, width = pixels.shape[:2]
    logger.debug(
        f"Decoded {kind} from {source_format}: "
        f"{original_width}x{original_height} -> {width}x{height}"
    )
    return DecodeResult(
        pixels=pixels,
        width=width,
        height=height,
        metadata={
            "source_format": source_format,
            "original_width": original_width,
            "original_height": original_height,
        },
    )


def _decode_raw(source: bytes, kind: str, options: DecodeOptions) -> Tuple[Image.Image, str]:
    with rawpy.imread(io.BytesIO(source)) as raw:
        if kind == "thumbnail":
            thumbnail = _embedded_thumbnail(raw)
            if thumbnail is not None:
                return thumbnail, "raw"

        rgb = raw.postprocess(
            use_camera_wb=options.white_balance == "camera",
            use_auto_wb=options.white_balance == "auto",
            bright=options.brightness,
            output_color=_COLOR_SPACES[options.color_space],
            output_bps=8,
            half_size=kind != "process" or options.half_size,
        )
    return Image.fromarray(rgb), "raw"


def _embedded_thumbnail(raw: rawpy.RawPy) -> Optional[Image.Image]:
    try:
        thumb = raw.extract_thumb()
    except (rawpy.LibRawNoThumbnailError, rawpy.LibRawUnsupportedThumbnailError):
        return None

    if thumb.format == rawpy.ThumbFormat.JPEG:
        image = Image.open(io.BytesIO(thumb.data))
        image.load()
        return image
    return Image.fromarray(thumb.data)


def _decode_pillow(source: bytes) -> Tuple[Image.Image, str]:
    try:
        image = Image.open(io.BytesIO(source))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise UnsupportedImageError(f"Unsupported or corrupt image data: {exc}") from exc
    return image, (image.format or "unknown").lower()


def _fit_within(image: Image.Image, max_width: int, max_height: int) -> Image.Image:
    fitted = image.copy()
    fitted.thumbnail((max(1, int(max_width)), max(1, int(max_height))), resample=Image.Resampling.LANCZOS)
    return fitted
