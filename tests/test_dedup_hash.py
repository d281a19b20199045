"""Tests for perceptual hash computation."""

import imagehash
import numpy as np
import pytest
from PIL import Image

from photocull.dedup.hash import (
    HashComputationError,
    InvalidInputError,
    compute_hash,
    hash_from_bits,
    hash_from_hex,
)
from photocull.dedup.distance import hamming_distance
from tests.helpers.image_factory import add_noise, make_photo


class TestComputeHash:
    def test_hash_is_64_bits(self):
        """Test that the default hash always has 64 bits."""
        phash = compute_hash(make_photo(1))
        assert isinstance(phash, imagehash.ImageHash)
        assert phash.hash.size == 64

    @pytest.mark.parametrize("size", [(8, 8), (31, 17), (640, 480), (1000, 50)])
    def test_hash_length_independent_of_resolution(self, size):
        """Test that any input resolution produces the same hash length."""
        width, height = size
        assert compute_hash(make_photo(2, width, height)).hash.size == 64

    def test_deterministic(self):
        pixels = make_photo(3)
        assert compute_hash(pixels) == compute_hash(pixels.copy())

    def test_resized_copy_is_close(self):
        """Test that a downscaled copy stays within a few bits of the original."""
        original = make_photo(4, 256, 192)
        smaller = np.asarray(Image.fromarray(original).resize((128, 96), Image.Resampling.LANCZOS))
        assert hamming_distance(compute_hash(original), compute_hash(smaller)) <= 4

    def test_noisy_copy_is_close(self):
        original = make_photo(5, 200, 150)
        assert hamming_distance(compute_hash(original), compute_hash(add_noise(original))) <= 6

    def test_accepts_grayscale_and_rgba(self):
        rgb = make_photo(6)
        gray = rgb.mean(axis=2).astype(np.uint8)
        rgba = np.dstack([rgb, np.full(rgb.shape[:2], 255, dtype=np.uint8)])
        assert compute_hash(gray).hash.size == 64
        assert compute_hash(rgba).hash.size == 64

    def test_accepts_pil_image(self):
        image = Image.fromarray(make_photo(7))
        assert compute_hash(image) == compute_hash(make_photo(7))

    def test_larger_hash_size(self):
        assert compute_hash(make_photo(8), hash_size=16).hash.size == 256

    @pytest.mark.parametrize("shape", [(0, 10, 3), (10, 0, 3), (0, 0)])
    def test_zero_dimension_rejected(self, shape):
        """Test that empty buffers raise InvalidInputError."""
        with pytest.raises(InvalidInputError):
            compute_hash(np.zeros(shape, dtype=np.uint8))

    def test_none_rejected(self):
        with pytest.raises(InvalidInputError):
            compute_hash(None)

    def test_hashing_failure_is_wrapped(self, monkeypatch):
        """Test that library failures surface as HashComputationError."""
        def broken(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(imagehash, "phash", broken)
        with pytest.raises(HashComputationError, match="boom"):
            compute_hash(make_photo(9))


class TestHashLiterals:
    def test_from_bits(self):
        h = hash_from_bits("1111000011110000")
        assert h.hash.size == 16
        assert h.hash.flatten().tolist()[:5] == [True, True, True, True, False]

    @pytest.mark.parametrize("bits", ["", "10201", "abc"])
    def test_invalid_bits(self, bits):
        with pytest.raises(InvalidInputError):
            hash_from_bits(bits)

    def test_hex_round_trip(self):
        phash = compute_hash(make_photo(13))
        assert hash_from_hex(str(phash)) == phash

    def test_invalid_hex(self):
        with pytest.raises(InvalidInputError):
            hash_from_hex("zz-not-hex")
