"""Perceptual near-duplicate grouping engine."""

from .model import group_images
from .cluster import DuplicateGroup, group_by_hash
from .hash import (
    HashComputationError,
    InvalidInputError,
    compute_hash,
    hash_from_bits,
    hash_from_hex,
)
from .distance import LengthMismatchError, hamming_distance
from .ssim import compute_ssim, refine_with_ssim

__all__ = [
    "group_images",
    "DuplicateGroup",
    "group_by_hash",
    "HashComputationError",
    "InvalidInputError",
    "compute_hash",
    "hash_from_bits",
    "hash_from_hex",
    "LengthMismatchError",
    "hamming_distance",
    "compute_ssim",
    "refine_with_ssim",
]
