"""Distance metrics for perceptual hash comparison."""

import imagehash


class LengthMismatchError(Exception):
    """Raised when two hashes of different bit lengths are compared."""


def hamming_distance(a: imagehash.ImageHash, b: imagehash.ImageHash) -> int:
    """
    Calculate Hamming distance between two perceptual hashes.

    Args:
        a: First hash
        b: Second hash

    Returns:
        Hamming distance (number of differing bits)

    Raises:
        LengthMismatchError: If the hashes have different lengths
    """
    if a.hash.size != b.hash.size:
        raise LengthMismatchError(f"Hashes must be of equal length ({a.hash.size} != {b.hash.size})")
    return int(a - b)

