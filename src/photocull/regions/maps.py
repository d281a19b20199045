"""
Per-pixel interest maps used by the crop strategies.

All maps are float64 arrays with the same height and width as the image.
"""

from typing import Optional, Tuple

import cv2
import numpy as np

Box = Tuple[int, int, int, int]

# Weights of the combined content map
EDGE_WEIGHT = 0.25
COLOR_WEIGHT = 0.20
SALIENCY_WEIGHT = 0.30
SKIN_WEIGHT = 0.25


def as_rgb(pixels: np.ndarray) -> np.ndarray:
    """Return an ``H x W x 3`` uint8 view of a grayscale, RGB or RGBA buffer."""
    array = np.asarray(pixels)
    if array.ndim == 3 and array.shape[2] == 1:
        array = array[:, :, 0]
    if array.ndim not in (2, 3) or array.shape[0] == 0 or array.shape[1] == 0:
        raise ValueError(f"Pixel buffer has unusable shape {array.shape}")
    if array.dtype != np.uint8:
        array = np.clip(array, 0, 255).astype(np.uint8)
    if array.ndim == 2:
        return cv2.cvtColor(array, cv2.COLOR_GRAY2RGB)
    return np.ascontiguousarray(array[:, :, :3])


def luminance(rgb: np.ndarray) -> np.ndarray:
    return rgb.astype(np.float64) @ np.array([0.299, 0.587, 0.114])


def gradient_magnitude(gray: np.ndarray) -> np.ndarray:
    """Sobel gradient magnitude; the one-pixel border is left at zero."""
    gx = cv2.Sobel(gray, cv2.CV_64F, 1, 0, ksize=3)
    gy = cv2.Sobel(gray, cv2.CV_64F, 0, 1, ksize=3)
    magnitude = np.hypot(gx, gy)
    magnitude[0, :] = 0
    magnitude[-1, :] = 0
    magnitude[:, 0] = 0
    magnitude[:, -1] = 0
    return magnitude


def color_variance_map(rgb: np.ndarray, radius: int = 5) -> np.ndarray:
    """Mean per-channel variance over a ``(2 * radius + 1)`` square window."""
    size = 2 * radius + 1
    values = rgb.astype(np.float64)
    mean = cv2.blur(values, (size, size), borderType=cv2.BORDER_REFLECT)
    mean_sq = cv2.blur(values * values, (size, size), borderType=cv2.BORDER_REFLECT)
    return np.clip(mean_sq - mean * mean, 0, None).mean(axis=2)


def saliency_map(gray: np.ndarray) -> np.ndarray:
    """Centre bias blended with local contrast."""
    height, width = gray.shape
    ys, xs = np.mgrid[0:height, 0:width].astype(np.float64)
    cx, cy = width / 2, height / 2
    max_dist = max(np.hypot(cx, cy), 1e-9)
    centre_bias = 1 - np.hypot(xs - cx, ys - cy) / max_dist

    contrast = np.abs(gray - cv2.blur(gray, (5, 5), borderType=cv2.BORDER_REFLECT))
    return centre_bias * 0.3 + (contrast / 255) * 0.7


def skin_tone_map(rgb: np.ndarray, radius: int = 10) -> np.ndarray:
    """Decaying influence around pixels in a rough skin-tone range."""
    r = rgb[:, :, 0].astype(np.int32)
    g = rgb[:, :, 1].astype(np.int32)
    b = rgb[:, :, 2].astype(np.int32)
    spread = np.max(rgb, axis=2).astype(np.int32) - np.min(rgb, axis=2).astype(np.int32)
    skin = (
        (r > 95) & (g > 40) & (b > 20)
        & (spread > 15) & (np.abs(r - g) > 15) & (r > g) & (r > b)
    )
    if not skin.any():
        return np.zeros(skin.shape, dtype=np.float64)

    # Distance from every pixel to the nearest skin pixel
    distance = cv2.distanceTransform((~skin).astype(np.uint8), cv2.DIST_L2, 3)
    influence = np.exp(-distance.astype(np.float64) / 5) * 0.8
    influence[distance > radius] = 0
    return influence


def normalize(values: np.ndarray) -> np.ndarray:
    low, high = float(values.min()), float(values.max())
    if high - low <= 0:
        return values
    return (values - low) / (high - low)


def content_map(rgb: np.ndarray) -> np.ndarray:
    """Weighted blend of the normalised edge, colour, saliency and skin maps."""
    gray = luminance(rgb)
    return (
        normalize(gradient_magnitude(gray)) * EDGE_WEIGHT
        + normalize(color_variance_map(rgb)) * COLOR_WEIGHT
        + normalize(saliency_map(gray)) * SALIENCY_WEIGHT
        + normalize(skin_tone_map(rgb)) * SKIN_WEIGHT
    )


def strong_region_bounds(values: np.ndarray, fraction: float = 0.3, percentile: float = 95) -> Optional[Box]:
    """
    Bounding box of pixels above ``fraction`` of the given percentile.

    Falls back to the maximum when the percentile is zero (sparse content).
    Returns None for a map with no signal at all.
    """
    reference = float(np.percentile(values, percentile))
    if reference <= 0:
        reference = float(values.max())
    if reference <= 1e-9:
        return None

    ys, xs = np.nonzero(values > reference * fraction)
    if xs.size == 0:
        return None
    left, top = int(xs.min()), int(ys.min())
    return (left, top, int(xs.max()) - left + 1, int(ys.max()) - top + 1)


def energy_centroid(values: np.ndarray) -> Optional[Tuple[float, float]]:
    """Energy-weighted (x, y) centre, or None for a map with no energy."""
    total = float(values.sum())
    if total <= 1e-9:
        return None
    ys, xs = np.indices(values.shape)
    return (float((xs * values).sum() / total), float((ys * values).sum() / total))


def region_density(values: np.ndarray, box: Box) -> float:
    """Mean content inside ``box`` relative to the whole image, capped at 1."""
    x, y, w, h = box
    inside = values[y:y + h, x:x + w]
    if inside.size == 0:
        return 0.0
    overall = float(values.mean())
    return min(1.0, float(inside.mean()) / max(0.1, overall))
