"""
Crop proposals: geometric strategies plus shared padding and area rules.

Every strategy produces a raw (x, y, w, h) rectangle in pixels. The common
post-processing insets it by ``padding`` and, when the result covers less
than ``min_crop_ratio`` of the image, grows it back about its centre.
"""

from typing import Callable, Dict, Optional, Sequence, Tuple

import numpy as np

from ..logging import get_logger
from ..models import CropProposal, FaceDetection, ImageRecord
from .faces import FACE_AWARE_METHOD, NoFacesError, compute_face_aware_crop
from .maps import (
    Box,
    as_rgb,
    content_map,
    energy_centroid,
    gradient_magnitude,
    luminance,
    region_density,
    strong_region_bounds,
)

logger = get_logger(__name__)

GOLDEN_RATIO = 1.618
IDEAL_ASPECTS = (1.0, GOLDEN_RATIO, 16 / 9, 4 / 3, 3 / 2)

CENTER_CONFIDENCE = 0.5
GOLDEN_CONFIDENCE = 0.7
FLAT_CONFIDENCE = 0.2
MAX_CONTENT_CONFIDENCE = 0.95

_BISECTION_STEPS = 48
# Padded golden crops keep at least this width so rounding cannot skew the aspect
_GOLDEN_MIN_WIDTH = 16


def propose_crop(
    pixels: np.ndarray,
    method: str = "edge-detection",
    padding: float = 0.05,
    min_crop_ratio: float = 0.7,
    aspect_ratio: float = 16 / 9,
    faces: Optional[Sequence[FaceDetection]] = None,
) -> CropProposal:
    """
    Propose a crop rectangle for an image.

    Args:
        pixels: ``H x W`` or ``H x W x C`` uint8 pixel array
        method: ``center``, ``golden-ratio``, ``edge-detection``,
            ``content-aware`` or ``face-aware``
        padding: Inset from each edge as a fraction of the rectangle, in [0, 1).
            For ``face-aware`` it is the margin around the faces instead.
        min_crop_ratio: Minimum fraction of the image area the crop must keep
        aspect_ratio: Target width / height for ``center``
        faces: Detector output, required for ``face-aware``

    Returns:
        CropProposal within the image bounds

    Raises:
        ValueError: On an unknown method, out-of-range parameters or an empty image
        NoFacesError: For ``face-aware`` without faces
    """
    if method not in STRATEGIES and method != FACE_AWARE_METHOD:
        raise ValueError(f"Unknown crop method {method!r}; expected one of {available_methods()}")
    if not 0.0 <= padding < 1.0:
        raise ValueError(f"padding must be in [0, 1), got {padding}")
    if not 0.0 <= min_crop_ratio <= 1.0:
        raise ValueError(f"min_crop_ratio must be in [0, 1], got {min_crop_ratio}")
    if aspect_ratio <= 0:
        raise ValueError(f"aspect_ratio must be positive, got {aspect_ratio}")

    rgb = as_rgb(pixels)
    height, width = rgb.shape[:2]

    if method == FACE_AWARE_METHOD:
        return compute_face_aware_crop(width, height, faces or [], padding=padding)

    proposal = STRATEGIES[method](rgb, padding, min_crop_ratio, aspect_ratio)
    logger.debug(
        f"{method} crop for {width}x{height}: "
        f"({proposal.x}, {proposal.y}, {proposal.width}, {proposal.height}) conf={proposal.confidence:.3f}"
    )
    return proposal


def suggest_crop(
    record: ImageRecord,
    fallback_method: str = "edge-detection",
    padding: float = 0.05,
    min_crop_ratio: float = 0.7,
    face_padding: float = 0.3,
) -> CropProposal:
    """
    Crop a record around its faces, or with ``fallback_method`` when it has none.

    The proposal replaces any crop already attached to the record.
    """
    if record.preview is None:
        raise ValueError(f"Record {record.id} has no preview to crop")

    try:
        proposal = propose_crop(record.preview, method=FACE_AWARE_METHOD, padding=face_padding, faces=record.faces)
    except NoFacesError:
        proposal = propose_crop(
            record.preview,
            method=fallback_method,
            padding=padding,
            min_crop_ratio=min_crop_ratio,
        )
    record.attach_crop(proposal)
    return proposal


def available_methods() -> Tuple[str, ...]:
    return tuple(STRATEGIES) + (FACE_AWARE_METHOD,)


def aspect_ratio_score(width: float, height: float) -> float:
    """Closeness of ``width / height`` to the nearest common photographic ratio."""
    if width <= 0 or height <= 0:
        return 0.0
    ratio = width / height
    return max(1 - abs(ratio - ideal) / max(ratio, ideal) for ideal in IDEAL_ASPECTS)


def _center_crop(rgb: np.ndarray, padding: float, min_crop_ratio: float, aspect_ratio: float) -> CropProposal:
    height, width = rgb.shape[:2]
    box = _centered(_largest_with_aspect(width, height, aspect_ratio), width, height)
    final = _finalize(box, padding, min_crop_ratio, width, height)
    return _proposal(final, CENTER_CONFIDENCE, "center")


def _golden_ratio_crop(rgb: np.ndarray, padding: float, min_crop_ratio: float, aspect_ratio: float) -> CropProposal:
    height, width = rgb.shape[:2]
    crop_w, crop_h = _largest_with_aspect(width, height, GOLDEN_RATIO)

    centroid = energy_centroid(gradient_magnitude(luminance(rgb)))
    if centroid is None:
        x, y, _, _ = _centered((crop_w, crop_h), width, height)
    else:
        x = _thirds_offset(centroid[0], crop_w, width - crop_w)
        y = _thirds_offset(centroid[1], crop_h, height - crop_h)

    # Never grow past the golden rectangle itself
    final = _finalize(
        (x, y, crop_w, crop_h), padding, min_crop_ratio, width, height, min_inset=0.0, inset=_golden_inset
    )
    return _proposal(final, GOLDEN_CONFIDENCE, "golden-ratio")


def _edge_detection_crop(rgb: np.ndarray, padding: float, min_crop_ratio: float, aspect_ratio: float) -> CropProposal:
    height, width = rgb.shape[:2]
    bounds = strong_region_bounds(gradient_magnitude(luminance(rgb)), fraction=0.3, percentile=95)
    if bounds is None:
        final = _finalize(_flat_fallback(width, height), padding, min_crop_ratio, width, height)
        return _proposal(final, FLAT_CONFIDENCE, "edge-detection")

    final = _finalize(bounds, padding, min_crop_ratio, width, height)
    crop_ratio = (final[2] * final[3]) / (width * height)
    confidence = float(np.clip((1 - crop_ratio) * 2, 0.0, 1.0))
    return _proposal(final, confidence, "edge-detection")


def _content_aware_crop(rgb: np.ndarray, padding: float, min_crop_ratio: float, aspect_ratio: float) -> CropProposal:
    height, width = rgb.shape[:2]
    interest = content_map(rgb)
    bounds = strong_region_bounds(interest, fraction=0.5, percentile=80)
    if bounds is None:
        final = _finalize(_flat_fallback(width, height), padding, min_crop_ratio, width, height)
        return _proposal(final, FLAT_CONFIDENCE, "content-aware")

    final = _finalize(bounds, padding, min_crop_ratio, width, height)
    density = region_density(interest, final)
    confidence = min(MAX_CONTENT_CONFIDENCE, density * 0.7 + aspect_ratio_score(final[2], final[3]) * 0.3)
    return _proposal(final, float(np.clip(confidence, 0.0, 1.0)), "content-aware")


STRATEGIES: Dict[str, Callable[[np.ndarray, float, float, float], CropProposal]] = {
    "center": _center_crop,
    "golden-ratio": _golden_ratio_crop,
    "edge-detection": _edge_detection_crop,
    "content-aware": _content_aware_crop,
}


def _proposal(box: Box, confidence: float, method: str) -> CropProposal:
    x, y, w, h = box
    return CropProposal(x=x, y=y, width=w, height=h, confidence=confidence, method=method)


def _largest_with_aspect(width: int, height: int, aspect: float) -> Tuple[int, int]:
    if width / height > aspect:
        return max(1, min(width, int(np.floor(height * aspect)))), height
    return width, max(1, min(height, int(np.floor(width / aspect))))


def _centered(size: Tuple[int, int], width: int, height: int) -> Box:
    w, h = size
    return ((width - w) // 2, (height - h) // 2, w, h)


def _flat_fallback(width: int, height: int) -> Box:
    side = max(1, int(min(width, height) * 0.8))
    return _centered((side, side), width, height)


def _thirds_offset(center: float, length: int, slack: int) -> int:
    """Offset in [0, slack] that puts ``center`` nearest one of the third lines."""
    if slack <= 0:
        return 0
    best_offset = slack // 2
    best_key = None
    for third in (length / 3, 2 * length / 3):
        offset = int(round(min(max(center - third, 0), slack)))
        miss = min(abs(center - (offset + length / 3)), abs(center - (offset + 2 * length / 3)))
        key = (miss, abs(offset - slack / 2))
        if best_key is None or key < best_key:
            best_offset, best_key = offset, key
    return best_offset


def _clamp(box: Box, width: int, height: int) -> Box:
    x, y, w, h = box
    left = min(max(x, 0), width - 1)
    top = min(max(y, 0), height - 1)
    right = max(min(x + w, width), left + 1)
    bottom = max(min(y + h, height), top + 1)
    return (left, top, right - left, bottom - top)


def _inset(box: Box, amount: float, width: int, height: int) -> Box:
    """
    Move each side in by ``floor(amount * size)``; negative amounts grow the box.

    The result is clamped to the image and never narrower than one pixel, so
    a larger ``amount`` always gives a rectangle nested in a smaller one's.
    """
    x, y, w, h = box
    dx = min(int(np.floor(amount * w)), (w - 1) // 2)
    dy = min(int(np.floor(amount * h)), (h - 1) // 2)
    return _clamp((x + dx, y + dy, w - 2 * dx, h - 2 * dy), width, height)


def _golden_inset(box: Box, amount: float, width: int, height: int) -> Box:
    """
    Shrink the width by ``amount`` and derive the height from it.

    The box keeps golden proportions at any padding and stays centred in,
    and nested within, the unpadded rectangle. It never grows.
    """
    x, y, w, h = box
    floor_w = min(w, _GOLDEN_MIN_WIDTH)
    dx = min(max(int(np.floor(amount * w)), 0), (w - floor_w) // 2)
    new_w = w - 2 * dx
    new_h = min(h, max(1, int(round(new_w / GOLDEN_RATIO))))
    if new_h == h:
        new_w = min(new_w, max(1, int(round(h * GOLDEN_RATIO))))
    return _clamp((x + (w - new_w) // 2, y + (h - new_h) // 2, new_w, new_h), width, height)


def _finalize(
    box: Box,
    padding: float,
    min_crop_ratio: float,
    width: int,
    height: int,
    min_inset: Optional[float] = None,
    inset: Callable[[Box, float, int, int], Box] = _inset,
) -> Box:
    """
    Clamp, pad and enforce the minimum area fraction.

    When the padded box is too small the inset amount is lowered (going
    negative grows the box) to the largest value whose box still meets
    ``min_crop_ratio``. ``min_inset`` bounds how far it may be lowered.
    """
    raw = _clamp(box, width, height)
    target = min_crop_ratio * width * height

    def area(amount: float) -> int:
        _, _, w, h = inset(raw, amount, width, height)
        return w * h

    if area(padding) >= target:
        return inset(raw, padding, width, height)

    # Enough growth to cover the whole image from any starting box
    low = -float(max(width / raw[2], height / raw[3]))
    if min_inset is not None:
        low = max(low, min_inset)
    if area(low) < target:
        return inset(raw, low, width, height)

    high = padding
    for _ in range(_BISECTION_STEPS):
        mid = (low + high) / 2
        if area(mid) >= target:
            low = mid
        else:
            high = mid
    return inset(raw, low, width, height)
