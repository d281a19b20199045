"""Sharpness analysis and the quality score used to suggest a group pick."""

from dataclasses import dataclass
from typing import Optional, Sequence

import cv2
import numpy as np

from .models import ImageRecord

# Weights of the auto-pick score
FOCUS_WEIGHT = 0.4
EYES_OPEN_WEIGHT = 0.3
FACE_SIZE_WEIGHT = 0.2
RATING_WEIGHT = 0.1


@dataclass(frozen=True)
class FocusAnalysis:
    focus_score: float
    blur_score: float
    is_blurry: bool


def analyze_focus(pixels: np.ndarray, threshold: float = 100.0) -> FocusAnalysis:
    """
    Measure sharpness as the variance of the Laplacian of the luminance.

    Args:
        pixels: ``H x W`` or ``H x W x 3`` RGB array
        threshold: Variance below which the image counts as blurry

    Returns:
        FocusAnalysis with the raw variance as ``focus_score``
    """
    array = np.asarray(pixels)
    if array.ndim < 2 or array.shape[0] == 0 or array.shape[1] == 0:
        raise ValueError(f"Pixel buffer has unusable shape {array.shape}")

    if array.ndim == 3:
        gray = cv2.cvtColor(array[:, :, :3].astype(np.uint8), cv2.COLOR_RGB2GRAY)
    else:
        gray = array.astype(np.uint8)

    variance = float(cv2.Laplacian(gray.astype(np.float64), cv2.CV_64F).var())
    return FocusAnalysis(
        focus_score=variance,
        blur_score=max(0.0, threshold - variance),
        is_blurry=variance < threshold,
    )


def score_image(record: ImageRecord) -> float:
    """Weighted quality score: sharpness, open eyes, face size and user rating."""
    score = 0.0

    if record.focus_score:
        score += record.focus_score * FOCUS_WEIGHT

    if record.faces:
        eyes_open = sum(1 for face in record.faces if face.eye_state and face.eye_state.both_open)
        score += eyes_open / len(record.faces) * EYES_OPEN_WEIGHT

        # Face boxes are in percent, so area is normalised to [0, 1]
        mean_area = sum(face.bbox.width * face.bbox.height for face in record.faces) / len(record.faces)
        score += mean_area / 10000 * FACE_SIZE_WEIGHT

    if record.rating > 0:
        score += record.rating * RATING_WEIGHT

    return score


def suggest_pick(records: Sequence[ImageRecord]) -> Optional[str]:
    """Id of the best-scoring record; ties go to the earliest one."""
    best_id = None
    best_score = float("-inf")
    for record in records:
        score = score_image(record)
        if score > best_score:
            best_id, best_score = record.id, score
    return best_id
