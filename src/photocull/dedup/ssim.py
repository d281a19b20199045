"""Structural similarity used to confirm or reject hash-based groupings."""

from dataclasses import replace
from typing import List, Mapping, Optional

import cv2
import numpy as np

from .cluster import DuplicateGroup
from .hash import InvalidInputError
from ..logging import get_logger

logger = get_logger(__name__)

# Stabilising constants for 8-bit luminance
C1 = (0.01 * 255) ** 2
C2 = (0.03 * 255) ** 2


def compute_ssim(a: np.ndarray, b: np.ndarray, window_size: int = 11) -> float:
    """
    Mean structural similarity of two images over uniform square windows.

    Both images are reduced to luminance and, if their sizes differ, resized
    to the common minimum size. Windows that would cross the border are
    skipped. The score is symmetric: ``compute_ssim(a, b) == compute_ssim(b, a)``.

    Args:
        a: ``H x W`` or ``H x W x C`` pixel array
        b: ``H x W`` or ``H x W x C`` pixel array
        window_size: Side of the statistics window (clamped to the image)

    Returns:
        Mean SSIM in [-1, 1]
    """
    gray_a = _luminance(a)
    gray_b = _luminance(b)

    height = min(gray_a.shape[0], gray_b.shape[0])
    width = min(gray_a.shape[1], gray_b.shape[1])
    gray_a = _resize_to(gray_a, width, height)
    gray_b = _resize_to(gray_b, width, height)

    window = max(1, min(window_size, width, height))
    if window % 2 == 0:
        window -= 1
    half = window // 2
    n = window * window
    # Sample (n - 1) statistics
    correction = n / (n - 1) if n > 1 else 1.0

    def local_mean(values: np.ndarray) -> np.ndarray:
        mean = cv2.blur(values, (window, window), borderType=cv2.BORDER_REFLECT)
        return mean[half:height - half, half:width - half]

    mu_a = local_mean(gray_a)
    mu_b = local_mean(gray_b)
    var_a = (local_mean(gray_a * gray_a) - mu_a * mu_a) * correction
    var_b = (local_mean(gray_b * gray_b) - mu_b * mu_b) * correction
    covar = (local_mean(gray_a * gray_b) - mu_a * mu_b) * correction

    numerator = (2 * mu_a * mu_b + C1) * (2 * covar + C2)
    denominator = (mu_a * mu_a + mu_b * mu_b + C1) * (var_a + var_b + C2)
    return float(np.mean(numerator / denominator))


def refine_with_ssim(
    group: DuplicateGroup,
    previews: Mapping[str, Optional[np.ndarray]],
    ssim_threshold: float = 0.8,
    hash_threshold: int = 15,
    borderline_margin: int = 4,
) -> List[DuplicateGroup]:
    """
    Split borderline members out of a hash group when SSIM disagrees.

    Members whose hash distance to the representative is within
    ``borderline_margin`` of ``hash_threshold`` are compared to the
    representative with SSIM. Those scoring below ``ssim_threshold`` become
    singleton groups named ``<group_id>.<n>``, listed after the reduced group.
    Members without a usable preview are kept on the hash result alone.

    Returns:
        The reduced group followed by any ejected singletons
    """
    if len(group) < 2:
        return [group]

    rep_id = group.representative_id
    rep_preview = previews.get(rep_id)
    borderline = max(0, hash_threshold - borderline_margin)

    kept_ids = [rep_id]
    kept_distances = [0]
    ejected: List[DuplicateGroup] = []

    for member_id, distance in zip(group.member_ids[1:], group.distances[1:]):
        if distance < borderline:
            kept_ids.append(member_id)
            kept_distances.append(distance)
            continue

        member_preview = previews.get(member_id)
        if rep_preview is None or member_preview is None:
            logger.debug(f"No preview for SSIM between {rep_id} and {member_id}, keeping hash result")
            kept_ids.append(member_id)
            kept_distances.append(distance)
            continue

        try:
            score = compute_ssim(rep_preview, member_preview)
        except InvalidInputError as exc:
            logger.debug(f"SSIM failed for {member_id} ({exc}), keeping hash result")
            kept_ids.append(member_id)
            kept_distances.append(distance)
            continue

        if score >= ssim_threshold:
            kept_ids.append(member_id)
            kept_distances.append(distance)
        else:
            logger.info(f"Ejected {member_id} from {group.group_id} (ssim {score:.3f} < {ssim_threshold})")
            ejected.append(DuplicateGroup(
                group_id=f"{group.group_id}.{len(ejected) + 1}",
                member_ids=(member_id,),
                distances=(0,),
            ))

    pick_id = group.pick_id if group.pick_id in kept_ids else None
    auto_pick_id = group.auto_pick_id if group.auto_pick_id in kept_ids else None
    reduced = replace(
        group,
        member_ids=tuple(kept_ids),
        distances=tuple(kept_distances),
        pick_id=pick_id,
        auto_pick_id=auto_pick_id,
    )
    return [reduced] + ejected


def _luminance(pixels: np.ndarray) -> np.ndarray:
    if pixels is None:
        raise InvalidInputError("No pixel buffer provided")
    array = np.asarray(pixels)
    if array.ndim == 3 and array.shape[2] == 1:
        array = array[:, :, 0]
    if array.ndim not in (2, 3) or array.shape[0] == 0 or array.shape[1] == 0:
        raise InvalidInputError(f"Pixel buffer has unusable shape {array.shape}")

    if array.ndim == 2:
        return array.astype(np.float64)
    if array.shape[2] < 3:
        raise InvalidInputError(f"Unsupported channel count {array.shape[2]}")
    rgb = array[:, :, :3].astype(np.float64)
    return rgb @ np.array([0.299, 0.587, 0.114])


def _resize_to(gray: np.ndarray, width: int, height: int) -> np.ndarray:
    if gray.shape[0] == height and gray.shape[1] == width:
        return gray
    return cv2.resize(gray, (width, height), interpolation=cv2.INTER_AREA)
