"""Public API for near-duplicate grouping of image records."""

from typing import Dict, List, Sequence

from .cluster import DuplicateGroup, group_by_hash
from .hash import HashComputationError, InvalidInputError, compute_hash
from .ssim import refine_with_ssim
from ..logging import get_logger
from ..models import ImageRecord
from ..quality import suggest_pick

logger = get_logger(__name__)


def group_images(
    records: Sequence[ImageRecord],
    threshold: int = 15,
    ssim_threshold: float = 0.8,
    use_ssim: bool = True,
    borderline_margin: int = 4,
    hash_size: int = 8,
) -> List[DuplicateGroup]:
    """
    Hash, group and refine a batch of image records.

    Records that already carry a hash keep it. Records whose preview cannot
    be hashed are logged and left out; the rest of the batch carries on.
    Multi-member groups get an ``auto_pick_id`` from the quality score, and
    every grouped record has ``group_id`` (and ``is_auto_pick``) written back.

    Args:
        records: Image records in evaluation order
        threshold: Maximum hamming distance to a group representative
        ssim_threshold: Minimum SSIM for borderline members to stay grouped
        use_ssim: Whether to run SSIM refinement
        borderline_margin: How close to ``threshold`` a distance must be to get an SSIM check
        hash_size: Side of the hash matrix

    Returns:
        Groups in creation order, singletons included
    """
    if not records:
        return []

    hashed: List[ImageRecord] = []
    for record in records:
        if record.phash is None:
            try:
                record.phash = compute_hash(record.preview, hash_size=hash_size)
            except (InvalidInputError, HashComputationError) as exc:
                logger.warning(f"Failed to compute hash for {record.id}: {exc}")
                continue
        hashed.append(record)

    groups = group_by_hash(hashed, threshold)

    if use_ssim:
        previews = {record.id: record.preview for record in hashed}
        refined: List[DuplicateGroup] = []
        for group in groups:
            refined.extend(refine_with_ssim(
                group,
                previews,
                ssim_threshold=ssim_threshold,
                hash_threshold=threshold,
                borderline_margin=borderline_margin,
            ))
        groups = refined

    by_id: Dict[str, ImageRecord] = {record.id: record for record in hashed}
    result = []
    for group in groups:
        if len(group) > 1:
            members = [by_id[image_id] for image_id in group.member_ids]
            group = DuplicateGroup(
                group_id=group.group_id,
                member_ids=group.member_ids,
                distances=group.distances,
                pick_id=group.pick_id,
                auto_pick_id=suggest_pick(members),
            )
        for image_id in group.member_ids:
            by_id[image_id].group_id = group.group_id
            by_id[image_id].is_auto_pick = image_id == group.auto_pick_id
        result.append(group)

    duplicates = sum(len(group) - 1 for group in result if len(group) > 1)
    logger.info(f"Found {len(result)} groups covering {len(hashed)} images ({duplicates} duplicates)")
    return result
