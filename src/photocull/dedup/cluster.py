"""Clustering logic for grouping near-duplicate images."""

from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple

from .distance import hamming_distance
from ..logging import get_logger
from ..models import ImageRecord

logger = get_logger(__name__)


@dataclass(frozen=True)
class DuplicateGroup:
    """
    Near-duplicate images in evaluation order.

    The first member is the representative. ``distances[i]`` is the Hamming
    distance of ``member_ids[i]`` to the representative when it joined.
    """
    group_id: str
    member_ids: Tuple[str, ...]
    distances: Tuple[int, ...]
    pick_id: Optional[str] = None
    auto_pick_id: Optional[str] = None

    @property
    def representative_id(self) -> str:
        return self.member_ids[0]

    @property
    def effective_pick(self) -> str:
        """User override first, then the quality suggestion, then the representative."""
        return self.pick_id or self.auto_pick_id or self.representative_id

    def __len__(self) -> int:
        return len(self.member_ids)

    def with_pick(self, image_id: str) -> "DuplicateGroup":
        if image_id not in self.member_ids:
            raise ValueError(f"{image_id} is not a member of {self.group_id}")
        return replace(self, pick_id=image_id)


def group_by_hash(images: Sequence[ImageRecord], threshold: int = 15) -> List[DuplicateGroup]:
    """
    Group images by perceptual hash using representative-only clustering.

    Images are visited in input order. Each one joins the first existing group
    (in creation order) whose representative is within ``threshold`` Hamming
    distance, otherwise it starts a new group. Distance is only checked
    against representatives, so two members of the same group may be further
    apart than ``threshold``.

    Args:
        images: Records with ``phash`` populated; records without a hash are skipped
        threshold: Maximum hamming distance to a representative

    Returns:
        Groups in creation order, singletons included
    """
    members: List[List[str]] = []
    distances: List[List[int]] = []
    representatives = []

    for image in images:
        if image.phash is None:
            logger.warning(f"No perceptual hash for {image.id}, skipping grouping")
            continue

        for index, rep_hash in enumerate(representatives):
            distance = hamming_distance(rep_hash, image.phash)
            if distance <= threshold:
                members[index].append(image.id)
                distances[index].append(distance)
                logger.debug(f"Grouped {image.id} with {members[index][0]} (distance: {distance})")
                break
        else:
            representatives.append(image.phash)
            members.append([image.id])
            distances.append([0])

    groups = [
        DuplicateGroup(
            group_id=f"dup_{number:03d}",
            member_ids=tuple(ids),
            distances=tuple(dists),
        )
        for number, (ids, dists) in enumerate(zip(members, distances), start=1)
    ]

    multi = sum(1 for group in groups if len(group) > 1)
    logger.info(f"Grouped {sum(len(g) for g in groups)} images into {len(groups)} groups ({multi} with duplicates)")
    return groups
