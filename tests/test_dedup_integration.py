"""End-to-end tests for hashing, grouping, SSIM refinement and pick suggestion."""

import numpy as np
import pytest

from photocull.dedup import DuplicateGroup, compute_hash, compute_ssim, group_images, refine_with_ssim
from photocull.dedup.hash import InvalidInputError
from photocull.models import ImageRecord
from tests.helpers.image_factory import add_noise, make_photo


def _noise_image(seed, width=128, height=96):
    rng = np.random.RandomState(seed)
    return rng.randint(0, 256, size=(height, width, 3)).astype(np.uint8)


class TestComputeSsim:
    def test_identical_is_one(self):
        photo = make_photo(1)
        assert compute_ssim(photo, photo) == pytest.approx(1.0)

    def test_symmetric(self):
        a, b = make_photo(2), add_noise(make_photo(2), amount=20)
        assert compute_ssim(a, b) == pytest.approx(compute_ssim(b, a))

    def test_noisy_copy_scores_high(self):
        photo = make_photo(3)
        assert compute_ssim(photo, add_noise(photo, amount=2)) > 0.8

    def test_unrelated_scores_low(self):
        assert compute_ssim(make_photo(4), _noise_image(5)) < 0.3

    def test_different_sizes_are_resized(self):
        """Test that mismatched sizes are compared at the common minimum size."""
        photo = make_photo(6, 200, 150)
        score = compute_ssim(photo, photo[:100, :120])
        assert -1.0 <= score <= 1.0

    def test_tiny_images(self):
        assert compute_ssim(np.full((3, 3), 7, np.uint8), np.full((3, 3), 7, np.uint8)) == pytest.approx(1.0)

    def test_invalid_input(self):
        with pytest.raises(InvalidInputError):
            compute_ssim(np.zeros((0, 4), np.uint8), make_photo(7))


class TestRefineWithSsim:
    def _group(self, distances):
        ids = tuple(f"m{i}" for i in range(len(distances)))
        return DuplicateGroup(group_id="dup_003", member_ids=ids, distances=tuple(distances))

    def test_borderline_dissimilar_member_is_ejected(self):
        """Test that a borderline member failing SSIM becomes its own group."""
        group = self._group([0, 3, 14])
        photo = make_photo(8)
        previews = {"m0": photo, "m1": add_noise(photo), "m2": _noise_image(9)}

        result = refine_with_ssim(group, previews, ssim_threshold=0.8, hash_threshold=15, borderline_margin=4)

        assert [g.member_ids for g in result] == [("m0", "m1"), ("m2",)]
        assert result[1].group_id == "dup_003.1"
        assert result[0].distances == (0, 3)

    def test_borderline_similar_member_is_kept(self):
        group = self._group([0, 13])
        photo = make_photo(10)
        previews = {"m0": photo, "m1": add_noise(photo, amount=2)}
        result = refine_with_ssim(group, previews)
        assert [g.member_ids for g in result] == [("m0", "m1")]

    def test_close_members_skip_ssim(self):
        """Test that members well inside the threshold are kept without comparison."""
        group = self._group([0, 2])
        previews = {"m0": make_photo(11), "m1": _noise_image(12)}
        assert len(refine_with_ssim(group, previews)) == 1

    def test_missing_preview_keeps_hash_result(self):
        group = self._group([0, 14])
        result = refine_with_ssim(group, {"m0": make_photo(13)})
        assert [g.member_ids for g in result] == [("m0", "m1")]

    def test_pick_dropped_when_ejected(self):
        group = DuplicateGroup(
            group_id="dup_001", member_ids=("m0", "m1"), distances=(0, 14), pick_id="m1",
        )
        previews = {"m0": make_photo(14), "m1": _noise_image(15)}
        reduced = refine_with_ssim(group, previews)[0]
        assert reduced.pick_id is None

    def test_singleton_untouched(self):
        group = self._group([0])
        assert refine_with_ssim(group, {}) == [group]


class TestGroupImages:
    def test_empty_input(self):
        assert group_images([]) == []

    def test_groups_near_duplicates_and_suggests_pick(self):
        """Test grouping of a burst plus distinct shots, with the sharpest shot picked."""
        base = make_photo(20, 160, 120)
        records = [
            ImageRecord(id="a", file_name="a.jpg", preview=base, focus_score=50.0),
            ImageRecord(id="b", file_name="b.jpg", preview=add_noise(base, amount=2, seed=1), focus_score=200.0),
            ImageRecord(id="c", file_name="c.jpg", preview=make_photo(21, 160, 120), focus_score=10.0),
            ImageRecord(id="d", file_name="d.jpg", preview=_noise_image(22, 160, 120), focus_score=10.0),
        ]

        groups = group_images(records, threshold=8)

        assert groups[0].member_ids == ("a", "b")
        assert groups[0].group_id == "dup_001"
        assert groups[0].auto_pick_id == "b"
        assert sorted(m for g in groups for m in g.member_ids) == ["a", "b", "c", "d"]

        assert records[0].group_id == records[1].group_id == "dup_001"
        assert records[1].is_auto_pick
        assert not records[0].is_auto_pick
        assert all(r.phash is not None for r in records)

    def test_existing_hash_is_kept(self):
        base = make_photo(23)
        other = make_photo(24)

        record = ImageRecord(id="x", file_name="x.jpg", preview=other, phash=compute_hash(base))
        group_images([record])
        assert record.phash == compute_hash(base)

    def test_unhashable_records_are_skipped(self):
        """Test that a record without a preview does not abort the batch."""
        records = [
            ImageRecord(id="ok", file_name="ok.jpg", preview=make_photo(25)),
            ImageRecord(id="broken", file_name="broken.cr2"),
        ]
        groups = group_images(records)
        assert [g.member_ids for g in groups] == [("ok",)]
        assert records[1].group_id is None

    def test_ssim_disabled(self):
        base = make_photo(26)
        records = [
            ImageRecord(id="a", file_name="a.jpg", preview=base),
            ImageRecord(id="b", file_name="b.jpg", preview=base.copy()),
        ]
        groups = group_images(records, use_ssim=False)
        assert groups[0].member_ids == ("a", "b")
        assert groups[0].auto_pick_id == "a"
