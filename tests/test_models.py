"""Tests for the shared image, face and crop records."""

import numpy as np
import pytest

from photocull.models import CropProposal, Eye, EyeState, FaceBox, FaceDetection, ImageRecord


class TestFaceBox:
    def test_to_pixels(self):
        assert FaceBox(25, 30, 20, 25).to_pixels(400, 300) == (100.0, 90.0, 180.0, 165.0)

    @pytest.mark.parametrize("values", [(-1, 0, 1, 1), (0, 101, 1, 1), (0, 0, 200, 1)])
    def test_out_of_range(self, values):
        with pytest.raises(ValueError):
            FaceBox(*values)


class TestFaceDetection:
    def test_confidence_range(self):
        with pytest.raises(ValueError):
            FaceDetection(FaceBox(0, 0, 1, 1), confidence=1.5)

    def test_from_dict_snake_case_eyes(self):
        face = FaceDetection.from_dict({
            "bbox": {"x": 1, "y": 1, "width": 2, "height": 2},
            "confidence": 0.5,
            "eye_state": {"left": "closed"},
        })
        assert face.eye_state == EyeState(Eye.CLOSED, Eye.UNKNOWN)
        assert face.eye_state.any_closed
        assert not face.eye_state.both_open


class TestCropProposal:
    def test_immutable_and_serialisable(self):
        crop = CropProposal(x=1, y=2, width=30, height=40, confidence=0.5, method="center")
        with pytest.raises(AttributeError):
            crop.x = 5  # type: ignore
        assert crop.area == 1200
        assert crop.to_dict() == {
            "x": 1, "y": 2, "width": 30, "height": 40, "confidence": 0.5, "method": "center",
        }


class TestImageRecord:
    def test_dimensions_follow_preview(self):
        record = ImageRecord(id="a", file_name="a.jpg")
        assert (record.width, record.height) == (0, 0)
        record.preview = np.zeros((30, 50, 3), dtype=np.uint8)
        assert (record.width, record.height) == (50, 30)

    def test_faces_are_not_silently_replaced(self):
        """Test that re-detection must be explicit."""
        record = ImageRecord(id="a", file_name="a.jpg")
        record.attach_faces([])
        with pytest.raises(ValueError):
            record.attach_faces([FaceDetection(FaceBox(0, 0, 1, 1), 0.9)])
        record.attach_faces([FaceDetection(FaceBox(0, 0, 1, 1), 0.9)], replace=True)
        assert len(record.faces) == 1

    def test_crop_is_replaced_wholesale(self):
        record = ImageRecord(id="a", file_name="a.jpg")
        first = CropProposal(0, 0, 10, 10, 0.5, "center")
        second = CropProposal(1, 1, 5, 5, 0.7, "golden-ratio")
        record.attach_crop(first)
        record.attach_crop(second)
        assert record.crop is second
        assert first.method == "center"
