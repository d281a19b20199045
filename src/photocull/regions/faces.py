"""
Face-aware cropping and the face detection adapter.

Face boxes travel in percent of the image so they stay valid for any
rendition of the same photo; they are converted to pixels only here.
"""

from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

import cv2
import numpy as np

from ..logging import get_logger
from ..models import CropProposal, FaceBox, FaceDetection, ImageRecord
from .maps import as_rgb

logger = get_logger(__name__)

FACE_AWARE_METHOD = "face-aware"
# Crops near 3:2 score best
PREFERRED_ASPECT = 1.5
MAX_CONFIDENCE = 0.95


class NoFacesError(Exception):
    """Raised when a face-aware crop is requested without any faces."""


@dataclass(frozen=True)
class FaceStatus:
    has_faces: bool
    face_count: int
    has_open_eyes: bool
    has_closed_eyes: bool
    status: str  # "good", "warning" or "none"


def compute_face_aware_crop(
    image_width: int,
    image_height: int,
    faces: Sequence[FaceDetection],
    padding: float = 0.3,
) -> CropProposal:
    """
    Crop around the union of all faces.

    The union box is grown on each side by ``padding`` times its own width
    and height, clamped to the image and floored to integer pixels.

    Args:
        image_width: Image width in pixels
        image_height: Image height in pixels
        faces: Detector output with boxes in percent
        padding: Margin as a fraction of the union's size

    Returns:
        CropProposal tagged ``face-aware``

    Raises:
        NoFacesError: If ``faces`` is empty
    """
    if not faces:
        raise NoFacesError("No faces provided for face-aware crop")
    if image_width <= 0 or image_height <= 0:
        raise ValueError(f"Invalid image size {image_width}x{image_height}")

    boxes = [face.bbox.to_pixels(image_width, image_height) for face in faces]
    min_x = min(box[0] for box in boxes)
    min_y = min(box[1] for box in boxes)
    max_x = max(box[2] for box in boxes)
    max_y = max(box[3] for box in boxes)

    face_width = max_x - min_x
    face_height = max_y - min_y
    pad_x = face_width * padding
    pad_y = face_height * padding

    left = max(0.0, min_x - pad_x)
    top = max(0.0, min_y - pad_y)
    right = min(float(image_width), max_x + pad_x)
    bottom = min(float(image_height), max_y + pad_y)
    crop_width = right - left
    crop_height = bottom - top

    if crop_width <= 0 or crop_height <= 0:
        coverage = 0.0
        aspect_score = 0.0
    else:
        coverage = (face_width * face_height) / (crop_width * crop_height)
        aspect_score = 1 - abs(crop_width / crop_height - PREFERRED_ASPECT) / PREFERRED_ASPECT
    confidence = min(MAX_CONFIDENCE, coverage * 0.6 + aspect_score * 0.4)

    # A face on the far edge still leaves a one-pixel crop inside the image
    x = min(int(np.floor(left)), image_width - 1)
    y = min(int(np.floor(top)), image_height - 1)
    return CropProposal(
        x=x,
        y=y,
        width=max(1, min(int(np.floor(crop_width)), image_width - x)),
        height=max(1, min(int(np.floor(crop_height)), image_height - y)),
        confidence=float(np.clip(confidence, 0.0, 1.0)),
        method=FACE_AWARE_METHOD,
    )


def faces_from_payload(items: Optional[Iterable[Mapping[str, Any]]]) -> List[FaceDetection]:
    """Parse detector payloads, preserving order."""
    if not items:
        return []
    return [FaceDetection.from_dict(dict(item)) for item in items]


def has_closed_eyes(faces: Optional[Sequence[FaceDetection]]) -> bool:
    if not faces:
        return False
    return any(face.eye_state is not None and face.eye_state.any_closed for face in faces)


def face_status(faces: Optional[Sequence[FaceDetection]]) -> FaceStatus:
    """Summarise faces for display: ``warning`` when anyone has their eyes closed."""
    if not faces:
        return FaceStatus(
            has_faces=False,
            face_count=0,
            has_open_eyes=False,
            has_closed_eyes=False,
            status="none",
        )

    closed = has_closed_eyes(faces)
    return FaceStatus(
        has_faces=True,
        face_count=len(faces),
        has_open_eyes=any(face.eye_state is not None and face.eye_state.both_open for face in faces),
        has_closed_eyes=closed,
        status="warning" if closed else "good",
    )


class FaceDetector(Protocol):
    def detect(self, pixels: np.ndarray) -> List[FaceDetection]:
        ...


class HaarFaceDetector:
    """
    Frontal face detector backed by an OpenCV Haar cascade.

    The cascade gives no per-face score, so every face reports
    ``confidence``. Eye state is not estimated.
    """

    def __init__(
        self,
        cascade_path: Optional[str] = None,
        scale_factor: float = 1.1,
        min_neighbors: int = 5,
        min_size: Tuple[int, int] = (24, 24),
        confidence: float = 0.8,
        merge_iou: float = 0.3,
    ):
        if cascade_path is None:
            cascade_path = cv2.data.haarcascades + "haarcascade_frontalface_default.xml"
        self.classifier = cv2.CascadeClassifier(cascade_path)
        if self.classifier.empty():
            raise ValueError(f"Could not load face cascade from {cascade_path}")
        self.scale_factor = scale_factor
        self.min_neighbors = min_neighbors
        self.min_size = min_size
        self.confidence = confidence
        self.merge_iou = merge_iou

    def detect(self, pixels: np.ndarray) -> List[FaceDetection]:
        rgb = as_rgb(pixels)
        height, width = rgb.shape[:2]
        gray = cv2.equalizeHist(cv2.cvtColor(rgb, cv2.COLOR_RGB2GRAY))

        found = self.classifier.detectMultiScale(
            gray,
            scaleFactor=self.scale_factor,
            minNeighbors=self.min_neighbors,
            minSize=self.min_size,
        )
        boxes = [tuple(int(v) for v in rect) for rect in found]
        boxes = _merge_overlapping_boxes(boxes, self.merge_iou)
        # Top-to-bottom, left-to-right for deterministic ordering
        boxes.sort(key=lambda b: (b[1], b[0], -(b[2] * b[3])))

        faces = []
        for x, y, w, h in boxes:
            faces.append(FaceDetection(
                bbox=FaceBox(
                    x=_percent(x, width),
                    y=_percent(y, height),
                    width=_percent(w, width),
                    height=_percent(h, height),
                ),
                confidence=self.confidence,
            ))
        logger.debug(f"Haar cascade found {len(faces)} faces in {width}x{height} image")
        return faces


def detect_faces(
    record: ImageRecord,
    detector: FaceDetector,
    confidence_threshold: float = 0.6,
    force: bool = False,
) -> List[FaceDetection]:
    """
    Run ``detector`` on the record's preview and attach the result.

    Faces already on the record are reused unless ``force`` is set. A record
    without a preview gets no faces.
    """
    if record.faces and not force:
        return record.faces
    if record.preview is None:
        logger.warning(f"No preview available for face detection on {record.id}")
        return []

    faces = [face for face in detector.detect(record.preview) if face.confidence >= confidence_threshold]
    record.attach_faces(faces, replace=True)
    return faces


def _percent(value: int, total: int) -> float:
    return float(min(100.0, max(0.0, value / total * 100)))


def _calculate_iou(box1: Tuple[int, int, int, int], box2: Tuple[int, int, int, int]) -> float:
    """Intersection over Union for two (x, y, w, h) boxes."""
    x1, y1, w1, h1 = box1
    x2, y2, w2, h2 = box2

    x_left = max(x1, x2)
    y_top = max(y1, y2)
    x_right = min(x1 + w1, x2 + w2)
    y_bottom = min(y1 + h1, y2 + h2)
    if x_right < x_left or y_bottom < y_top:
        return 0.0

    intersection = (x_right - x_left) * (y_bottom - y_top)
    union = w1 * h1 + w2 * h2 - intersection
    if union == 0:
        return 0.0
    return intersection / union


def _merge_overlapping_boxes(
    boxes: List[Tuple[int, int, int, int]],
    threshold: float,
) -> List[Tuple[int, int, int, int]]:
    """Merge detections of the same face that overlap by at least ``threshold`` IoU."""
    if len(boxes) <= 1:
        return list(boxes)

    merged = []
    used = set()
    for i, box in enumerate(boxes):
        if i in used:
            continue
        current = box
        merged_any = True
        while merged_any:
            merged_any = False
            for j, other in enumerate(boxes):
                if j in used or j == i:
                    continue
                if _calculate_iou(current, other) >= threshold:
                    x_min = min(current[0], other[0])
                    y_min = min(current[1], other[1])
                    x_max = max(current[0] + current[2], other[0] + other[2])
                    y_max = max(current[1] + current[3], other[1] + other[3])
                    current = (x_min, y_min, x_max - x_min, y_max - y_min)
                    used.add(j)
                    merged_any = True
        merged.append(current)
        used.add(i)
    return merged
