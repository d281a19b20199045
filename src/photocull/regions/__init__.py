"""Crop region proposal: geometric strategies and face-aware cropping."""

from .crop import (
    STRATEGIES,
    aspect_ratio_score,
    available_methods,
    propose_crop,
    suggest_crop,
)
from .faces import (
    FaceDetector,
    FaceStatus,
    HaarFaceDetector,
    NoFacesError,
    compute_face_aware_crop,
    detect_faces,
    face_status,
    faces_from_payload,
    has_closed_eyes,
)
from ..models import CropProposal

__all__ = [
    "STRATEGIES",
    "aspect_ratio_score",
    "available_methods",
    "propose_crop",
    "suggest_crop",
    "FaceDetector",
    "FaceStatus",
    "HaarFaceDetector",
    "NoFacesError",
    "compute_face_aware_crop",
    "detect_faces",
    "face_status",
    "faces_from_payload",
    "has_closed_eyes",
    "CropProposal",
]
