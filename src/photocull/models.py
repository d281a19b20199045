"""Records shared by the decode, similarity and region proposal engines."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import imagehash
import numpy as np


class Eye(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class EyeState:
    left: Eye = Eye.UNKNOWN
    right: Eye = Eye.UNKNOWN

    @property
    def both_open(self) -> bool:
        return self.left is Eye.OPEN and self.right is Eye.OPEN

    @property
    def any_closed(self) -> bool:
        return self.left is Eye.CLOSED or self.right is Eye.CLOSED


@dataclass(frozen=True)
class FaceBox:
    """Face bounding box in percent of the image (0-100 on each axis)."""
    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        for name in ("x", "y", "width", "height"):
            value = getattr(self, name)
            if not 0.0 <= value <= 100.0:
                raise ValueError(f"Face box {name}={value} outside [0, 100]")

    def to_pixels(self, image_width: int, image_height: int) -> tuple[float, float, float, float]:
        """Return (left, top, right, bottom) in pixels."""
        left = self.x / 100 * image_width
        top = self.y / 100 * image_height
        right = left + self.width / 100 * image_width
        bottom = top + self.height / 100 * image_height
        return (left, top, right, bottom)


@dataclass(frozen=True)
class FaceDetection:
    bbox: FaceBox
    confidence: float
    eye_state: Optional[EyeState] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Face confidence {self.confidence} outside [0, 1]")

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> FaceDetection:
        """Parse the detector payload ``{bbox: {x, y, width, height}, confidence, eyeState?}``."""
        box = payload["bbox"]
        eyes = payload.get("eyeState", payload.get("eye_state"))
        eye_state = None
        if eyes:
            eye_state = EyeState(
                left=Eye(eyes.get("left", "unknown")),
                right=Eye(eyes.get("right", "unknown")),
            )
        return cls(
            bbox=FaceBox(
                x=float(box["x"]),
                y=float(box["y"]),
                width=float(box["width"]),
                height=float(box["height"]),
            ),
            confidence=float(payload.get("confidence", 0.0)),
            eye_state=eye_state,
        )


@dataclass(frozen=True)
class CropProposal:
    """Crop rectangle in integer pixels plus the strategy that produced it."""
    x: int
    y: int
    width: int
    height: int
    confidence: float
    method: str

    @property
    def area(self) -> int:
        return self.width * self.height

    def to_dict(self) -> Dict[str, Any]:
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "confidence": self.confidence,
            "method": self.method,
        }


@dataclass
class ImageRecord:
    """
    One image in a culling session.

    The hash, faces, crop and group fields are filled in independently and
    in any order once a preview is available.
    """
    id: str
    file_name: str
    preview: Optional[np.ndarray] = None
    phash: Optional[imagehash.ImageHash] = None
    faces: Optional[List[FaceDetection]] = None
    crop: Optional[CropProposal] = None
    group_id: Optional[str] = None
    focus_score: Optional[float] = None
    rating: int = 0
    is_auto_pick: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def width(self) -> int:
        return 0 if self.preview is None else int(self.preview.shape[1])

    @property
    def height(self) -> int:
        return 0 if self.preview is None else int(self.preview.shape[0])

    def attach_faces(self, faces: List[FaceDetection], replace: bool = False) -> None:
        """Attach detector output; existing faces are only replaced on explicit re-detection."""
        if self.faces is not None and not replace:
            raise ValueError(f"Faces already attached to {self.id}; pass replace=True to re-detect")
        self.faces = list(faces)

    def attach_crop(self, crop: CropProposal) -> None:
        self.crop = crop
