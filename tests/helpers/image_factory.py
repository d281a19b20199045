"""Synthetic photos and a scriptable decode context for tests."""

import io
from typing import Any, Dict, List, Optional

import numpy as np
from PIL import Image


def make_photo(seed: int, width: int = 128, height: int = 96) -> np.ndarray:
    """
    Smooth random scene: a few coloured blobs over a gradient.

    Different seeds give visually different images; the same seed always
    gives the same pixels.
    """
    rng = np.random.RandomState(seed)
    ys, xs = np.mgrid[0:height, 0:width].astype(np.float64)
    base = rng.uniform(40, 200, size=3)
    slope = rng.uniform(-60, 60, size=(2, 3))
    image = base + xs[..., None] / width * slope[0] + ys[..., None] / height * slope[1]

    for _ in range(4):
        cx, cy = rng.uniform(0, width), rng.uniform(0, height)
        radius = rng.uniform(0.1, 0.3) * min(width, height)
        colour = rng.uniform(-120, 120, size=3)
        mask = np.exp(-((xs - cx) ** 2 + (ys - cy) ** 2) / (2 * radius ** 2))
        image += mask[..., None] * colour

    return np.clip(image, 0, 255).astype(np.uint8)


def add_noise(pixels: np.ndarray, amount: float = 4.0, seed: int = 0) -> np.ndarray:
    rng = np.random.RandomState(seed)
    noisy = pixels.astype(np.float64) + rng.normal(0, amount, size=pixels.shape)
    return np.clip(noisy, 0, 255).astype(np.uint8)


def encode_png(pixels: np.ndarray) -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(pixels).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeContext:
    """Execution context that records posted requests and replies on demand."""

    def __init__(self, on_message, on_error):
        self.on_message = on_message
        self.on_error = on_error
        self.posted: List[Dict[str, Any]] = []
        self.close_calls = 0

    def post(self, message: Dict[str, Any]) -> None:
        self.posted.append(message)

    def close(self) -> None:
        self.close_calls += 1

    def succeed(self, message: Dict[str, Any]) -> None:
        """Reply with a black image sized to the request's target box."""
        width = message["target_width"] or 1
        height = message["target_height"] or 1
        self.on_message({
            "correlation_id": message["correlation_id"],
            "success": True,
            "result": {
                "pixels": np.zeros((height, width, 3), dtype=np.uint8),
                "width": width,
                "height": height,
                "format": "rgb8",
                "metadata": {"source_format": "png"},
            },
        })

    def fail(self, message: Dict[str, Any], error: str = "corrupt buffer") -> None:
        self.on_message({"correlation_id": message["correlation_id"], "success": False, "error": error})


class FakeContextFactory:
    """Context factory that keeps every context it creates."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.contexts: List[FakeContext] = []

    def __call__(self, on_message, on_error) -> FakeContext:
        if self.error is not None:
            raise self.error
        context = FakeContext(on_message, on_error)
        self.contexts.append(context)
        return context

    @property
    def context(self) -> FakeContext:
        return self.contexts[-1]
