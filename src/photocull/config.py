import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional, Tuple


@dataclass
class Settings:
    # Duplicate grouping
    similarity_threshold: int = 15
    ssim_threshold: float = 0.8
    borderline_margin: int = 4
    use_ssim: bool = True
    hash_size: int = 8

    # Region proposals
    crop_method: str = "edge-detection"
    crop_padding: float = 0.05
    min_crop_ratio: float = 0.7
    face_padding: float = 0.3

    # Decoding
    thumbnail_size: Tuple[int, int] = (200, 200)
    preview_size: Tuple[int, int] = (1920, 1080)
    request_timeout: Optional[float] = 120.0
    decode_isolation: str = "process"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from ``PHOTOCULL_<FIELD>`` environment variables.

        Sizes are written as ``WIDTHxHEIGHT``; an empty ``PHOTOCULL_REQUEST_TIMEOUT``
        disables the decode timeout.
        """
        environ = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            raw = environ.get(f"PHOTOCULL_{f.name.upper()}")
            if raw is None:
                continue
            overrides[f.name] = _parse_value(f.name, raw)
        return cls(**overrides)


def _parse_value(name: str, raw: str):
    default = getattr(Settings, name)
    raw = raw.strip()

    if name == "request_timeout":
        return float(raw) if raw else None
    if isinstance(default, bool):
        return raw.lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    if isinstance(default, tuple):
        width, _, height = raw.lower().partition("x")
        return (int(width), int(height))
    return raw
