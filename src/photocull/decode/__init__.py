"""Out-of-process decoding of RAW and ordinary image buffers."""

from .raw import (
    RAW_EXTENSIONS,
    DecodeOptions,
    DecodeResult,
    UnsupportedImageError,
    decode_buffer,
    is_raw_format,
)
from .router import (
    DecodeError,
    DecodeRouter,
    DecodeTimeoutError,
    InitializationError,
    RequestCancelledError,
)
from .worker import CONTEXTS, ProcessContext, ThreadContext

__all__ = [
    "RAW_EXTENSIONS",
    "DecodeOptions",
    "DecodeResult",
    "UnsupportedImageError",
    "decode_buffer",
    "is_raw_format",
    "DecodeError",
    "DecodeRouter",
    "DecodeTimeoutError",
    "InitializationError",
    "RequestCancelledError",
    "CONTEXTS",
    "ProcessContext",
    "ThreadContext",
]
