"""Correlates decode requests with worker responses."""

from __future__ import annotations

import asyncio
import itertools
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol

from .raw import DecodeKind, DecodeOptions, DecodeResult, is_raw_format
from .worker import ErrorCallback, MessageCallback, ProcessContext
from ..logging import get_logger

logger = get_logger(__name__)


class InitializationError(Exception):
    """Raised when the decode execution context cannot be started."""


class DecodeError(Exception):
    """Raised when a single decode request fails."""


class DecodeTimeoutError(DecodeError):
    """Raised when no response arrives within the router's request timeout."""


class RequestCancelledError(Exception):
    """Raised for requests still pending, or newly issued, once the router is terminated."""


class ExecutionContext(Protocol):
    def post(self, message: Dict[str, Any]) -> None: ...

    def close(self) -> None: ...


ContextFactory = Callable[[MessageCallback, ErrorCallback], ExecutionContext]


@dataclass
class PendingRequest:
    correlation_id: int
    kind: str
    future: asyncio.Future
    created_at: float


class DecodeRouter:
    """
    Owns one decode execution context and the table of requests waiting on it.

    Each request carries a correlation id unique for the router's lifetime.
    Responses may come back in any order; each one resolves only the caller
    whose id it carries. The table is only mutated on the event loop thread.

    Usage::

        async with DecodeRouter() as router:
            preview = await router.generate_preview(data, 1920, 1080)
    """

    is_raw_format = staticmethod(is_raw_format)

    def __init__(
        self,
        context_factory: Optional[ContextFactory] = None,
        request_timeout: Optional[float] = 120.0,
    ) -> None:
        self._context_factory = context_factory or ProcessContext
        self._request_timeout = request_timeout
        self._context: Optional[ExecutionContext] = None
        self._pending: Dict[int, PendingRequest] = {}
        self._ids = itertools.count(1)
        self._closed = False

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def is_initialized(self) -> bool:
        return self._context is not None

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def initialize(self) -> None:
        """Start the execution context; later calls are no-ops."""
        if self._closed:
            raise InitializationError("Decode router has been terminated")
        if self._context is not None:
            return

        try:
            self._context = self._context_factory(self._handle_response, self._handle_context_error)
        except Exception as exc:
            raise InitializationError(f"Failed to start decode worker: {exc}") from exc
        logger.info("Decode router initialized")

    async def generate_thumbnail(
        self, buffer: bytes, target_width: int = 200, target_height: int = 200
    ) -> DecodeResult:
        return await self._submit("thumbnail", buffer, target_width, target_height)

    async def generate_preview(
        self, buffer: bytes, target_width: int = 1920, target_height: int = 1080
    ) -> DecodeResult:
        return await self._submit("preview", buffer, target_width, target_height)

    async def process_raw(self, buffer: bytes, options: Optional[DecodeOptions] = None) -> DecodeResult:
        """Full-size decode with explicit white balance, brightness and colour space."""
        return await self._submit("process", buffer, None, None, options)

    def terminate(self) -> None:
        """
        Tear down the execution context and cancel every pending request.

        Safe to call repeatedly; the context is closed at most once. The router
        refuses new requests from the moment this starts.
        """
        self._closed = True
        self._cancel_all(lambda request: RequestCancelledError(
            f"Decode request {request.correlation_id} ({request.kind}) cancelled: router terminated"
        ))

        context, self._context = self._context, None
        if context is not None:
            context.close()
            logger.info("Decode router terminated")

    async def __aenter__(self) -> DecodeRouter:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.terminate()

    async def _submit(
        self,
        kind: DecodeKind,
        buffer: bytes,
        target_width: Optional[int],
        target_height: Optional[int],
        options: Optional[DecodeOptions] = None,
    ) -> DecodeResult:
        if self._closed:
            raise RequestCancelledError(f"Cannot submit {kind} request: router terminated")
        await self.initialize()

        correlation_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[correlation_id] = PendingRequest(
            correlation_id=correlation_id,
            kind=kind,
            future=future,
            created_at=time.monotonic(),
        )

        message = {
            "correlation_id": correlation_id,
            "kind": kind,
            "source_buffer": bytes(buffer),
            "target_width": target_width,
            "target_height": target_height,
            "options": options.to_message() if options else None,
        }
        try:
            self._context.post(message)
        except Exception as exc:
            self._pending.pop(correlation_id, None)
            raise DecodeError(f"Failed to submit {kind} request: {exc}") from exc

        logger.debug(f"Submitted {kind} request {correlation_id} ({len(self._pending)} pending)")
        return await self._wait_for(correlation_id, future)

    async def _wait_for(self, correlation_id: int, future: asyncio.Future) -> DecodeResult:
        try:
            if self._request_timeout is None:
                return await future
            return await asyncio.wait_for(future, self._request_timeout)
        except asyncio.TimeoutError as exc:
            request = self._pending.pop(correlation_id, None)
            kind = request.kind if request else "decode"
            raise DecodeTimeoutError(
                f"No response to {kind} request {correlation_id} within {self._request_timeout}s"
            ) from exc
        except asyncio.CancelledError:
            self._pending.pop(correlation_id, None)
            raise

    def _handle_response(self, message: Dict[str, Any]) -> None:
        if not isinstance(message, dict):
            logger.warning(f"Dropping malformed decode response: {message!r}")
            return

        correlation_id = message.get("correlation_id")
        request = self._pending.pop(correlation_id, None)
        if request is None:
            logger.warning(f"Received response for unknown request: {correlation_id!r}")
            return
        if request.future.done():
            return

        elapsed = time.monotonic() - request.created_at
        if message.get("success") and message.get("result") is not None:
            try:
                result = DecodeResult.from_message(message["result"])
            except (KeyError, TypeError, ValueError) as exc:
                request.future.set_exception(DecodeError(f"Malformed {request.kind} result: {exc}"))
                return
            logger.debug(f"{request.kind} request {correlation_id} completed in {elapsed:.2f}s")
            request.future.set_result(result)
        else:
            error = message.get("error") or f"{request.kind} decoding failed"
            logger.debug(f"{request.kind} request {correlation_id} failed: {error}")
            request.future.set_exception(DecodeError(error))

    def _handle_context_error(self, reason: str) -> None:
        logger.error(f"Decode worker error: {reason}")
        self._closed = True
        self._cancel_all(lambda request: DecodeError("decode worker encountered an error"))

        context, self._context = self._context, None
        if context is not None:
            context.close()

    def _cancel_all(self, make_error: Callable[[PendingRequest], Exception]) -> None:
        pending, self._pending = self._pending, {}
        for request in pending.values():
            if not request.future.done():
                request.future.set_exception(make_error(request))
        if pending:
            logger.info(f"Failed {len(pending)} pending decode requests")
