"""
Isolated execution context for decode work.

Decoding runs in a separate process. Requests and responses travel over two
multiprocessing queues; a reader thread in the parent hands every response
back to the event loop that owns the router, so only the router ever touches
its pending-request table.
"""

from __future__ import annotations

import asyncio
import multiprocessing
import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional

from .raw import DECODE_KINDS, DecodeOptions, decode_buffer
from ..logging import get_logger

logger = get_logger(__name__)

MessageCallback = Callable[[Dict[str, Any]], None]
ErrorCallback = Callable[[str], None]


def handle_request(message: Dict[str, Any]) -> Dict[str, Any]:
    """Decode one request message and build its response message."""
    correlation_id = message.get("correlation_id")
    try:
        kind = message.get("kind")
        if kind not in DECODE_KINDS:
            raise ValueError(f"Unknown processing type: {kind}")

        result = decode_buffer(
            message["source_buffer"],
            kind,
            message.get("target_width"),
            message.get("target_height"),
            DecodeOptions.from_message(message.get("options")),
        )
        return {"correlation_id": correlation_id, "success": True, "result": result.to_message()}
    except Exception as exc:
        # Every failure goes back to the caller that issued the request.
        return {
            "correlation_id": correlation_id,
            "success": False,
            "error": str(exc) or exc.__class__.__name__,
        }


def decode_worker(requests: Any, responses: Any) -> None:
    """Worker process loop: one response per request until the ``None`` sentinel."""
    while True:
        message = requests.get()
        if message is None:
            break
        responses.put(handle_request(message))


class ProcessContext:
    """Decode worker process plus the thread that relays its responses."""

    def __init__(
        self,
        on_message: MessageCallback,
        on_error: ErrorCallback,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        start_method: str = "spawn",
        poll_interval: float = 0.25,
    ) -> None:
        self._on_message = on_message
        self._on_error = on_error
        self._loop = loop or asyncio.get_running_loop()
        self._poll_interval = poll_interval
        self._closing = threading.Event()

        mp = multiprocessing.get_context(start_method)
        self._requests = mp.Queue()
        self._responses = mp.Queue()
        self._process = mp.Process(
            target=decode_worker,
            args=(self._requests, self._responses),
            name="photocull-decode",
            daemon=True,
        )
        self._process.start()

        self._reader = threading.Thread(target=self._relay, name="photocull-decode-relay", daemon=True)
        self._reader.start()
        logger.debug(f"Started decode worker pid={self._process.pid}")

    def post(self, message: Dict[str, Any]) -> None:
        self._requests.put(message)

    def close(self, timeout: float = 0.5) -> None:
        """
        Stop the worker process and the relay thread.

        Blocks the calling thread, normally for well under ``timeout``, and
        for about three times ``timeout`` when a stuck worker is terminated.
        """
        self._closing.set()
        try:
            self._requests.put(None)
        except ValueError:
            pass  # queue already closed

        self._process.join(timeout)
        if self._process.is_alive():
            logger.warning("Decode worker did not stop in time, terminating it")
            self._process.terminate()
            self._process.join(timeout)

        self._reader.join(timeout)
        self._requests.close()
        self._responses.close()
        logger.debug("Decode worker stopped")

    def _relay(self) -> None:
        while not self._closing.is_set():
            try:
                message = self._responses.get(timeout=self._poll_interval)
            except queue.Empty:
                if self._process.exitcode is not None and not self._closing.is_set():
                    self._deliver(self._on_error, f"decode worker exited with code {self._process.exitcode}")
                    return
                continue
            except (EOFError, OSError) as exc:
                if not self._closing.is_set():
                    self._deliver(self._on_error, f"decode worker channel failed: {exc}")
                return
            self._deliver(self._on_message, message)

    def _deliver(self, callback: Callable[[Any], None], payload: Any) -> None:
        try:
            self._loop.call_soon_threadsafe(callback, payload)
        except RuntimeError:
            logger.debug("Event loop closed, dropping decode worker message")


class ThreadContext:
    """
    In-process execution context backed by a single worker thread.

    Same message contract as ProcessContext without the isolation; useful
    where spawning processes is unwanted.
    """

    def __init__(
        self,
        on_message: MessageCallback,
        on_error: ErrorCallback,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self._on_message = on_message
        self._on_error = on_error
        self._loop = loop or asyncio.get_running_loop()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="photocull-decode")

    def post(self, message: Dict[str, Any]) -> None:
        future = self._executor.submit(handle_request, message)
        future.add_done_callback(self._done)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _done(self, future: Future) -> None:
        if future.cancelled():
            return
        try:
            self._loop.call_soon_threadsafe(self._on_message, future.result())
        except RuntimeError:
            logger.debug("Event loop closed, dropping decode response")


CONTEXTS: Dict[str, Callable[..., Any]] = {
    "process": ProcessContext,
    "thread": ThreadContext,
}
