"""Tests for the worker-side request handler and the execution contexts."""

import asyncio

import numpy as np
import pytest

from photocull.decode import DecodeError, DecodeRouter, ProcessContext, ThreadContext
from photocull.decode.worker import handle_request
from tests.helpers.image_factory import encode_png, make_photo


def _request(source, kind="thumbnail", width=32, height=32, correlation_id=7):
    return {
        "correlation_id": correlation_id,
        "kind": kind,
        "source_buffer": source,
        "target_width": width,
        "target_height": height,
        "options": None,
    }


class TestHandleRequest:
    def test_success_response(self):
        """Test that a decodable buffer yields a success message with pixels."""
        response = handle_request(_request(encode_png(make_photo(1, 128, 64))))

        assert response["correlation_id"] == 7
        assert response["success"] is True
        result = response["result"]
        assert (result["width"], result["height"]) == (32, 16)
        assert isinstance(result["pixels"], np.ndarray)
        assert result["format"] == "rgb8"

    def test_undecodable_buffer_reports_error(self):
        """Test that decoding failures come back as error messages, not exceptions."""
        response = handle_request(_request(b"\x00\x01\x02garbage"))

        assert response["correlation_id"] == 7
        assert response["success"] is False
        assert response["error"]

    def test_unknown_kind_reports_error(self):
        response = handle_request(_request(encode_png(make_photo(2)), kind="poster"))
        assert response["success"] is False
        assert "poster" in response["error"]

    def test_missing_buffer_reports_error(self):
        message = _request(None)
        del message["source_buffer"]
        response = handle_request(message)
        assert response["success"] is False


class TestThreadContext:
    def test_router_round_trip_through_thread(self):
        """Test real decoding through the router with a thread-backed context."""
        good = encode_png(make_photo(3, 80, 60))

        async def scenario():
            async with DecodeRouter(context_factory=ThreadContext, request_timeout=30) as router:
                thumb = await router.generate_thumbnail(good, 40, 40)
                preview = await router.generate_preview(good, 1920, 1080)
                with pytest.raises(DecodeError) as failure:
                    await router.generate_preview(b"junk")
                return thumb, preview, failure.value

        thumb, preview, failure = asyncio.run(scenario())
        assert (thumb.width, thumb.height) == (40, 30)
        assert (preview.width, preview.height) == (80, 60)
        assert isinstance(failure, DecodeError)


class TestProcessContext:
    def test_concurrent_round_trip(self):
        """Test that thumbnail and preview requests in flight together both come back."""
        good = encode_png(make_photo(4, 128, 64))

        async def scenario():
            async with DecodeRouter(context_factory=ProcessContext, request_timeout=60) as router:
                context = router._context
                thumb, preview = await asyncio.gather(
                    router.generate_thumbnail(good, 32, 32),
                    router.generate_preview(good, 64, 64),
                )
            return context, thumb, preview

        context, thumb, preview = asyncio.run(scenario())
        assert (thumb.width, thumb.height) == (32, 16)
        assert (preview.width, preview.height) == (64, 32)
        assert not context._process.is_alive()
        assert not context._reader.is_alive()

    def test_worker_crash_fails_pending_request(self):
        """Test that a killed worker fails the request waiting on it and closes the router."""
        good = encode_png(make_photo(5, 64, 48))

        async def scenario():
            router = DecodeRouter(context_factory=ProcessContext, request_timeout=60)
            await router.initialize()
            process = router._context._process
            process.kill()
            process.join(10)
            with pytest.raises(DecodeError) as failure:
                await router.generate_thumbnail(good, 32, 32)
            return router, failure.value

        router, failure = asyncio.run(scenario())
        assert str(failure) == "decode worker encountered an error"
        assert router.is_closed
        assert router.pending_count == 0
