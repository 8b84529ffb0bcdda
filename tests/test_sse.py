"""Tests for server-sent event framing."""

import json

import pytest

from crm_assistant.models.events import DoneEvent, TokenEvent
from crm_assistant.utils.sse import SSE_DONE, encode_event, sse_stream


async def events_from(*items, fail_with: Exception | None = None):
    for item in items:
        yield item
    if fail_with is not None:
        raise fail_with


async def frames(source) -> list[str]:
    return [frame async for frame in sse_stream(source)]


class TestEncoding:
    """Tests for single-frame encoding."""

    def test_encode_event(self):
        """Test the data line framing."""
        frame = encode_event(TokenEvent(content="Hi"))
        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")
        assert json.loads(frame[len("data: ") :]) == {"type": "token", "content": "Hi"}

    def test_sentinel(self):
        assert SSE_DONE == "data: [DONE]\n\n"


class TestStream:
    """Tests for whole-stream framing."""

    @pytest.mark.asyncio
    async def test_sentinel_after_events(self):
        """Test that the sentinel follows the last event."""
        result = await frames(events_from(TokenEvent(content="Hi"), DoneEvent(message_id="m1")))

        assert result[:-1] == [encode_event(TokenEvent(content="Hi")), encode_event(DoneEvent(message_id="m1"))]
        assert result[-1] == SSE_DONE

    @pytest.mark.asyncio
    async def test_empty_stream_still_terminated(self):
        """Test that a stream without events still ends with the sentinel."""
        assert await frames(events_from()) == [SSE_DONE]

    @pytest.mark.asyncio
    async def test_exception_becomes_error_event(self):
        """Test that an unexpected failure is reported and the stream stays well-formed."""
        result = await frames(events_from(TokenEvent(content="Hi"), fail_with=RuntimeError("database is locked")))

        assert len(result) == 3
        assert json.loads(result[1][len("data: ") :]) == {"type": "error", "error": "database is locked"}
        assert result[2] == SSE_DONE
        assert result.count(SSE_DONE) == 1
