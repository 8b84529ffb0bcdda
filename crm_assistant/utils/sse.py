"""Server-sent event framing for chat event streams."""

import json
from collections.abc import AsyncIterator

from crm_assistant.models.events import ChatEvent, ErrorEvent, event_payload
from crm_assistant.utils.logging import get_logger

logger = get_logger(__name__)

SSE_DONE = "data: [DONE]\n\n"


def encode_event(event: ChatEvent) -> str:
    """Frame one event as an SSE data line."""
    return f"data: {json.dumps(event_payload(event))}\n\n"


async def sse_stream(events: AsyncIterator[ChatEvent]) -> AsyncIterator[str]:
    """Encode an event stream, guaranteeing the sentinel is the final frame.

    An exception escaping the event source becomes a single error event.
    """
    try:
        async for event in events:
            yield encode_event(event)
    except Exception as e:
        logger.error(f"Chat stream failed: {e}", exc_info=True)
        yield encode_event(ErrorEvent(error=str(e) or "Internal error"))

    yield SSE_DONE
