"""Events streamed to the caller of a chat turn."""

from typing import Any, Literal

from pydantic import Field

from crm_assistant.models.messages import CamelModel


class TokenEvent(CamelModel):
    """Live assistant text."""

    type: Literal["token"] = "token"
    content: str


class ToolExecutingEvent(CamelModel):
    """An auto tool is about to run."""

    type: Literal["tool_executing"] = "tool_executing"
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolCallPendingEvent(CamelModel):
    """A gated tool call awaits human confirmation; the turn stops here."""

    type: Literal["tool_call_pending"] = "tool_call_pending"
    message_id: str
    tool_call_id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class DoneEvent(CamelModel):
    """The model produced its final answer (message_id is None when empty)."""

    type: Literal["done"] = "done"
    message_id: str | None = None


class ErrorEvent(CamelModel):
    """The turn ended abnormally."""

    type: Literal["error"] = "error"
    error: str


ChatEvent = TokenEvent | ToolExecutingEvent | ToolCallPendingEvent | DoneEvent | ErrorEvent


def event_payload(event: ChatEvent) -> dict[str, Any]:
    """Serialize an event with camelCase keys, keeping explicit nulls."""
    return event.model_dump(by_alias=True)
