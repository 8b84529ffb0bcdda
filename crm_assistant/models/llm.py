"""Upstream model API types (chat-completions wire shapes and stream deltas)."""

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel

from crm_assistant.models.messages import ToolCallRequest


class UpstreamMessage(BaseModel):
    """A message in the transcript sent to the upstream model."""

    role: Literal["user", "assistant", "system", "tool"]
    content: str | None = None
    tool_calls: list[ToolCallRequest] | None = None
    tool_call_id: str | None = None
    name: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """Serialize for the request body, omitting unset fields."""
        payload: dict[str, Any] = {"role": self.role}
        if self.content is not None:
            payload["content"] = self.content
        if self.tool_calls:
            payload["tool_calls"] = [tc.to_openai() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        if self.name is not None:
            payload["name"] = self.name
        return payload


@dataclass(frozen=True)
class ContentDelta:
    """A fragment of assistant text."""

    content: str


@dataclass(frozen=True)
class ToolCallDelta:
    """A fragment of a streamed tool call, keyed by its index in the batch."""

    index: int
    id: str | None = None
    name: str | None = None
    arguments: str = ""


@dataclass(frozen=True)
class UpstreamError:
    """Terminal transport failure; no further deltas follow."""

    message: str
    status_code: int | None = None


UpstreamEvent = ContentDelta | ToolCallDelta | UpstreamError
