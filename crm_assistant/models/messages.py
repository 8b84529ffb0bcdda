"""Conversation and message data models."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_CONVERSATION_TITLE = "New conversation"


class MessageRole(StrEnum):
    """Role of a persisted conversation message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class ConfirmationStatus(StrEnum):
    """Lifecycle of a tool call awaiting human confirmation."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys for API and JSON columns."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ToolCallRequest(CamelModel):
    """A tool call requested by the model.

    The id is supplied upstream and must be preserved verbatim. Arguments are
    kept as the raw string the model produced; parsing happens at execution.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    name: str
    arguments: str = ""

    def to_openai(self) -> dict[str, Any]:
        """Serialize in the chat-completions tool_calls shape."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


class PendingToolCall(CamelModel):
    """A tool call recorded on an assistant message while the turn is paused."""

    id: str
    name: str
    arguments: str = ""
    status: ConfirmationStatus = ConfirmationStatus.PENDING


class MessageMetadata(CamelModel):
    """Structured metadata attached to an assistant message."""

    pending_tool_calls: list[PendingToolCall] = Field(default_factory=list)

    @classmethod
    def pending_for(cls, tool_calls: list[ToolCallRequest]) -> "MessageMetadata":
        """Mark every call of a batch as pending."""
        return cls(
            pending_tool_calls=[PendingToolCall(id=tc.id, name=tc.name, arguments=tc.arguments) for tc in tool_calls]
        )

    def find(self, call_id: str) -> PendingToolCall | None:
        """Return the entry for a tool call id, if present."""
        return next((tc for tc in self.pending_tool_calls if tc.id == call_id), None)

    def with_status(self, call_id: str, status: ConfirmationStatus) -> "MessageMetadata":
        """Return a copy with exactly one entry's status replaced.

        Raises:
            KeyError: If no entry matches the call id
        """
        if self.find(call_id) is None:
            raise KeyError(call_id)

        return self.model_copy(
            update={
                "pending_tool_calls": [
                    tc.model_copy(update={"status": status}) if tc.id == call_id else tc
                    for tc in self.pending_tool_calls
                ]
            }
        )


class Message(CamelModel):
    """A persisted conversation message."""

    id: str
    conversation_id: str
    role: MessageRole
    content: str | None = None
    tool_calls: list[ToolCallRequest] | None = None
    tool_call_id: str | None = None
    tool_name: str | None = None
    metadata: MessageMetadata | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Conversation(CamelModel):
    """A chat conversation owned by one user within one workspace."""

    id: str
    workspace_id: str
    user_id: str
    title: str = DEFAULT_CONVERSATION_TITLE
    model: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
