"""Request and response models for the HTTP API."""

from datetime import datetime

from pydantic import Field

from crm_assistant.models.messages import CamelModel, Conversation, Message


class ChatCompletionRequest(CamelModel):
    """Request model for starting or continuing a turn."""

    conversation_id: str = Field(..., min_length=1)
    message: str


class ToolConfirmRequest(CamelModel):
    """Request model for approving or rejecting a paused tool call."""

    conversation_id: str = Field(..., min_length=1)
    message_id: str = Field(..., min_length=1)
    tool_call_id: str = Field(..., min_length=1)
    approved: bool


class ConversationCreate(CamelModel):
    """Request model for creating a conversation."""

    title: str | None = None
    model: str | None = None


class ConversationUpdate(CamelModel):
    """Request model for renaming a conversation or switching its model."""

    title: str | None = None
    model: str | None = None


class ConversationDetail(Conversation):
    """A conversation together with its messages in creation order."""

    messages: list[Message] = Field(default_factory=list)


class DeletedResponse(CamelModel):
    """Response model for deletions."""

    deleted: bool = True


class HealthResponse(CamelModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: datetime
    version: str
