"""Durable conversation and message storage interface and in-memory implementation."""

from datetime import UTC, datetime
from typing import Protocol

from cuid2 import cuid_wrapper

from crm_assistant.models.messages import (
    DEFAULT_CONVERSATION_TITLE,
    ConfirmationStatus,
    Conversation,
    Message,
    MessageMetadata,
    MessageRole,
    ToolCallRequest,
)
from crm_assistant.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()

DEFAULT_MODEL = "anthropic/claude-sonnet-4"


class MessageStore(Protocol):
    """Interface for conversation persistence.

    Messages are append-only. The single permitted mutation is the status of
    one pending tool call in an assistant message's metadata.
    """

    async def create_conversation(
        self, workspace_id: str, user_id: str, title: str | None = None, model: str | None = None
    ) -> Conversation:
        """Create a conversation."""
        ...

    async def get_conversation(self, conversation_id: str, user_id: str | None = None) -> Conversation | None:
        """Get a conversation, optionally requiring it to belong to user_id."""
        ...

    async def list_conversations(self, user_id: str, workspace_id: str) -> list[Conversation]:
        """List a user's conversations in a workspace, most recently active first."""
        ...

    async def update_conversation(
        self, conversation_id: str, user_id: str, title: str | None = None, model: str | None = None
    ) -> Conversation | None:
        """Rename a conversation or switch its model."""
        ...

    async def set_title(self, conversation_id: str, title: str) -> None:
        """Set the title without touching the activity timestamp."""
        ...

    async def touch_conversation(self, conversation_id: str) -> None:
        """Record activity on a conversation (last writer wins)."""
        ...

    async def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        """Delete a conversation and its messages."""
        ...

    async def save_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str | None = None,
        tool_calls: list[ToolCallRequest] | None = None,
        tool_call_id: str | None = None,
        tool_name: str | None = None,
        metadata: MessageMetadata | None = None,
    ) -> Message:
        """Append a message."""
        ...

    async def get_message(self, message_id: str) -> Message | None:
        """Get a message by id."""
        ...

    async def list_messages(self, conversation_id: str) -> list[Message]:
        """List a conversation's messages in creation order."""
        ...

    async def set_pending_tool_calls(self, message_id: str, metadata: MessageMetadata) -> Message:
        """Attach pending-confirmation metadata to an assistant message."""
        ...

    async def update_tool_call_status(self, message_id: str, call_id: str, status: ConfirmationStatus) -> Message:
        """Replace the status of exactly one pending tool call."""
        ...

    async def has_tool_result(self, conversation_id: str, tool_call_id: str) -> bool:
        """Whether a tool-role message answering tool_call_id exists."""
        ...


def validate_message_fields(
    role: MessageRole,
    tool_calls: list[ToolCallRequest] | None,
    tool_call_id: str | None,
    tool_name: str | None,
) -> None:
    """Enforce the role-specific shape of a message.

    Raises:
        ValueError: If a tool message lacks its link fields, or tool calls are
            attached to a non-assistant message
    """
    if role == MessageRole.TOOL and not (tool_call_id and tool_name):
        raise ValueError("Tool messages require both tool_call_id and tool_name")
    if tool_calls and role != MessageRole.ASSISTANT:
        raise ValueError("Only assistant messages may carry tool calls")


def validate_pending_metadata(message: Message, metadata: MessageMetadata) -> None:
    """Check that every pending entry refers to a tool call of the same message.

    Raises:
        ValueError: If the message is not an assistant tool-call message or an
            entry references an unknown call id
    """
    if message.role != MessageRole.ASSISTANT or not message.tool_calls:
        raise ValueError(f"Message {message.id} has no tool calls to confirm")

    call_ids = {tc.id for tc in message.tool_calls}
    unknown = [tc.id for tc in metadata.pending_tool_calls if tc.id not in call_ids]
    if unknown:
        raise ValueError(f"Pending tool calls not present on message {message.id}: {unknown}")


class InMemoryMessageStore:
    """In-memory message store for development and tests.

    Stored models are copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self, default_model: str = DEFAULT_MODEL):
        """Initialize empty storage.

        Args:
            default_model: Model identifier for conversations created without one
        """
        self.default_model = default_model
        self.conversations: dict[str, Conversation] = {}
        self.messages: dict[str, Message] = {}
        self.conversation_messages: dict[str, list[str]] = {}

    async def create_conversation(
        self, workspace_id: str, user_id: str, title: str | None = None, model: str | None = None
    ) -> Conversation:
        """Create a conversation."""
        conversation = Conversation(
            id=cuid(),
            workspace_id=workspace_id,
            user_id=user_id,
            title=title or DEFAULT_CONVERSATION_TITLE,
            model=model or self.default_model,
        )
        self.conversations[conversation.id] = conversation
        self.conversation_messages[conversation.id] = []
        logger.info(f"Created conversation {conversation.id} for user {user_id} in workspace {workspace_id}")
        return conversation.model_copy()

    async def get_conversation(self, conversation_id: str, user_id: str | None = None) -> Conversation | None:
        """Get a conversation, optionally requiring ownership."""
        conversation = self.conversations.get(conversation_id)
        if conversation is None or (user_id is not None and conversation.user_id != user_id):
            return None
        return conversation.model_copy()

    async def list_conversations(self, user_id: str, workspace_id: str) -> list[Conversation]:
        """List conversations, most recently active first."""
        conversations = [
            c.model_copy()
            for c in self.conversations.values()
            if c.user_id == user_id and c.workspace_id == workspace_id
        ]
        return sorted(conversations, key=lambda c: c.updated_at, reverse=True)

    async def update_conversation(
        self, conversation_id: str, user_id: str, title: str | None = None, model: str | None = None
    ) -> Conversation | None:
        """Rename a conversation or switch its model."""
        conversation = self.conversations.get(conversation_id)
        if conversation is None or conversation.user_id != user_id:
            return None

        if title is not None:
            conversation.title = title
        if model is not None:
            conversation.model = model
        conversation.updated_at = datetime.now(UTC)
        return conversation.model_copy()

    async def set_title(self, conversation_id: str, title: str) -> None:
        """Set the title."""
        conversation = self.conversations.get(conversation_id)
        if conversation is not None:
            conversation.title = title

    async def touch_conversation(self, conversation_id: str) -> None:
        """Update the last activity timestamp."""
        conversation = self.conversations.get(conversation_id)
        if conversation is not None:
            conversation.updated_at = datetime.now(UTC)

    async def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        """Delete a conversation and its messages."""
        conversation = self.conversations.get(conversation_id)
        if conversation is None or conversation.user_id != user_id:
            return False

        for message_id in self.conversation_messages.pop(conversation_id, []):
            self.messages.pop(message_id, None)
        del self.conversations[conversation_id]
        logger.info(f"Deleted conversation {conversation_id}")
        return True

    async def save_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str | None = None,
        tool_calls: list[ToolCallRequest] | None = None,
        tool_call_id: str | None = None,
        tool_name: str | None = None,
        metadata: MessageMetadata | None = None,
    ) -> Message:
        """Append a message to a conversation."""
        if conversation_id not in self.conversations:
            raise ValueError(f"Conversation {conversation_id} does not exist")
        validate_message_fields(role, tool_calls, tool_call_id, tool_name)

        message = Message(
            id=cuid(),
            conversation_id=conversation_id,
            role=role,
            content=content,
            tool_calls=list(tool_calls) if tool_calls else None,
            tool_call_id=tool_call_id,
            tool_name=tool_name,
            metadata=metadata.model_copy(deep=True) if metadata else None,
        )
        self.messages[message.id] = message
        self.conversation_messages[conversation_id].append(message.id)
        logger.debug(f"Saved {role} message {message.id} in conversation {conversation_id}")
        return message.model_copy(deep=True)

    async def get_message(self, message_id: str) -> Message | None:
        """Get a message by id."""
        message = self.messages.get(message_id)
        return message.model_copy(deep=True) if message else None

    async def list_messages(self, conversation_id: str) -> list[Message]:
        """List messages in creation order."""
        return [
            self.messages[message_id].model_copy(deep=True)
            for message_id in self.conversation_messages.get(conversation_id, [])
        ]

    async def set_pending_tool_calls(self, message_id: str, metadata: MessageMetadata) -> Message:
        """Attach pending-confirmation metadata to an assistant message."""
        message = self.messages.get(message_id)
        if message is None:
            raise ValueError(f"Message {message_id} not found")
        validate_pending_metadata(message, metadata)

        message.metadata = metadata.model_copy(deep=True)
        return message.model_copy(deep=True)

    async def update_tool_call_status(self, message_id: str, call_id: str, status: ConfirmationStatus) -> Message:
        """Replace the status of exactly one pending tool call."""
        message = self.messages.get(message_id)
        if message is None or message.metadata is None:
            raise ValueError(f"Message {message_id} has no pending tool calls")

        try:
            message.metadata = message.metadata.with_status(call_id, status)
        except KeyError as e:
            raise ValueError(f"Tool call {call_id} is not pending on message {message_id}") from e
        return message.model_copy(deep=True)

    async def has_tool_result(self, conversation_id: str, tool_call_id: str) -> bool:
        """Whether a tool result for the call exists."""
        return any(
            self.messages[message_id].role == MessageRole.TOOL
            and self.messages[message_id].tool_call_id == tool_call_id
            for message_id in self.conversation_messages.get(conversation_id, [])
        )
