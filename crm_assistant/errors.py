"""Domain exceptions raised by the chat engine."""


class ChatError(Exception):
    """Base class for request-level chat errors."""


class ConversationNotFoundError(ChatError):
    """The conversation does not exist or belongs to another user."""

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class AINotConfiguredError(ChatError):
    """No upstream API key is available."""

    def __init__(self):
        super().__init__("AI not configured. Set OPENROUTER_API_KEY to enable the assistant.")


class MessageValidationError(ChatError):
    """The user message is empty or too long."""


class ConfirmationError(ChatError):
    """A confirmation request refers to an unknown or already resolved tool call."""


class PendingConfirmationError(ChatError):
    """A new user message arrived while a paused tool call is still unresolved."""

    def __init__(self, call_ids: list[str]):
        super().__init__(f"Resolve the pending tool calls before sending a new message: {', '.join(call_ids)}")
        self.call_ids = call_ids


class ToolExecutionError(Exception):
    """Structured failure raised by a tool handler.

    The message is fed back to the model as the tool result, so it should read
    as an explanation rather than a stack trace.
    """

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_result(self) -> dict:
        """Render the failure as a JSON-serializable tool result."""
        result: dict = {"error": str(self)}
        if self.details:
            result["details"] = self.details
        return result
