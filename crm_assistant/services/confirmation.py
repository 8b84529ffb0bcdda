"""Resolution of paused tool calls and continuation of the paused turn."""

import json
from collections.abc import AsyncIterator

from crm_assistant.errors import ConfirmationError
from crm_assistant.models.events import ChatEvent, ToolCallPendingEvent
from crm_assistant.models.messages import ConfirmationStatus, Message, MessageRole, PendingToolCall
from crm_assistant.services.message_store import MessageStore
from crm_assistant.services.orchestrator import TurnOrchestrator
from crm_assistant.services.transcript import TranscriptBuilder
from crm_assistant.tools import ToolContext
from crm_assistant.tools.base import ToolDefinition, parse_arguments
from crm_assistant.utils.logging import get_logger

logger = get_logger(__name__)

REJECTION_RESULT = {"rejected": True, "message": "User rejected this action."}


def answered_call_ids(messages: list[Message]) -> set[str]:
    """Tool call ids that already have a persisted tool result."""
    return {m.tool_call_id for m in messages if m.role == MessageRole.TOOL and m.tool_call_id}


def unresolved_call_ids(messages: list[Message]) -> list[str]:
    """Calls of the latest paused batch that still have no tool result, in emission order."""
    latest = next((m for m in reversed(messages) if m.role == MessageRole.ASSISTANT and m.tool_calls), None)
    if latest is None or not (latest.metadata and latest.metadata.pending_tool_calls):
        return []

    answered = answered_call_ids(messages)
    return [call.id for call in latest.tool_calls if call.id not in answered]


class ConfirmationResumer:
    """Applies an approve/reject decision and resumes the turn from storage."""

    def __init__(self, store: MessageStore, orchestrator: TurnOrchestrator, transcripts: TranscriptBuilder):
        self.store = store
        self.orchestrator = orchestrator
        self.transcripts = transcripts
        self._in_flight: set[str] = set()

    async def resolve(
        self,
        conversation_id: str,
        message_id: str,
        tool_call_id: str,
        approved: bool,
        ctx: ToolContext,
    ) -> Message:
        """Run or reject one pending tool call and persist its result.

        Gated calls of a batch are resolved one at a time in emission order,
        so every call before this one must already have a result.

        Returns:
            The persisted tool result message

        Raises:
            ConfirmationError: If the message or pending entry is unknown, the
                call was already resolved or is being resolved, or an earlier
                call is unresolved
        """
        message = await self.store.get_message(message_id)
        if message is None or message.conversation_id != conversation_id:
            raise ConfirmationError(f"Message not found: {message_id}")

        entry = message.metadata.find(tool_call_id) if message.metadata else None
        if entry is None:
            raise ConfirmationError(f"No pending tool call {tool_call_id} on message {message_id}")
        if entry.status != ConfirmationStatus.PENDING:
            raise ConfirmationError(f"Tool call {tool_call_id} was already {entry.status.value}")
        if await self.store.has_tool_result(conversation_id, tool_call_id):
            raise ConfirmationError(f"Tool call {tool_call_id} already has a result")

        registry = self.orchestrator.registry
        if not registry.requires_confirmation(entry.name):
            raise ConfirmationError(f"Tool call {tool_call_id} does not require confirmation")
        tool = registry.lookup(entry.name)

        answered = answered_call_ids(await self.store.list_messages(conversation_id))
        for call in message.tool_calls or []:
            if call.id == tool_call_id:
                break
            if call.id not in answered:
                raise ConfirmationError(f"Tool call {call.id} must be resolved before {tool_call_id}")

        # process-local: separate workers sharing one database are not serialized
        if tool_call_id in self._in_flight:
            raise ConfirmationError(f"Tool call {tool_call_id} is already being resolved")
        self._in_flight.add(tool_call_id)
        try:
            return await self._apply_decision(conversation_id, message_id, entry, tool, approved, ctx)
        finally:
            self._in_flight.discard(tool_call_id)

    async def _apply_decision(
        self,
        conversation_id: str,
        message_id: str,
        entry: PendingToolCall,
        tool: ToolDefinition,
        approved: bool,
        ctx: ToolContext,
    ) -> Message:
        if approved:
            logger.info(f"Tool call {entry.id} ({entry.name}) approved")
            content = await self.orchestrator.execute_tool(tool, parse_arguments(entry.arguments), ctx)
        else:
            logger.info(f"Tool call {entry.id} ({entry.name}) rejected")
            content = json.dumps(REJECTION_RESULT)

        result = await self.store.save_message(
            conversation_id,
            MessageRole.TOOL,
            content=content,
            tool_call_id=entry.id,
            tool_name=entry.name,
        )
        await self.store.update_tool_call_status(
            message_id, entry.id, ConfirmationStatus.APPROVED if approved else ConfirmationStatus.REJECTED
        )
        await self.store.touch_conversation(conversation_id)
        return result

    async def continue_turn(
        self,
        conversation_id: str,
        message_id: str,
        ctx: ToolContext,
        model: str | None = None,
    ) -> AsyncIterator[ChatEvent]:
        """Finish the paused batch, then re-enter the round loop.

        Unanswered auto calls run, the next unanswered gated call pauses the
        turn again, and only a fully answered batch continues to the model.
        """
        transcript = await self.transcripts.build(conversation_id, ctx.workspace_id)
        message = await self.store.get_message(message_id)
        if message is None:
            raise ConfirmationError(f"Message not found: {message_id}")

        answered = answered_call_ids(await self.store.list_messages(conversation_id))
        logger.info(f"Resuming conversation {conversation_id} after message {message_id}")

        async for event in self.orchestrator.process_batch(message, transcript, ctx, answered=answered):
            yield event
            if isinstance(event, ToolCallPendingEvent):
                return

        async for event in self.orchestrator.run(conversation_id, transcript, ctx, model=model):
            yield event
