"""Turn orchestration: stream a round, run tool calls, pause on gated tools, repeat."""

import json
import os
from collections.abc import AsyncIterator, Collection
from dataclasses import dataclass, field
from typing import Any

from cuid2 import cuid_wrapper

from crm_assistant.clients.openrouter import OpenRouterClient
from crm_assistant.errors import ToolExecutionError
from crm_assistant.models.events import (
    ChatEvent,
    DoneEvent,
    ErrorEvent,
    TokenEvent,
    ToolCallPendingEvent,
    ToolExecutingEvent,
)
from crm_assistant.models.llm import ContentDelta, ToolCallDelta, UpstreamError, UpstreamMessage
from crm_assistant.models.messages import Message, MessageMetadata, MessageRole, ToolCallRequest
from crm_assistant.services.message_store import MessageStore
from crm_assistant.services.transcript import to_upstream
from crm_assistant.tools import ToolContext, ToolDefinition, ToolsRegistry
from crm_assistant.tools.base import as_result, parse_arguments
from crm_assistant.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()

ROUND_CAP_ERROR = "Too many tool call rounds"


@dataclass
class OrchestratorConfig:
    """Limits applied to a chat turn."""

    max_tool_rounds: int = field(default_factory=lambda: int(os.getenv("CHAT_MAX_TOOL_ROUNDS", "10")))
    max_message_tokens: int = field(default_factory=lambda: int(os.getenv("CHAT_MAX_MESSAGE_TOKENS", "2000")))


@dataclass
class _ToolCallSlot:
    id: str | None = None
    name: str | None = None
    arguments: list[str] = field(default_factory=list)


class ToolCallAccumulator:
    """Assembles streamed tool-call fragments keyed by their batch index."""

    def __init__(self):
        self._slots: dict[int, _ToolCallSlot] = {}

    def add(self, delta: ToolCallDelta) -> None:
        """Merge one fragment into the slot for its index."""
        slot = self._slots.setdefault(delta.index, _ToolCallSlot())
        if delta.id and not slot.id:
            slot.id = delta.id
        if delta.name and not slot.name:
            slot.name = delta.name
        if delta.arguments:
            slot.arguments.append(delta.arguments)

    def __bool__(self) -> bool:
        return bool(self._slots)

    def __len__(self) -> int:
        return len(self._slots)

    def finalize(self) -> list[ToolCallRequest]:
        """Freeze the slots into tool calls in emission order."""
        tool_calls = []
        for index in sorted(self._slots):
            slot = self._slots[index]
            if not slot.id:
                slot.id = f"call_{cuid()}"
                logger.warning(f"Tool call at index {index} arrived without an id, assigned {slot.id}")
            tool_calls.append(ToolCallRequest(id=slot.id, name=slot.name or "", arguments="".join(slot.arguments)))
        return tool_calls


class TurnOrchestrator:
    """Runs the round loop of a chat turn and emits caller-facing events."""

    def __init__(
        self,
        store: MessageStore,
        registry: ToolsRegistry,
        client: OpenRouterClient,
        config: OrchestratorConfig | None = None,
    ):
        """Initialize orchestrator.

        Args:
            store: Message store all results are persisted to
            registry: Tool registry used for lookup and execution
            client: Upstream streaming client
            config: Turn limits (defaults read from environment)
        """
        self.store = store
        self.registry = registry
        self.client = client
        self.config = config or OrchestratorConfig()

    async def execute_tool(self, tool: ToolDefinition, arguments: dict[str, Any], ctx: ToolContext) -> str:
        """Run a tool and serialize its outcome; failures become an error result."""
        logger.info(f"Executing tool {tool.name.value} for workspace {ctx.workspace_id}")
        try:
            result = await self.registry.execute(tool, arguments, ctx)
        except ToolExecutionError as e:
            logger.error(f"Tool {tool.name.value} failed: {e}", exc_info=True)
            result = e.to_result()
        except Exception as e:
            logger.error(f"Tool {tool.name.value} raised: {e}", exc_info=True)
            result = {"error": str(e)}

        return json.dumps(as_result(result), default=str)

    async def _save_tool_result(
        self, conversation_id: str, call: ToolCallRequest, content: str, transcript: list[UpstreamMessage]
    ) -> Message:
        message = await self.store.save_message(
            conversation_id,
            MessageRole.TOOL,
            content=content,
            tool_call_id=call.id,
            tool_name=call.name or "unknown",
        )
        transcript.append(to_upstream(message))
        return message

    async def process_batch(
        self,
        message: Message,
        transcript: list[UpstreamMessage],
        ctx: ToolContext,
        answered: Collection[str] = (),
    ) -> AsyncIterator[ChatEvent]:
        """Process an assistant message's tool calls in emission order.

        Calls whose ids are in ``answered`` are skipped. The first unanswered
        gated call yields a ToolCallPendingEvent and ends the batch; the
        pending metadata is written only if the message has none yet.

        Args:
            message: Assistant message carrying the tool calls
            transcript: Transcript extended in place with each tool result
            ctx: Caller scope for tool execution
            answered: Tool call ids that already have a persisted result
        """
        for call in message.tool_calls or []:
            if call.id in answered:
                continue

            tool = self.registry.lookup(call.name)
            if tool is None:
                logger.warning(f"Model requested unknown tool {call.name!r} (call {call.id})")
                error = json.dumps({"error": f"Unknown tool: {call.name}"})
                await self._save_tool_result(message.conversation_id, call, error, transcript)
                continue

            arguments = parse_arguments(call.arguments)

            if tool.requires_confirmation:
                if message.metadata is None:
                    message = await self.store.set_pending_tool_calls(
                        message.id, MessageMetadata.pending_for(message.tool_calls or [])
                    )
                logger.info(f"Pausing turn for confirmation of {call.name} (message {message.id}, call {call.id})")
                yield ToolCallPendingEvent(
                    message_id=message.id,
                    tool_call_id=call.id,
                    name=call.name,
                    arguments=arguments,
                )
                return

            yield ToolExecutingEvent(name=call.name, arguments=arguments)
            content = await self.execute_tool(tool, arguments, ctx)
            await self._save_tool_result(message.conversation_id, call, content, transcript)

    async def run(
        self,
        conversation_id: str,
        transcript: list[UpstreamMessage],
        ctx: ToolContext,
        model: str | None = None,
    ) -> AsyncIterator[ChatEvent]:
        """Run rounds until a final answer, a pause, or a terminal error.

        The initial round plus at most ``max_tool_rounds`` continuation rounds
        are streamed. Exactly one terminal event (done, tool_call_pending or
        error) ends the stream.

        Args:
            conversation_id: Conversation the turn belongs to
            transcript: Upstream transcript, system message first
            ctx: Caller scope for tool execution
            model: Upstream model identifier
        """
        transcript = list(transcript)
        tools = self.registry.get_openai_tools()
        total_rounds = self.config.max_tool_rounds + 1

        for round_number in range(1, total_rounds + 1):
            logger.info(f"Conversation {conversation_id}: round {round_number}/{total_rounds}")

            content_parts: list[str] = []
            accumulator = ToolCallAccumulator()

            async for delta in self.client.stream_chat(transcript, tools, model=model, identifier=ctx.workspace_id):
                if isinstance(delta, ContentDelta):
                    content_parts.append(delta.content)
                    yield TokenEvent(content=delta.content)
                elif isinstance(delta, ToolCallDelta):
                    accumulator.add(delta)
                elif isinstance(delta, UpstreamError):
                    logger.error(f"Conversation {conversation_id}: upstream failed: {delta.message}")
                    yield ErrorEvent(error=delta.message)
                    return

            content = "".join(content_parts)

            if not accumulator:
                if not content:
                    logger.info(f"Conversation {conversation_id}: round ended with empty content")
                    yield DoneEvent(message_id=None)
                    return

                final = await self.store.save_message(conversation_id, MessageRole.ASSISTANT, content=content)
                logger.info(f"Conversation {conversation_id}: turn complete (message {final.id})")
                yield DoneEvent(message_id=final.id)
                return

            tool_calls = accumulator.finalize()
            logger.info(
                f"Conversation {conversation_id}: model requested {len(tool_calls)} tool call(s): "
                f"{[tc.name for tc in tool_calls]}"
            )
            message = await self.store.save_message(
                conversation_id, MessageRole.ASSISTANT, content=content or None, tool_calls=tool_calls
            )
            transcript.append(to_upstream(message))

            paused = False
            async for event in self.process_batch(message, transcript, ctx):
                yield event
                if isinstance(event, ToolCallPendingEvent):
                    paused = True
            if paused:
                return

        logger.warning(f"Conversation {conversation_id}: exceeded {self.config.max_tool_rounds} tool call rounds")
        yield ErrorEvent(error=ROUND_CAP_ERROR)
