"""Chat service composing storage, tools, the upstream client and the turn engine."""

import asyncio
import os
from collections.abc import AsyncIterator

from crm_assistant.clients.openrouter import OpenRouterClient, get_openrouter_client
from crm_assistant.errors import (
    AINotConfiguredError,
    ConversationNotFoundError,
    MessageValidationError,
    PendingConfirmationError,
)
from crm_assistant.models.conversation import ConversationDetail
from crm_assistant.models.events import ChatEvent
from crm_assistant.models.messages import DEFAULT_CONVERSATION_TITLE, Conversation, MessageRole
from crm_assistant.services.confirmation import ConfirmationResumer, unresolved_call_ids
from crm_assistant.services.crm import CrmBackend, get_crm_backend
from crm_assistant.services.message_store import InMemoryMessageStore, MessageStore
from crm_assistant.services.orchestrator import OrchestratorConfig, TurnOrchestrator
from crm_assistant.services.sql_store import SqlMessageStore
from crm_assistant.services.transcript import TranscriptBuilder
from crm_assistant.tools import ToolContext, ToolsRegistry, get_tools_registry
from crm_assistant.utils.logging import get_logger
from crm_assistant.utils.tokens import TokenEstimator, get_token_estimator

logger = get_logger(__name__)


class ChatService:
    """Entry points for chat turns, confirmations and conversation management."""

    def __init__(
        self,
        store: MessageStore,
        crm: CrmBackend,
        registry: ToolsRegistry,
        client: OpenRouterClient,
        config: OrchestratorConfig | None = None,
        token_estimator: TokenEstimator | None = None,
    ):
        """Initialize chat service.

        Args:
            store: Conversation and message storage
            crm: CRM backend (used for the system prompt)
            registry: Tool registry bound to the same CRM backend
            client: Upstream streaming client
            config: Turn limits
            token_estimator: Estimator for the user message token limit
        """
        self.store = store
        self.client = client
        self.config = config or OrchestratorConfig()
        self.token_estimator = token_estimator or get_token_estimator()
        self.transcripts = TranscriptBuilder(store, crm)
        self.orchestrator = TurnOrchestrator(store, registry, client, self.config)
        self.resumer = ConfirmationResumer(store, self.orchestrator, self.transcripts)
        self._background_tasks: set[asyncio.Task] = set()

    async def _require_conversation(self, conversation_id: str, user_id: str) -> Conversation:
        conversation = await self.store.get_conversation(conversation_id, user_id=user_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    def _validate_message(self, message: str) -> str:
        text = message.strip()
        if not text:
            raise MessageValidationError("Message cannot be empty")
        try:
            self.token_estimator.validate(text, self.config.max_message_tokens)
        except ValueError as e:
            raise MessageValidationError(str(e)) from e
        return text

    def _model_for(self, conversation: Conversation) -> str:
        return conversation.model or self.client.default_model

    async def start_turn(self, conversation_id: str, message: str, ctx: ToolContext) -> AsyncIterator[ChatEvent]:
        """Persist a user message and return the event stream of the turn.

        All request-level checks happen before the stream is returned.

        Raises:
            MessageValidationError: If the message is empty or too long
            ConversationNotFoundError: If the conversation is not the caller's
            AINotConfiguredError: If no upstream API key is configured
            PendingConfirmationError: If a paused tool call is still unresolved
        """
        text = self._validate_message(message)
        conversation = await self._require_conversation(conversation_id, ctx.user_id)
        if not self.client.is_configured:
            raise AINotConfiguredError()

        history = await self.store.list_messages(conversation_id)
        unresolved = unresolved_call_ids(history)
        if unresolved:
            raise PendingConfirmationError(unresolved)
        is_first_message = not any(m.role == MessageRole.USER for m in history)

        await self.store.save_message(conversation_id, MessageRole.USER, content=text)
        await self.store.touch_conversation(conversation_id)
        logger.info(f"Conversation {conversation_id}: new user turn ({len(history)} prior messages)")

        model = self._model_for(conversation)
        if is_first_message and conversation.title == DEFAULT_CONVERSATION_TITLE:
            self._schedule_title(conversation_id, text, model)

        return self._run_turn(conversation_id, ctx, model)

    async def _run_turn(self, conversation_id: str, ctx: ToolContext, model: str) -> AsyncIterator[ChatEvent]:
        transcript = await self.transcripts.build(conversation_id, ctx.workspace_id)
        async for event in self.orchestrator.run(conversation_id, transcript, ctx, model=model):
            yield event

    def _schedule_title(self, conversation_id: str, message: str, model: str) -> None:
        task = asyncio.create_task(self._generate_title(conversation_id, message, model))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _generate_title(self, conversation_id: str, message: str, model: str) -> None:
        try:
            title = await self.client.generate_title(message, model)
            if title != DEFAULT_CONVERSATION_TITLE:
                await self.store.set_title(conversation_id, title)
                logger.info(f"Conversation {conversation_id}: titled {title!r}")
        except Exception as e:
            logger.error(f"Title generation failed for {conversation_id}: {e}", exc_info=True)

    async def confirm_tool_call(
        self,
        conversation_id: str,
        message_id: str,
        tool_call_id: str,
        approved: bool,
        ctx: ToolContext,
    ) -> AsyncIterator[ChatEvent]:
        """Resolve a paused tool call and return the event stream of the resumed turn.

        Raises:
            ConversationNotFoundError: If the conversation is not the caller's
            AINotConfiguredError: If no upstream API key is configured
            ConfirmationError: If the confirmation is stale or invalid
        """
        conversation = await self._require_conversation(conversation_id, ctx.user_id)
        if not self.client.is_configured:
            raise AINotConfiguredError()

        await self.resumer.resolve(conversation_id, message_id, tool_call_id, approved, ctx)
        return self.resumer.continue_turn(conversation_id, message_id, ctx, model=self._model_for(conversation))

    async def list_conversations(self, ctx: ToolContext) -> list[Conversation]:
        return await self.store.list_conversations(ctx.user_id, ctx.workspace_id)

    async def create_conversation(
        self, ctx: ToolContext, title: str | None = None, model: str | None = None
    ) -> Conversation:
        conversation = await self.store.create_conversation(ctx.workspace_id, ctx.user_id, title=title, model=model)
        logger.info(f"Created conversation {conversation.id} for user {ctx.user_id}")
        return conversation

    async def get_conversation(self, conversation_id: str, ctx: ToolContext) -> ConversationDetail:
        """Get a conversation with its messages.

        Raises:
            ConversationNotFoundError: If the conversation is not the caller's
        """
        conversation = await self._require_conversation(conversation_id, ctx.user_id)
        messages = await self.store.list_messages(conversation_id)
        return ConversationDetail(**conversation.model_dump(), messages=messages)

    async def update_conversation(
        self, conversation_id: str, ctx: ToolContext, title: str | None = None, model: str | None = None
    ) -> Conversation:
        conversation = await self.store.update_conversation(conversation_id, ctx.user_id, title=title, model=model)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    async def delete_conversation(self, conversation_id: str, ctx: ToolContext) -> None:
        if not await self.store.delete_conversation(conversation_id, ctx.user_id):
            raise ConversationNotFoundError(conversation_id)
        logger.info(f"Deleted conversation {conversation_id}")

    async def wait_for_background_tasks(self) -> None:
        """Wait for pending title generation tasks."""
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)


def create_message_store(default_model: str) -> MessageStore:
    """SQL store when DATABASE_URL is set, otherwise the in-memory store."""
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        logger.info("Using SQL message store")
        return SqlMessageStore(database_url, default_model=default_model)
    logger.info("DATABASE_URL not set, using in-memory message store")
    return InMemoryMessageStore(default_model=default_model)


_chat_service: ChatService | None = None


def get_chat_service() -> ChatService:
    """Get or create chat service instance."""
    global _chat_service
    if _chat_service is None:
        client = get_openrouter_client()
        crm = get_crm_backend()
        _chat_service = ChatService(
            store=create_message_store(client.default_model),
            crm=crm,
            registry=get_tools_registry(crm),
            client=client,
        )
    return _chat_service
