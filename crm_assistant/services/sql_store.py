"""SQLAlchemy-backed message store."""

from datetime import UTC, datetime

from cuid2 import cuid_wrapper
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from crm_assistant.models.messages import (
    DEFAULT_CONVERSATION_TITLE,
    ConfirmationStatus,
    Conversation,
    Message,
    MessageMetadata,
    MessageRole,
    ToolCallRequest,
)
from crm_assistant.models.tables import Base, ConversationRow, MessageRow
from crm_assistant.services.message_store import (
    DEFAULT_MODEL,
    validate_message_fields,
    validate_pending_metadata,
)
from crm_assistant.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()


def _to_conversation(row: ConversationRow) -> Conversation:
    return Conversation(
        id=row.id,
        workspace_id=row.workspace_id,
        user_id=row.user_id,
        title=row.title,
        model=row.model,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_message(row: MessageRow) -> Message:
    return Message(
        id=row.id,
        conversation_id=row.conversation_id,
        role=MessageRole(row.role),
        content=row.content,
        tool_calls=[ToolCallRequest.model_validate(tc) for tc in row.tool_calls] if row.tool_calls else None,
        tool_call_id=row.tool_call_id,
        tool_name=row.tool_name,
        metadata=MessageMetadata.model_validate(row.message_metadata) if row.message_metadata else None,
        created_at=row.created_at,
    )


def _dump_metadata(metadata: MessageMetadata) -> dict:
    return metadata.model_dump(by_alias=True, mode="json")


class SqlMessageStore:
    """Message store persisting to any SQLAlchemy async database.

    Every mutation is a single-row statement in its own transaction.
    """

    def __init__(self, database_url: str, default_model: str = DEFAULT_MODEL, engine: AsyncEngine | None = None):
        """Initialize the store.

        Args:
            database_url: Async SQLAlchemy URL, e.g. ``sqlite+aiosqlite:///./chat.db``
            default_model: Model identifier for conversations created without one
            engine: Optional pre-built engine (overrides database_url)
        """
        self.default_model = default_model
        self.engine = engine or create_async_engine(database_url)
        self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False)

    async def init_models(self) -> None:
        """Create tables if they do not exist."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Chat tables ready")

    async def close(self) -> None:
        """Dispose of the connection pool."""
        await self.engine.dispose()

    async def create_conversation(
        self, workspace_id: str, user_id: str, title: str | None = None, model: str | None = None
    ) -> Conversation:
        """Create a conversation."""
        now = datetime.now(UTC)
        row = ConversationRow(
            id=cuid(),
            workspace_id=workspace_id,
            user_id=user_id,
            title=title or DEFAULT_CONVERSATION_TITLE,
            model=model or self.default_model,
            created_at=now,
            updated_at=now,
        )
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()
        logger.info(f"Created conversation {row.id} for user {user_id} in workspace {workspace_id}")
        return _to_conversation(row)

    async def get_conversation(self, conversation_id: str, user_id: str | None = None) -> Conversation | None:
        """Get a conversation, optionally requiring ownership."""
        async with self.session_factory() as session:
            row = await session.get(ConversationRow, conversation_id)
        if row is None or (user_id is not None and row.user_id != user_id):
            return None
        return _to_conversation(row)

    async def list_conversations(self, user_id: str, workspace_id: str) -> list[Conversation]:
        """List conversations, most recently active first."""
        stmt = (
            select(ConversationRow)
            .where(ConversationRow.user_id == user_id, ConversationRow.workspace_id == workspace_id)
            .order_by(ConversationRow.updated_at.desc())
        )
        async with self.session_factory() as session:
            rows = (await session.scalars(stmt)).all()
        return [_to_conversation(row) for row in rows]

    async def update_conversation(
        self, conversation_id: str, user_id: str, title: str | None = None, model: str | None = None
    ) -> Conversation | None:
        """Rename a conversation or switch its model."""
        async with self.session_factory() as session:
            row = await session.get(ConversationRow, conversation_id)
            if row is None or row.user_id != user_id:
                return None
            if title is not None:
                row.title = title
            if model is not None:
                row.model = model
            row.updated_at = datetime.now(UTC)
            await session.commit()
        return _to_conversation(row)

    async def set_title(self, conversation_id: str, title: str) -> None:
        """Set the title."""
        async with self.session_factory() as session:
            await session.execute(
                update(ConversationRow).where(ConversationRow.id == conversation_id).values(title=title)
            )
            await session.commit()

    async def touch_conversation(self, conversation_id: str) -> None:
        """Update the last activity timestamp."""
        async with self.session_factory() as session:
            await session.execute(
                update(ConversationRow)
                .where(ConversationRow.id == conversation_id)
                .values(updated_at=datetime.now(UTC))
            )
            await session.commit()

    async def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        """Delete a conversation and its messages."""
        async with self.session_factory() as session:
            row = await session.get(ConversationRow, conversation_id)
            if row is None or row.user_id != user_id:
                return False
            await session.execute(delete(MessageRow).where(MessageRow.conversation_id == conversation_id))
            await session.delete(row)
            await session.commit()
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
        validate_message_fields(role, tool_calls, tool_call_id, tool_name)

        row = MessageRow(
            id=cuid(),
            conversation_id=conversation_id,
            role=MessageRole(role).value,
            content=content,
            tool_calls=[tc.model_dump() for tc in tool_calls] if tool_calls else None,
            tool_call_id=tool_call_id,
            tool_name=tool_name,
            message_metadata=_dump_metadata(metadata) if metadata else None,
            created_at=datetime.now(UTC),
        )
        async with self.session_factory() as session:
            if await session.get(ConversationRow, conversation_id) is None:
                raise ValueError(f"Conversation {conversation_id} does not exist")
            session.add(row)
            await session.commit()
        logger.debug(f"Saved {role} message {row.id} in conversation {conversation_id}")
        return _to_message(row)

    async def get_message(self, message_id: str) -> Message | None:
        """Get a message by id."""
        async with self.session_factory() as session:
            row = await session.scalar(select(MessageRow).where(MessageRow.id == message_id))
        return _to_message(row) if row else None

    async def list_messages(self, conversation_id: str) -> list[Message]:
        """List messages in creation order."""
        stmt = select(MessageRow).where(MessageRow.conversation_id == conversation_id).order_by(MessageRow.seq)
        async with self.session_factory() as session:
            rows = (await session.scalars(stmt)).all()
        return [_to_message(row) for row in rows]

    async def set_pending_tool_calls(self, message_id: str, metadata: MessageMetadata) -> Message:
        """Attach pending-confirmation metadata to an assistant message."""
        async with self.session_factory() as session:
            row = await session.scalar(select(MessageRow).where(MessageRow.id == message_id))
            if row is None:
                raise ValueError(f"Message {message_id} not found")
            validate_pending_metadata(_to_message(row), metadata)

            row.message_metadata = _dump_metadata(metadata)
            await session.commit()
        return _to_message(row)

    async def update_tool_call_status(self, message_id: str, call_id: str, status: ConfirmationStatus) -> Message:
        """Replace the status of exactly one pending tool call."""
        async with self.session_factory() as session:
            row = await session.scalar(select(MessageRow).where(MessageRow.id == message_id))
            if row is None or not row.message_metadata:
                raise ValueError(f"Message {message_id} has no pending tool calls")

            metadata = MessageMetadata.model_validate(row.message_metadata)
            try:
                row.message_metadata = _dump_metadata(metadata.with_status(call_id, status))
            except KeyError as e:
                raise ValueError(f"Tool call {call_id} is not pending on message {message_id}") from e
            await session.commit()
        return _to_message(row)

    async def has_tool_result(self, conversation_id: str, tool_call_id: str) -> bool:
        """Whether a tool result for the call exists."""
        stmt = (
            select(MessageRow.seq)
            .where(
                MessageRow.conversation_id == conversation_id,
                MessageRow.role == MessageRole.TOOL.value,
                MessageRow.tool_call_id == tool_call_id,
            )
            .limit(1)
        )
        async with self.session_factory() as session:
            return (await session.scalar(stmt)) is not None
