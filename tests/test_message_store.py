"""Tests for the message stores (in-memory and SQL share one contract)."""

import pytest
import pytest_asyncio

from crm_assistant.models.messages import (
    DEFAULT_CONVERSATION_TITLE,
    ConfirmationStatus,
    MessageMetadata,
    MessageRole,
    ToolCallRequest,
)
from crm_assistant.services.message_store import InMemoryMessageStore
from crm_assistant.services.sql_store import SqlMessageStore

CALLS = [
    ToolCallRequest(id="toolu_01", name="create_record", arguments='{"object_slug": "people"}'),
    ToolCallRequest(id="toolu_02", name="create_task", arguments='{"content": "Call'),
]


@pytest_asyncio.fixture(params=["memory", "sql"])
async def message_store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryMessageStore(default_model="test/model")
        return

    store = SqlMessageStore(f"sqlite+aiosqlite:///{tmp_path / 'chat.db'}", default_model="test/model")
    await store.init_models()
    yield store
    await store.close()


async def tool_calling_message(store, conversation_id):
    return await store.save_message(conversation_id, MessageRole.ASSISTANT, content=None, tool_calls=CALLS)


class TestConversations:
    """Tests for conversation records."""

    @pytest.mark.asyncio
    async def test_create_defaults(self, message_store):
        """Test that new conversations get the default title and model."""
        conversation = await message_store.create_conversation("ws_1", "user_1")

        assert conversation.title == DEFAULT_CONVERSATION_TITLE
        assert conversation.model == "test/model"
        assert (await message_store.get_conversation(conversation.id)).id == conversation.id

    @pytest.mark.asyncio
    async def test_ownership_filter(self, message_store):
        """Test that get_conversation with a user id only returns the owner's conversation."""
        conversation = await message_store.create_conversation("ws_1", "user_1")

        assert await message_store.get_conversation(conversation.id, user_id="user_1") is not None
        assert await message_store.get_conversation(conversation.id, user_id="user_2") is None
        assert await message_store.get_conversation("missing") is None

    @pytest.mark.asyncio
    async def test_list_is_scoped_and_most_recent_first(self, message_store):
        """Test listing by user and workspace ordered by last activity."""
        older = await message_store.create_conversation("ws_1", "user_1", title="Older")
        newer = await message_store.create_conversation("ws_1", "user_1", title="Newer")
        await message_store.create_conversation("ws_2", "user_1")
        await message_store.create_conversation("ws_1", "user_2")

        await message_store.touch_conversation(older.id)
        listed = await message_store.list_conversations("user_1", "ws_1")

        assert [c.id for c in listed] == [older.id, newer.id]

    @pytest.mark.asyncio
    async def test_set_title_keeps_activity(self, message_store):
        """Test that a background title does not count as activity."""
        conversation = await message_store.create_conversation("ws_1", "user_1")
        before = (await message_store.get_conversation(conversation.id)).updated_at

        await message_store.set_title(conversation.id, "Deal pipeline")
        stored = await message_store.get_conversation(conversation.id)

        assert stored.title == "Deal pipeline"
        assert stored.updated_at == before

    @pytest.mark.asyncio
    async def test_update_requires_owner(self, message_store):
        """Test that only the owner can rename or switch model."""
        conversation = await message_store.create_conversation("ws_1", "user_1")

        assert await message_store.update_conversation(conversation.id, "user_2", title="Nope") is None
        updated = await message_store.update_conversation(conversation.id, "user_1", model="openai/gpt-4o")
        assert updated.model == "openai/gpt-4o"
        assert updated.title == DEFAULT_CONVERSATION_TITLE

    @pytest.mark.asyncio
    async def test_delete_removes_messages(self, message_store):
        """Test that deleting a conversation deletes its messages."""
        conversation = await message_store.create_conversation("ws_1", "user_1")
        message = await message_store.save_message(conversation.id, MessageRole.USER, content="Hi")

        assert not await message_store.delete_conversation(conversation.id, "user_2")
        assert await message_store.delete_conversation(conversation.id, "user_1")

        assert await message_store.get_conversation(conversation.id) is None
        assert await message_store.get_message(message.id) is None
        assert await message_store.list_messages(conversation.id) == []


class TestMessages:
    """Tests for appending and reading messages."""

    @pytest.mark.asyncio
    async def test_creation_order(self, message_store):
        """Test that messages are listed in the order they were saved."""
        conversation = await message_store.create_conversation("ws_1", "user_1")
        contents = ["one", "two", "three", "four"]
        for content in contents:
            await message_store.save_message(conversation.id, MessageRole.USER, content=content)

        assert [m.content for m in await message_store.list_messages(conversation.id)] == contents

    @pytest.mark.asyncio
    async def test_tool_calls_preserved_verbatim(self, message_store):
        """Test that call ids and raw argument strings survive storage unchanged."""
        conversation = await message_store.create_conversation("ws_1", "user_1")
        saved = await tool_calling_message(message_store, conversation.id)

        loaded = await message_store.get_message(saved.id)

        assert loaded.tool_calls == CALLS
        assert loaded.tool_calls[1].arguments == '{"content": "Call'
        assert loaded.content is None

    @pytest.mark.asyncio
    async def test_tool_message_requires_link_fields(self, message_store):
        """Test that tool results must name both the call id and the tool."""
        conversation = await message_store.create_conversation("ws_1", "user_1")

        with pytest.raises(ValueError):
            await message_store.save_message(conversation.id, MessageRole.TOOL, content="{}", tool_call_id="x")
        with pytest.raises(ValueError):
            await message_store.save_message(conversation.id, MessageRole.TOOL, content="{}", tool_name="get_record")

    @pytest.mark.asyncio
    async def test_only_assistant_carries_tool_calls(self, message_store):
        """Test that tool calls on a user message are refused."""
        conversation = await message_store.create_conversation("ws_1", "user_1")

        with pytest.raises(ValueError):
            await message_store.save_message(conversation.id, MessageRole.USER, content="Hi", tool_calls=CALLS)

    @pytest.mark.asyncio
    async def test_unknown_conversation(self, message_store):
        """Test that messages cannot be saved to a missing conversation."""
        with pytest.raises(ValueError):
            await message_store.save_message("missing", MessageRole.USER, content="Hi")

    @pytest.mark.asyncio
    async def test_has_tool_result(self, message_store):
        """Test lookup of results by call id within a conversation."""
        conversation = await message_store.create_conversation("ws_1", "user_1")
        other = await message_store.create_conversation("ws_1", "user_1")
        await tool_calling_message(message_store, conversation.id)

        assert not await message_store.has_tool_result(conversation.id, "toolu_01")
        await message_store.save_message(
            conversation.id, MessageRole.TOOL, content="{}", tool_call_id="toolu_01", tool_name="create_record"
        )

        assert await message_store.has_tool_result(conversation.id, "toolu_01")
        assert not await message_store.has_tool_result(conversation.id, "toolu_02")
        assert not await message_store.has_tool_result(other.id, "toolu_01")


class TestPendingMetadata:
    """Tests for confirmation metadata on assistant messages."""

    @pytest.mark.asyncio
    async def test_set_pending(self, message_store):
        """Test attaching pending entries for every call of a batch."""
        conversation = await message_store.create_conversation("ws_1", "user_1")
        message = await tool_calling_message(message_store, conversation.id)

        updated = await message_store.set_pending_tool_calls(message.id, MessageMetadata.pending_for(CALLS))

        loaded = await message_store.get_message(message.id)
        assert updated.metadata == loaded.metadata
        assert [(p.id, p.name, p.status) for p in loaded.metadata.pending_tool_calls] == [
            ("toolu_01", "create_record", ConfirmationStatus.PENDING),
            ("toolu_02", "create_task", ConfirmationStatus.PENDING),
        ]
        assert loaded.metadata.pending_tool_calls[1].arguments == '{"content": "Call'

    @pytest.mark.asyncio
    async def test_pending_ids_must_belong_to_message(self, message_store):
        """Test that pending entries must reference the message's own tool calls."""
        conversation = await message_store.create_conversation("ws_1", "user_1")
        message = await tool_calling_message(message_store, conversation.id)
        stranger = MessageMetadata.pending_for([ToolCallRequest(id="toolu_99", name="delete_record")])

        with pytest.raises(ValueError):
            await message_store.set_pending_tool_calls(message.id, stranger)

    @pytest.mark.asyncio
    async def test_pending_requires_tool_calling_message(self, message_store):
        """Test that metadata cannot be attached to a plain message."""
        conversation = await message_store.create_conversation("ws_1", "user_1")
        message = await message_store.save_message(conversation.id, MessageRole.ASSISTANT, content="Hello")

        with pytest.raises(ValueError):
            await message_store.set_pending_tool_calls(message.id, MessageMetadata.pending_for(CALLS))

    @pytest.mark.asyncio
    async def test_status_update_is_targeted(self, message_store):
        """Test that updating one entry leaves its siblings untouched."""
        conversation = await message_store.create_conversation("ws_1", "user_1")
        message = await tool_calling_message(message_store, conversation.id)
        await message_store.set_pending_tool_calls(message.id, MessageMetadata.pending_for(CALLS))

        await message_store.update_tool_call_status(message.id, "toolu_02", ConfirmationStatus.REJECTED)
        await message_store.update_tool_call_status(message.id, "toolu_01", ConfirmationStatus.APPROVED)

        metadata = (await message_store.get_message(message.id)).metadata
        assert metadata.find("toolu_01").status == ConfirmationStatus.APPROVED
        assert metadata.find("toolu_02").status == ConfirmationStatus.REJECTED

    @pytest.mark.asyncio
    async def test_status_update_unknown_call(self, message_store):
        """Test that updating a call without an entry fails."""
        conversation = await message_store.create_conversation("ws_1", "user_1")
        message = await tool_calling_message(message_store, conversation.id)

        with pytest.raises(ValueError):
            await message_store.update_tool_call_status(message.id, "toolu_01", ConfirmationStatus.APPROVED)

        await message_store.set_pending_tool_calls(message.id, MessageMetadata.pending_for(CALLS))
        with pytest.raises(ValueError):
            await message_store.update_tool_call_status(message.id, "toolu_99", ConfirmationStatus.APPROVED)


class TestInMemoryIsolation:
    """Tests for copy semantics of the in-memory store."""

    @pytest.mark.asyncio
    async def test_returned_messages_are_copies(self):
        """Test that mutating a returned message does not change stored state."""
        store = InMemoryMessageStore()
        conversation = await store.create_conversation("ws_1", "user_1")
        message = await tool_calling_message(store, conversation.id)
        await store.set_pending_tool_calls(message.id, MessageMetadata.pending_for(CALLS))

        loaded = await store.get_message(message.id)
        loaded.metadata.pending_tool_calls[0].status = ConfirmationStatus.APPROVED
        loaded.content = "changed"

        fresh = await store.get_message(message.id)
        assert fresh.metadata.find("toolu_01").status == ConfirmationStatus.PENDING
        assert fresh.content is None
