"""End-to-end turn tests against the SQLAlchemy store."""

import json

import pytest
import pytest_asyncio
from conftest import collect, text_round, tool_round

from crm_assistant.models.events import DoneEvent, ToolCallPendingEvent
from crm_assistant.models.messages import ConfirmationStatus, MessageRole
from crm_assistant.services.chat import ChatService
from crm_assistant.services.sql_store import SqlMessageStore


@pytest_asyncio.fixture
async def sql_store(tmp_path):
    store = SqlMessageStore(f"sqlite+aiosqlite:///{tmp_path / 'chat.db'}", default_model="test/model")
    await store.init_models()
    yield store
    await store.close()


@pytest.fixture
def sql_service(sql_store, crm, registry, upstream, config, token_estimator):
    return ChatService(
        store=sql_store, crm=crm, registry=registry, client=upstream, config=config, token_estimator=token_estimator
    )


class TestDurableResume:
    """A paused turn resumes from the database alone."""

    @pytest.mark.asyncio
    async def test_pause_and_approve(self, sql_service, sql_store, crm, upstream, ctx):
        """Test the gated flow with every step read back from SQL."""
        conversation = await sql_service.create_conversation(ctx)
        arguments = json.dumps({"object_slug": "companies", "values": {"name": "Acme", "domains": ["acme.com"]}})
        upstream.script(tool_round(("call_1", "list_objects", "{}"), ("call_2", "create_record", arguments)))

        events = await collect(await sql_service.start_turn(conversation.id, "Add Acme", ctx))

        pending = events[-1]
        assert isinstance(pending, ToolCallPendingEvent)
        stored = await sql_store.get_message(pending.message_id)
        assert [p.status for p in stored.metadata.pending_tool_calls] == [
            ConfirmationStatus.PENDING,
            ConfirmationStatus.PENDING,
        ]
        assert stored.tool_calls[1].arguments == arguments

        upstream.script(text_round("Acme is in the CRM."))
        resumed = await collect(
            await sql_service.confirm_tool_call(conversation.id, pending.message_id, "call_2", True, ctx)
        )

        assert isinstance(resumed[-1], DoneEvent)
        (record,) = crm.records.values()
        assert record.values["domains"] == ["acme.com"]

        messages = await sql_store.list_messages(conversation.id)
        assert [m.role for m in messages] == [
            MessageRole.USER,
            MessageRole.ASSISTANT,
            MessageRole.TOOL,
            MessageRole.TOOL,
            MessageRole.ASSISTANT,
        ]
        assert [m.tool_call_id for m in messages[2:4]] == ["call_1", "call_2"]
        assert messages[1].metadata.find("call_2").status == ConfirmationStatus.APPROVED
        assert messages[1].metadata.find("call_1").status == ConfirmationStatus.PENDING

    @pytest.mark.asyncio
    async def test_resume_with_fresh_store_instance(
        self, sql_store, crm, registry, upstream, config, token_estimator, ctx, tmp_path
    ):
        """Test that a new process (new store and service) can resolve a pause made earlier."""
        first = ChatService(sql_store, crm, registry, upstream, config, token_estimator)
        conversation = await first.create_conversation(ctx)
        upstream.script(tool_round(("call_1", "create_task", json.dumps({"content": "Renew contract"}))))
        events = await collect(await first.start_turn(conversation.id, "Remind me to renew", ctx))
        message_id = events[-1].message_id

        reopened = SqlMessageStore(f"sqlite+aiosqlite:///{tmp_path / 'chat.db'}", default_model="test/model")
        try:
            second = ChatService(reopened, crm, registry, upstream, config, token_estimator)
            upstream.script(text_round("Task created."))
            resumed = await collect(await second.confirm_tool_call(conversation.id, message_id, "call_1", True, ctx))
        finally:
            await reopened.close()

        assert isinstance(resumed[-1], DoneEvent)
        assert len(crm.tasks) == 1
