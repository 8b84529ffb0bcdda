"""Tests for transcript reconstruction."""

import pytest

from crm_assistant.models.messages import MessageRole, ToolCallRequest
from crm_assistant.services.transcript import TranscriptBuilder, build_system_prompt


class TestSystemPrompt:
    """Tests for the generated system prompt."""

    @pytest.mark.asyncio
    async def test_describes_workspace_objects(self, crm):
        """Test that object slugs, attributes and status values are listed."""
        prompt = await build_system_prompt(crm, "ws_1")

        assert 'People (slug: "people")' in prompt
        assert '"email_addresses" (email_address, array)' in prompt
        assert '"Won"' in prompt
        assert "Current date and time:" in prompt


class TestTranscriptBuilder:
    """Tests for rebuilding the upstream transcript from storage."""

    @pytest.mark.asyncio
    async def test_system_first_then_history(self, store, crm):
        """Test ordering and the wire view of each role."""
        conversation = await store.create_conversation("ws_1", "user_1")
        await store.save_message(conversation.id, MessageRole.USER, content="Find Acme")
        await store.save_message(
            conversation.id,
            MessageRole.ASSISTANT,
            tool_calls=[ToolCallRequest(id="call_1", name="search_records", arguments='{"query": "Acme"}')],
        )
        await store.save_message(
            conversation.id, MessageRole.TOOL, content='{"count": 0}', tool_call_id="call_1", tool_name="search_records"
        )
        await store.save_message(conversation.id, MessageRole.ASSISTANT, content="No Acme found.")

        transcript = await TranscriptBuilder(store, crm).build(conversation.id, "ws_1")

        assert [m.role for m in transcript] == ["system", "user", "assistant", "tool", "assistant"]
        assert transcript[2].content is None
        assert transcript[2].tool_calls[0].arguments == '{"query": "Acme"}'
        assert transcript[3].tool_call_id == "call_1"
        assert transcript[3].name == "search_records"
        assert transcript[4].content == "No Acme found."

    @pytest.mark.asyncio
    async def test_empty_conversation(self, store, crm):
        """Test that a conversation without messages yields only the system prompt."""
        conversation = await store.create_conversation("ws_1", "user_1")

        transcript = await TranscriptBuilder(store, crm).build(conversation.id, "ws_1")

        assert len(transcript) == 1
        assert transcript[0].role == "system"
