"""Tests for the CRM tools and their registry."""

import pytest
from pydantic import ValidationError

from crm_assistant.tools import ToolContext, ToolName, ToolsRegistry
from crm_assistant.tools.base import as_result, parse_arguments

GATED = {"create_record", "update_record", "delete_record", "create_task", "create_note"}


async def run(registry: ToolsRegistry, name: str, arguments: dict, ctx: ToolContext):
    return await registry.execute(registry.lookup(name), arguments, ctx)


class TestRegistry:
    """Tests for tool registration and lookup."""

    def test_all_tools_registered(self, registry):
        """Test that the fixed tool set is available."""
        assert set(registry.get_tool_names()) == {name.value for name in ToolName}
        assert len(registry.get_tool_names()) == 13

    def test_confirmation_flags(self, registry):
        """Test that exactly the mutating tools are gated."""
        gated = {name for name in registry.get_tool_names() if registry.requires_confirmation(name)}
        assert gated == GATED

    def test_unknown_tool(self, registry):
        """Test that unknown names resolve to nothing."""
        assert registry.lookup("launch_rockets") is None
        assert not registry.requires_confirmation("launch_rockets")

    def test_openai_definitions(self, registry):
        """Test the function-tool definitions sent upstream."""
        tools = {t["function"]["name"]: t for t in registry.get_openai_tools()}

        create = tools["create_record"]
        assert create["type"] == "function"
        assert create["function"]["description"]
        assert create["function"]["parameters"]["required"] == ["object_slug", "values"]
        assert tools["list_objects"]["function"]["parameters"]["properties"] == {}


class TestArgumentParsing:
    """Tests for raw tool-call argument handling."""

    def test_valid_object(self):
        assert parse_arguments('{"query": "acme"}') == {"query": "acme"}

    def test_empty_and_invalid(self):
        """Test that anything but a JSON object becomes an empty object."""
        assert parse_arguments("") == {}
        assert parse_arguments(None) == {}
        assert parse_arguments("{oops") == {}
        assert parse_arguments("[1, 2]") == {}

    def test_as_result_converts_dataclasses(self):
        """Test dataclass results become plain dicts."""
        from crm_assistant.services.crm import Attribute

        assert as_result([Attribute(slug="name", title="Name", type="text")]) == [
            {"slug": "name", "title": "Name", "type": "text", "is_multiselect": False, "statuses": []}
        ]


class TestRecordTools:
    """Tests for record tools against the in-memory CRM."""

    @pytest.mark.asyncio
    async def test_create_search_get(self, registry, ctx):
        """Test creating a person and finding them again."""
        created = await run(
            registry,
            "create_record",
            {
                "object_slug": "people",
                "values": {"name": {"fullName": "Jane Doe"}, "email_addresses": ["jane@example.com"]},
            },
            ctx,
        )
        assert created["display_name"] == "Jane Doe"
        assert created["created_by"] == ctx.user_id

        found = await run(registry, "search_records", {"query": "jane@example"}, ctx)
        assert found["count"] == 1
        assert found["results"][0]["id"] == created["id"]

        fetched = await run(registry, "get_record", {"object_slug": "people", "record_id": created["id"]}, ctx)
        assert fetched["values"]["email_addresses"] == ["jane@example.com"]

    @pytest.mark.asyncio
    async def test_workspace_scoping(self, registry, ctx):
        """Test that records of one workspace are invisible to another."""
        await run(registry, "create_record", {"object_slug": "companies", "values": {"name": "Acme"}}, ctx)
        other = ToolContext(workspace_id="ws_other", user_id=ctx.user_id)

        assert (await run(registry, "search_records", {"query": "acme"}, other))["count"] == 0
        assert (await run(registry, "list_records", {"object_slug": "companies"}, other))["total"] == 0

    @pytest.mark.asyncio
    async def test_list_objects(self, registry, ctx):
        """Test the standard object types."""
        objects = await run(registry, "list_objects", {}, ctx)
        assert [o["slug"] for o in objects] == ["people", "companies", "deals"]

    @pytest.mark.asyncio
    async def test_update_and_delete(self, registry, ctx):
        """Test updating a deal stage and deleting the deal."""
        deal = await run(registry, "create_record", {"object_slug": "deals", "values": {"name": "Big deal"}}, ctx)

        updated = await run(
            registry,
            "update_record",
            {"object_slug": "deals", "record_id": deal["id"], "values": {"stage": "Won"}},
            ctx,
        )
        assert updated["values"] == {"name": "Big deal", "stage": "Won"}

        deleted = await run(registry, "delete_record", {"object_slug": "deals", "record_id": deal["id"]}, ctx)
        assert deleted == {"deleted": True, "id": deal["id"]}
        again = await run(registry, "delete_record", {"object_slug": "deals", "record_id": deal["id"]}, ctx)
        assert again == {"error": "Record not found"}

    @pytest.mark.asyncio
    async def test_invalid_status_value(self, registry, ctx):
        """Test that an unknown status value is refused by the backend."""
        deal = await run(registry, "create_record", {"object_slug": "deals", "values": {"name": "D"}}, ctx)

        with pytest.raises(ValueError, match="stage"):
            await run(
                registry,
                "update_record",
                {"object_slug": "deals", "record_id": deal["id"], "values": {"stage": "Maybe"}},
                ctx,
            )

    @pytest.mark.asyncio
    async def test_unknown_object(self, registry, ctx):
        """Test the error result for an unknown object slug."""
        result = await run(registry, "list_records", {"object_slug": "unicorns"}, ctx)
        assert result == {"error": 'Object "unicorns" not found'}

    @pytest.mark.asyncio
    async def test_schema_validation(self, registry, ctx):
        """Test that missing required arguments fail validation."""
        with pytest.raises(ValidationError):
            await run(registry, "get_record", {"object_slug": "people"}, ctx)


class TestActivityTools:
    """Tests for tasks, notes and lists."""

    @pytest.mark.asyncio
    async def test_tasks(self, registry, ctx):
        """Test creating a task and listing it."""
        task = await run(registry, "create_task", {"content": "Call Jane", "deadline": "2026-11-01"}, ctx)
        assert task["assignee_ids"] == [ctx.user_id]

        listed = await run(registry, "list_tasks", {}, ctx)
        assert listed["total"] == 1
        assert listed["tasks"][0]["content"] == "Call Jane"

    @pytest.mark.asyncio
    async def test_task_with_unknown_record(self, registry, ctx):
        """Test that linking a missing record fails."""
        with pytest.raises(ValueError, match="not found"):
            await run(registry, "create_task", {"content": "x", "record_ids": ["missing"]}, ctx)

    @pytest.mark.asyncio
    async def test_notes(self, registry, ctx):
        """Test attaching a plain-text note to a record."""
        person = await run(registry, "create_record", {"object_slug": "people", "values": {"name": "Jane"}}, ctx)

        note = await run(
            registry,
            "create_note",
            {"record_id": person["id"], "title": "Met at conference", "content": "Interested in pricing"},
            ctx,
        )
        assert note["content"]["type"] == "doc"
        assert note["content"]["content"][0]["content"][0]["text"] == "Interested in pricing"

        notes = await run(registry, "get_notes_for_record", {"record_id": person["id"]}, ctx)
        assert notes["count"] == 1
        assert notes["notes"][0]["title"] == "Met at conference"

    @pytest.mark.asyncio
    async def test_lists(self, crm, registry, ctx):
        """Test browsing lists and their entries."""
        person = await run(registry, "create_record", {"object_slug": "people", "values": {"name": "Jane"}}, ctx)
        crm_list = crm.add_list(ctx.workspace_id, "Hot leads", "people")
        crm.add_list_entry(crm_list.id, person["id"])

        lists = await run(registry, "list_lists", {}, ctx)
        assert [lst["name"] for lst in lists] == ["Hot leads"]

        entries = await run(registry, "list_list_entries", {"list_id": crm_list.id}, ctx)
        assert entries["total"] == 1
        assert entries["entries"][0]["record_id"] == person["id"]
