"""List browsing tools."""

from typing import Any

from pydantic import BaseModel, Field

from crm_assistant.services.crm import CrmBackend
from crm_assistant.tools.base import ToolContext, ToolDefinition, ToolName, as_result
from crm_assistant.tools.records import EmptyInput


class ListEntriesInput(BaseModel):
    """Input schema for list_list_entries."""

    list_id: str = Field(..., description="List ID")
    limit: int = Field(20, ge=1, le=100, description="Max entries")
    offset: int = Field(0, ge=0, description="Pagination offset")


def create_list_lists_tool(crm: CrmBackend) -> ToolDefinition:
    async def list_lists_handler(params: EmptyInput, ctx: ToolContext) -> list[dict[str, Any]]:
        return as_result(await crm.list_lists(ctx.workspace_id))

    return ToolDefinition(
        name=ToolName.LIST_LISTS,
        description="List all lists in the workspace.",
        input_schema_class=EmptyInput,
        handler=list_lists_handler,
    )


def create_list_list_entries_tool(crm: CrmBackend) -> ToolDefinition:
    async def list_entries_handler(params: ListEntriesInput, ctx: ToolContext) -> dict[str, Any]:
        entries, total = await crm.list_list_entries(
            ctx.workspace_id, params.list_id, limit=params.limit, offset=params.offset
        )
        return {"entries": as_result(entries), "total": total}

    return ToolDefinition(
        name=ToolName.LIST_LIST_ENTRIES,
        description="Get entries of a specific list.",
        input_schema_class=ListEntriesInput,
        handler=list_entries_handler,
    )
