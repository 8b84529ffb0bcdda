"""Record tools: search, browse, and create/update/delete business records."""

from typing import Any

from pydantic import BaseModel, Field

from crm_assistant.services.crm import CrmBackend, CrmObject, Record
from crm_assistant.tools.base import ToolContext, ToolDefinition, ToolName, as_result


class SearchRecordsInput(BaseModel):
    """Input schema for search_records."""

    query: str = Field(..., min_length=1, description="Search query (name, email, domain, etc.)")
    limit: int = Field(20, ge=1, le=100, description="Max results (default 20)")


class EmptyInput(BaseModel):
    """Input schema for tools that take no parameters."""


class ListRecordsInput(BaseModel):
    """Input schema for list_records."""

    object_slug: str = Field(..., description="Object slug, e.g. 'people', 'companies', 'deals'")
    limit: int = Field(20, ge=1, le=100, description="Max records to return (default 20)")
    offset: int = Field(0, ge=0, description="Pagination offset")


class RecordRefInput(BaseModel):
    """Input schema for tools addressing a single record."""

    object_slug: str = Field(..., description="Object slug")
    record_id: str = Field(..., description="Record ID")


class CreateRecordInput(BaseModel):
    """Input schema for create_record."""

    object_slug: str = Field(..., description="Object slug, e.g. 'people', 'companies', 'deals'")
    values: dict[str, Any] = Field(..., description="Attribute values keyed by attribute slug")


class UpdateRecordInput(BaseModel):
    """Input schema for update_record."""

    object_slug: str = Field(..., description="Object slug")
    record_id: str = Field(..., description="Record ID")
    values: dict[str, Any] = Field(..., description="Attribute values to update, keyed by attribute slug")


def record_result(record: Record) -> dict[str, Any]:
    """Render a record for the model, including its display name."""
    return {**as_result(record), "display_name": record.display_name}


def object_not_found(slug: str) -> dict[str, str]:
    return {"error": f'Object "{slug}" not found'}


def create_search_records_tool(crm: CrmBackend) -> ToolDefinition:
    async def search_records_handler(params: SearchRecordsInput, ctx: ToolContext) -> dict[str, Any]:
        results = await crm.search(ctx.workspace_id, params.query, limit=params.limit)
        return {"results": as_result(results), "count": len(results)}

    return ToolDefinition(
        name=ToolName.SEARCH_RECORDS,
        description=(
            "Search across all records and lists by name, email, domain, or any text. "
            "Returns matching records with their type and display name."
        ),
        input_schema_class=SearchRecordsInput,
        handler=search_records_handler,
    )


def create_list_objects_tool(crm: CrmBackend) -> ToolDefinition:
    async def list_objects_handler(params: EmptyInput, ctx: ToolContext) -> list[dict[str, Any]]:
        objects: list[CrmObject] = await crm.list_objects(ctx.workspace_id)
        return [
            {
                "slug": o.slug,
                "singular_name": o.singular_name,
                "plural_name": o.plural_name,
                "icon": o.icon,
                "is_system": o.is_system,
            }
            for o in objects
        ]

    return ToolDefinition(
        name=ToolName.LIST_OBJECTS,
        description="List all object types in the workspace (e.g., People, Companies, Deals, custom objects).",
        input_schema_class=EmptyInput,
        handler=list_objects_handler,
    )


def create_list_records_tool(crm: CrmBackend) -> ToolDefinition:
    async def list_records_handler(params: ListRecordsInput, ctx: ToolContext) -> dict[str, Any]:
        obj = await crm.get_object(ctx.workspace_id, params.object_slug)
        if obj is None:
            return object_not_found(params.object_slug)
        records, total = await crm.list_records(ctx.workspace_id, obj.id, limit=params.limit, offset=params.offset)
        return {"records": [record_result(r) for r in records], "total": total}

    return ToolDefinition(
        name=ToolName.LIST_RECORDS,
        description="List records of a specific object type. Use object_slug like 'people', 'companies', or 'deals'.",
        input_schema_class=ListRecordsInput,
        handler=list_records_handler,
    )


def create_get_record_tool(crm: CrmBackend) -> ToolDefinition:
    async def get_record_handler(params: RecordRefInput, ctx: ToolContext) -> dict[str, Any]:
        obj = await crm.get_object(ctx.workspace_id, params.object_slug)
        if obj is None:
            return object_not_found(params.object_slug)
        record = await crm.get_record(ctx.workspace_id, obj.id, params.record_id)
        if record is None:
            return {"error": "Record not found"}
        return record_result(record)

    return ToolDefinition(
        name=ToolName.GET_RECORD,
        description="Get full details of a specific record by its ID and object slug.",
        input_schema_class=RecordRefInput,
        handler=get_record_handler,
    )


def create_create_record_tool(crm: CrmBackend) -> ToolDefinition:
    async def create_record_handler(params: CreateRecordInput, ctx: ToolContext) -> dict[str, Any]:
        obj = await crm.get_object(ctx.workspace_id, params.object_slug)
        if obj is None:
            return object_not_found(params.object_slug)
        record = await crm.create_record(ctx.workspace_id, obj.id, params.values, ctx.user_id)
        return record_result(record)

    return ToolDefinition(
        name=ToolName.CREATE_RECORD,
        description=(
            "Create a new record. For People use name: { fullName, firstName, lastName }, "
            "email_addresses (array), phone_numbers (array). For Companies use name, domains. For Deals use name."
        ),
        input_schema_class=CreateRecordInput,
        handler=create_record_handler,
        requires_confirmation=True,
    )


def create_update_record_tool(crm: CrmBackend) -> ToolDefinition:
    async def update_record_handler(params: UpdateRecordInput, ctx: ToolContext) -> dict[str, Any]:
        obj = await crm.get_object(ctx.workspace_id, params.object_slug)
        if obj is None:
            return object_not_found(params.object_slug)
        record = await crm.update_record(ctx.workspace_id, obj.id, params.record_id, params.values, ctx.user_id)
        if record is None:
            return {"error": "Record not found"}
        return record_result(record)

    return ToolDefinition(
        name=ToolName.UPDATE_RECORD,
        description="Update an existing record's attribute values.",
        input_schema_class=UpdateRecordInput,
        handler=update_record_handler,
        requires_confirmation=True,
    )


def create_delete_record_tool(crm: CrmBackend) -> ToolDefinition:
    async def delete_record_handler(params: RecordRefInput, ctx: ToolContext) -> dict[str, Any]:
        obj = await crm.get_object(ctx.workspace_id, params.object_slug)
        if obj is None:
            return object_not_found(params.object_slug)
        if not await crm.delete_record(ctx.workspace_id, obj.id, params.record_id):
            return {"error": "Record not found"}
        return {"deleted": True, "id": params.record_id}

    return ToolDefinition(
        name=ToolName.DELETE_RECORD,
        description="Delete a record permanently.",
        input_schema_class=RecordRefInput,
        handler=delete_record_handler,
        requires_confirmation=True,
    )
