"""Task and note tools."""

from typing import Any

from pydantic import BaseModel, Field

from crm_assistant.services.crm import CrmBackend
from crm_assistant.tools.base import ToolContext, ToolDefinition, ToolName, as_result


class ListTasksInput(BaseModel):
    """Input schema for list_tasks."""

    show_completed: bool = Field(False, description="Include completed tasks (default false)")
    limit: int = Field(20, ge=1, le=100, description="Max tasks to return")


class CreateTaskInput(BaseModel):
    """Input schema for create_task."""

    content: str = Field(..., min_length=1, description="Task description")
    deadline: str | None = Field(None, description="ISO date string for the deadline")
    record_ids: list[str] = Field(default_factory=list, description="Record IDs to link to this task")


class NotesForRecordInput(BaseModel):
    """Input schema for get_notes_for_record."""

    record_id: str = Field(..., description="Record ID")


class CreateNoteInput(BaseModel):
    """Input schema for create_note."""

    record_id: str = Field(..., description="Record ID to attach the note to")
    title: str = Field(..., min_length=1, description="Note title")
    content: str | None = Field(None, description="Note content as plain text")


def plain_text_document(text: str) -> dict[str, Any]:
    """Wrap plain text in the rich-text document shape notes are stored in."""
    return {"type": "doc", "content": [{"type": "paragraph", "content": [{"type": "text", "text": text}]}]}


def create_list_tasks_tool(crm: CrmBackend) -> ToolDefinition:
    async def list_tasks_handler(params: ListTasksInput, ctx: ToolContext) -> dict[str, Any]:
        tasks, total = await crm.list_tasks(
            ctx.workspace_id, ctx.user_id, show_completed=params.show_completed, limit=params.limit
        )
        return {"tasks": as_result(tasks), "total": total}

    return ToolDefinition(
        name=ToolName.LIST_TASKS,
        description="List tasks for the current user. Can include completed tasks.",
        input_schema_class=ListTasksInput,
        handler=list_tasks_handler,
    )


def create_create_task_tool(crm: CrmBackend) -> ToolDefinition:
    async def create_task_handler(params: CreateTaskInput, ctx: ToolContext) -> dict[str, Any]:
        task = await crm.create_task(
            ctx.workspace_id,
            ctx.user_id,
            params.content,
            deadline=params.deadline,
            record_ids=params.record_ids,
            assignee_ids=[ctx.user_id],
        )
        return as_result(task)

    return ToolDefinition(
        name=ToolName.CREATE_TASK,
        description="Create a new task. Can optionally link to records. The task is assigned to the current user.",
        input_schema_class=CreateTaskInput,
        handler=create_task_handler,
        requires_confirmation=True,
    )


def create_get_notes_for_record_tool(crm: CrmBackend) -> ToolDefinition:
    async def get_notes_handler(params: NotesForRecordInput, ctx: ToolContext) -> dict[str, Any]:
        notes = await crm.get_notes_for_record(ctx.workspace_id, params.record_id)
        return {"notes": as_result(notes), "count": len(notes)}

    return ToolDefinition(
        name=ToolName.GET_NOTES_FOR_RECORD,
        description="Get all notes attached to a specific record.",
        input_schema_class=NotesForRecordInput,
        handler=get_notes_handler,
    )


def create_create_note_tool(crm: CrmBackend) -> ToolDefinition:
    async def create_note_handler(params: CreateNoteInput, ctx: ToolContext) -> dict[str, Any]:
        content = plain_text_document(params.content) if params.content else None
        note = await crm.create_note(ctx.workspace_id, ctx.user_id, params.record_id, params.title, content)
        return as_result(note)

    return ToolDefinition(
        name=ToolName.CREATE_NOTE,
        description="Create a new note attached to a record.",
        input_schema_class=CreateNoteInput,
        handler=create_note_handler,
        requires_confirmation=True,
    )
