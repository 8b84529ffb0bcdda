"""Base types and definitions for tools."""

import dataclasses
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import BaseModel

from crm_assistant.utils.logging import get_logger

logger = get_logger(__name__)


class ToolName(StrEnum):
    """The fixed set of tools the model may call."""

    SEARCH_RECORDS = "search_records"
    LIST_OBJECTS = "list_objects"
    LIST_RECORDS = "list_records"
    GET_RECORD = "get_record"
    LIST_TASKS = "list_tasks"
    GET_NOTES_FOR_RECORD = "get_notes_for_record"
    LIST_LISTS = "list_lists"
    LIST_LIST_ENTRIES = "list_list_entries"
    CREATE_RECORD = "create_record"
    UPDATE_RECORD = "update_record"
    DELETE_RECORD = "delete_record"
    CREATE_TASK = "create_task"
    CREATE_NOTE = "create_note"


@dataclass(frozen=True)
class ToolContext:
    """Caller scope every tool execution runs under."""

    workspace_id: str
    user_id: str


ToolHandler = Callable[[Any, ToolContext], Awaitable[Any]]


@dataclass
class ToolDefinition:
    """Definition of a tool available to the AI assistant."""

    name: ToolName
    description: str
    input_schema_class: type[BaseModel]
    handler: ToolHandler
    requires_confirmation: bool = False

    def get_json_schema(self) -> dict[str, Any]:
        """Get JSON schema for this tool's input."""
        return self.input_schema_class.model_json_schema()

    def parse_input(self, raw_input: dict[str, Any]) -> BaseModel:
        """Parse and validate tool input."""
        return self.input_schema_class.model_validate(raw_input)

    def to_openai(self) -> dict[str, Any]:
        """Function-tool definition for the chat-completions request."""
        return {
            "type": "function",
            "function": {
                "name": self.name.value,
                "description": self.description,
                "parameters": self.get_json_schema(),
            },
        }


def parse_arguments(raw_arguments: str | None) -> dict[str, Any]:
    """Parse raw tool-call arguments, treating anything but a JSON object as empty."""
    if not raw_arguments:
        return {}
    try:
        parsed = json.loads(raw_arguments)
    except (TypeError, ValueError):
        logger.warning(f"Unparsable tool arguments, using empty object: {raw_arguments[:100]!r}")
        return {}
    if not isinstance(parsed, dict):
        logger.warning(f"Tool arguments are not an object, using empty object: {raw_arguments[:100]!r}")
        return {}
    return parsed


def as_result(value: Any) -> Any:
    """Convert dataclass results (and lists of them) into plain dicts."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, list):
        return [as_result(item) for item in value]
    return value
