"""Tools registry for managing AI assistant tools."""

from typing import Any

from crm_assistant.services.crm import CrmBackend, get_crm_backend
from crm_assistant.tools.activities import (
    create_create_note_tool,
    create_create_task_tool,
    create_get_notes_for_record_tool,
    create_list_tasks_tool,
)
from crm_assistant.tools.base import ToolContext, ToolDefinition, ToolName
from crm_assistant.tools.lists import create_list_list_entries_tool, create_list_lists_tool
from crm_assistant.tools.records import (
    create_create_record_tool,
    create_delete_record_tool,
    create_get_record_tool,
    create_list_objects_tool,
    create_list_records_tool,
    create_search_records_tool,
    create_update_record_tool,
)


class ToolsRegistry:
    """Registry mapping each tool identity to its definition."""

    def __init__(self, crm_backend: CrmBackend):
        """Initialize tools registry with the CRM backend the handlers call."""
        self.crm_backend = crm_backend
        self._tools: dict[ToolName, ToolDefinition] = {}
        self._register_default_tools()

    def _register_default_tools(self) -> None:
        """Register the fixed CRM tool set."""
        tools = [
            create_search_records_tool(self.crm_backend),
            create_list_objects_tool(self.crm_backend),
            create_list_records_tool(self.crm_backend),
            create_get_record_tool(self.crm_backend),
            create_list_tasks_tool(self.crm_backend),
            create_get_notes_for_record_tool(self.crm_backend),
            create_list_lists_tool(self.crm_backend),
            create_list_list_entries_tool(self.crm_backend),
            create_create_record_tool(self.crm_backend),
            create_update_record_tool(self.crm_backend),
            create_delete_record_tool(self.crm_backend),
            create_create_task_tool(self.crm_backend),
            create_create_note_tool(self.crm_backend),
        ]

        for tool in tools:
            self.register_tool(tool)

    def register_tool(self, tool: ToolDefinition) -> None:
        """Register a tool, replacing any definition with the same name."""
        self._tools[tool.name] = tool

    def lookup(self, name: str) -> ToolDefinition | None:
        """Resolve a tool by the name the model used; None for unknown names."""
        try:
            tool_name = ToolName(name)
        except ValueError:
            return None
        return self._tools.get(tool_name)

    async def execute(self, tool: ToolDefinition, arguments: dict[str, Any], ctx: ToolContext) -> Any:
        """Validate arguments against the tool's input model and run it.

        Raises:
            pydantic.ValidationError: If the arguments do not match the schema
            Exception: Whatever the handler raises
        """
        parsed = tool.parse_input(arguments)
        return await tool.handler(parsed, ctx)

    def get_openai_tools(self) -> list[dict[str, Any]]:
        """Get function-tool definitions for the upstream request."""
        return [tool.to_openai() for tool in self._tools.values()]

    def get_tool_names(self) -> list[str]:
        """Get list of all registered tool names."""
        return [name.value for name in self._tools]

    def requires_confirmation(self, name: str) -> bool:
        """Whether a tool is gated behind human approval (False for unknown names)."""
        tool = self.lookup(name)
        return bool(tool and tool.requires_confirmation)


_tools_registry: ToolsRegistry | None = None


def get_tools_registry(crm_backend: CrmBackend | None = None) -> ToolsRegistry:
    """Get or create tools registry instance."""
    global _tools_registry

    if _tools_registry is None:
        _tools_registry = ToolsRegistry(crm_backend or get_crm_backend())

    return _tools_registry
