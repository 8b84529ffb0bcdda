"""Tools for the CRM assistant."""

from crm_assistant.tools.base import ToolContext, ToolDefinition, ToolName
from crm_assistant.tools.registry import ToolsRegistry, get_tools_registry

__all__ = ["ToolContext", "ToolDefinition", "ToolName", "ToolsRegistry", "get_tools_registry"]
