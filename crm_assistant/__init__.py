"""CRM assistant: tool-calling chat orchestration with human confirmation."""

__version__ = "0.1.0"
