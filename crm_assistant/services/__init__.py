"""Services composing the chat engine."""
