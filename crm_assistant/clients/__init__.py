"""Upstream model API clients."""
