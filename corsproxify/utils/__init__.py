"""Shared utilities: structured logging and request IDs."""
