"""Durable storage backing for generated contexts."""

from modctx.storage.store import ContextStore

__all__ = ["ContextStore"]
