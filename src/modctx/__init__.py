"""modctx - module-aware context generation and token budgeting for AI coding tools."""

__version__ = "0.1.0"
