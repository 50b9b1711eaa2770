"""MCP (Model Context Protocol) server for modctx.

Exposes module context generation to any MCP-compatible client:
  - Claude Code
  - Cursor
  - Any custom MCP client

Usage:
    modctx serve              # Start the MCP server
    modctx serve --transport stdio  # Explicit stdio transport
"""

from modctx.mcp.server import MCPServer

__all__ = ["MCPServer"]
