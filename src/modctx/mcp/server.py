"""MCP Server - expose modctx via the Model Context Protocol.

Implements the MCP protocol (JSON-RPC 2.0 over stdio) directly, with no
external MCP SDK dependency.

Clients configure it with:
  - Claude Code (~/.claude/mcp_servers.json)
  - Cursor (.cursor/mcp.json)
  - any MCP-compatible client

Protocol reference: https://modelcontextprotocol.io/specification
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from modctx import __version__
from modctx.config import find_project_root, get_modctx_dir, load_config
from modctx.context.engine import ContextEngine, build_engine
from modctx.context.export import EXPORT_FORMATS, export_formatted
from modctx.exceptions import ConfigError, ModCtxError
from modctx.modules.registry import ModuleRegistry
from modctx.storage.store import ContextStore

logger = logging.getLogger("modctx.mcp")

MODULE_URI_PREFIX = "modctx://module/"
FILE_URI_PREFIX = "file://"

def _flag(args: dict, name: str, default: bool) -> bool:
    """A boolean tool argument; strings such as "false" are rejected, not coerced."""
    value = args.get(name, default)
    if not isinstance(value, bool):
        raise ValueError(f"Argument '{name}' must be a boolean, got {value!r}")
    return value


_LEVEL_SCHEMA = {
    "type": "string",
    "enum": ["low", "medium", "high"],
    "description": "Detail level (default: the project's default_level)",
}
_MODULE_SCHEMA = {
    "type": "string",
    "description": "Module name (default: the focused module)",
}


class MCPServer:
    """Model Context Protocol server for modctx.

    Exposes module context generation and export as MCP tools, and each
    registered module's exported context as an MCP resource.
    """

    PROTOCOL_VERSION = "2024-11-05"
    SERVER_NAME = "modctx"
    SERVER_VERSION = __version__

    def __init__(self, root: Path | None = None, engine: ContextEngine | None = None) -> None:
        self.root = root or find_project_root() or Path.cwd()
        self._engine = engine
        self._store: ContextStore | None = None
        self._tools = self._define_tools()

    def _ensure_engine(self) -> ContextEngine:
        """Lazy-load the project configuration and context engine."""
        if self._engine is None:
            if not get_modctx_dir(self.root).is_dir():
                raise ConfigError(
                    f"No modctx project found at {self.root}. Run 'modctx init' first."
                )
            config = load_config(self.root)
            self._engine, self._store = build_engine(self.root, config)
        return self._engine

    @property
    def registry(self) -> ModuleRegistry:
        return self._ensure_engine().resolver.registry

    def close(self) -> None:
        if self._store is not None:
            self._store.close()
            self._store = None

    def _define_tools(self) -> list[dict]:
        """Define the MCP tools we expose."""
        return [
            {
                "name": "generate_context",
                "description": (
                    "Generate the context of a project module at a detail level. "
                    "low lists structure, medium adds per-file summaries, high adds "
                    "file contents. Served from cache unless force is set."
                ),
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "module": _MODULE_SCHEMA,
                        "level": _LEVEL_SCHEMA,
                        "force": {
                            "type": "boolean",
                            "description": "Regenerate even if cached (default: false)",
                            "default": False,
                        },
                    },
                },
            },
            {
                "name": "export_context",
                "description": (
                    "Export a module context fitted to a token budget. Oversized "
                    "contexts are optimized: whitespace collapsed, long code blocks "
                    "truncated, then file bodies omitted, largest first."
                ),
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "module": _MODULE_SCHEMA,
                        "level": _LEVEL_SCHEMA,
                        "token_budget": {
                            "type": "integer",
                            "description": "Maximum tokens (default: the project's token_budget)",
                        },
                        "optimize": {
                            "type": "boolean",
                            "description": "Fit the context to the budget (default: true)",
                            "default": True,
                        },
                        "format": {
                            "type": "string",
                            "enum": list(EXPORT_FORMATS),
                            "description": "Output format (default: markdown)",
                            "default": "markdown",
                        },
                    },
                },
            },
            {
                "name": "list_modules",
                "description": "List the registered modules with their paths and dependencies.",
                "inputSchema": {
                    "type": "object",
                    "properties": {},
                },
            },
            {
                "name": "get_dependencies",
                "description": "Show what a module depends on and which modules depend on it.",
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "module": _MODULE_SCHEMA,
                    },
                },
            },
            {
                "name": "set_focus",
                "description": (
                    "Set the module you are working on. Tools called without a "
                    "module use it. An empty name clears the focus."
                ),
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "module": {
                            "type": "string",
                            "description": "Module name, or empty to clear",
                        },
                    },
                    "required": ["module"],
                },
            },
            {
                "name": "invalidate_context",
                "description": (
                    "Drop cached contexts for a module after its files changed, "
                    "for one level or all levels."
                ),
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "module": _MODULE_SCHEMA,
                        "level": _LEVEL_SCHEMA,
                    },
                },
            },
        ]

    # =========================================================================
    # Tool Implementations
    # =========================================================================

    async def _handle_tool_call(self, name: str, arguments: dict) -> str:
        """Execute a tool and return the result."""
        if name == "generate_context":
            return await self._tool_generate_context(arguments)
        elif name == "export_context":
            return await self._tool_export_context(arguments)
        elif name == "list_modules":
            return self._tool_list_modules(arguments)
        elif name == "get_dependencies":
            return self._tool_get_dependencies(arguments)
        elif name == "set_focus":
            return self._tool_set_focus(arguments)
        elif name == "invalidate_context":
            return self._tool_invalidate_context(arguments)
        else:
            raise ValueError(f"Unknown tool: {name}")

    def _module_arg(self, args: dict) -> str:
        """The module named in the arguments, falling back to the focus."""
        name = args.get("module")
        if name:
            return name
        focus = self.registry.get_focus()
        if focus is None:
            raise ValueError("No module given and no focus set")
        return focus.name

    async def _tool_generate_context(self, args: dict) -> str:
        engine = self._ensure_engine()
        result = await engine.generate_module_context(
            self._module_arg(args),
            level=args.get("level"),
            force=_flag(args, "force", False),
        )
        source = "cached" if result.from_cache else "generated"
        summary = (
            f"Module '{result.module_name}' ({result.level.value}): "
            f"{result.token_count:,} tokens, {source}"
        )
        return f"{summary}\n\n---\n\n{result.context}"

    async def _tool_export_context(self, args: dict) -> str:
        _, text = await export_formatted(
            self._ensure_engine(),
            self._module_arg(args),
            level=args.get("level"),
            token_budget=args.get("token_budget"),
            optimize=_flag(args, "optimize", True),
            fmt=args.get("format", "markdown"),
        )
        return text

    def _tool_list_modules(self, _args: dict) -> str:
        modules = self.registry.list_modules()
        if not modules:
            return "No modules registered. Add one with 'modctx module add'."

        focus = self.registry.config.focus
        lines = ["Registered modules:"]
        for m in modules:
            marker = " (focus)" if m.name == focus else ""
            deps = f" -> depends on {', '.join(m.dependencies)}" if m.dependencies else ""
            lines.append(f"  {m.name}{marker} at {m.path}{deps}")
        return "\n".join(lines)

    def _tool_get_dependencies(self, args: dict) -> str:
        info = self.registry.get_dependencies(self._module_arg(args))
        return "\n".join([
            f"Dependencies of '{info['module']}':",
            f"  depends on: {', '.join(info['dependencies']) or 'nothing'}",
            f"  used by: {', '.join(info['dependents']) or 'nothing'}",
        ])

    def _tool_set_focus(self, args: dict) -> str:
        module = self.registry.set_focus(args.get("module") or None)
        if module is None:
            return "Focus cleared"
        return f"Focus set to '{module.name}'"

    def _tool_invalidate_context(self, args: dict) -> str:
        name = self._module_arg(args)
        self.registry.get_module(name)
        removed = self._ensure_engine().invalidate(name, args.get("level"))
        return f"Invalidated {removed} cached context(s) for '{name}'"

    # =========================================================================
    # MCP Protocol Implementation (JSON-RPC 2.0 over stdio)
    # =========================================================================

    async def run_stdio(self) -> None:
        """Run the MCP server over stdio (the standard transport)."""
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)
        await loop.connect_read_pipe(lambda: protocol, sys.stdin.buffer)

        writer_transport, writer_protocol = await loop.connect_write_pipe(
            asyncio.streams.FlowControlMixin, sys.stdout.buffer
        )
        writer = asyncio.StreamWriter(writer_transport, writer_protocol, None, loop)

        logger.info("modctx MCP server started (stdio transport)")

        try:
            while True:
                try:
                    message = await self._read_message(reader)
                    if message is None:
                        break
                    response = await self._handle_message(message)
                    if response is not None:
                        await self._write_message(writer, response)
                except (json.JSONDecodeError, asyncio.IncompleteReadError, ConnectionError) as e:
                    logger.error(f"Error handling message: {e}")
                    break
        finally:
            self.close()

        logger.info("MCP server shutting down")

    async def _read_message(self, reader: asyncio.StreamReader) -> dict | None:
        """Read a JSON-RPC message with Content-Length header."""
        content_length = 0
        while True:
            line = await reader.readline()
            if not line:
                return None
            line = line.decode("utf-8").strip()
            if not line:
                break  # End of headers
            if line.lower().startswith("content-length:"):
                content_length = int(line.split(":")[1].strip())

        if content_length == 0:
            return None

        body = await reader.readexactly(content_length)
        return json.loads(body.decode("utf-8"))

    async def _write_message(self, writer: asyncio.StreamWriter, message: dict) -> None:
        """Write a JSON-RPC response with Content-Length header."""
        body = json.dumps(message).encode("utf-8")
        header = f"Content-Length: {len(body)}\r\n\r\n".encode()
        writer.write(header + body)
        await writer.drain()

    async def _handle_message(self, message: dict) -> dict | None:
        """Route a JSON-RPC message to the appropriate handler."""
        method = message.get("method", "")
        msg_id = message.get("id")
        params = message.get("params", {})

        # Notifications (no id) don't get responses
        if msg_id is None:
            self._handle_notification(method, params)
            return None

        try:
            result = await self._dispatch(method, params)
            return {"jsonrpc": "2.0", "id": msg_id, "result": result}
        except ModCtxError as e:
            return {
                "jsonrpc": "2.0",
                "id": msg_id,
                "error": {"code": -32603, "message": str(e), "data": {"code": e.code}},
            }
        except (ValueError, KeyError) as e:
            return {
                "jsonrpc": "2.0",
                "id": msg_id,
                "error": {"code": -32603, "message": str(e)},
            }

    def _handle_notification(self, method: str, params: dict) -> None:
        """Handle a notification (no response needed)."""
        if method == "notifications/initialized":
            logger.info("Client initialized")
        elif method == "notifications/cancelled":
            logger.info(f"Request cancelled: {params.get('requestId')}")

    async def _dispatch(self, method: str, params: dict) -> Any:
        """Dispatch a JSON-RPC method to its handler."""
        if method == "initialize":
            return self._rpc_initialize(params)
        elif method == "tools/list":
            return self._rpc_tools_list(params)
        elif method == "tools/call":
            return await self._rpc_tools_call(params)
        elif method == "resources/list":
            return self._rpc_resources_list(params)
        elif method == "resources/read":
            return await self._rpc_resources_read(params)
        elif method == "ping":
            return {}
        else:
            raise ValueError(f"Unknown method: {method}")

    def _rpc_initialize(self, params: dict) -> dict:
        """Handle the initialize handshake."""
        return {
            "protocolVersion": self.PROTOCOL_VERSION,
            "capabilities": {
                "tools": {"listChanged": False},
                "resources": {"subscribe": False, "listChanged": False},
            },
            "serverInfo": {
                "name": self.SERVER_NAME,
                "version": self.SERVER_VERSION,
            },
        }

    def _rpc_tools_list(self, params: dict) -> dict:
        """List available tools."""
        return {"tools": self._tools}

    async def _rpc_tools_call(self, params: dict) -> dict:
        """Call a tool and return the result."""
        name = params.get("name", "")
        arguments = params.get("arguments") or {}

        try:
            result = await self._handle_tool_call(name, arguments)
            return {
                "content": [{"type": "text", "text": result}],
                "isError": False,
            }
        except (ModCtxError, ValueError, KeyError) as e:
            logger.info(f"Tool {name} failed: {e}")
            return {
                "content": [{"type": "text", "text": f"Error: {e}"}],
                "isError": True,
            }

    def _rpc_resources_list(self, params: dict) -> dict:
        """List one resource per registered module."""
        try:
            modules = self.registry.list_modules()
        except ModCtxError as e:
            logger.warning(f"Cannot list resources: {e}")
            return {"resources": []}

        return {
            "resources": [
                {
                    "uri": f"{MODULE_URI_PREFIX}{m.name}",
                    "name": m.name,
                    "description": m.description or f"Context for module '{m.name}'",
                    "mimeType": "text/markdown",
                }
                for m in modules
            ]
        }

    async def _rpc_resources_read(self, params: dict) -> dict:
        """Read a resource by URI."""
        uri = params.get("uri", "")
        if uri.startswith(MODULE_URI_PREFIX):
            name = uri[len(MODULE_URI_PREFIX):]
            _, text = await export_formatted(self._ensure_engine(), name)
            return {
                "contents": [{
                    "uri": uri,
                    "mimeType": "text/markdown",
                    "text": text,
                }]
            }

        fp = uri[len(FILE_URI_PREFIX):] if uri.startswith(FILE_URI_PREFIX) else uri
        full_path = self.root / fp

        # Refuse anything that resolves outside the project root
        try:
            full_path.resolve().relative_to(self.root.resolve())
        except ValueError:
            msg = f"Access denied: {fp} is outside the project root"
            return {"contents": [{"uri": uri, "text": msg}]}

        if not full_path.is_file():
            return {"contents": [{"uri": uri, "text": f"File not found: {fp}"}]}

        try:
            content = full_path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            return {"contents": [{"uri": uri, "text": f"Error reading {fp}: {e}"}]}
        return {"contents": [{"uri": uri, "mimeType": "text/plain", "text": content}]}

    # =========================================================================
    # MCP Config Generators
    # =========================================================================

    @staticmethod
    def generate_claude_config(project_path: str | None = None) -> dict:
        """Generate MCP config for Claude Code (~/.claude/mcp_servers.json)."""
        return {
            "modctx": {
                "command": "modctx",
                "args": ["serve", "--transport", "stdio"],
                "cwd": project_path or ".",
            }
        }

    @staticmethod
    def generate_cursor_config(project_path: str | None = None) -> dict:
        """Generate MCP config for Cursor (.cursor/mcp.json)."""
        return {
            "mcpServers": {
                "modctx": {
                    "command": "modctx",
                    "args": ["serve", "--transport", "stdio"],
                    "cwd": project_path or ".",
                }
            }
        }
