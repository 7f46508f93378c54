"""MCP server exposing the ticket tree mirror over stdio.

AI agents call ``ticket_tree_sync`` and ``ticket_tree_status`` to keep a
local mirror of Trac ticket trees in step with the server.

Transport: stdio
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
import yaml
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..config_loader import ensure_config, load_hierarchical_config
from ..config_schema import LoggingConfig, build_config
from ..core.async_utils import run_sync
from ..logger import DEFAULT_LOG_FILE, setup_logging
from ..version import check_version_consistency
from .lifespan import MirrorContext, server_lifespan
from .tools import (
    ALL_SPECS,
    ToolRegistry,
    build_error_response,
    load_permissions_file,
)
from .tools.registry import ToolSpec

logger = logging.getLogger(__name__)

server = Server("trac-issue-mirror")

# Initialized in main()
_context: MirrorContext | None = None
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Ping tool (always available, no Trac permission required)
# ---------------------------------------------------------------------------


async def _handle_ping(ctx: MirrorContext, args: dict) -> types.CallToolResult:
    try:
        version = await run_sync(ctx.client.validate_connection)
    except Exception as e:
        text = f"Trac connection failed: {e}. Check TRAC_URL, TRAC_USERNAME, TRAC_PASSWORD."
        return types.CallToolResult(
            content=[types.TextContent(type="text", text=text)], isError=True
        )
    text = (
        f"Trac issue mirror connected successfully. API version: {version}. "
        f"Working documents in {ctx.config.data_dir}."
    )
    return types.CallToolResult(content=[types.TextContent(type="text", text=text)])


PING_SPEC = ToolSpec(
    tool=types.Tool(
        name="ping",
        description="Test Trac connectivity and return the API version",
        inputSchema={"type": "object", "properties": {}},
    ),
    permissions=frozenset(),
    handler=_handle_ping,
)


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_context() -> MirrorContext:
    if _context is None:
        raise RuntimeError("MirrorContext not initialized. Server lifespan not started.")
    return _context


def set_context(context: MirrorContext | None) -> None:
    global _context
    _context = context


def get_registry() -> ToolRegistry:
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    global _registry
    _registry = registry


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """Return all registered (and permitted) tools."""
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(name: str, arguments: dict | None) -> types.CallToolResult:
    context = get_context()
    try:
        return await get_registry().call_tool(name, arguments, context)
    except ValueError as e:
        # unknown or filtered-out tool name
        return build_error_response(
            "unknown_tool", str(e), "Use list_tools to see available tools."
        )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


def build_registry(permissions_file: str | None = None) -> ToolRegistry:
    """Build the tool registry, filtered by a permissions file if given."""
    allowed = load_permissions_file(permissions_file) if permissions_file else None
    all_specs = [PING_SPEC] + ALL_SPECS
    registry = ToolRegistry(all_specs, allowed)
    logger.info("Registered %d of %d tools", registry.tool_count(), len(all_specs))
    if permissions_file:
        print(
            f"Permissions file: {permissions_file} "
            f"({registry.tool_count()} of {len(all_specs)} tools enabled)",
            file=sys.stderr,
        )
    return registry


def _logging_settings() -> LoggingConfig:
    """Logging section of the config files, or defaults if it cannot be read."""
    try:
        return build_config(load_hierarchical_config()).logging
    except (ValueError, OSError, yaml.YAMLError) as e:
        sys.stderr.write(f"Warning: ignoring logging config: {e}\n")
        return LoggingConfig()


async def main(config_overrides: dict | None = None):
    """Serve over stdio once the lifespan has validated the Trac connection.

    Args:
        config_overrides: CLI values (see ``_OVERRIDE_ARGS``) that win over
            env vars and config files.
    """
    overrides = config_overrides or {}
    settings = _logging_settings()

    # must run before stdio_server so nothing reaches stdout
    setup_logging(
        mode="mcp",
        debug=overrides.get("debug", False),
        log_file=overrides.get("log_file") or settings.file,
        debug_format=settings.format,
        level=settings.level,
    )

    is_consistent, message = check_version_consistency()
    logger.log(logging.INFO if is_consistent else logging.WARNING, message)
    if not is_consistent:
        sys.stderr.write(f"Warning: {message}\n")

    set_registry(build_registry(overrides.get("permissions_file")))

    # set_context() is called here rather than in the lifespan: under
    # `python -m` this module is __main__ and a relative import of it
    # would be a second copy.
    async with server_lifespan(config_overrides=config_overrides) as ctx:
        set_context(ctx["context"])
        try:
            init_options = InitializationOptions(
                server_name="trac-issue-mirror",
                server_version=__version__,
                capabilities=server.get_capabilities(
                    notification_options=NotificationOptions(),
                    experimental_capabilities={},
                ),
            )
            async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
                await server.run(read_stream, write_stream, init_options)
        finally:
            set_context(None)
            set_registry(None)


_OVERRIDE_ARGS = ("url", "username", "password", "insecure", "debug", "log_file", "permissions_file")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trac-issue-mirror",
        description="Sync local ticket tree documents with Trac over MCP (stdio). "
        "User-facing messages go to stderr.",
    )
    parser.add_argument("--url", help="Trac URL (overrides TRAC_URL and config files)")
    parser.add_argument("--username", help="Trac username (overrides TRAC_USERNAME)")
    parser.add_argument(
        "--password",
        help="Trac password (visible in the process list; prefer TRAC_PASSWORD)",
    )
    parser.add_argument(
        "--insecure", action="store_true", help="Skip SSL certificate verification"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--log-file",
        help="Log file path (default: logging.file from config.yml, then "
        f"LOG_FILE env var, then {DEFAULT_LOG_FILE})",
    )
    parser.add_argument(
        "--permissions-file",
        help="File of Trac permissions (one per line) restricting the tools offered",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Write a starter config.yml if none exists, print its path, and exit",
    )
    parser.add_argument(
        "--version", action="version", version=f"trac-issue-mirror {__version__}"
    )
    return parser


def run() -> None:
    """Console entry point."""
    args = _build_parser().parse_args()

    if args.init_config:
        print(ensure_config())
        return

    overrides = {
        name: getattr(args, name) for name in _OVERRIDE_ARGS if getattr(args, name)
    }
    if overrides:
        shown = [k for k in overrides if k != "password"]
        print(f"Config overrides from CLI: {', '.join(shown)}", file=sys.stderr)

    try:
        asyncio.run(main(config_overrides=overrides or None))
    except RuntimeError:
        # lifespan already printed the reason to stderr
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
