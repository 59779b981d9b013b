"""MCP Server for the cruise sailings sync engine using stdio transport.

This module implements the Model Context Protocol server that lets an
admin UI or an AI agent drive sailing syncs, inspect the reference cache
and run storage maintenance via standardized tools.

Transport: stdio
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..core.services import Services
from ..logger import DEFAULT_LOG_FILE, setup_logging
from .lifespan import server_lifespan
from .tools import (
    ALL_SPECS,
    ToolRegistry,
    build_error_response,
    load_permissions_file,
)
from .tools.registry import ToolSpec

logger = logging.getLogger(__name__)

# Initialize server instance
server = Server("cruise-sync-server")

# Global services instance (initialized in lifespan)
_services: Services | None = None

# Global registry instance (initialized in main)
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Ping tool (always available, no permission required)
# ---------------------------------------------------------------------------


async def _handle_ping(
    services: Services, args: dict
) -> types.CallToolResult:
    """Handle ping tool -- report server version and run state."""
    state = services.orchestrator.status().state.value
    return types.CallToolResult(
        content=[
            types.TextContent(
                type="text",
                text=f"Cruise sync server {__version__} is up. Sync state: {state}",
            )
        ],
        structuredContent={"version": __version__, "sync_state": state},
    )


PING_SPEC = ToolSpec(
    tool=types.Tool(
        name="ping",
        description="Check that the cruise sync server is up and return its version and current sync state",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    permissions=frozenset(),
    handler=_handle_ping,
)


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_services() -> Services:
    """Get the global Services instance.

    Returns:
        Services instance

    Raises:
        RuntimeError: If services are not initialized
    """
    if _services is None:
        raise RuntimeError(
            "Services not initialized. Server lifespan not started."
        )
    return _services


def set_services(services: Services | None) -> None:
    """Set the global Services instance.

    Args:
        services: Services instance to set, or None to clear
    """
    global _services
    _services = services


def get_registry() -> ToolRegistry:
    """Get the global ToolRegistry instance.

    Returns:
        ToolRegistry instance

    Raises:
        RuntimeError: If registry is not initialized
    """
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    """Set the global ToolRegistry instance.

    Args:
        registry: ToolRegistry instance to set, or None to clear
    """
    global _registry
    _registry = registry


def build_registry(permissions_file: str | None = None) -> ToolRegistry:
    """Build the ToolRegistry, optionally filtered by a permissions file."""
    allowed_permissions = None
    if permissions_file:
        allowed_permissions = load_permissions_file(permissions_file)
        logger.info(
            "Loaded %d permissions from %s",
            len(allowed_permissions),
            permissions_file,
        )

    all_specs = [PING_SPEC] + ALL_SPECS
    registry = ToolRegistry(all_specs, allowed_permissions)
    logger.info(
        "Registered %d tools (of %d total)",
        registry.tool_count(),
        len(all_specs),
    )
    if permissions_file:
        print(
            f"Permissions file: {permissions_file} "
            f"({registry.tool_count()} of {len(all_specs)} tools enabled)",
            file=sys.stderr,
        )
    return registry


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List available tools.

    Returns all registered (and permitted) tools from the ToolRegistry.
    """
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Handle tool execution via ToolRegistry dispatch.

    Args:
        name: The name of the tool to execute.
        arguments: Tool arguments (optional).

    Returns:
        CallToolResult with tool output content and optional isError flag.
    """
    services = get_services()
    try:
        return await get_registry().call_tool(name, arguments, services)
    except ValueError as e:
        # Unknown or filtered-out tool name
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    This function sets up logging for MCP mode (file only, never stdout),
    opens the store and wires the engine via the lifespan manager, and
    starts the server with stdio transport for JSON-RPC communication.

    Args:
        config_overrides: Optional dict with config values to override
            (ftp_host, ftp_user, ftp_password, database_url, insecure,
            debug, log_file, permissions_file)
    """
    overrides = config_overrides or {}

    # Setup logging for MCP mode (file only, never stdout)
    # CRITICAL: This must be called BEFORE stdio_server context
    # to prevent any stdout contamination during protocol negotiation
    setup_logging(
        mode="mcp",
        debug=overrides.get("debug", False),
        log_file=overrides.get("log_file"),
    )

    set_registry(build_registry(overrides.get("permissions_file")))

    # set_services() is called here rather than in the lifespan so that
    # running via `python -m cruise_sync_server.mcp.server` updates the
    # __main__ module's global, not a second imported copy.
    async with server_lifespan(config_overrides=overrides) as ctx:
        set_services(ctx["services"])
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name="cruise-sync-server",
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(
                    read_stream, write_stream, init_options
                )
        finally:
            set_services(None)
            set_registry(None)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Cruise Sync Server - MCP server for the cruise sailings synchronization engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Examples:
  # Run with default config (from .env or .cruise_sync/config.yml)
  cruise-sync-server

  # Override the inventory feed
  cruise-sync-server --ftp-host ftp.example.com --ftp-user agency

  # Use a PostgreSQL store
  cruise-sync-server --database-url postgresql+psycopg://cruise@db/cruise

  # Plain FTP without TLS (development only)
  cruise-sync-server --insecure

  # Custom log file location
  cruise-sync-server --log-file /var/log/cruise-sync-server.log

  # Expose only read-only tools
  cruise-sync-server --permissions-file /etc/cruise-sync/read-only.permissions

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr. Default log file: {DEFAULT_LOG_FILE}
        """,
    )

    parser.add_argument(
        "--ftp-host",
        help="Override inventory FTP host (takes precedence over CRUISE_SYNC_FTP_HOST env var and config files)",
    )
    parser.add_argument(
        "--ftp-user",
        help="Override FTP username (takes precedence over CRUISE_SYNC_FTP_USER env var and config files)",
    )
    parser.add_argument(
        "--ftp-password",
        help="Override FTP password (takes precedence over CRUISE_SYNC_FTP_PASSWORD env var and config files)"
        " (visible in process list -- prefer CRUISE_SYNC_FTP_PASSWORD env var for security)",
    )
    parser.add_argument(
        "--database-url",
        help="Override SQLAlchemy database URL (takes precedence over CRUISE_SYNC_DATABASE_URL)",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Use plain FTP instead of FTPS (use only for development)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-file",
        default=DEFAULT_LOG_FILE,
        help=f"Log file path (default: {DEFAULT_LOG_FILE})",
    )
    parser.add_argument(
        "--permissions-file",
        help="Path to permissions file restricting available tools. "
        "Format: one permission per line (SYNC_VIEW, SYNC_ADMIN, MAINTENANCE_ADMIN), # for comments. "
        "If not specified, all tools are available.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"cruise-sync-server version {__version__}",
    )
    return parser.parse_args(argv)


def _overrides_from_args(args: argparse.Namespace) -> dict:
    """Build the config overrides dict from parsed CLI args."""
    config_overrides: dict = {}
    for key in ("ftp_host", "ftp_user", "ftp_password", "database_url"):
        value = getattr(args, key)
        if value:
            config_overrides[key] = value
    if args.insecure:
        config_overrides["insecure"] = True
    if args.debug:
        config_overrides["debug"] = True
    if args.log_file:
        config_overrides["log_file"] = args.log_file
    if args.permissions_file:
        config_overrides["permissions_file"] = args.permissions_file
    return config_overrides


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    args = _parse_args()
    config_overrides = _overrides_from_args(args)

    # Log config overrides to stderr (before stdio transport starts)
    override_keys = [
        k
        for k in config_overrides.keys()
        if k not in ("ftp_password", "log_file")
    ]
    if override_keys:
        print(
            f"Config overrides from CLI: {', '.join(override_keys)}",
            file=sys.stderr,
        )

    try:
        asyncio.run(main(config_overrides=config_overrides))
    except RuntimeError:
        # Error already printed to stderr by lifespan manager
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
