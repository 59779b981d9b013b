"""Tests for tool registration, routing and CLI parsing in the MCP server.

Verifies:
- Every tool is listed, and a permissions file narrows the list
- Tool calls route through the ToolRegistry to the shared services
- Unknown tools return an unknown_tool error response
- ping reports version and sync state
- CLI arguments become config overrides

Note: Detailed handler behavior is tested under tests/test_mcp/tools/;
this file only tests the server layer.
"""

import asyncio
from unittest.mock import MagicMock

import mcp.types as types
import pytest

from cruise_sync_server import __version__
from cruise_sync_server.mcp.server import (
    PING_SPEC,
    _overrides_from_args,
    _parse_args,
    build_registry,
    get_registry,
    get_services,
    handle_call_tool,
    handle_list_tools,
    set_registry,
    set_services,
)
from cruise_sync_server.mcp.tools import ALL_SPECS
from cruise_sync_server.mcp.tools.registry import ToolRegistry
from cruise_sync_server.sync.models import RunState, SyncStatus

EXPECTED_TOOLS = {
    "ping",
    "sync_status",
    "sync_start",
    "sync_cancel",
    "sync_connection_test",
    "sync_available_years",
    "sync_history",
    "cache_stats",
    "cache_clear",
    "storage_stats",
    "cleanup_preview",
    "coverage_stats",
    "cleanup_run",
    "purge_expired",
}


def _mock_services(state=RunState.IDLE):
    services = MagicMock()
    services.orchestrator.status.return_value = SyncStatus(state=state)
    return services


def _text(result: types.CallToolResult) -> str:
    content = result.content[0]
    assert isinstance(content, types.TextContent)
    return content.text


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


class TestGlobals:
    """Accessors raise until the lifespan or main() sets them."""

    def test_services_not_initialized(self):
        set_services(None)
        with pytest.raises(RuntimeError, match="Services not initialized"):
            get_services()

    def test_registry_not_initialized(self):
        set_registry(None)
        with pytest.raises(RuntimeError, match="ToolRegistry not initialized"):
            get_registry()


# ---------------------------------------------------------------------------
# build_registry()
# ---------------------------------------------------------------------------


class TestBuildRegistry:
    def test_all_tools_without_permissions_file(self):
        registry = build_registry()
        assert {t.name for t in registry.list_tools()} == EXPECTED_TOOLS

    def test_permissions_file_filters(self, tmp_path, capsys):
        perms = tmp_path / "read-only.permissions"
        perms.write_text("# viewer\nSYNC_VIEW\n")

        registry = build_registry(str(perms))

        names = {t.name for t in registry.list_tools()}
        assert names == {
            "ping",
            "sync_status",
            "sync_connection_test",
            "sync_available_years",
            "sync_history",
            "cache_stats",
            "storage_stats",
            "cleanup_preview",
            "coverage_stats",
        }
        assert "9 of 14 tools enabled" in capsys.readouterr().err

    def test_invalid_permissions_file(self, tmp_path):
        perms = tmp_path / "bad.permissions"
        perms.write_text("BOOKING_ADMIN\n")
        with pytest.raises(ValueError, match="Invalid permission"):
            build_registry(str(perms))


# ---------------------------------------------------------------------------
# Protocol handlers
# ---------------------------------------------------------------------------


class TestProtocolHandlers:
    """handle_list_tools / handle_call_tool routing."""

    def setup_method(self):
        set_registry(ToolRegistry([PING_SPEC] + ALL_SPECS))
        self.services = _mock_services(RunState.RUNNING)
        set_services(self.services)

    def teardown_method(self):
        set_registry(None)
        set_services(None)

    def test_list_tools(self):
        tools = asyncio.run(handle_list_tools())
        assert {t.name for t in tools} == EXPECTED_TOOLS

    def test_ping(self):
        result = asyncio.run(handle_call_tool("ping", {}))
        assert not result.isError
        assert _text(result) == (
            f"Cruise sync server {__version__} is up. Sync state: running"
        )
        assert result.structuredContent == {
            "version": __version__,
            "sync_state": "running",
        }

    def test_ping_spec_needs_no_permission(self):
        assert PING_SPEC.permissions == frozenset()

    def test_unknown_tool(self):
        result = asyncio.run(handle_call_tool("sailing_delete", {}))
        assert result.isError
        text = _text(result)
        assert text.startswith("Error (unknown_tool): Unknown tool: sailing_delete")
        assert "list_tools" in text

    def test_routes_to_shared_services(self):
        result = asyncio.run(handle_call_tool("sync_status", None))
        assert not result.isError
        self.services.orchestrator.status.assert_called()
        assert _text(result).startswith("Sync state: running")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


class TestCli:
    """_parse_args / _overrides_from_args."""

    def test_defaults(self):
        args = _parse_args([])
        overrides = _overrides_from_args(args)
        # log_file always has a default
        assert set(overrides) == {"log_file"}

    def test_all_flags(self):
        args = _parse_args(
            [
                "--ftp-host",
                "ftp.example.com",
                "--ftp-user",
                "agency",
                "--ftp-password",
                "secret",
                "--database-url",
                "sqlite:///cruises.db",
                "--insecure",
                "--debug",
                "--log-file",
                "/tmp/x.log",
                "--permissions-file",
                "/etc/cruise-sync/ro.permissions",
            ]
        )
        assert _overrides_from_args(args) == {
            "ftp_host": "ftp.example.com",
            "ftp_user": "agency",
            "ftp_password": "secret",
            "database_url": "sqlite:///cruises.db",
            "insecure": True,
            "debug": True,
            "log_file": "/tmp/x.log",
            "permissions_file": "/etc/cruise-sync/ro.permissions",
        }

    def test_version_flag(self, capsys):
        with pytest.raises(SystemExit) as exc:
            _parse_args(["--version"])
        assert exc.value.code == 0
        assert __version__ in capsys.readouterr().out
