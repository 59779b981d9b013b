"""MCP tool handlers for sync run control.

Defines six tools:

- ``sync_status`` -- current run state and counters.
- ``sync_start`` -- begin a run in the background.
- ``sync_cancel`` -- request cooperative cancellation.
- ``sync_connection_test`` -- standalone reachability check of the feed.
- ``sync_available_years`` -- year folders present on the feed.
- ``sync_history`` -- recently persisted runs.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import mcp.types as types

from ...core.async_utils import run_sync
from ...sync.models import SyncOptions
from ...sync.reporter import (
    format_connection_test,
    format_history,
    format_sync_status,
    to_json,
)
from .errors import bool_argument, int_argument
from .registry import SYNC_ADMIN, SYNC_VIEW, ToolSpec

if TYPE_CHECKING:
    from ...core.services import Services

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 10
MAX_HISTORY_LIMIT = 100


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------

_READ_ONLY = types.ToolAnnotations(
    readOnlyHint=True,
    destructiveHint=False,
    idempotentHint=True,
    openWorldHint=False,
)

SYNC_TOOLS: list[types.Tool] = [
    types.Tool(
        name="sync_status",
        description=(
            "Show the current sync run: state (idle, running, cancelling, "
            "completed, cancelled, failed), file and sailing counters, and "
            "the most recent per-file errors."
        ),
        annotations=_READ_ONLY,
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    types.Tool(
        name="sync_start",
        description=(
            "Start a sailing sync run in the background. Unchanged files are "
            "skipped unless force_full_sync is set. Fails with a conflict "
            "error if a run is already active. Poll sync_status for progress."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=False,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "target_year": {
                    "type": "integer",
                    "minimum": 2000,
                    "maximum": 2100,
                    "description": "Only sync this year (default: all years on the feed)",
                },
                "target_month": {
                    "type": "integer",
                    "minimum": 1,
                    "maximum": 12,
                    "description": "Only sync this month (1-12)",
                },
                "force_full_sync": {
                    "type": "boolean",
                    "default": False,
                    "description": "Ingest every file, ignoring stored snapshots",
                },
                "dry_run": {
                    "type": "boolean",
                    "default": False,
                    "description": "Download and parse, but write nothing",
                },
                "max_files": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Stop after this many files",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="sync_cancel",
        description=(
            "Request cancellation of the active sync run. The run stops after "
            "the file currently in progress."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    types.Tool(
        name="sync_connection_test",
        description=(
            "Test connectivity and login against the inventory feed using a "
            "separate short-lived connection."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    types.Tool(
        name="sync_available_years",
        description="List the year folders available on the inventory feed.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    types.Tool(
        name="sync_history",
        description="Show the most recent sync runs with their outcome and counters.",
        annotations=_READ_ONLY,
        inputSchema={
            "type": "object",
            "properties": {
                "limit": {
                    "type": "integer",
                    "minimum": 1,
                    "maximum": MAX_HISTORY_LIMIT,
                    "default": DEFAULT_HISTORY_LIMIT,
                    "description": "Number of runs to return",
                },
            },
            "required": [],
        },
    ),
]


# ---------------------------------------------------------------------------
# Individual handlers
# ---------------------------------------------------------------------------


def _result(text: str, structured: dict) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=structured,
    )


def _options_from_args(args: dict[str, Any]) -> SyncOptions:
    """Build ``SyncOptions``; pydantic validation errors are ValueErrors."""
    return SyncOptions(
        target_year=int_argument(args, "target_year"),
        target_month=int_argument(args, "target_month"),
        force_full_sync=bool_argument(args, "force_full_sync"),
        dry_run=bool_argument(args, "dry_run"),
        max_files=int_argument(args, "max_files"),
    )


async def _handle_status(
    services: Services, args: dict[str, Any]
) -> types.CallToolResult:
    status = services.orchestrator.status()
    return _result(format_sync_status(status), to_json(status))


async def _handle_start(
    services: Services, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``sync_start`` tool."""
    options = _options_from_args(args)
    status = await run_sync(services.orchestrator.start, options)
    text = "Sync run started.\n\n" + format_sync_status(status)
    return _result(text, to_json(status))


async def _handle_cancel(
    services: Services, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``sync_cancel`` tool.

    Cancelling with no active run is not an error; the result says so.
    """
    cancelled = services.orchestrator.cancel()
    status = services.orchestrator.status()
    if cancelled:
        text = "Cancellation requested.\n\n" + format_sync_status(status)
    else:
        text = f"No active sync run to cancel (state: {status.state.value})."
    return _result(text, {"cancelled": cancelled, "status": to_json(status)})


async def _handle_connection_test(
    services: Services, args: dict[str, Any]
) -> types.CallToolResult:
    result = await run_sync(services.source.test_connection)
    return _result(format_connection_test(result), to_json(result))


async def _handle_available_years(
    services: Services, args: dict[str, Any]
) -> types.CallToolResult:
    years = await run_sync(services.source.available_years)
    if years:
        text = "Available years: " + ", ".join(str(y) for y in years)
    else:
        text = "No year folders found on the inventory feed."
    return _result(text, {"years": years})


async def _handle_history(
    services: Services, args: dict[str, Any]
) -> types.CallToolResult:
    limit = int_argument(args, "limit", default=DEFAULT_HISTORY_LIMIT, minimum=1)
    records = await run_sync(
        services.orchestrator.history, min(limit, MAX_HISTORY_LIMIT)
    )
    return _result(format_history(records), to_json(records))


# ToolSpec list for registry-based dispatch
SYNC_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=SYNC_TOOLS[0],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_status,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[1],
        permissions=frozenset({SYNC_ADMIN}),
        handler=_handle_start,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[2],
        permissions=frozenset({SYNC_ADMIN}),
        handler=_handle_cancel,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[3],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_connection_test,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[4],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_available_years,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[5],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_history,
    ),
]
