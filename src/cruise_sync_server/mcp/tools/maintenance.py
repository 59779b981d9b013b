"""Storage maintenance tool handlers for MCP server.

This module implements the snapshot and retention tools: storage stats,
cleanup preview, cleanup run, expired snapshot purge and inventory
coverage stats.  Destructive
tools are rejected with a conflict error while a sync run is active.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import mcp.types as types

from ...core.async_utils import run_sync
from ...sync.maintenance import MAX_MIN_AGE_DAYS
from ...sync.reporter import (
    format_cleanup_preview,
    format_cleanup_result,
    format_coverage_stats,
    format_purge_result,
    format_storage_stats,
    to_json,
)
from .errors import int_argument
from .registry import MAINTENANCE_ADMIN, SYNC_VIEW, ToolSpec

if TYPE_CHECKING:
    from ...core.services import Services

_MIN_AGE_SCHEMA = {
    "type": "integer",
    "minimum": 0,
    "maximum": MAX_MIN_AGE_DAYS,
    "description": "Only sailings that ended more than this many days ago (0 = before today)",
}

# Tool definitions for list_tools()
MAINTENANCE_TOOLS = [
    types.Tool(
        name="storage_stats",
        description="Show raw snapshot storage statistics: snapshot count, total/average/largest payload size, expired snapshots and snapshots expiring within 24 hours.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    types.Tool(
        name="cleanup_preview",
        description="Count the past sailings, stops and prices that cleanup_run would delete for the same min_age_days. Read-only.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {"min_age_days": _MIN_AGE_SCHEMA},
            "required": ["min_age_days"],
        },
    ),
    types.Tool(
        name="cleanup_run",
        description="Delete sailings whose end date is older than min_age_days, together with their stops and prices, in one transaction. Use cleanup_preview first.",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {"min_age_days": _MIN_AGE_SCHEMA},
            "required": ["min_age_days"],
        },
    ),
    types.Tool(
        name="purge_expired",
        description="Delete raw snapshots past their expiry. Purged files are fully re-ingested by the next sync.",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    types.Tool(
        name="coverage_stats",
        description="Show inventory coverage: sailing count (and how many are upcoming), stops, prices, cruise lines, ships, regions and ports, plus the earliest and latest sail dates.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
]


def _result(text: str, structured: dict) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=structured,
    )


async def _handle_storage_stats(
    services: Services, args: dict[str, Any]
) -> types.CallToolResult:
    stats = await run_sync(services.maintenance.storage_stats)
    return _result(format_storage_stats(stats), to_json(stats))


async def _handle_cleanup_preview(
    services: Services, args: dict[str, Any]
) -> types.CallToolResult:
    min_age_days = int_argument(
        args, "min_age_days", required=True, minimum=0, maximum=MAX_MIN_AGE_DAYS
    )
    preview = await run_sync(services.maintenance.cleanup_preview, min_age_days)
    return _result(format_cleanup_preview(preview), to_json(preview))


async def _handle_cleanup_run(
    services: Services, args: dict[str, Any]
) -> types.CallToolResult:
    min_age_days = int_argument(
        args, "min_age_days", required=True, minimum=0, maximum=MAX_MIN_AGE_DAYS
    )
    result = await run_sync(services.maintenance.run_cleanup, min_age_days)
    return _result(format_cleanup_result(result), to_json(result))


async def _handle_purge_expired(
    services: Services, args: dict[str, Any]
) -> types.CallToolResult:
    result = await run_sync(services.maintenance.purge_expired)
    return _result(format_purge_result(result), to_json(result))


async def _handle_coverage_stats(
    services: Services, args: dict[str, Any]
) -> types.CallToolResult:
    stats = await run_sync(services.maintenance.coverage_stats)
    return _result(format_coverage_stats(stats), to_json(stats))


# ToolSpec list for registry-based dispatch
MAINTENANCE_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=MAINTENANCE_TOOLS[0],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_storage_stats,
    ),
    ToolSpec(
        tool=MAINTENANCE_TOOLS[1],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_cleanup_preview,
    ),
    ToolSpec(
        tool=MAINTENANCE_TOOLS[2],
        permissions=frozenset({MAINTENANCE_ADMIN}),
        handler=_handle_cleanup_run,
    ),
    ToolSpec(
        tool=MAINTENANCE_TOOLS[3],
        permissions=frozenset({MAINTENANCE_ADMIN}),
        handler=_handle_purge_expired,
    ),
    ToolSpec(
        tool=MAINTENANCE_TOOLS[4],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_coverage_stats,
    ),
]
