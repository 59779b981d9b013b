"""Reference data cache tool handlers for MCP server.

Two tools: ``cache_stats`` reports entry counts and hit rate,
``cache_clear`` drops every entry and optionally reloads all catalogs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import mcp.types as types

from ...core.async_utils import run_sync
from ...sync.reporter import format_cache_stats, to_json
from .errors import bool_argument
from .registry import SYNC_ADMIN, SYNC_VIEW, ToolSpec

if TYPE_CHECKING:
    from ...core.services import Services

# Tool definitions for list_tools()
CACHE_TOOLS = [
    types.Tool(
        name="cache_stats",
        description="Show reference cache statistics: entries per catalog (lines, ships, regions, ports), ship filter keys in use, hits, misses and hit rate.",
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
        name="cache_clear",
        description="Clear the reference cache. With refresh=true, immediately reload cruise lines, ships, regions and ports from the store.",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "refresh": {
                    "type": "boolean",
                    "description": "Reload all catalogs after clearing (default: false)",
                    "default": False,
                },
            },
            "required": [],
        },
    ),
]


async def _handle_stats(
    services: Services, args: dict[str, Any]
) -> types.CallToolResult:
    stats = services.cache.stats()
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=format_cache_stats(stats))],
        structuredContent=to_json(stats),
    )


async def _handle_clear(
    services: Services, args: dict[str, Any]
) -> types.CallToolResult:
    refresh = bool_argument(args, "refresh")
    if refresh:
        stats = await run_sync(services.cache.refresh_cache)
        heading = "Reference cache cleared and reloaded."
    else:
        services.cache.clear()
        stats = services.cache.stats()
        heading = "Reference cache cleared."

    structured = to_json(stats)
    structured["refreshed"] = refresh
    return types.CallToolResult(
        content=[
            types.TextContent(
                type="text", text=f"{heading}\n\n{format_cache_stats(stats)}"
            )
        ],
        structuredContent=structured,
    )


# ToolSpec list for registry-based dispatch
CACHE_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=CACHE_TOOLS[0],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_stats,
    ),
    ToolSpec(
        tool=CACHE_TOOLS[1],
        permissions=frozenset({SYNC_ADMIN}),
        handler=_handle_clear,
    ),
]
