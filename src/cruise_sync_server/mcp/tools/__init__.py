"""MCP tool handlers for the cruise sync engine.

This package contains MCP tool implementations that wrap the sync
orchestrator, reference cache and storage maintenance with async
handlers, text rendering and structured error responses.
"""

from .cache import CACHE_SPECS, CACHE_TOOLS
from .errors import build_error_response, translate_engine_error
from .maintenance import MAINTENANCE_SPECS, MAINTENANCE_TOOLS
from .registry import (
    MAINTENANCE_ADMIN,
    SYNC_ADMIN,
    SYNC_VIEW,
    ToolRegistry,
    ToolSpec,
    load_permissions_file,
)
from .sync import SYNC_SPECS, SYNC_TOOLS

ALL_SPECS: list[ToolSpec] = SYNC_SPECS + CACHE_SPECS + MAINTENANCE_SPECS

__all__ = [
    "build_error_response",
    "translate_engine_error",
    # Registry
    "ToolSpec",
    "ToolRegistry",
    "load_permissions_file",
    "SYNC_VIEW",
    "SYNC_ADMIN",
    "MAINTENANCE_ADMIN",
    # Spec lists
    "ALL_SPECS",
    "SYNC_SPECS",
    "CACHE_SPECS",
    "MAINTENANCE_SPECS",
    # Tool lists
    "SYNC_TOOLS",
    "CACHE_TOOLS",
    "MAINTENANCE_TOOLS",
]
