"""Error response builders for MCP tool handlers.

This module provides structured error responses with corrective actions
to help AI agents recover from errors without human intervention, plus
the mapping from engine exceptions to those responses.
"""

import logging

import mcp.types as types

from ...errors import (
    CruiseSyncError,
    MaintenanceBlockedError,
    SourceConnectionError,
    SyncConflictError,
)

logger = logging.getLogger(__name__)


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (connection_error, conflict, validation_error, server_error)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("conflict", "A sync run is already running", "Use sync_status to monitor it.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


# ---------------------------------------------------------------------------
# Engine exception translation
# ---------------------------------------------------------------------------

_CONFLICT_ACTIONS: dict[str, str] = {
    "sync": "Use sync_status to monitor the active run, or sync_cancel to stop it.",
    "maintenance": "Wait for the active sync run to finish (see sync_status), then retry.",
}


def translate_engine_error(
    error: CruiseSyncError, tool_name: str
) -> types.CallToolResult:
    """Translate an engine exception into a structured error response.

    Args:
        error: Exception raised by the sync engine.
        tool_name: Tool that raised it, used to pick the corrective action.

    Returns:
        CallToolResult with isError=True and corrective action
    """
    match error:
        case SourceConnectionError():
            return build_error_response(
                "connection_error",
                str(error),
                "Check source host, credentials and network access with "
                "sync_connection_test, then retry.",
            )
        case SyncConflictError():
            return build_error_response(
                "conflict", str(error), _CONFLICT_ACTIONS["sync"]
            )
        case MaintenanceBlockedError():
            return build_error_response(
                "conflict", str(error), _CONFLICT_ACTIONS["maintenance"]
            )
        case _:
            logger.warning("Engine error in %s: %s", tool_name, error)
            return build_error_response(
                "server_error",
                str(error),
                "Check the server log for details or retry later.",
            )


# ---------------------------------------------------------------------------
# Shared argument helpers
# ---------------------------------------------------------------------------


def int_argument(
    args: dict,
    name: str,
    default: int | None = None,
    required: bool = False,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int | None:
    """Read an integer tool argument.

    Accepts ints and digit strings (some clients send numbers as text).

    Raises:
        ValueError: If the argument is missing but required, not an
            integer, or outside ``minimum``/``maximum``.
    """
    value = args.get(name)
    if value is None:
        if required:
            raise ValueError(f"{name} is required")
        return default
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped.lstrip("-").isdigit():
            raise ValueError(f"{name} must be an integer, got {value!r}")
        value = int(stripped)
    if not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if minimum is not None and value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    if maximum is not None and value > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got {value}")
    return value


_TRUE_STRINGS = ("true", "1", "yes", "on")
_FALSE_STRINGS = ("false", "0", "no", "off")


def bool_argument(args: dict, name: str, default: bool = False) -> bool:
    """Read a boolean tool argument.

    Accepts JSON booleans, 0/1 and the strings true/false, yes/no,
    on/off and 1/0 in any case.

    Raises:
        ValueError: If the argument is anything else.
    """
    value = args.get(name)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")
