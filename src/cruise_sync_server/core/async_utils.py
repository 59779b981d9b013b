"""Async utilities for bridging blocking store and FTP calls to async MCP handlers."""

import asyncio
import logging
from typing import Any, Callable, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    Used by MCP tool handlers and the maintenance scheduler to call the
    orchestrator, cache and maintenance services, which all do blocking I/O.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        # In MCP tool handler:
        preview = await run_sync(services.maintenance.cleanup_preview, 30)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
