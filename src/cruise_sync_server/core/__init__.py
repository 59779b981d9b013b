"""Core services shared by the MCP server and the scheduler."""

from .async_utils import run_sync
from .remote_source import FtpRemoteSource, RemoteFile

__all__ = ["FtpRemoteSource", "RemoteFile", "run_sync"]
