"""Delta decision and raw snapshot bookkeeping.

A file is skipped only when its stored snapshot carries the same content
signature as the listing reports and the run is not a forced full sync.
Every successful ingest refreshes the snapshot with a new expiry
(``fetched_at + snapshot TTL``), which is what storage maintenance later
purges.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.remote_source import RemoteFile
from ..store import Database, RawSnapshot, utcnow
from .models import FileAction

logger = logging.getLogger(__name__)

DEFAULT_SNAPSHOT_TTL_DAYS = 30
_IN_CLAUSE_CHUNK = 500


class SnapshotRecord(BaseModel):
    """Detached view of a ``raw_snapshots`` row."""

    path: str
    content_signature: str
    file_size: int
    fetched_at: datetime
    expires_at: datetime

    model_config = {"frozen": True}


def decide(
    remote_file: RemoteFile,
    snapshot: SnapshotRecord | None,
    force_full_sync: bool,
) -> FileAction:
    """Classify one candidate file as SKIP or INGEST."""
    if force_full_sync or snapshot is None:
        return FileAction.INGEST
    if snapshot.content_signature == remote_file.signature:
        return FileAction.SKIP
    return FileAction.INGEST


def _to_record(row: RawSnapshot) -> SnapshotRecord:
    return SnapshotRecord(
        path=row.path,
        content_signature=row.content_signature,
        file_size=row.file_size,
        fetched_at=row.fetched_at,
        expires_at=row.expires_at,
    )


def load_snapshots(
    database: Database, paths: Iterable[str] | None = None
) -> dict[str, SnapshotRecord]:
    """Load stored snapshots keyed by path.

    Args:
        database: Store to read from.
        paths: Restrict to these paths; all snapshots when None.

    Returns:
        Mapping of path to ``SnapshotRecord``.
    """
    records: dict[str, SnapshotRecord] = {}
    with database.session_scope() as session:
        if paths is None:
            for row in session.scalars(select(RawSnapshot)):
                records[row.path] = _to_record(row)
            return records

        wanted = list(paths)
        for start in range(0, len(wanted), _IN_CLAUSE_CHUNK):
            chunk = wanted[start : start + _IN_CLAUSE_CHUNK]
            stmt = select(RawSnapshot).where(RawSnapshot.path.in_(chunk))
            for row in session.scalars(stmt):
                records[row.path] = _to_record(row)

    logger.debug("Loaded %d stored snapshots", len(records))
    return records


def upsert_snapshot(
    session: Session,
    remote_file: RemoteFile,
    payload_size: int,
    ttl_days: int = DEFAULT_SNAPSHOT_TTL_DAYS,
    now: datetime | None = None,
) -> RawSnapshot:
    """Write or refresh the snapshot for *remote_file* in *session*.

    Runs inside the caller's transaction so the snapshot commits together
    with the sailing it describes.
    """
    fetched_at = now or utcnow()
    row = session.get(RawSnapshot, remote_file.path)
    if row is None:
        row = RawSnapshot(path=remote_file.path)
        session.add(row)

    row.content_signature = remote_file.signature
    row.file_size = remote_file.size
    row.payload_size = payload_size
    row.fetched_at = fetched_at
    row.expires_at = fetched_at + timedelta(days=ttl_days)
    return row
