"""Tests for cruise_sync_server.sync.upsert — transactional sailing writes.

Covers:
- Create then update by natural key (provider, provider_identifier)
- Children replaced wholesale, no orphan stops or prices
- Catalog FK resolution through the reference cache
- Unknown references stored as NULL and counted
- Snapshot written in the same transaction; rollback on failure
- preview() writes nothing
"""

from datetime import datetime
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from cruise_sync_server.catalog import CatalogReader, ReferenceDataCache
from cruise_sync_server.core.remote_source import RemoteFile
from cruise_sync_server.store import (
    CruisePort,
    RawSnapshot,
    Sailing,
    SailingPrice,
    SailingStop,
)
from cruise_sync_server.sync.parser import parse_sailing
from cruise_sync_server.sync.upsert import SailingUpserter


@pytest.fixture
def upserter(seeded_catalog):
    cache = ReferenceDataCache(CatalogReader(seeded_catalog))
    return SailingUpserter(seeded_catalog, cache, snapshot_ttl_days=30)


def _remote(path, content):
    return RemoteFile(
        path=path, size=len(content), modified_at=datetime(2026, 5, 1, 12, 0)
    )


def _count(database, model):
    with database.session_scope() as session:
        return session.scalar(select(func.count()).select_from(model))


class TestUpsertCreate:
    """First ingest of a sailing."""

    def test_creates_sailing_with_children(
        self, upserter, payload_factory, sailing_path
    ):
        content = payload_factory()
        outcome = upserter.upsert(
            parse_sailing(sailing_path, content),
            _remote(sailing_path, content),
            content,
        )

        assert outcome.created is True
        assert outcome.stops_written == 3
        assert outcome.prices_written == 3
        db = upserter.database
        assert _count(db, Sailing) == 1
        assert _count(db, SailingStop) == 3
        assert _count(db, SailingPrice) == 3

    def test_sailing_columns(self, upserter, payload_factory, sailing_path):
        content = payload_factory()
        upserter.upsert(
            parse_sailing(sailing_path, content),
            _remote(sailing_path, content),
            content,
        )

        with upserter.database.session_scope() as session:
            sailing = session.scalar(select(Sailing))
            assert sailing.provider == "traveltek"
            assert sailing.provider_identifier == "S100"
            assert sailing.nights == 7
            assert sailing.end_date.isoformat() == "2026-05-17"
            assert sailing.cheapest_inside_cents == 79900
            assert sailing.source_path == sailing_path
            assert sailing.last_synced_at is not None

    def test_resolves_catalog_foreign_keys(
        self, upserter, payload_factory, sailing_path
    ):
        content = payload_factory()
        outcome = upserter.upsert(
            parse_sailing(sailing_path, content),
            _remote(sailing_path, content),
            content,
        )

        assert outcome.unresolved_references == 0
        with upserter.database.session_scope() as session:
            sailing = session.scalar(select(Sailing))
            miami = session.scalar(
                select(CruisePort).where(CruisePort.provider_identifier == "101")
            )
            assert sailing.cruise_line_id is not None
            assert sailing.cruise_ship_id is not None
            assert sailing.cruise_region_id is not None
            assert sailing.embark_port_id == miami.id
            stops = session.scalars(
                select(SailingStop).order_by(SailingStop.sequence)
            ).all()
            assert stops[0].port_id == miami.id
            assert stops[1].port_id is None

    def test_unknown_references_stored_as_null(
        self, upserter, payload_factory
    ):
        path = "/2026/05/99/999/S200.json"
        content = payload_factory(regionids=[77], startportid=555)
        outcome = upserter.upsert(
            parse_sailing(path, content), _remote(path, content), content
        )

        # line 99, ship 999, region 77, embark port 555
        assert outcome.unresolved_references == 4
        with upserter.database.session_scope() as session:
            sailing = session.scalar(select(Sailing))
            assert sailing.cruise_line_id is None
            assert sailing.cruise_ship_id is None
            assert sailing.cruise_region_id is None
            assert sailing.embark_port_id is None
            assert sailing.line_provider_identifier == "99"

    def test_writes_snapshot(self, upserter, payload_factory, sailing_path):
        content = payload_factory()
        remote = _remote(sailing_path, content)
        upserter.upsert(parse_sailing(sailing_path, content), remote, content)

        with upserter.database.session_scope() as session:
            snapshot = session.get(RawSnapshot, sailing_path)
            assert snapshot.content_signature == remote.signature
            assert snapshot.payload_size == len(content)
            assert (snapshot.expires_at - snapshot.fetched_at).days == 30


class TestUpsertUpdate:
    """Re-ingest of an existing sailing."""

    def test_update_keeps_one_row(self, upserter, payload_factory, sailing_path):
        for name in ("First", "Second"):
            content = payload_factory(name=name)
            outcome = upserter.upsert(
                parse_sailing(sailing_path, content),
                _remote(sailing_path, content),
                content,
            )

        assert outcome.created is False
        with upserter.database.session_scope() as session:
            sailings = session.scalars(select(Sailing)).all()
            assert len(sailings) == 1
            assert sailings[0].name == "Second"

    def test_children_replaced_without_orphans(
        self, upserter, payload_factory, sailing_path
    ):
        content = payload_factory()
        upserter.upsert(
            parse_sailing(sailing_path, content),
            _remote(sailing_path, content),
            content,
        )
        shorter = payload_factory(
            itinerary=[{"day": 1, "portid": 102, "name": "Cozumel"}],
            cachedprices={"IA": {"price": 700}},
        )
        upserter.upsert(
            parse_sailing(sailing_path, shorter),
            _remote(sailing_path, shorter),
            shorter,
        )

        db = upserter.database
        assert _count(db, SailingStop) == 1
        assert _count(db, SailingPrice) == 1
        with db.session_scope() as session:
            sailing_ids = set(session.scalars(select(Sailing.id)))
            child_ids = set(session.scalars(select(SailingStop.sailing_id)))
            child_ids |= set(session.scalars(select(SailingPrice.sailing_id)))
            assert child_ids <= sailing_ids


class TestUpsertRollback:
    """A failure inside the unit of work leaves nothing behind."""

    def test_snapshot_failure_rolls_back_sailing(
        self, upserter, payload_factory, sailing_path
    ):
        content = payload_factory()
        with patch(
            "cruise_sync_server.sync.upsert.upsert_snapshot",
            side_effect=IntegrityError("INSERT", {}, Exception("boom")),
        ):
            with pytest.raises(IntegrityError):
                upserter.upsert(
                    parse_sailing(sailing_path, content),
                    _remote(sailing_path, content),
                    content,
                )

        db = upserter.database
        assert _count(db, Sailing) == 0
        assert _count(db, SailingStop) == 0
        assert _count(db, RawSnapshot) == 0


class TestPreview:
    """preview() reports without writing."""

    def test_preview_writes_nothing(self, upserter, payload_factory, sailing_path):
        parsed = parse_sailing(sailing_path, payload_factory())
        outcome = upserter.preview(parsed)

        assert outcome.created is True
        assert outcome.sailing_id is None
        assert outcome.stops_written == 3
        assert _count(upserter.database, Sailing) == 0
        assert _count(upserter.database, RawSnapshot) == 0

    def test_preview_of_existing(self, upserter, payload_factory, sailing_path):
        content = payload_factory()
        created = upserter.upsert(
            parse_sailing(sailing_path, content),
            _remote(sailing_path, content),
            content,
        )
        outcome = upserter.preview(
            parse_sailing(sailing_path, payload_factory(name="Renamed"))
        )
        assert outcome.created is False
        assert outcome.sailing_id == created.sailing_id
