"""Transactional write of one parsed sailing.

One call to ``SailingUpserter.upsert`` is one unit of work: the sailing
row, its stops and prices, and the raw snapshot either all commit or all
roll back.  Children are replaced wholesale (delete then insert) rather
than diffed.

Catalog references are resolved through the ``ReferenceDataCache``.
References the catalog does not know are stored as NULL foreign keys and
counted in ``UpsertOutcome.unresolved_references``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..catalog import ReferenceDataCache
from ..core.remote_source import RemoteFile
from ..store import Database, Sailing, SailingPrice, SailingStop, utcnow
from ..store.models import DEFAULT_PROVIDER
from .delta import DEFAULT_SNAPSHOT_TTL_DAYS, upsert_snapshot
from .models import ParsedSailing, UpsertOutcome

logger = logging.getLogger(__name__)


@dataclass
class _ResolvedRefs:
    cruise_line_id: int | None
    cruise_ship_id: int | None
    cruise_region_id: int | None
    embark_port_id: int | None
    disembark_port_id: int | None
    stop_port_ids: list[int | None]
    unresolved: int


class SailingUpserter:
    """Writes parsed sailings into the store.

    Args:
        database: Target store.
        cache: Reference cache used for foreign key resolution.
        snapshot_ttl_days: Lifetime of the raw snapshot written per file.
        provider: Provider name stored in the natural key.
    """

    def __init__(
        self,
        database: Database,
        cache: ReferenceDataCache,
        snapshot_ttl_days: int = DEFAULT_SNAPSHOT_TTL_DAYS,
        provider: str = DEFAULT_PROVIDER,
    ) -> None:
        self.database = database
        self.cache = cache
        self.snapshot_ttl_days = snapshot_ttl_days
        self.provider = provider

    # ------------------------------------------------------------------
    # Reference resolution
    # ------------------------------------------------------------------

    def _resolve(self, parsed: ParsedSailing) -> _ResolvedRefs:
        unresolved = 0

        def lookup(fn, identifier: str | None) -> int | None:
            nonlocal unresolved
            if identifier is None:
                return None
            found = fn(identifier)
            if found is None:
                unresolved += 1
            return found

        refs = _ResolvedRefs(
            cruise_line_id=lookup(
                self.cache.line_id_for, parsed.line_provider_identifier
            ),
            cruise_ship_id=lookup(
                self.cache.ship_id_for, parsed.ship_provider_identifier
            ),
            cruise_region_id=lookup(
                self.cache.region_id_for, parsed.region_provider_identifier
            ),
            embark_port_id=lookup(
                self.cache.port_id_for, parsed.embark_port_provider_identifier
            ),
            disembark_port_id=lookup(
                self.cache.port_id_for,
                parsed.disembark_port_provider_identifier,
            ),
            stop_port_ids=[
                lookup(self.cache.port_id_for, stop.port_provider_identifier)
                for stop in parsed.stops
            ],
            unresolved=0,
        )
        refs.unresolved = unresolved
        if unresolved:
            logger.debug(
                "Sailing %s: %d catalog references unresolved",
                parsed.provider_identifier,
                unresolved,
            )
        return refs

    def _find(self, session: Session, provider_identifier: str) -> Sailing | None:
        return session.scalar(
            select(Sailing).where(
                Sailing.provider == self.provider,
                Sailing.provider_identifier == provider_identifier,
            )
        )

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def upsert(
        self,
        parsed: ParsedSailing,
        remote_file: RemoteFile,
        content: bytes,
    ) -> UpsertOutcome:
        """Upsert the sailing, replace its children and refresh the snapshot.

        Any exception rolls the whole unit back and propagates.
        """
        refs = self._resolve(parsed)

        with self.database.session_scope() as session:
            sailing = self._find(session, parsed.provider_identifier)
            created = sailing is None
            if created:
                sailing = Sailing(
                    provider=self.provider,
                    provider_identifier=parsed.provider_identifier,
                )
                session.add(sailing)

            sailing.line_provider_identifier = parsed.line_provider_identifier
            sailing.ship_provider_identifier = parsed.ship_provider_identifier
            sailing.region_provider_identifier = (
                parsed.region_provider_identifier
            )
            sailing.cruise_line_id = refs.cruise_line_id
            sailing.cruise_ship_id = refs.cruise_ship_id
            sailing.cruise_region_id = refs.cruise_region_id
            sailing.embark_port_id = refs.embark_port_id
            sailing.disembark_port_id = refs.disembark_port_id
            sailing.name = parsed.name
            sailing.sail_date = parsed.sail_date
            sailing.end_date = parsed.end_date
            sailing.nights = parsed.nights
            sailing.sea_days = parsed.sea_days
            sailing.voyage_code = parsed.voyage_code
            sailing.cheapest_inside_cents = parsed.cheapest_inside_cents
            sailing.cheapest_oceanview_cents = parsed.cheapest_oceanview_cents
            sailing.cheapest_balcony_cents = parsed.cheapest_balcony_cents
            sailing.cheapest_suite_cents = parsed.cheapest_suite_cents
            sailing.source_path = remote_file.path
            sailing.last_synced_at = utcnow()
            session.flush()

            session.execute(
                delete(SailingStop).where(SailingStop.sailing_id == sailing.id)
            )
            session.execute(
                delete(SailingPrice).where(
                    SailingPrice.sailing_id == sailing.id
                )
            )

            session.add_all(
                SailingStop(
                    sailing_id=sailing.id,
                    sequence=stop.sequence,
                    day_number=stop.day_number,
                    port_id=port_id,
                    port_provider_identifier=stop.port_provider_identifier,
                    port_name=stop.port_name,
                    arrival_time=stop.arrival_time,
                    departure_time=stop.departure_time,
                )
                for stop, port_id in zip(parsed.stops, refs.stop_port_ids)
            )
            session.add_all(
                SailingPrice(
                    sailing_id=sailing.id,
                    cabin_code=price.cabin_code,
                    cabin_category=price.cabin_category,
                    price_cents=price.price_cents,
                    currency=price.currency,
                )
                for price in parsed.prices
            )

            upsert_snapshot(
                session,
                remote_file,
                payload_size=len(content),
                ttl_days=self.snapshot_ttl_days,
            )
            sailing_id = sailing.id

        return UpsertOutcome(
            sailing_id=sailing_id,
            created=created,
            stops_written=len(parsed.stops),
            prices_written=len(parsed.prices),
            unresolved_references=refs.unresolved,
        )

    def preview(self, parsed: ParsedSailing) -> UpsertOutcome:
        """Report what ``upsert`` would write, without writing anything."""
        refs = self._resolve(parsed)
        with self.database.session_scope() as session:
            existing = self._find(session, parsed.provider_identifier)
            sailing_id = existing.id if existing is not None else None
        return UpsertOutcome(
            sailing_id=sailing_id,
            created=sailing_id is None,
            stops_written=len(parsed.stops),
            prices_written=len(parsed.prices),
            unresolved_references=refs.unresolved,
        )
