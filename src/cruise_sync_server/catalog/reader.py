"""Read-only queries against the reference catalog tables."""

from __future__ import annotations

import logging

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError

from ..errors import CatalogMissingError
from ..store import CruiseLine, CruisePort, CruiseRegion, CruiseShip, Database

logger = logging.getLogger(__name__)

# Backend messages meaning "table is absent" (PostgreSQL, SQLite, MySQL)
_MISSING_TABLE_MARKERS = (
    "does not exist",
    "no such table",
    "doesn't exist",
)


class CatalogItem(BaseModel):
    """One row of a reference catalog."""

    id: int
    name: str
    slug: str
    provider_identifier: str | None = None
    cruise_line_id: int | None = None

    model_config = {"frozen": True}


def _is_missing_table(exc: DBAPIError) -> bool:
    text = str(exc.orig).lower()
    return any(marker in text for marker in _MISSING_TABLE_MARKERS)


class CatalogReader:
    """Loads full catalog lists from the store.

    Raises ``CatalogMissingError`` when the table itself is absent; any
    other database error propagates unchanged.
    """

    def __init__(self, database: Database) -> None:
        self.database = database

    def _fetch(self, model, stmt) -> list[CatalogItem]:
        try:
            with self.database.session_scope() as session:
                rows = session.scalars(stmt).all()
                return [
                    CatalogItem(
                        id=row.id,
                        name=row.name,
                        slug=row.slug,
                        provider_identifier=row.provider_identifier,
                        cruise_line_id=getattr(row, "cruise_line_id", None),
                    )
                    for row in rows
                ]
        except DBAPIError as exc:
            if _is_missing_table(exc):
                raise CatalogMissingError(model.__tablename__) from exc
            raise

    def load_cruise_lines(self) -> list[CatalogItem]:
        return self._fetch(
            CruiseLine, select(CruiseLine).order_by(CruiseLine.name)
        )

    def load_cruise_ships(
        self, cruise_line_id: int | None = None
    ) -> list[CatalogItem]:
        stmt = select(CruiseShip).order_by(CruiseShip.name)
        if cruise_line_id is not None:
            stmt = stmt.where(CruiseShip.cruise_line_id == cruise_line_id)
        return self._fetch(CruiseShip, stmt)

    def load_cruise_regions(self) -> list[CatalogItem]:
        return self._fetch(
            CruiseRegion, select(CruiseRegion).order_by(CruiseRegion.name)
        )

    def load_cruise_ports(self) -> list[CatalogItem]:
        return self._fetch(
            CruisePort, select(CruisePort).order_by(CruisePort.name)
        )
