"""ORM models for the sailing inventory store.

Tables:
    - cruise_lines / cruise_ships / cruise_regions / cruise_ports: reference
      catalogs, read-only for the sync engine.
    - sailings: one row per provider sailing, keyed by
      ``(provider, provider_identifier)``.
    - sailing_stops / sailing_prices: children of a sailing, removed with it.
    - raw_snapshots: last ingested signature per source file, with expiry.
    - sync_history: one row per sync run.

All timestamps are stored as naive UTC datetimes (see ``utcnow``).
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

DEFAULT_PROVIDER = "traveltek"


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the storage convention."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Reference catalogs
# ---------------------------------------------------------------------------


class CruiseLine(Base):
    __tablename__ = "cruise_lines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    provider_identifier: Mapped[Optional[str]] = mapped_column(
        String(64), index=True
    )


class CruiseShip(Base):
    __tablename__ = "cruise_ships"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    provider_identifier: Mapped[Optional[str]] = mapped_column(
        String(64), index=True
    )
    cruise_line_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("cruise_lines.id", ondelete="SET NULL"), index=True
    )


class CruiseRegion(Base):
    __tablename__ = "cruise_regions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    provider_identifier: Mapped[Optional[str]] = mapped_column(
        String(64), index=True
    )


class CruisePort(Base):
    __tablename__ = "cruise_ports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    provider_identifier: Mapped[Optional[str]] = mapped_column(
        String(64), index=True
    )


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------


class Sailing(Base):
    """A sailing and its denormalised cheapest prices."""

    __tablename__ = "sailings"
    __table_args__ = (
        UniqueConstraint(
            "provider", "provider_identifier", name="uq_sailings_provider_key"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider: Mapped[str] = mapped_column(
        String(32), nullable=False, default=DEFAULT_PROVIDER
    )
    provider_identifier: Mapped[str] = mapped_column(
        String(64), nullable=False
    )

    line_provider_identifier: Mapped[Optional[str]] = mapped_column(String(64))
    ship_provider_identifier: Mapped[Optional[str]] = mapped_column(String(64))
    region_provider_identifier: Mapped[Optional[str]] = mapped_column(
        String(64)
    )

    cruise_line_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("cruise_lines.id", ondelete="SET NULL")
    )
    cruise_ship_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("cruise_ships.id", ondelete="SET NULL")
    )
    cruise_region_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("cruise_regions.id", ondelete="SET NULL")
    )
    embark_port_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("cruise_ports.id", ondelete="SET NULL")
    )
    disembark_port_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("cruise_ports.id", ondelete="SET NULL")
    )

    name: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    sail_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    nights: Mapped[int] = mapped_column(Integer, nullable=False)
    sea_days: Mapped[Optional[int]] = mapped_column(Integer)
    voyage_code: Mapped[Optional[str]] = mapped_column(String(64))

    cheapest_inside_cents: Mapped[Optional[int]] = mapped_column(Integer)
    cheapest_oceanview_cents: Mapped[Optional[int]] = mapped_column(Integer)
    cheapest_balcony_cents: Mapped[Optional[int]] = mapped_column(Integer)
    cheapest_suite_cents: Mapped[Optional[int]] = mapped_column(Integer)

    source_path: Mapped[str] = mapped_column(Text, nullable=False)
    last_synced_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    stops: Mapped[list[SailingStop]] = relationship(
        back_populates="sailing",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="SailingStop.sequence",
    )
    prices: Mapped[list[SailingPrice]] = relationship(
        back_populates="sailing",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class SailingStop(Base):
    __tablename__ = "sailing_stops"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sailing_id: Mapped[int] = mapped_column(
        ForeignKey("sailings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    day_number: Mapped[int] = mapped_column(Integer, nullable=False)
    port_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("cruise_ports.id", ondelete="SET NULL")
    )
    port_provider_identifier: Mapped[Optional[str]] = mapped_column(String(64))
    port_name: Mapped[str] = mapped_column(
        String(255), nullable=False, default=""
    )
    arrival_time: Mapped[Optional[str]] = mapped_column(String(16))
    departure_time: Mapped[Optional[str]] = mapped_column(String(16))

    sailing: Mapped[Sailing] = relationship(back_populates="stops")


class SailingPrice(Base):
    __tablename__ = "sailing_prices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sailing_id: Mapped[int] = mapped_column(
        ForeignKey("sailings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    cabin_code: Mapped[str] = mapped_column(String(32), nullable=False)
    cabin_category: Mapped[str] = mapped_column(String(32), nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="CAD"
    )

    sailing: Mapped[Sailing] = relationship(back_populates="prices")


# ---------------------------------------------------------------------------
# Sync bookkeeping
# ---------------------------------------------------------------------------


class RawSnapshot(Base):
    """Signature of the last successful ingest of one source file."""

    __tablename__ = "raw_snapshots"

    path: Mapped[str] = mapped_column(Text, primary_key=True)
    content_signature: Mapped[str] = mapped_column(String(128), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    payload_size: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    fetched_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, index=True
    )


class SyncHistory(Base):
    __tablename__ = "sync_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    options: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict
    )
    metrics: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict
    )
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors: Mapped[list[Any]] = mapped_column(
        JSON, nullable=False, default=list
    )
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
