"""Relational store: ORM models and session management."""

from .database import Database
from .models import (
    Base,
    CruiseLine,
    CruisePort,
    CruiseRegion,
    CruiseShip,
    RawSnapshot,
    Sailing,
    SailingPrice,
    SailingStop,
    SyncHistory,
    utcnow,
)

__all__ = [
    "Base",
    "CruiseLine",
    "CruisePort",
    "CruiseRegion",
    "CruiseShip",
    "Database",
    "RawSnapshot",
    "Sailing",
    "SailingPrice",
    "SailingStop",
    "SyncHistory",
    "utcnow",
]
