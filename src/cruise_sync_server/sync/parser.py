"""Decode one sailing file into a ``ParsedSailing``.

Identifiers for the sailing, line and ship come from the file path, not
the payload.  ``saildate`` and ``nights`` are required; everything else
is optional and degrades to None or an empty list.

Prices come from ``cachedprices`` (one entry per cabin code).  When that
block is absent or holds no usable price, the root ``cheapest*`` fields
are turned into one price per cabin category instead.
"""

from __future__ import annotations

import json
import logging
from datetime import date, timedelta
from typing import Any

from pydantic import ValidationError

from ..core.remote_source import extract_ids_from_path
from ..errors import PayloadParseError
from .models import ParsedPrice, ParsedSailing, ParsedStop

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "CAD"

# root field -> (cabin category, ParsedSailing attribute)
_CHEAPEST_FIELDS = {
    "cheapestinside": ("inside", "cheapest_inside_cents"),
    "cheapestoutside": ("oceanview", "cheapest_oceanview_cents"),
    "cheapestbalcony": ("balcony", "cheapest_balcony_cents"),
    "cheapestsuite": ("suite", "cheapest_suite_cents"),
}

_PREFIX_CATEGORIES = {
    "inside": ("IA", "IB", "IC", "ID", "IE", "IF", "IG", "IN"),
    "oceanview": ("OA", "OB", "OC", "OD", "OE", "OF", "OG", "OV"),
    "balcony": ("BA", "BB", "BC", "BD", "BE", "BF", "BG", "BH", "BV"),
    "suite": ("SA", "SB", "SC", "SD", "SE", "SF", "SG", "SU", "GS", "PS", "OS"),
}


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _to_cents(value: Any) -> int | None:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    if amount <= 0:
        return None
    return int(round(amount * 100))


def _to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_identifier(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text == "0":
        return None
    return text


def normalize_cabin_category(raw: str) -> str:
    """Map a provider cabin type label onto inside/oceanview/balcony/suite."""
    lower = raw.lower()
    if "inside" in lower or "interior" in lower:
        return "inside"
    if "ocean" in lower or "outside" in lower:
        return "oceanview"
    if "balcon" in lower or "verand" in lower:
        return "balcony"
    if "suite" in lower:
        return "suite"
    return "other"


def _category_from_code(cabin_code: str) -> str:
    prefix = cabin_code[:2].upper()
    for category, prefixes in _PREFIX_CATEGORIES.items():
        if prefix in prefixes:
            return category
    return "other"


def _parse_sail_date(path: str, raw: Any) -> date:
    if not raw:
        raise PayloadParseError(path, "missing required field 'saildate'")
    try:
        return date.fromisoformat(str(raw)[:10])
    except ValueError:
        raise PayloadParseError(
            path, f"invalid saildate '{raw}'"
        ) from None


def _parse_nights(path: str, raw: Any) -> int:
    nights = _to_int(raw)
    if nights is None:
        raise PayloadParseError(path, "missing required field 'nights'")
    if nights < 0:
        raise PayloadParseError(path, f"negative nights {nights}")
    return nights


def _first_region(data: dict) -> str | None:
    region_ids = data.get("regionids")
    if isinstance(region_ids, list) and region_ids:
        return _to_identifier(region_ids[0])
    regions = data.get("regions")
    if isinstance(regions, dict) and regions:
        return _to_identifier(next(iter(regions)))
    return None


# ---------------------------------------------------------------------------
# Children
# ---------------------------------------------------------------------------


def _parse_stops(itinerary: Any) -> list[ParsedStop]:
    if not isinstance(itinerary, list):
        return []
    stops = []
    for index, day in enumerate(itinerary):
        if not isinstance(day, dict):
            continue
        stops.append(
            ParsedStop(
                sequence=index,
                day_number=_to_int(day.get("day")) or index + 1,
                port_provider_identifier=_to_identifier(day.get("portid")),
                port_name=str(day.get("name") or ""),
                arrival_time=_to_identifier(day.get("arrivetime")),
                departure_time=_to_identifier(day.get("departtime")),
            )
        )
    return stops


def _parse_cached_prices(data: dict) -> list[ParsedPrice]:
    cached = data.get("cachedprices")
    if not isinstance(cached, dict):
        return []
    cabins = data.get("cabins") if isinstance(data.get("cabins"), dict) else {}

    prices = []
    for cabin_code, entry in cached.items():
        if not isinstance(entry, dict):
            continue
        cents = _to_cents(entry.get("price"))
        if cents is None:
            continue
        cabin = cabins.get(cabin_code) or {}
        codtype = cabin.get("codtype") if isinstance(cabin, dict) else None
        category = (
            normalize_cabin_category(codtype)
            if codtype
            else _category_from_code(cabin_code)
        )
        prices.append(
            ParsedPrice(
                cabin_code=str(cabin_code),
                cabin_category=category,
                price_cents=cents,
                currency=str(entry.get("currency") or DEFAULT_CURRENCY),
            )
        )
    return prices


def _cheapest_fallback(cheapest: dict[str, int | None]) -> list[ParsedPrice]:
    return [
        ParsedPrice(
            cabin_code=category.upper(),
            cabin_category=category,
            price_cents=cents,
        )
        for category, cents in cheapest.items()
        if cents is not None
    ]


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def parse_sailing(path: str, content: bytes | str) -> ParsedSailing:
    """Parse one downloaded sailing file.

    Args:
        path: Feed path the content was downloaded from.
        content: Raw JSON payload.

    Returns:
        Validated ``ParsedSailing``.

    Raises:
        PayloadParseError: If the path or payload is malformed or a
            required field is missing.
    """
    ids = extract_ids_from_path(path)

    try:
        data = json.loads(content)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise PayloadParseError(path, f"invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise PayloadParseError(
            path, f"expected a JSON object, got {type(data).__name__}"
        )

    sail_date = _parse_sail_date(path, data.get("saildate"))
    nights = _parse_nights(path, data.get("nights"))

    cheapest_by_category: dict[str, int | None] = {}
    cheapest_fields: dict[str, int | None] = {}
    for field_name, (category, attr) in _CHEAPEST_FIELDS.items():
        cents = _to_cents(data.get(field_name))
        cheapest_by_category[category] = cents
        cheapest_fields[attr] = cents

    prices = _parse_cached_prices(data)
    if prices:
        # Fill categories the root fields left empty from detailed prices
        for category, attr in _CHEAPEST_FIELDS.values():
            if cheapest_fields[attr] is None:
                matching = [
                    p.price_cents for p in prices if p.cabin_category == category
                ]
                cheapest_fields[attr] = min(matching) if matching else None
    else:
        prices = _cheapest_fallback(cheapest_by_category)

    try:
        return ParsedSailing(
            provider_identifier=ids.sailing_id,
            line_provider_identifier=ids.line_id,
            ship_provider_identifier=ids.ship_id,
            region_provider_identifier=_first_region(data),
            embark_port_provider_identifier=_to_identifier(
                data.get("startportid")
            ),
            disembark_port_provider_identifier=_to_identifier(
                data.get("endportid")
            ),
            name=str(data.get("name") or ""),
            sail_date=sail_date,
            nights=nights,
            end_date=sail_date + timedelta(days=nights),
            sea_days=_to_int(data.get("seadays")),
            voyage_code=_to_identifier(data.get("voyagecode")),
            stops=_parse_stops(data.get("itinerary")),
            prices=prices,
            **cheapest_fields,
        )
    except ValidationError as exc:
        raise PayloadParseError(path, f"invalid sailing: {exc}") from exc
