"""Tests for cruise_sync_server.sync.parser and path id extraction.

Covers:
- extract_ids_from_path() layout checks
- parse_sailing() required fields, end date, region and port ids
- Itinerary stops and cached price categories
- cheapest* fallback when no cached prices are usable
- PayloadParseError on malformed JSON and missing fields
"""

import json
from datetime import date

import pytest

from cruise_sync_server.core.remote_source import extract_ids_from_path
from cruise_sync_server.errors import PayloadParseError
from cruise_sync_server.sync.parser import normalize_cabin_category, parse_sailing

# -------------------------------------------------------------------------
# extract_ids_from_path()
# -------------------------------------------------------------------------


class TestExtractIdsFromPath:
    """Tests for feed path parsing."""

    def test_valid_path(self):
        ids = extract_ids_from_path("/2026/05/8/456/S100.json")
        assert ids.year == 2026
        assert ids.month == 5
        assert ids.line_id == "8"
        assert ids.ship_id == "456"
        assert ids.sailing_id == "S100"

    def test_path_without_leading_slash(self):
        ids = extract_ids_from_path("2026/05/8/456/S100.json")
        assert ids.sailing_id == "S100"

    def test_too_few_segments(self):
        with pytest.raises(PayloadParseError, match="expected"):
            extract_ids_from_path("/2026/05/456/S100.json")

    def test_wrong_suffix(self):
        with pytest.raises(PayloadParseError):
            extract_ids_from_path("/2026/05/8/456/S100.xml")

    def test_non_numeric_year(self):
        with pytest.raises(PayloadParseError, match="non-numeric"):
            extract_ids_from_path("/latest/05/8/456/S100.json")

    def test_empty_sailing_id(self):
        with pytest.raises(PayloadParseError, match="empty sailing"):
            extract_ids_from_path("/2026/05/8/456/.json")

    def test_error_carries_path(self):
        with pytest.raises(PayloadParseError) as exc_info:
            extract_ids_from_path("/bad.json")
        assert exc_info.value.path == "/bad.json"


# -------------------------------------------------------------------------
# parse_sailing() -- sailing fields
# -------------------------------------------------------------------------


class TestParseSailingFields:
    """Tests for the top-level sailing values."""

    def test_identifiers_come_from_path(self, payload_factory, sailing_path):
        parsed = parse_sailing(sailing_path, payload_factory())
        assert parsed.provider_identifier == "S100"
        assert parsed.line_provider_identifier == "8"
        assert parsed.ship_provider_identifier == "456"

    def test_dates_and_nights(self, payload_factory, sailing_path):
        parsed = parse_sailing(sailing_path, payload_factory())
        assert parsed.sail_date == date(2026, 5, 10)
        assert parsed.nights == 7
        assert parsed.end_date == date(2026, 5, 17)

    def test_saildate_with_time_component(self, payload_factory, sailing_path):
        parsed = parse_sailing(
            sailing_path, payload_factory(saildate="2026-05-10T00:00:00")
        )
        assert parsed.sail_date == date(2026, 5, 10)

    def test_zero_nights_day_trip(self, payload_factory, sailing_path):
        parsed = parse_sailing(sailing_path, payload_factory(nights=0))
        assert parsed.end_date == parsed.sail_date

    def test_optional_fields(self, payload_factory, sailing_path):
        parsed = parse_sailing(sailing_path, payload_factory())
        assert parsed.name == "7 Night Western Caribbean"
        assert parsed.sea_days == 2
        assert parsed.voyage_code == "WC0510"
        assert parsed.region_provider_identifier == "5"
        assert parsed.embark_port_provider_identifier == "101"
        assert parsed.disembark_port_provider_identifier == "101"

    def test_numeric_voyage_code_coerced(self, payload_factory, sailing_path):
        parsed = parse_sailing(sailing_path, payload_factory(voyagecode=1234))
        assert parsed.voyage_code == "1234"

    def test_region_from_regions_map(self, payload_factory, sailing_path):
        parsed = parse_sailing(
            sailing_path,
            payload_factory(regionids=None, regions={"12": "Alaska"}),
        )
        assert parsed.region_provider_identifier == "12"

    def test_missing_optional_fields_degrade(self, sailing_path):
        content = json.dumps({"saildate": "2026-05-10", "nights": 3})
        parsed = parse_sailing(sailing_path, content)
        assert parsed.name == ""
        assert parsed.region_provider_identifier is None
        assert parsed.embark_port_provider_identifier is None
        assert parsed.stops == []
        assert parsed.prices == []

    def test_accepts_str_content(self, payload_factory, sailing_path):
        parsed = parse_sailing(sailing_path, payload_factory().decode())
        assert parsed.provider_identifier == "S100"


# -------------------------------------------------------------------------
# parse_sailing() -- children
# -------------------------------------------------------------------------


class TestParseSailingChildren:
    """Tests for itinerary stops and prices."""

    def test_stops_in_order(self, payload_factory, sailing_path):
        parsed = parse_sailing(sailing_path, payload_factory())
        assert [s.sequence for s in parsed.stops] == [0, 1, 2]
        assert [s.port_name for s in parsed.stops] == [
            "Miami",
            "At Sea",
            "Cozumel",
        ]

    def test_sea_day_has_no_port(self, payload_factory, sailing_path):
        parsed = parse_sailing(sailing_path, payload_factory())
        assert parsed.stops[1].port_provider_identifier is None

    def test_stop_times(self, payload_factory, sailing_path):
        parsed = parse_sailing(sailing_path, payload_factory())
        cozumel = parsed.stops[2]
        assert cozumel.arrival_time == "08:00"
        assert cozumel.departure_time == "17:00"
        assert parsed.stops[0].arrival_time is None

    def test_cached_prices(self, payload_factory, sailing_path):
        parsed = parse_sailing(sailing_path, payload_factory())
        by_code = {p.cabin_code: p for p in parsed.prices}
        assert by_code["IA"].cabin_category == "inside"
        assert by_code["IA"].price_cents == 79900
        assert by_code["OB"].cabin_category == "oceanview"
        assert by_code["BA"].cabin_category == "balcony"
        assert by_code["BA"].price_cents == 129950
        assert all(p.currency == "CAD" for p in parsed.prices)

    def test_cheapest_filled_from_detailed_prices(
        self, payload_factory, sailing_path
    ):
        parsed = parse_sailing(sailing_path, payload_factory())
        assert parsed.cheapest_inside_cents == 79900
        assert parsed.cheapest_oceanview_cents == 99900
        assert parsed.cheapest_balcony_cents == 129950
        assert parsed.cheapest_suite_cents is None

    def test_zero_price_ignored(self, payload_factory, sailing_path):
        parsed = parse_sailing(
            sailing_path,
            payload_factory(
                cachedprices={"IA": {"price": 0}, "OB": {"price": 500}}
            ),
        )
        assert [p.cabin_code for p in parsed.prices] == ["OB"]

    def test_fallback_to_cheapest_fields(self, payload_factory, sailing_path):
        parsed = parse_sailing(
            sailing_path,
            payload_factory(
                cachedprices=None,
                cheapestinside=650,
                cheapestbalcony="1100.00",
            ),
        )
        by_category = {p.cabin_category: p for p in parsed.prices}
        assert set(by_category) == {"inside", "balcony"}
        assert by_category["inside"].price_cents == 65000
        assert by_category["inside"].cabin_code == "INSIDE"
        assert parsed.cheapest_balcony_cents == 110000


class TestNormalizeCabinCategory:
    """Tests for provider cabin type labels."""

    @pytest.mark.parametrize(
        "label,expected",
        [
            ("Inside", "inside"),
            ("Interior Stateroom", "inside"),
            ("Oceanview", "oceanview"),
            ("Outside", "oceanview"),
            ("Balcony", "balcony"),
            ("Verandah", "balcony"),
            ("Grand Suite", "suite"),
            ("Studio", "other"),
        ],
    )
    def test_labels(self, label, expected):
        assert normalize_cabin_category(label) == expected


# -------------------------------------------------------------------------
# parse_sailing() -- errors
# -------------------------------------------------------------------------


class TestParseSailingErrors:
    """Malformed payloads raise PayloadParseError."""

    def test_invalid_json(self, sailing_path):
        with pytest.raises(PayloadParseError, match="invalid JSON"):
            parse_sailing(sailing_path, b"{not json")

    def test_non_object_json(self, sailing_path):
        with pytest.raises(PayloadParseError, match="expected a JSON object"):
            parse_sailing(sailing_path, b"[1, 2, 3]")

    def test_missing_saildate(self, payload_factory, sailing_path):
        with pytest.raises(PayloadParseError, match="saildate"):
            parse_sailing(sailing_path, payload_factory(saildate=None))

    def test_invalid_saildate(self, payload_factory, sailing_path):
        with pytest.raises(PayloadParseError, match="invalid saildate"):
            parse_sailing(sailing_path, payload_factory(saildate="next week"))

    def test_missing_nights(self, payload_factory, sailing_path):
        with pytest.raises(PayloadParseError, match="nights"):
            parse_sailing(sailing_path, payload_factory(nights=None))

    def test_negative_nights(self, payload_factory, sailing_path):
        with pytest.raises(PayloadParseError, match="negative"):
            parse_sailing(sailing_path, payload_factory(nights=-2))

    def test_bad_path(self, payload_factory):
        with pytest.raises(PayloadParseError):
            parse_sailing("/2026/S100.json", payload_factory())

    def test_invalid_utf8(self, sailing_path):
        with pytest.raises(PayloadParseError):
            parse_sailing(sailing_path, b"\x80\x81\x82")
