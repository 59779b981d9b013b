"""Shared pytest fixtures for cruise-sync-server tests."""

import json
import threading
from datetime import datetime

import pytest

from cruise_sync_server.config import Config
from cruise_sync_server.core.remote_source import ConnectionTestResult, RemoteFile
from cruise_sync_server.errors import SourceConnectionError, SourceDownloadError
from cruise_sync_server.store import (
    CruiseLine,
    CruisePort,
    CruiseRegion,
    CruiseShip,
    Database,
)


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live inventory FTP source",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a live inventory FTP source"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------------
# Config and store
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_config():
    """Create a Config instance for testing."""
    return Config(
        ftp_host="ftp.example.com",
        ftp_user="agency",
        ftp_password="secret",
        database_url="sqlite://",
        retry_attempts=3,
        retry_delay_seconds=1.0,
    )


@pytest.fixture
def database():
    """In-memory SQLite store with the schema created."""
    db = Database("sqlite://")
    db.create_schema()
    yield db
    db.dispose()


@pytest.fixture
def seeded_catalog(database):
    """Seed one line, two ships, one region and two ports.

    Provider identifiers match ``payload_factory`` and ``sailing_path``.
    """
    with database.session_scope() as session:
        line = CruiseLine(
            name="Celestial Cruises", slug="celestial", provider_identifier="8"
        )
        session.add(line)
        session.flush()
        session.add_all(
            [
                CruiseShip(
                    name="Celestial Dawn",
                    slug="celestial-dawn",
                    provider_identifier="456",
                    cruise_line_id=line.id,
                ),
                CruiseShip(
                    name="Celestial Dusk",
                    slug="celestial-dusk",
                    provider_identifier="457",
                    cruise_line_id=line.id,
                ),
                CruiseRegion(
                    name="Caribbean", slug="caribbean", provider_identifier="5"
                ),
                CruisePort(name="Miami", slug="miami", provider_identifier="101"),
                CruisePort(
                    name="Cozumel", slug="cozumel", provider_identifier="102"
                ),
            ]
        )
    return database


# ---------------------------------------------------------------------------
# Sailing payloads
# ---------------------------------------------------------------------------

SAILING_PATH = "/2026/05/8/456/S100.json"


def _base_payload() -> dict:
    return {
        "name": "7 Night Western Caribbean",
        "saildate": "2026-05-10",
        "nights": 7,
        "seadays": 2,
        "voyagecode": "WC0510",
        "regionids": [5],
        "startportid": 101,
        "endportid": 101,
        "itinerary": [
            {"day": 1, "portid": 101, "name": "Miami", "departtime": "16:00"},
            {"day": 2, "portid": 0, "name": "At Sea"},
            {
                "day": 3,
                "portid": 102,
                "name": "Cozumel",
                "arrivetime": "08:00",
                "departtime": "17:00",
            },
        ],
        "cachedprices": {
            "IA": {"price": 799.0},
            "OB": {"price": 999},
            "BA": {"price": "1299.50"},
        },
        "cabins": {"BA": {"codtype": "Balcony"}},
        "cheapestinside": 799,
    }


@pytest.fixture
def payload_factory():
    """Build a sailing JSON payload (bytes); keyword args override fields.

    Pass a field as ``None`` to drop it from the payload.
    """

    def _make(**overrides) -> bytes:
        data = _base_payload()
        for key, value in overrides.items():
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value
        return json.dumps(data).encode()

    return _make


# ---------------------------------------------------------------------------
# Remote source double
# ---------------------------------------------------------------------------


class FakeRemoteSource:
    """In-memory ``RemoteSource`` with failure injection.

    Attributes:
        files: path -> (content, modified_at).
        list_error: Raised by ``list_sailing_files`` when set.
        download_errors: Paths whose download raises ``SourceDownloadError``.
        on_download: Called with the path before each download returns.
    """

    def __init__(self):
        self.files: dict[str, tuple[bytes, datetime | None]] = {}
        self.sizes: dict[str, int] = {}
        self.list_error: Exception | None = None
        self.download_errors: set[str] = set()
        self.on_download = None
        self.downloads: list[str] = []
        self.closed = False
        self.years = [2025, 2026]
        self.connection_ok = True
        self._lock = threading.Lock()

    def add(self, path, content, modified_at=None, size=None):
        """Publish a file; ``size`` overrides the listed size."""
        self.files[path] = (content, modified_at)
        if size is not None:
            self.sizes[path] = size

    def _size(self, path):
        return self.sizes.get(path, len(self.files[path][0]))

    def list_sailing_files(self, year=None, month=None, max_files=None):
        if self.list_error is not None:
            raise self.list_error
        found = []
        for path in sorted(self.files):
            segments = path.strip("/").split("/")
            if year is not None and int(segments[0]) != year:
                continue
            if month is not None and int(segments[1]) != month:
                continue
            found.append(
                RemoteFile(
                    path=path,
                    size=self._size(path),
                    modified_at=self.files[path][1],
                )
            )
        if max_files is not None:
            found = found[:max_files]
        return found

    def download(self, remote_file):
        with self._lock:
            self.downloads.append(remote_file.path)
        if self.on_download is not None:
            self.on_download(remote_file.path)
        if remote_file.path in self.download_errors:
            raise SourceDownloadError(remote_file.path, "failed after 3 attempts")
        return self.files[remote_file.path][0]

    def test_connection(self):
        return ConnectionTestResult(
            success=self.connection_ok,
            host="fake",
            message="Connection successful" if self.connection_ok else "refused",
            elapsed_ms=1,
            secure=True,
        )

    def available_years(self):
        if not self.connection_ok:
            raise SourceConnectionError("Cannot connect to fake: refused")
        return list(self.years)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_source():
    return FakeRemoteSource()


@pytest.fixture
def failing_listing():
    """Listing error used to simulate an unreachable feed."""
    return SourceConnectionError("Cannot connect to ftp.example.com: timed out")


@pytest.fixture
def sailing_path():
    """Feed path whose line (8) and ship (456) exist in ``seeded_catalog``."""
    return SAILING_PATH


@pytest.fixture
def services(mock_config, fake_source, seeded_catalog):
    """Fully wired services over the fake source and the seeded store."""
    from cruise_sync_server.core.services import build_services

    return build_services(
        mock_config, source=fake_source, database=seeded_catalog
    )
