"""FTP/FTPS client for the sailing inventory feed.

The feed is laid out as ``/<year>/<month>/<lineid>/<shipid>/<sailingid>.json``.
Listing walks that tree with MLSD so each file comes back with its size
and modification time, which together form the delta signature.

The sync worker owns one long-lived connection per ``FtpRemoteSource``.
``test_connection`` and ``available_years`` always open their own
short-lived connection so they never contend with a running sync.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from ftplib import FTP, FTP_TLS, all_errors, error_perm
from typing import Callable, Iterator, Protocol

from pydantic import BaseModel

from ..config import Config
from ..errors import PayloadParseError, SourceConnectionError, SourceDownloadError

logger = logging.getLogger(__name__)

MIN_YEAR = 2000
MAX_YEAR = 2100
SAILING_SUFFIX = ".json"


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RemoteFile:
    """One sailing file as reported by the listing."""

    path: str
    size: int
    modified_at: datetime | None = None

    @property
    def signature(self) -> str:
        """Provider content signature: size plus modification time when known."""
        if self.modified_at is None:
            return str(self.size)
        return f"{self.size}:{self.modified_at.isoformat()}"


@dataclass(frozen=True)
class SailingPathIds:
    year: int
    month: int
    line_id: str
    ship_id: str
    sailing_id: str


class ConnectionTestResult(BaseModel):
    """Outcome of a standalone reachability check."""

    success: bool
    host: str
    message: str
    elapsed_ms: int
    secure: bool

    model_config = {"frozen": True}


class RemoteSource(Protocol):
    """What the orchestrator needs from a file source."""

    def list_sailing_files(
        self,
        year: int | None = None,
        month: int | None = None,
        max_files: int | None = None,
    ) -> list[RemoteFile]: ...

    def download(self, remote_file: RemoteFile) -> bytes: ...

    def test_connection(self) -> ConnectionTestResult: ...

    def available_years(self) -> list[int]: ...

    def close(self) -> None: ...


def extract_ids_from_path(path: str) -> SailingPathIds:
    """Split a feed path into its year, month, line, ship and sailing ids.

    Raises:
        PayloadParseError: If the path does not follow the feed layout.
    """
    segments = [seg for seg in path.strip("/").split("/") if seg]
    if len(segments) != 5 or not segments[-1].endswith(SAILING_SUFFIX):
        raise PayloadParseError(
            path,
            "expected /<year>/<month>/<lineid>/<shipid>/<sailingid>.json",
        )

    year_str, month_str, line_id, ship_id, filename = segments
    sailing_id = filename[: -len(SAILING_SUFFIX)]
    try:
        year = int(year_str)
        month = int(month_str)
    except ValueError:
        raise PayloadParseError(
            path, f"non-numeric year/month '{year_str}/{month_str}'"
        ) from None
    if not sailing_id:
        raise PayloadParseError(path, "empty sailing identifier")

    return SailingPathIds(
        year=year,
        month=month,
        line_id=line_id,
        ship_id=ship_id,
        sailing_id=sailing_id,
    )


def _parse_mlsd_time(value: str | None) -> datetime | None:
    """Parse an MLSD ``modify`` fact (YYYYMMDDHHMMSS[.fff], UTC)."""
    if not value:
        return None
    try:
        return datetime.strptime(value[:14], "%Y%m%d%H%M%S")
    except ValueError:
        return None


def _year_from_name(name: str) -> int | None:
    if not name.isdigit():
        return None
    year = int(name)
    if MIN_YEAR <= year <= MAX_YEAR:
        return year
    return None


# ---------------------------------------------------------------------------
# FTP implementation
# ---------------------------------------------------------------------------


class FtpRemoteSource:
    """Remote source backed by ``ftplib``.

    Args:
        config: Runtime config (host, credentials, timeouts, retries).
        sleep: Injected for tests; called between retry attempts.
    """

    def __init__(
        self,
        config: Config,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self._sleep = sleep
        self._ftp: FTP | None = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    def _open(self, timeout: float) -> FTP:
        """Open and authenticate a fresh control connection."""
        ftp: FTP = FTP_TLS(timeout=timeout) if self.config.ftp_secure else FTP(
            timeout=timeout
        )
        try:
            ftp.connect(self.config.ftp_host, self.config.ftp_port)
            ftp.login(self.config.ftp_user, self.config.ftp_password)
            if self.config.ftp_secure:
                ftp.prot_p()
        except all_errors as exc:
            _quietly_close(ftp)
            raise SourceConnectionError(
                f"Cannot connect to {self.config.ftp_host}: {exc}"
            ) from exc
        return ftp

    def _connection(self) -> FTP:
        if self._ftp is None:
            self._ftp = self._open(self.config.timeout_seconds)
            logger.info("Connected to inventory feed %s", self.config.ftp_host)
        return self._ftp

    def _drop_connection(self) -> None:
        if self._ftp is not None:
            _quietly_close(self._ftp)
            self._ftp = None

    def close(self) -> None:
        """Close the sync connection if one is open."""
        with self._lock:
            self._drop_connection()

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def _entries(self, ftp: FTP, path: str) -> Iterator[tuple[str, dict]]:
        for name, facts in ftp.mlsd(path, facts=["type", "size", "modify"]):
            if name in (".", ".."):
                continue
            yield name, facts

    def _subdirs(self, ftp: FTP, path: str) -> list[str]:
        return sorted(
            name
            for name, facts in self._entries(ftp, path)
            if facts.get("type") == "dir"
        )

    def list_sailing_files(
        self,
        year: int | None = None,
        month: int | None = None,
        max_files: int | None = None,
    ) -> list[RemoteFile]:
        """List sailing files, optionally narrowed to one year and month.

        Without a year every year folder in the feed root is scanned.  A
        permission error on a single directory is logged and that branch
        skipped; anything that breaks the connection is fatal.

        Raises:
            SourceConnectionError: If the feed cannot be reached or the
                connection drops while listing.
        """
        with self._lock:
            try:
                return self._walk(year, month, max_files)
            except SourceConnectionError:
                self._drop_connection()
                raise
            except error_perm as exc:
                self._drop_connection()
                raise SourceConnectionError(
                    f"Listing rejected by {self.config.ftp_host}: {exc}"
                ) from exc
            except all_errors as exc:
                self._drop_connection()
                raise SourceConnectionError(
                    f"Listing failed on {self.config.ftp_host}: {exc}"
                ) from exc

    def _walk(
        self, year: int | None, month: int | None, max_files: int | None
    ) -> list[RemoteFile]:
        ftp = self._connection()

        if year is not None:
            years = [year]
        else:
            years = sorted(
                y
                for y in (_year_from_name(n) for n in self._subdirs(ftp, "/"))
                if y is not None
            )
            logger.info(
                "Discovered %d year folders: %s",
                len(years),
                ", ".join(str(y) for y in years),
            )

        found: list[RemoteFile] = []
        for y in years:
            try:
                months = self._subdirs(ftp, f"/{y}")
            except error_perm as exc:
                logger.warning("Cannot list /%s: %s", y, exc)
                continue

            for month_name in months:
                if not month_name.isdigit():
                    continue
                if month is not None and int(month_name) != month:
                    continue
                month_path = f"/{y}/{month_name}"
                try:
                    self._collect_month(ftp, month_path, found, max_files)
                except error_perm as exc:
                    logger.warning("Cannot list %s: %s", month_path, exc)
                if max_files is not None and len(found) >= max_files:
                    return found[:max_files]

        return found

    def _collect_month(
        self,
        ftp: FTP,
        month_path: str,
        found: list[RemoteFile],
        max_files: int | None,
    ) -> None:
        for line_name in self._subdirs(ftp, month_path):
            line_path = f"{month_path}/{line_name}"
            for ship_name in self._subdirs(ftp, line_path):
                ship_path = f"{line_path}/{ship_name}"
                for name, facts in self._entries(ftp, ship_path):
                    if facts.get("type") != "file" or not name.endswith(
                        SAILING_SUFFIX
                    ):
                        continue
                    found.append(
                        RemoteFile(
                            path=f"{ship_path}/{name}",
                            size=int(facts.get("size", 0)),
                            modified_at=_parse_mlsd_time(facts.get("modify")),
                        )
                    )
                    if max_files is not None and len(found) >= max_files:
                        return

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    def download(self, remote_file: RemoteFile) -> bytes:
        """Fetch one file, retrying with exponential backoff.

        Each attempt is bounded by ``timeout_seconds``; the connection is
        re-opened after a failed attempt.

        Raises:
            SourceDownloadError: If every attempt fails or the payload
                exceeds ``max_file_size_bytes``.
        """
        attempts = self.config.retry_attempts
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                with self._lock:
                    return self._retrieve(remote_file.path)
            except SourceDownloadError:
                raise
            except (SourceConnectionError, *all_errors) as exc:
                last_error = exc
                logger.warning(
                    "Download attempt %d/%d failed for %s: %s",
                    attempt,
                    attempts,
                    remote_file.path,
                    exc,
                )
                with self._lock:
                    self._drop_connection()
                if attempt < attempts:
                    self._sleep(
                        self.config.retry_delay_seconds * 2 ** (attempt - 1)
                    )

        raise SourceDownloadError(
            remote_file.path,
            f"failed after {attempts} attempts: {last_error}",
        )

    def _retrieve(self, path: str) -> bytes:
        ftp = self._connection()
        limit = self.config.max_file_size_bytes
        chunks: list[bytes] = []
        received = 0

        def _sink(chunk: bytes) -> None:
            nonlocal received
            received += len(chunk)
            if received > limit:
                raise SourceDownloadError(
                    path, f"payload exceeds {limit} bytes"
                )
            chunks.append(chunk)

        try:
            ftp.retrbinary(f"RETR {path}", _sink)
        except SourceDownloadError:
            # Abandoned transfer leaves the control channel mid-response
            self._drop_connection()
            raise
        return b"".join(chunks)

    # ------------------------------------------------------------------
    # Standalone probes
    # ------------------------------------------------------------------

    def test_connection(self) -> ConnectionTestResult:
        """Check reachability with a separate short-lived connection."""
        started = time.monotonic()
        try:
            ftp = self._open(self.config.connect_test_timeout_seconds)
        except SourceConnectionError as exc:
            logger.error("Feed connection test failed: %s", exc)
            return self._probe_result(False, str(exc), started)

        try:
            ftp.nlst("/")
        except all_errors as exc:
            logger.error("Feed connection test failed: %s", exc)
            return self._probe_result(
                False, f"Connected but cannot list root: {exc}", started
            )
        finally:
            _quietly_close(ftp)

        logger.info("Feed connection test successful")
        return self._probe_result(True, "Connection successful", started)

    def _probe_result(
        self, success: bool, message: str, started: float
    ) -> ConnectionTestResult:
        return ConnectionTestResult(
            success=success,
            host=self.config.ftp_host,
            message=message,
            elapsed_ms=int((time.monotonic() - started) * 1000),
            secure=self.config.ftp_secure,
        )

    def available_years(self) -> list[int]:
        """Year folders present in the feed root, ascending.

        Raises:
            SourceConnectionError: If the feed cannot be reached.
        """
        ftp = self._open(self.config.connect_test_timeout_seconds)
        try:
            names = self._subdirs(ftp, "/")
        except all_errors as exc:
            raise SourceConnectionError(
                f"Cannot list feed root on {self.config.ftp_host}: {exc}"
            ) from exc
        finally:
            _quietly_close(ftp)

        years = sorted(y for y in map(_year_from_name, names) if y is not None)
        logger.info("Feed has %d year folders", len(years))
        return years


def _quietly_close(ftp: FTP) -> None:
    try:
        if ftp.sock is not None:
            ftp.quit()
    except all_errors as exc:
        logger.debug("QUIT failed, closing socket: %s", exc)
    finally:
        ftp.close()
