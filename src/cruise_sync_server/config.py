"""Runtime configuration for the cruise sync server.

Reads remote source and database settings from CLI args, environment
variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    CRUISE_SYNC_FTP_HOST: Inventory FTP host (required)
    CRUISE_SYNC_FTP_USER: FTP username (required)
    CRUISE_SYNC_FTP_PASSWORD: FTP password (required)
    CRUISE_SYNC_FTP_SECURE: Use FTPS (optional, default: true)
    CRUISE_SYNC_DATABASE_URL: SQLAlchemy URL (optional, default: sqlite file)
    CRUISE_SYNC_SNAPSHOT_TTL_DAYS: Raw snapshot retention (optional, default: 30)
    CRUISE_SYNC_MAX_FILE_SIZE: Oversized file threshold in bytes (optional, default: 500000)
"""

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///cruise_sync.db"


@dataclass
class Config:
    ftp_host: str
    ftp_user: str
    ftp_password: str
    ftp_port: int = 21
    ftp_secure: bool = True
    database_url: str = DEFAULT_DATABASE_URL
    debug: bool = False
    timeout_seconds: float = 30.0
    connect_test_timeout_seconds: float = 10.0
    retry_attempts: int = 3
    retry_delay_seconds: float = 1.0
    snapshot_ttl_days: int = 30
    max_file_size_bytes: int = 500_000
    cache_ttl_seconds: float = 300.0
    cache_max_ship_entries: int = 10


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If the host is malformed, credentials are empty or a
            numeric setting is out of range.
    """
    config.ftp_host = config.ftp_host.strip()

    if not config.ftp_host:
        raise ValueError(
            "FTP host cannot be empty. Set CRUISE_SYNC_FTP_HOST environment variable."
        )
    if "://" in config.ftp_host or "/" in config.ftp_host:
        raise ValueError(
            f"Invalid FTP host '{config.ftp_host}': expected a bare host name, not a URL"
        )

    if not config.ftp_user.strip():
        raise ValueError(
            "FTP username cannot be empty. Set CRUISE_SYNC_FTP_USER environment variable."
        )

    if not config.ftp_password.strip():
        raise ValueError(
            "FTP password cannot be empty. Set CRUISE_SYNC_FTP_PASSWORD environment variable."
        )

    if not config.database_url.strip():
        config.database_url = DEFAULT_DATABASE_URL

    if config.snapshot_ttl_days < 1:
        raise ValueError(
            f"Invalid snapshot TTL {config.snapshot_ttl_days}: must be at least 1 day"
        )

    if config.max_file_size_bytes < 1:
        raise ValueError(
            f"Invalid max file size {config.max_file_size_bytes}: must be positive"
        )

    if not config.ftp_secure:
        logger.warning(
            "WARNING: FTPS disabled (secure=False). Credentials travel in clear text."
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _get_int_env(key: str, low: int, high: int) -> int | None:
    """Return an int from env var within [low, high], or None if unset."""
    raw = os.getenv(key)
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number between {low} and {high}"
        ) from None
    if not (low <= value <= high):
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number between {low} and {high}"
        )
    return value


def load_config(
    ftp_host: str | None = None,
    ftp_user: str | None = None,
    ftp_password: str | None = None,
    database_url: str | None = None,
    insecure: bool = False,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        ftp_host: Override FTP host.
        ftp_user: Override FTP username.
        ftp_password: Override FTP password.
        database_url: Override database URL.
        insecure: Disable FTPS (CLI flag).
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Flat dict of values from the YAML config
            (``source``/``database``/``sync``/``cache`` sections merged,
            see ``lifespan._yaml_fallbacks``).

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If required settings are missing after checking all
            sources, or a value is invalid.
    """
    fb = yaml_fallbacks or {}

    # --- String fields: CLI > env > YAML > error/default ---

    host = ftp_host or os.getenv("CRUISE_SYNC_FTP_HOST") or fb.get("host")
    if not host:
        raise ValueError(
            "FTP host not found. Set CRUISE_SYNC_FTP_HOST environment variable, "
            "pass --ftp-host CLI argument, or add 'source.host' to config.yml."
        )

    user = ftp_user or os.getenv("CRUISE_SYNC_FTP_USER") or fb.get("username")
    if not user:
        raise ValueError(
            "FTP username not found. Set CRUISE_SYNC_FTP_USER environment variable, "
            "pass --ftp-user CLI argument, or add 'source.username' to config.yml."
        )

    password = (
        ftp_password
        or os.getenv("CRUISE_SYNC_FTP_PASSWORD")
        or fb.get("password")
    )
    if not password:
        raise ValueError(
            "FTP password not found. Set CRUISE_SYNC_FTP_PASSWORD environment variable, "
            "pass --ftp-password CLI argument, or add 'source.password' to config.yml."
        )

    db_url = (
        database_url
        or os.getenv("CRUISE_SYNC_DATABASE_URL")
        or fb.get("url")
        or DEFAULT_DATABASE_URL
    )

    # --- Boolean fields: CLI > env > YAML > default ---

    if insecure:
        final_secure = False
    else:
        env_secure = _get_bool_env("CRUISE_SYNC_FTP_SECURE")
        if env_secure is not None:
            final_secure = env_secure
        else:
            final_secure = bool(fb.get("secure", True))

    final_debug = debug or bool(_get_bool_env("CRUISE_SYNC_DEBUG"))

    # --- Numeric fields: env > YAML > default ---

    ttl = _get_int_env("CRUISE_SYNC_SNAPSHOT_TTL_DAYS", 1, 3650)
    if ttl is None:
        ttl = int(fb.get("snapshot_ttl_days", 30))

    max_size = _get_int_env("CRUISE_SYNC_MAX_FILE_SIZE", 1, 1_000_000_000)
    if max_size is None:
        max_size = int(fb.get("max_file_size_bytes", 500_000))

    config = Config(
        ftp_host=host.strip(),
        ftp_user=user.strip(),
        ftp_password=password.strip(),
        ftp_port=int(fb.get("port", 21)),
        ftp_secure=final_secure,
        database_url=db_url.strip(),
        debug=final_debug,
        timeout_seconds=float(fb.get("timeout_seconds", 30.0)),
        connect_test_timeout_seconds=float(
            fb.get("connect_test_timeout_seconds", 10.0)
        ),
        retry_attempts=int(fb.get("retry_attempts", 3)),
        retry_delay_seconds=float(fb.get("retry_delay_seconds", 1.0)),
        snapshot_ttl_days=ttl,
        max_file_size_bytes=max_size,
        cache_ttl_seconds=float(fb.get("ttl_seconds", 300.0)),
        cache_max_ship_entries=int(fb.get("max_ship_entries", 10)),
    )

    validate_config(config)

    return config
