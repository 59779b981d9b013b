"""
Hierarchical configuration loader for cruise_sync_server.

Discovers YAML config files by convention, merges them with "project wins"
semantics and interpolates ``${VAR}`` / ``${VAR:-default}`` references
from the environment.

Usage:
    from cruise_sync_server.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "CRUISE_SYNC_CONFIG"
PROJECT_CONFIG_DIR = ".cruise_sync"
CONFIG_FILE_NAME = "config.yml"

# ---------------------------------------------------------------------------
# Env var interpolation
# ---------------------------------------------------------------------------

# ${VAR} or ${VAR:-default}
_ENV_REF = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Expand environment references inside *value*.

    ``${VAR}`` becomes the value of VAR (empty string when unset).
    ``${VAR:-fallback}`` becomes *fallback* when VAR is unset or empty.
    An unterminated ``${`` is kept as-is.
    """

    def _expand(match: re.Match) -> str:
        current = os.environ.get(match.group(1))
        if current:
            return current
        return match.group(2) or ""

    return _ENV_REF.sub(_expand, value)


def _interpolate_tree(node: Any) -> Any:
    if isinstance(node, str):
        return interpolate_env_vars(node)
    if isinstance(node, dict):
        return {key: _interpolate_tree(val) for key, val in node.items()}
    if isinstance(node, list):
        return [_interpolate_tree(item) for item in node]
    return node


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Return existing config files, highest precedence first.

    Search order:
        1. ``CRUISE_SYNC_CONFIG`` env var (explicit path)
        2. ``.cruise_sync/config.yml`` in the working directory
        3. ``~/.config/cruise_sync/config.yml``
    """
    candidates: list[Path] = []

    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())

    candidates.append(Path.cwd() / PROJECT_CONFIG_DIR / CONFIG_FILE_NAME)
    candidates.append(
        Path.home() / ".config" / "cruise_sync" / CONFIG_FILE_NAME
    )

    found = []
    for path in candidates:
        if path.exists() and path not in found:
            found.append(path)
    return found


def _read_yaml(path: Path) -> Any:
    with open(path, "r", encoding="utf-8") as fh:
        return yaml.safe_load(fh)


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def load_hierarchical_config() -> dict[str, Any]:
    """Load every discovered config file and merge them.

    Files are applied from lowest to highest precedence.  Top-level
    sections of a higher-precedence file replace the same sections of a
    lower one wholesale (no deep merge).  Interpolation runs once on the
    merged result.

    Returns an empty dict when no config file exists.
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found, using built-in defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        try:
            data = _read_yaml(path)
        except (OSError, yaml.YAMLError):
            logger.exception("Failed to load config file %s", path)
            raise

        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Config file %s has a %s root instead of a mapping, skipping",
                path,
                type(data).__name__,
            )

    return _interpolate_tree(merged)
