"""
Configuration Loader (``workflow_config.loader``).

Responsibility
--------------
Loads YAML settings files, overlays them, and parses the result into a
frozen ``KernelSettings``.  Runtime callers go through
``workflow_config.get_active_config()``; the functions here are the
building blocks it (and the config tests) use.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* Overlays are deep merges: a file that sets ``database.url`` keeps the
  remaining ``database`` keys from the layer below.
* ``compute_checksum`` is deterministic for equal inputs.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``database.url``  -> ``KeyError``.
* Wrongly typed or out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from workflow_config.schema import KernelSettings

_LOG_LEVELS = frozenset(logging.getLevelNamesMapping())


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML value must be a mapping")
    return data


def merge_layers(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto ``base``; neither input is modified."""
    merged: dict[str, Any] = dict(base)
    for key, value in overlay.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = merge_layers(merged[key], value)
        else:
            merged[key] = value
    return merged


def _positive_int(section: str, key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{section}.{key} must be an integer, got {value!r}")
    if value < 0:
        raise ValueError(f"{section}.{key} must be >= 0, got {value}")
    return value


def parse_settings(data: Mapping[str, Any]) -> KernelSettings:
    """
    Parse a ``KernelSettings`` from a merged settings dict.

    Raises:
        KeyError: if ``database.url`` is missing.
        ValueError: if a value has the wrong type or range.
    """
    database = data.get("database") or {}
    locking = data.get("locking") or {}
    logging_section = data.get("logging") or {}

    url = database["url"]
    if not isinstance(url, str) or not url:
        raise ValueError(f"database.url must be a non-empty string, got {url!r}")

    echo = database.get("echo", False)
    if not isinstance(echo, bool):
        raise ValueError(f"database.echo must be a boolean, got {echo!r}")

    timeout = locking.get("timeout_seconds", 30.0)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ValueError(f"locking.timeout_seconds must be > 0, got {timeout!r}")

    level = str(logging_section.get("level", "INFO")).upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"logging.level {level!r} is not a logging level")

    return KernelSettings(
        database_url=url,
        echo=echo,
        pool_size=_positive_int("database", "pool_size", database.get("pool_size", 5)),
        max_overflow=_positive_int("database", "max_overflow", database.get("max_overflow", 10)),
        pool_timeout=_positive_int("database", "pool_timeout", database.get("pool_timeout", 30)),
        lock_timeout_seconds=float(timeout),
        log_level=level,
        checksum=compute_checksum(data),
    )


def compute_checksum(data: Mapping[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
