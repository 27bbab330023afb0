"""
workflow_config -- single public entrypoint for workflow kernel settings.

Responsibility:
    Provides the ONLY way to obtain runtime settings through
    ``get_active_config()``.  No other component reads settings files or
    environment variables directly.

Architecture position:
    Configuration.  Sits beside ``workflow_kernel``; the kernel never
    imports from ``workflow_config`` (``init_engine_from_settings`` takes
    the returned settings object as an argument).

Layering (later wins):
    1. ``workflow_config/defaults.yaml``
    2. the YAML file named by ``config_file`` or ``WORKFLOW_CONFIG_FILE``
    3. ``WORKFLOW_DATABASE_URL``

Failure modes:
    - ``FileNotFoundError`` -- the override file does not exist.
    - ``yaml.YAMLError`` -- malformed YAML.
    - ``ValueError`` / ``KeyError`` -- invalid or missing settings.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from workflow_config.loader import load_yaml_file, merge_layers, parse_settings
from workflow_config.schema import KernelSettings

__all__ = ["KernelSettings", "get_active_config"]

_logger = logging.getLogger("workflow_kernel.config")

DEFAULTS_FILE = Path(__file__).parent / "defaults.yaml"
CONFIG_FILE_ENV = "WORKFLOW_CONFIG_FILE"
DATABASE_URL_ENV = "WORKFLOW_DATABASE_URL"


def get_active_config(
    config_file: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> KernelSettings:
    """The ONLY public settings entrypoint.

    Args:
        config_file: Override file; defaults to ``$WORKFLOW_CONFIG_FILE``.
        environ: Environment mapping; defaults to ``os.environ``.

    Returns:
        Frozen KernelSettings.  A ``WORKFLOW_CONFIG_TRACE`` log entry is
        emitted on every call.
    """
    env = os.environ if environ is None else environ

    data = load_yaml_file(DEFAULTS_FILE)
    sources = [str(DEFAULTS_FILE)]

    override = config_file or env.get(CONFIG_FILE_ENV)
    if override:
        data = merge_layers(data, load_yaml_file(Path(override)))
        sources.append(str(override))

    database_url = env.get(DATABASE_URL_ENV)
    if database_url:
        data = merge_layers(data, {"database": {"url": database_url}})
        sources.append(DATABASE_URL_ENV)

    settings = parse_settings(data)

    _logger.info(
        "WORKFLOW_CONFIG_TRACE",
        extra={
            "trace_type": "WORKFLOW_CONFIG_TRACE",
            "sources": sources,
            "checksum": settings.checksum,
            "dialect": settings.database_url.split(":", 1)[0],
            "lock_timeout_seconds": settings.lock_timeout_seconds,
        },
    )
    return settings
