"""
KernelSettings schema.

The runtime settings artifact produced by ``workflow_config.get_active_config()``.
Parsed from YAML by the loader; consumed by ``init_engine_from_settings()``,
``WorkflowLockRegistry.from_settings()`` and
``configure_logging_from_settings()``.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class KernelSettings:
    """Frozen runtime settings for the workflow kernel."""

    database_url: str
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    lock_timeout_seconds: float = 30.0
    log_level: str = "INFO"
    checksum: str = ""
