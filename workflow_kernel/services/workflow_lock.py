"""
WorkflowLockRegistry -- in-process mutual exclusion keyed by workflow id.

Responsibility:
    Serializes (append, evaluate, transition) for one workflow among the
    threads of a process that share the registry.  Workflows never contend
    with each other.

Architecture position:
    Kernel > Services.  Injected into the state machine; there is no
    module-level registry.  Cross-process serialization is the database's
    job (SELECT ... FOR UPDATE and the workflow row_version).

Invariants enforced:
    - At most one holder per workflow id at a time.
    - Lock entries are reference counted and dropped when the last user
      leaves, so the registry does not grow with the number of workflows
      ever touched.

Failure modes:
    - ConcurrencyConflictError (retryable) when the lock is not acquired
      within the timeout.
"""

from __future__ import annotations

import threading
from collections.abc import Generator
from contextlib import contextmanager
from uuid import UUID

from workflow_kernel.exceptions import ConcurrencyConflictError
from workflow_kernel.logging_config import get_logger

logger = get_logger("services.workflow_lock")


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class WorkflowLockRegistry:
    """Per-workflow locks shared by every state machine of a process."""

    def __init__(self, default_timeout: float = 30.0):
        self.default_timeout = default_timeout
        self._guard = threading.Lock()
        self._entries: dict[UUID, _Entry] = {}

    @classmethod
    def from_settings(cls, settings) -> WorkflowLockRegistry:
        """Registry whose default timeout is ``settings.lock_timeout_seconds``."""
        return cls(default_timeout=settings.lock_timeout_seconds)

    @contextmanager
    def hold(
        self,
        workflow_id: UUID,
        timeout: float | None = None,
    ) -> Generator[None, None, None]:
        """Hold the workflow's lock for the duration of the block."""
        wait = self.default_timeout if timeout is None else timeout
        with self._guard:
            entry = self._entries.setdefault(workflow_id, _Entry())
            entry.users += 1
        try:
            if not entry.lock.acquire(timeout=wait):
                logger.warning(
                    "workflow_lock_timeout",
                    extra={"workflow_id": str(workflow_id), "timeout_seconds": wait},
                )
                raise ConcurrencyConflictError(
                    str(workflow_id),
                    f"could not acquire workflow lock within {wait}s",
                )
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[workflow_id]

    def active_count(self) -> int:
        """Number of workflow ids currently held or awaited."""
        with self._guard:
            return len(self._entries)
