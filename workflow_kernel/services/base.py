"""
BaseService -- abstract base for kernel write-side services.

Responsibility:
    Provides the common constructor and session-handling contract for the
    catalog, registry, ledger and history services.  Each receives a
    SQLAlchemy ``Session`` and persists via ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or rollback themselves.  The caller (the workflow
    state machine or a ``session_scope()`` block) owns commit/rollback.
"""

from abc import ABC

from sqlalchemy.orm import Session

from workflow_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read projections -- those belong in
          ``workflow_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
