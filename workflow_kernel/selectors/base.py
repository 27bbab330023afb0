"""
Module: workflow_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors.  Selectors
    are the query side of the kernel: structured read access to templates and
    workflows without mutation capability.
Architecture position: Kernel > Selectors.  May import from models/ and the
    domain DTOs they return.  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors never call session.add(), session.delete(),
      session.flush() or session.commit().
    - DTO return convention: selectors return frozen dataclasses, never ORM
      model instances.
    - Freshness: queries run with ``populate_existing`` so a long-lived
      session sees rows committed by other sessions.

Failure modes:
    - Typed NotFoundError subclasses when the requested root entity does
      not exist.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only
        queries, and return DTOs.  They MUST NOT mutate any data.
    """

    def __init__(self, session: Session):
        self.session = session
