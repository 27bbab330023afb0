"""
Workflow domain types (``workflow_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the approval workflow kernel.  Defines the closed
vocabularies (completion rules, response types, workflow statuses, history
event types), the workflow status state machine, and the frozen records
handed across the service / selector boundary.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Workflow status transitions are the closed table ``WORKFLOW_TRANSITIONS``;
  terminal states have no outgoing edges.
* Template version navigation (first step, step by order, next step) is
  defined purely on step order, never on insertion order.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID


# =========================================================================
# Closed vocabularies
# =========================================================================


class CompletionRule(str, Enum):
    """Policy deciding when a step's responses are sufficient to advance."""

    ALL = "ALL"
    ANY = "ANY"
    K_OF_N = "K_OF_N"


class ResponseType(str, Enum):
    """Kind of response an assignee submits."""

    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"


class WorkflowStatus(str, Enum):
    """Workflow instance lifecycle states."""

    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"


class HistoryEventType(str, Enum):
    """Transitions recorded in the history log."""

    WORKFLOW_STARTED = "WORKFLOW_STARTED"
    STEP_ADVANCED = "STEP_ADVANCED"
    STEP_SENT_BACK = "STEP_SENT_BACK"
    WORKFLOW_COMPLETED = "WORKFLOW_COMPLETED"
    WORKFLOW_CANCELED = "WORKFLOW_CANCELED"


class SubmissionOutcome(str, Enum):
    """What a submitted response did to the workflow."""

    PENDING = "PENDING"
    SENT_BACK = "SENT_BACK"
    ADVANCED = "ADVANCED"
    COMPLETED = "COMPLETED"


WORKFLOW_TRANSITIONS: dict[WorkflowStatus, frozenset[WorkflowStatus]] = {
    WorkflowStatus.IN_PROGRESS: frozenset({
        WorkflowStatus.COMPLETED,
        WorkflowStatus.CANCELED,
    }),
    WorkflowStatus.COMPLETED: frozenset(),
    WorkflowStatus.CANCELED: frozenset(),
}

TERMINAL_WORKFLOW_STATUSES: frozenset[WorkflowStatus] = frozenset({
    WorkflowStatus.COMPLETED,
    WorkflowStatus.CANCELED,
})


def freeze_metadata(metadata: Mapping[str, Any] | None) -> Mapping[str, Any]:
    """Wrap a metadata document in a read-only, order-preserving view."""
    return MappingProxyType(dict(metadata or {}))


# =========================================================================
# Template records
# =========================================================================


@dataclass(frozen=True)
class StepDefinition:
    """One ordered stage of a template version, with its template assignees."""

    step_id: UUID
    version_id: UUID
    step_order: int
    name: str
    completion_rule: CompletionRule
    k: int | None = None
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    assignees: tuple[str, ...] = ()


@dataclass(frozen=True)
class TemplateVersionRecord:
    """Immutable snapshot of a template version and its step tree."""

    version_id: UUID
    template_id: UUID
    version_number: int
    is_active: bool
    created_at: datetime | None = None
    steps: tuple[StepDefinition, ...] = ()

    def first_step(self) -> StepDefinition | None:
        """The step with the lowest order, or None for an empty version."""
        if not self.steps:
            return None
        return min(self.steps, key=lambda s: s.step_order)

    def step_by_order(self, step_order: int) -> StepDefinition | None:
        for step in self.steps:
            if step.step_order == step_order:
                return step
        return None

    def next_step_after(self, step_order: int) -> StepDefinition | None:
        """The step with the smallest order strictly greater than ``step_order``."""
        later = [s for s in self.steps if s.step_order > step_order]
        if not later:
            return None
        return min(later, key=lambda s: s.step_order)


@dataclass(frozen=True)
class TemplateRecord:
    """A template with every version's step tree."""

    template_id: UUID
    name: str
    description: str | None = None
    created_at: datetime | None = None
    versions: tuple[TemplateVersionRecord, ...] = ()

    @property
    def active_version(self) -> TemplateVersionRecord | None:
        for version in self.versions:
            if version.is_active:
                return version
        return None


@dataclass(frozen=True)
class TemplateSummary:
    """Listing row for a template and its active version."""

    template_id: UUID
    name: str
    description: str | None
    active_version_id: UUID | None
    active_version_number: int | None


@dataclass(frozen=True)
class CreatedTemplate:
    """Identifiers produced by creating a template."""

    template_id: UUID
    version_id: UUID
    version_number: int


# =========================================================================
# Workflow records
# =========================================================================


@dataclass(frozen=True)
class AttachmentRef:
    """Reference to a file attached to a response."""

    file_url: str
    file_name: str


@dataclass(frozen=True)
class ResponseRecord:
    """A response in the ledger. Immutable."""

    response_id: UUID
    workflow_id: UUID
    step_id: UUID
    responder_id: str
    response_type: ResponseType
    revision_number: int
    description: str | None = None
    attachments: tuple[AttachmentRef, ...] = ()
    created_at: datetime | None = None


@dataclass(frozen=True)
class HistoryRecord:
    """A history log entry. Immutable."""

    entry_id: UUID
    workflow_id: UUID
    step_id: UUID
    event_type: HistoryEventType
    sequence: int
    from_step_order: int | None = None
    to_step_order: int | None = None
    triggered_by_response_id: UUID | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class WorkflowAssigneeRecord:
    """An identity materialized as eligible for one step of one workflow."""

    workflow_id: UUID
    step_id: UUID
    identity: str


@dataclass(frozen=True)
class WorkflowInstanceRecord:
    """Position and status of a workflow instance."""

    workflow_id: UUID
    template_version_id: UUID
    current_step_order: int
    status: WorkflowStatus
    created_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class WorkflowState:
    """Read-only projection of a workflow instance."""

    workflow: WorkflowInstanceRecord
    template_id: UUID
    template_name: str
    version_number: int
    current_step: StepDefinition | None
    steps: tuple[StepDefinition, ...]
    assignees: tuple[WorkflowAssigneeRecord, ...]
    responses: tuple[ResponseRecord, ...]
    history: tuple[HistoryRecord, ...]

    @property
    def active_assignees(self) -> tuple[str, ...]:
        """Identities eligible to respond to the current step."""
        if self.current_step is None:
            return ()
        return tuple(
            a.identity for a in self.assignees
            if a.step_id == self.current_step.step_id
        )


@dataclass(frozen=True)
class StartedWorkflow:
    """Identifiers produced by starting a workflow."""

    workflow_id: UUID
    current_step_id: UUID
    current_step_order: int
    history_entry_id: UUID


@dataclass(frozen=True)
class SubmissionResult:
    """Result of submitting a response."""

    outcome: SubmissionOutcome
    workflow_id: UUID
    response_id: UUID
    revision_number: int
    status: WorkflowStatus
    current_step_order: int
    history_entry_id: UUID | None = None

    @property
    def is_transition(self) -> bool:
        return self.outcome is not SubmissionOutcome.PENDING
