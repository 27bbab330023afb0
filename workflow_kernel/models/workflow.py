"""
Module: workflow_kernel.models.workflow
Responsibility: ORM persistence for workflow instances and everything they own:
    materialized assignees, the response ledger (with attachments), and the
    history log.
Architecture position: Kernel > Models.  May import from db/base.py only
    (domain DTOs are imported lazily inside to_dto()).

Invariants enforced:
    - Status values are limited by a CHECK constraint; terminal workflows
      are frozen by an ORM listener (db/immutability.py).
    - completed_at is set iff status is terminal (CHECK constraint).
    - row_version is SQLAlchemy's version_id_col: a concurrent writer that
      read a stale row fails its UPDATE with StaleDataError.
    - Responses: UNIQUE(workflow_id, step_id, revision_number, responder_id)
      -- one response per responder per revision.
    - History: UNIQUE(workflow_id, sequence) -- a total order per workflow;
      two writers that both believe they own the next transition cannot
      both commit.
    - Responses, attachments, and history entries are append-only
      (ORM listeners raise ImmutabilityViolationError on UPDATE / DELETE).

Failure modes:
    - StaleDataError on a lost optimistic-lock race (translated to
      ConcurrencyConflictError by the state machine).
    - IntegrityError on duplicate response / history sequence.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from workflow_kernel.db.base import IDENTITY_LENGTH, Base, UUIDString

if TYPE_CHECKING:
    from workflow_kernel.domain.workflow import (
        AttachmentRef,
        HistoryRecord,
        ResponseRecord,
        WorkflowAssigneeRecord,
        WorkflowInstanceRecord,
    )


class WorkflowInstanceModel(Base):
    """
    A running execution of a template version.

    Contract:
        ``template_version_id`` is fixed for the instance's lifetime.  While
        IN_PROGRESS, ``current_step_order`` names an existing step of that
        version.
    """

    __tablename__ = "workflows"

    __table_args__ = (
        CheckConstraint(
            "status IN ('IN_PROGRESS', 'COMPLETED', 'CANCELED')",
            name="ck_workflows_valid_status",
        ),
        CheckConstraint(
            "(status = 'IN_PROGRESS' AND completed_at IS NULL) OR "
            "(status <> 'IN_PROGRESS' AND completed_at IS NOT NULL)",
            name="ck_workflows_completed_at_iff_terminal",
        ),
        Index("ix_workflows_template_version_id", "template_version_id"),
    )

    template_version_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("template_versions.id"),
        nullable=False,
    )
    current_step_order: Mapped[int] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="IN_PROGRESS",
    )
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    # Last allocated history sequence number
    history_seq: Mapped[int] = mapped_column(nullable=False, default=0)
    row_version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": row_version}

    def __repr__(self) -> str:
        return (
            f"<Workflow {self.id} step={self.current_step_order} "
            f"status={self.status}>"
        )

    def to_dto(self) -> WorkflowInstanceRecord:
        """Convert ORM model to frozen domain DTO."""
        from workflow_kernel.domain.workflow import (
            WorkflowInstanceRecord,
            WorkflowStatus,
        )

        return WorkflowInstanceRecord(
            workflow_id=self.id,
            template_version_id=self.template_version_id,
            current_step_order=self.current_step_order,
            status=WorkflowStatus(self.status),
            created_at=self.created_at,
            completed_at=self.completed_at,
        )


class WorkflowAssigneeModel(Base):
    """
    An identity materialized as eligible for one step of one workflow.

    Copied from the template assignees when the step becomes current, so a
    running instance is unaffected by later template edits.
    """

    __tablename__ = "workflow_assignees"

    __table_args__ = (
        UniqueConstraint(
            "workflow_id", "step_id", "identity",
            name="uq_workflow_assignees_identity",
        ),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflows.id"),
        nullable=False,
    )
    step_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("template_steps.id"),
        nullable=False,
    )
    identity: Mapped[str] = mapped_column(String(IDENTITY_LENGTH), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<WorkflowAssignee workflow={self.workflow_id} "
            f"step={self.step_id} identity={self.identity!r}>"
        )

    def to_dto(self) -> WorkflowAssigneeRecord:
        """Convert ORM model to frozen domain DTO."""
        from workflow_kernel.domain.workflow import WorkflowAssigneeRecord

        return WorkflowAssigneeRecord(
            workflow_id=self.workflow_id,
            step_id=self.step_id,
            identity=self.identity,
        )


class ResponseModel(Base):
    """Persistent response in the ledger. Append-only."""

    __tablename__ = "responses"

    __table_args__ = (
        CheckConstraint(
            "response_type IN ('POSITIVE', 'NEGATIVE')",
            name="ck_responses_valid_type",
        ),
        CheckConstraint(
            "revision_number >= 1",
            name="ck_responses_positive_revision",
        ),
        UniqueConstraint(
            "workflow_id", "step_id", "revision_number", "responder_id",
            name="uq_responses_responder_per_revision",
        ),
        Index(
            "ix_responses_workflow_step_revision",
            "workflow_id", "step_id", "revision_number",
        ),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflows.id"),
        nullable=False,
    )
    step_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("template_steps.id"),
        nullable=False,
    )
    responder_id: Mapped[str] = mapped_column(
        String(IDENTITY_LENGTH), nullable=False,
    )
    response_type: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    revision_number: Mapped[int] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    attachments: Mapped[list["ResponseAttachmentModel"]] = relationship(
        "ResponseAttachmentModel",
        back_populates="response",
        order_by="ResponseAttachmentModel.position",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<Response {self.id} workflow={self.workflow_id} "
            f"rev={self.revision_number} type={self.response_type}>"
        )

    def to_dto(self) -> ResponseRecord:
        """Convert ORM model to frozen domain DTO."""
        from workflow_kernel.domain.workflow import ResponseRecord, ResponseType

        return ResponseRecord(
            response_id=self.id,
            workflow_id=self.workflow_id,
            step_id=self.step_id,
            responder_id=self.responder_id,
            response_type=ResponseType(self.response_type),
            revision_number=self.revision_number,
            description=self.description,
            attachments=tuple(a.to_dto() for a in self.attachments),
            created_at=self.created_at,
        )


class ResponseAttachmentModel(Base):
    """File reference attached to a response. Append-only."""

    __tablename__ = "response_attachments"

    __table_args__ = (
        Index("ix_response_attachments_response_id", "response_id"),
    )

    response_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("responses.id"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(nullable=False)
    file_url: Mapped[str] = mapped_column(String(2000), nullable=False)
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)

    response: Mapped["ResponseModel"] = relationship(
        "ResponseModel",
        back_populates="attachments",
    )

    def to_dto(self) -> AttachmentRef:
        """Convert ORM model to frozen domain DTO."""
        from workflow_kernel.domain.workflow import AttachmentRef

        return AttachmentRef(file_url=self.file_url, file_name=self.file_name)


class HistoryEntryModel(Base):
    """Persistent history log entry. Append-only."""

    __tablename__ = "workflow_history"

    __table_args__ = (
        CheckConstraint(
            "event_type IN ('WORKFLOW_STARTED', 'STEP_ADVANCED', "
            "'STEP_SENT_BACK', 'WORKFLOW_COMPLETED', 'WORKFLOW_CANCELED')",
            name="ck_workflow_history_valid_event",
        ),
        UniqueConstraint(
            "workflow_id", "sequence",
            name="uq_workflow_history_sequence",
        ),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflows.id"),
        nullable=False,
    )
    step_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("template_steps.id"),
        nullable=False,
    )
    event_type: Mapped[str] = mapped_column(String(30), nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False)
    from_step_order: Mapped[int | None] = mapped_column(nullable=True)
    to_step_order: Mapped[int | None] = mapped_column(nullable=True)
    triggered_by_response_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("responses.id"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<HistoryEntry {self.id} workflow={self.workflow_id} "
            f"#{self.sequence} {self.event_type}>"
        )

    def to_dto(self) -> HistoryRecord:
        """Convert ORM model to frozen domain DTO."""
        from workflow_kernel.domain.workflow import HistoryEventType, HistoryRecord

        return HistoryRecord(
            entry_id=self.id,
            workflow_id=self.workflow_id,
            step_id=self.step_id,
            event_type=HistoryEventType(self.event_type),
            sequence=self.sequence,
            from_step_order=self.from_step_order,
            to_step_order=self.to_step_order,
            triggered_by_response_id=self.triggered_by_response_id,
            created_at=self.created_at,
        )
