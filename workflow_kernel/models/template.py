"""
Module: workflow_kernel.models.template
Responsibility: ORM persistence for workflow templates, template versions,
    template steps, and template step assignees.
Architecture position: Kernel > Models.  May import from db/base.py only
    (domain DTOs are imported lazily inside to_dto()).

Invariants enforced:
    - Version numbers are unique per template (UNIQUE(template_id, version_number)).
    - Step orders are unique per version (UNIQUE(version_id, step_order))
      and positive (CHECK step_order >= 1).
    - K_OF_N steps carry a threshold (CHECK k_value >= 1).
    - Assigning the same identity to a step twice is prevented by
      UNIQUE(step_id, identity); the catalog treats it as a no-op.
    - Steps and their assignees are never updated (ORM listener); a version
      referenced by a workflow instance accepts no new steps or assignees
      (enforced by TemplateCatalogService).

Failure modes:
    - IntegrityError on duplicate version number, step order, or assignee.
    - ImmutabilityViolationError on step / assignee UPDATE or DELETE.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
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
        StepDefinition,
        TemplateRecord,
        TemplateVersionRecord,
    )


class WorkflowTemplateModel(Base):
    """Reusable definition of an approval process shape."""

    __tablename__ = "workflow_templates"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    versions: Mapped[list["TemplateVersionModel"]] = relationship(
        "TemplateVersionModel",
        back_populates="template",
        order_by="TemplateVersionModel.version_number",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<WorkflowTemplate {self.id} {self.name!r}>"

    def to_dto(self) -> TemplateRecord:
        """Convert ORM model to frozen domain DTO."""
        from workflow_kernel.domain.workflow import TemplateRecord

        return TemplateRecord(
            template_id=self.id,
            name=self.name,
            description=self.description,
            created_at=self.created_at,
            versions=tuple(v.to_dto() for v in self.versions),
        )


class TemplateVersionModel(Base):
    """
    Versioned snapshot of a template's steps.

    Contract:
        Immutable once any workflow instance references it.  Only
        ``is_active`` may change afterwards (informational flag).
    """

    __tablename__ = "template_versions"

    __table_args__ = (
        UniqueConstraint(
            "template_id", "version_number",
            name="uq_template_versions_number",
        ),
        CheckConstraint(
            "version_number >= 1",
            name="ck_template_versions_positive_number",
        ),
    )

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_templates.id"),
        nullable=False,
    )
    version_number: Mapped[int] = mapped_column(nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    template: Mapped["WorkflowTemplateModel"] = relationship(
        "WorkflowTemplateModel",
        back_populates="versions",
    )
    steps: Mapped[list["TemplateStepModel"]] = relationship(
        "TemplateStepModel",
        back_populates="version",
        order_by="TemplateStepModel.step_order",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<TemplateVersion {self.id} template={self.template_id} "
            f"v{self.version_number} active={self.is_active}>"
        )

    def to_dto(self) -> TemplateVersionRecord:
        """Convert ORM model to frozen domain DTO."""
        from workflow_kernel.domain.workflow import TemplateVersionRecord

        return TemplateVersionRecord(
            version_id=self.id,
            template_id=self.template_id,
            version_number=self.version_number,
            is_active=self.is_active,
            created_at=self.created_at,
            steps=tuple(s.to_dto() for s in self.steps),
        )


class TemplateStepModel(Base):
    """One ordered step of a template version."""

    __tablename__ = "template_steps"

    __table_args__ = (
        UniqueConstraint(
            "version_id", "step_order",
            name="uq_template_steps_order",
        ),
        CheckConstraint(
            "step_order >= 1",
            name="ck_template_steps_positive_order",
        ),
        CheckConstraint(
            "completion_rule IN ('ALL', 'ANY', 'K_OF_N')",
            name="ck_template_steps_valid_rule",
        ),
        CheckConstraint(
            "completion_rule <> 'K_OF_N' OR (k_value IS NOT NULL AND k_value >= 1)",
            name="ck_template_steps_k_of_n_threshold",
        ),
    )

    version_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("template_versions.id"),
        nullable=False,
    )
    step_order: Mapped[int] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    completion_rule: Mapped[str] = mapped_column(String(20), nullable=False)
    k_value: Mapped[int | None] = mapped_column(nullable=True)
    # ``metadata`` is reserved by the declarative base
    step_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON, nullable=True,
    )

    version: Mapped["TemplateVersionModel"] = relationship(
        "TemplateVersionModel",
        back_populates="steps",
    )
    assignees: Mapped[list["TemplateStepAssigneeModel"]] = relationship(
        "TemplateStepAssigneeModel",
        back_populates="step",
        order_by="TemplateStepAssigneeModel.identity",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<TemplateStep {self.id} order={self.step_order} "
            f"rule={self.completion_rule}>"
        )

    def to_dto(self) -> StepDefinition:
        """Convert ORM model to frozen domain DTO."""
        from workflow_kernel.domain.workflow import (
            CompletionRule,
            StepDefinition,
            freeze_metadata,
        )

        return StepDefinition(
            step_id=self.id,
            version_id=self.version_id,
            step_order=self.step_order,
            name=self.name,
            completion_rule=CompletionRule(self.completion_rule),
            k=self.k_value,
            metadata=freeze_metadata(self.step_metadata),
            assignees=tuple(a.identity for a in self.assignees),
        )


class TemplateStepAssigneeModel(Base):
    """Identity pre-declared as an eligible responder for a step definition."""

    __tablename__ = "template_step_assignees"

    __table_args__ = (
        UniqueConstraint(
            "step_id", "identity",
            name="uq_template_step_assignees_identity",
        ),
        Index("ix_template_step_assignees_step_id", "step_id"),
    )

    step_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("template_steps.id"),
        nullable=False,
    )
    identity: Mapped[str] = mapped_column(String(IDENTITY_LENGTH), nullable=False)

    step: Mapped["TemplateStepModel"] = relationship(
        "TemplateStepModel",
        back_populates="assignees",
    )

    def __repr__(self) -> str:
        return f"<TemplateStepAssignee step={self.step_id} identity={self.identity!r}>"
