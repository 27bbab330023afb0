"""
workflow_kernel.services.template_catalog -- Template definition management.

Responsibility:
    Creates templates and template versions, adds ordered steps, assigns
    identities to step definitions, copies versions for revision, and
    flips the informational active-version flag.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - A template is created together with version 1 (active) in the same
      transaction.
    - Step orders are positive and unique within a version.
    - K_OF_N steps carry ``k >= 1``; ``k`` is dropped for other rules.
    - Assigning an identity twice to the same step is a no-op.
    - A version referenced by any workflow instance accepts no new steps
      or assignees (TemplateVersionImmutableError).  Revisions go into a
      new version via ``create_version()``.
    - Exactly one version per template is active after ``activate_version()``.

Failure modes:
    - TemplateNotFoundError / TemplateVersionNotFoundError / StepNotFoundError.
    - InvalidTemplateError, InvalidStepOrderError, DuplicateStepOrderError,
      InvalidThresholdError, EmptyAssigneeListError,
      TemplateVersionImmutableError.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select

from workflow_kernel.domain.workflow import (
    CompletionRule,
    CreatedTemplate,
    StepDefinition,
    TemplateVersionRecord,
)
from workflow_kernel.exceptions import (
    DuplicateStepOrderError,
    EmptyAssigneeListError,
    InvalidStepOrderError,
    InvalidTemplateError,
    InvalidThresholdError,
    StepNotFoundError,
    TemplateNotFoundError,
    TemplateVersionImmutableError,
    TemplateVersionNotFoundError,
)
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.template import (
    TemplateStepAssigneeModel,
    TemplateStepModel,
    TemplateVersionModel,
    WorkflowTemplateModel,
)
from workflow_kernel.models.workflow import WorkflowInstanceModel
from workflow_kernel.services.base import BaseService

logger = get_logger("services.template_catalog")


def _coerce_rule(rule: CompletionRule | str) -> CompletionRule:
    try:
        return CompletionRule(rule)
    except ValueError:
        raise InvalidTemplateError(f"Unknown completion rule {rule!r}") from None


class TemplateCatalogService(BaseService):
    """Write side of the template catalog."""

    def create_template(
        self,
        name: str,
        description: str | None = None,
    ) -> CreatedTemplate:
        """Create a template and its initial, active version 1."""
        if not name or not name.strip():
            raise InvalidTemplateError("Template name is required")

        now = self.clock.now()
        template = WorkflowTemplateModel(
            id=uuid4(),
            name=name.strip(),
            description=description,
            created_at=now,
        )
        version = TemplateVersionModel(
            id=uuid4(),
            template_id=template.id,
            version_number=1,
            is_active=True,
            created_at=now,
        )
        self.session.add(template)
        self.session.flush()
        self.session.add(version)
        self.session.flush()

        logger.info(
            "template_created",
            extra={
                "template_id": str(template.id),
                "version_id": str(version.id),
                "template_name": template.name,
            },
        )
        return CreatedTemplate(
            template_id=template.id,
            version_id=version.id,
            version_number=1,
        )

    def add_step(
        self,
        version_id: UUID,
        name: str,
        step_order: int,
        completion_rule: CompletionRule | str,
        k: int | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> StepDefinition:
        """
        Add an ordered step to a template version.

        Raises:
            TemplateVersionNotFoundError: version does not exist.
            TemplateVersionImmutableError: version is used by a workflow.
            InvalidStepOrderError: ``step_order < 1``.
            DuplicateStepOrderError: order already taken in this version.
            InvalidThresholdError: K_OF_N without ``k >= 1``.
        """
        rule = _coerce_rule(completion_rule)
        if not name or not name.strip():
            raise InvalidTemplateError("Step name is required", str(version_id))
        if step_order < 1:
            raise InvalidStepOrderError(step_order)
        if rule is CompletionRule.K_OF_N:
            if k is None:
                raise InvalidThresholdError(k, "K_OF_N requires a threshold")
            if k < 1:
                raise InvalidThresholdError(k, "threshold must be at least 1")
        else:
            k = None

        self._load_version(version_id)
        self._ensure_version_mutable(version_id)

        taken = self.session.execute(
            select(TemplateStepModel.id).where(
                TemplateStepModel.version_id == version_id,
                TemplateStepModel.step_order == step_order,
            )
        ).scalar_one_or_none()
        if taken is not None:
            raise DuplicateStepOrderError(str(version_id), step_order)

        step = TemplateStepModel(
            id=uuid4(),
            version_id=version_id,
            step_order=step_order,
            name=name.strip(),
            completion_rule=rule.value,
            k_value=k,
            step_metadata=dict(metadata) if metadata is not None else None,
        )
        self.session.add(step)
        self.session.flush()

        logger.info(
            "template_step_added",
            extra={
                "version_id": str(version_id),
                "step_id": str(step.id),
                "step_order": step_order,
                "completion_rule": rule.value,
                "k": k,
            },
        )
        return step.to_dto()

    def assign_step_users(
        self,
        step_id: UUID,
        identities: Iterable[str],
    ) -> StepDefinition:
        """
        Declare identities as eligible responders for a step definition.

        Idempotent: identities already assigned are skipped.
        """
        requested = list(dict.fromkeys(identities))
        if not requested:
            raise EmptyAssigneeListError(str(step_id))
        if any(not identity or not identity.strip() for identity in requested):
            raise InvalidTemplateError("Assignee identity cannot be blank", str(step_id))

        step = self._load_step(step_id)
        self._ensure_version_mutable(step.version_id)

        existing = set(
            self.session.execute(
                select(TemplateStepAssigneeModel.identity).where(
                    TemplateStepAssigneeModel.step_id == step_id,
                )
            ).scalars()
        )
        added = [identity for identity in requested if identity not in existing]
        for identity in added:
            self.session.add(
                TemplateStepAssigneeModel(step_id=step_id, identity=identity)
            )
        self.session.flush()
        self.session.refresh(step, attribute_names=["assignees"])

        logger.info(
            "template_step_assigned",
            extra={
                "step_id": str(step_id),
                "requested": len(requested),
                "added": len(added),
            },
        )
        return step.to_dto()

    def create_version(
        self,
        template_id: UUID,
        copy_from_version_id: UUID | None = None,
    ) -> TemplateVersionRecord:
        """
        Create the next (inactive) version of a template.

        When ``copy_from_version_id`` is given, its steps and template
        assignees are copied into the new version.
        """
        template = self.session.get(WorkflowTemplateModel, template_id)
        if template is None:
            raise TemplateNotFoundError(str(template_id))

        source: TemplateVersionModel | None = None
        if copy_from_version_id is not None:
            source = self._load_version(copy_from_version_id)
            if source.template_id != template_id:
                raise InvalidTemplateError(
                    f"Version {copy_from_version_id} belongs to another template",
                    str(template_id),
                )

        latest = self.session.execute(
            select(func.max(TemplateVersionModel.version_number)).where(
                TemplateVersionModel.template_id == template_id,
            )
        ).scalar_one()
        version = TemplateVersionModel(
            id=uuid4(),
            template_id=template_id,
            version_number=(latest or 0) + 1,
            is_active=False,
            created_at=self.clock.now(),
        )
        self.session.add(version)
        self.session.flush()

        if source is not None:
            for source_step in source.steps:
                step = TemplateStepModel(
                    id=uuid4(),
                    version_id=version.id,
                    step_order=source_step.step_order,
                    name=source_step.name,
                    completion_rule=source_step.completion_rule,
                    k_value=source_step.k_value,
                    step_metadata=(
                        dict(source_step.step_metadata)
                        if source_step.step_metadata is not None else None
                    ),
                )
                self.session.add(step)
                self.session.flush()
                for assignee in source_step.assignees:
                    self.session.add(
                        TemplateStepAssigneeModel(
                            step_id=step.id,
                            identity=assignee.identity,
                        )
                    )
            self.session.flush()
        self.session.refresh(version, attribute_names=["steps"])

        logger.info(
            "template_version_created",
            extra={
                "template_id": str(template_id),
                "version_id": str(version.id),
                "version_number": version.version_number,
                "copied_from": str(copy_from_version_id) if source else None,
            },
        )
        return version.to_dto()

    def activate_version(self, version_id: UUID) -> TemplateVersionRecord:
        """Mark a version active and every other version of its template inactive."""
        version = self._load_version(version_id)
        siblings = self.session.execute(
            select(TemplateVersionModel).where(
                TemplateVersionModel.template_id == version.template_id,
            )
        ).scalars().all()
        for sibling in siblings:
            sibling.is_active = sibling.id == version_id
        self.session.flush()

        logger.info(
            "template_version_activated",
            extra={
                "template_id": str(version.template_id),
                "version_id": str(version_id),
                "version_number": version.version_number,
            },
        )
        return version.to_dto()

    def _load_version(self, version_id: UUID) -> TemplateVersionModel:
        version = self.session.get(TemplateVersionModel, version_id)
        if version is None:
            raise TemplateVersionNotFoundError(str(version_id))
        return version

    def _load_step(self, step_id: UUID) -> TemplateStepModel:
        step = self.session.get(TemplateStepModel, step_id)
        if step is None:
            raise StepNotFoundError(str(step_id))
        return step

    def _ensure_version_mutable(self, version_id: UUID) -> None:
        """A version referenced by any workflow instance is frozen."""
        in_use = self.session.execute(
            select(WorkflowInstanceModel.id).where(
                WorkflowInstanceModel.template_version_id == version_id,
            ).limit(1)
        ).scalar_one_or_none()
        if in_use is not None:
            raise TemplateVersionImmutableError(str(version_id))
