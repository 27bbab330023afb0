"""
AssigneeRegistry -- materialized per-workflow assignees and authorization.

Responsibility:
    Copies a step's template assignees into workflow-owned rows when the
    step becomes current, and answers whether an identity may respond to
    a step of a given workflow.

Architecture position:
    Kernel > Services.  Called by the workflow state machine inside its
    transaction; never commits.

Invariants enforced:
    - Materialization is idempotent per identity.
    - Authorization consults only the materialized rows, so a running
      workflow is unaffected by later changes to other template versions.
    - Authorization failures raise NotAssigneeError (an AuthorizationError),
      never a ValidationError.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select

from workflow_kernel.domain.workflow import StepDefinition, WorkflowAssigneeRecord
from workflow_kernel.exceptions import NotAssigneeError
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.workflow import WorkflowAssigneeModel
from workflow_kernel.services.base import BaseService

logger = get_logger("services.assignee_registry")


class AssigneeRegistry(BaseService):
    """Workflow assignee materialization and authorization checks."""

    def materialize(
        self,
        workflow_id: UUID,
        step: StepDefinition,
    ) -> tuple[WorkflowAssigneeRecord, ...]:
        """
        Copy the step's template assignees into workflow assignee rows.

        Returns every workflow assignee of the step after materialization.
        """
        existing = set(
            self.session.execute(
                select(WorkflowAssigneeModel.identity).where(
                    WorkflowAssigneeModel.workflow_id == workflow_id,
                    WorkflowAssigneeModel.step_id == step.step_id,
                )
            ).scalars()
        )
        added = 0
        for identity in step.assignees:
            if identity in existing:
                continue
            self.session.add(
                WorkflowAssigneeModel(
                    workflow_id=workflow_id,
                    step_id=step.step_id,
                    identity=identity,
                )
            )
            existing.add(identity)
            added += 1
        self.session.flush()

        logger.debug(
            "assignees_materialized",
            extra={
                "workflow_id": str(workflow_id),
                "step_id": str(step.step_id),
                "step_order": step.step_order,
                "added": added,
            },
        )
        return self.list_assignees(workflow_id, step.step_id)

    def is_authorized(self, workflow_id: UUID, step_id: UUID, identity: str) -> bool:
        found = self.session.execute(
            select(WorkflowAssigneeModel.id).where(
                WorkflowAssigneeModel.workflow_id == workflow_id,
                WorkflowAssigneeModel.step_id == step_id,
                WorkflowAssigneeModel.identity == identity,
            )
        ).scalar_one_or_none()
        return found is not None

    def require_authorized(self, workflow_id: UUID, step_id: UUID, identity: str) -> None:
        """Raise NotAssigneeError unless ``identity`` may respond to the step."""
        if not self.is_authorized(workflow_id, step_id, identity):
            logger.warning(
                "responder_not_assignee",
                extra={
                    "workflow_id": str(workflow_id),
                    "step_id": str(step_id),
                    "responder_id": identity,
                },
            )
            raise NotAssigneeError(str(workflow_id), str(step_id), identity)

    def assignee_count(self, workflow_id: UUID, step_id: UUID) -> int:
        return self.session.execute(
            select(func.count(WorkflowAssigneeModel.id)).where(
                WorkflowAssigneeModel.workflow_id == workflow_id,
                WorkflowAssigneeModel.step_id == step_id,
            )
        ).scalar_one()

    def list_assignees(
        self,
        workflow_id: UUID,
        step_id: UUID | None = None,
    ) -> tuple[WorkflowAssigneeRecord, ...]:
        stmt = select(WorkflowAssigneeModel).where(
            WorkflowAssigneeModel.workflow_id == workflow_id,
        )
        if step_id is not None:
            stmt = stmt.where(WorkflowAssigneeModel.step_id == step_id)
        stmt = stmt.order_by(
            WorkflowAssigneeModel.step_id,
            WorkflowAssigneeModel.identity,
        )
        return tuple(m.to_dto() for m in self.session.execute(stmt).scalars())
