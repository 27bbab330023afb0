"""
Module: workflow_kernel.selectors.workflow_selector
Responsibility: Read-only projection of a workflow instance: position,
    status, the version's steps, materialized assignees, the response
    ledger and the history log.
Architecture position: Kernel > Selectors.  Used directly by callers and
    through WorkflowStateMachine.get_workflow_state().

Invariants enforced:
    - Never mutates; repeated calls with no intervening writes return
      equal values.
    - History is ordered by sequence; responses by creation time, then
      revision; assignees by step order, then identity.
    - ``current_step`` is the step at ``current_step_order`` while the
      workflow is IN_PROGRESS and None once it is terminal.

Failure modes:
    - WorkflowNotFoundError.
"""

from uuid import UUID

from sqlalchemy import select

from workflow_kernel.domain.workflow import (
    HistoryRecord,
    ResponseRecord,
    WorkflowAssigneeRecord,
    WorkflowState,
    WorkflowStatus,
)
from workflow_kernel.exceptions import WorkflowNotFoundError
from workflow_kernel.models.template import (
    TemplateStepModel,
    TemplateVersionModel,
    WorkflowTemplateModel,
)
from workflow_kernel.models.workflow import (
    HistoryEntryModel,
    ResponseModel,
    WorkflowAssigneeModel,
    WorkflowInstanceModel,
)
from workflow_kernel.selectors.base import BaseSelector


class WorkflowSelector(BaseSelector):
    """Query workflow instances and everything they own."""

    def get_workflow_state(self, workflow_id: UUID) -> WorkflowState:
        workflow = self.session.execute(
            select(WorkflowInstanceModel)
            .where(WorkflowInstanceModel.id == workflow_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if workflow is None:
            raise WorkflowNotFoundError(str(workflow_id))

        version_model = self.session.execute(
            select(TemplateVersionModel)
            .where(TemplateVersionModel.id == workflow.template_version_id)
            .execution_options(populate_existing=True)
        ).scalar_one()
        template_name = self.session.execute(
            select(WorkflowTemplateModel.name).where(
                WorkflowTemplateModel.id == version_model.template_id,
            )
        ).scalar_one()

        record = workflow.to_dto()
        version = version_model.to_dto()
        current_step = (
            version.step_by_order(record.current_step_order)
            if record.status is WorkflowStatus.IN_PROGRESS else None
        )

        return WorkflowState(
            workflow=record,
            template_id=version.template_id,
            template_name=template_name,
            version_number=version.version_number,
            current_step=current_step,
            steps=version.steps,
            assignees=self.get_assignees(workflow_id),
            responses=self.get_responses(workflow_id),
            history=self.get_history(workflow_id),
        )

    def get_assignees(self, workflow_id: UUID) -> tuple[WorkflowAssigneeRecord, ...]:
        rows = self.session.execute(
            select(WorkflowAssigneeModel)
            .join(TemplateStepModel, TemplateStepModel.id == WorkflowAssigneeModel.step_id)
            .where(WorkflowAssigneeModel.workflow_id == workflow_id)
            .order_by(TemplateStepModel.step_order, WorkflowAssigneeModel.identity)
        ).scalars()
        return tuple(r.to_dto() for r in rows)

    def get_responses(
        self,
        workflow_id: UUID,
        step_id: UUID | None = None,
        revision: int | None = None,
    ) -> tuple[ResponseRecord, ...]:
        """Responses of the workflow, optionally narrowed to a step and revision."""
        stmt = select(ResponseModel).where(ResponseModel.workflow_id == workflow_id)
        if step_id is not None:
            stmt = stmt.where(ResponseModel.step_id == step_id)
        if revision is not None:
            stmt = stmt.where(ResponseModel.revision_number == revision)
        stmt = stmt.order_by(
            ResponseModel.created_at,
            ResponseModel.revision_number,
            ResponseModel.id,
        )
        return tuple(r.to_dto() for r in self.session.execute(stmt).scalars())

    def get_history(self, workflow_id: UUID) -> tuple[HistoryRecord, ...]:
        rows = self.session.execute(
            select(HistoryEntryModel)
            .where(HistoryEntryModel.workflow_id == workflow_id)
            .order_by(HistoryEntryModel.sequence)
        ).scalars()
        return tuple(r.to_dto() for r in rows)
