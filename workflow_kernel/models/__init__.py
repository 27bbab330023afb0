"""ORM models for the workflow kernel."""

from workflow_kernel.models.template import (
    TemplateStepAssigneeModel,
    TemplateStepModel,
    TemplateVersionModel,
    WorkflowTemplateModel,
)
from workflow_kernel.models.workflow import (
    HistoryEntryModel,
    ResponseAttachmentModel,
    ResponseModel,
    WorkflowAssigneeModel,
    WorkflowInstanceModel,
)

__all__ = [
    "WorkflowTemplateModel",
    "TemplateVersionModel",
    "TemplateStepModel",
    "TemplateStepAssigneeModel",
    "WorkflowInstanceModel",
    "WorkflowAssigneeModel",
    "ResponseModel",
    "ResponseAttachmentModel",
    "HistoryEntryModel",
]
