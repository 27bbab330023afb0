"""Services for the workflow kernel (write side)."""

from workflow_kernel.services.assignee_registry import AssigneeRegistry
from workflow_kernel.services.history_log import HistoryLog
from workflow_kernel.services.response_ledger import ResponseLedger
from workflow_kernel.services.template_catalog import TemplateCatalogService
from workflow_kernel.services.workflow_lock import WorkflowLockRegistry
from workflow_kernel.services.workflow_state_machine import WorkflowStateMachine

__all__ = [
    "AssigneeRegistry",
    "HistoryLog",
    "ResponseLedger",
    "TemplateCatalogService",
    "WorkflowLockRegistry",
    "WorkflowStateMachine",
]
