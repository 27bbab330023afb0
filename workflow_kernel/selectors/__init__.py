"""Selectors for the workflow kernel (read side)."""

from workflow_kernel.selectors.template_selector import TemplateSelector
from workflow_kernel.selectors.workflow_selector import WorkflowSelector

__all__ = [
    "TemplateSelector",
    "WorkflowSelector",
]
