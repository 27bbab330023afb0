"""
Module: workflow_kernel.selectors.template_selector
Responsibility: Read-only queries over the template catalog: the template
    listing, a version's full step / assignee tree, and a template with
    every version.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Steps are returned in step order, assignees in identity order.
    - Results are frozen DTOs.

Failure modes:
    - TemplateNotFoundError, TemplateVersionNotFoundError.
"""

from uuid import UUID

from sqlalchemy import select

from workflow_kernel.domain.workflow import (
    TemplateRecord,
    TemplateSummary,
    TemplateVersionRecord,
)
from workflow_kernel.exceptions import (
    TemplateNotFoundError,
    TemplateVersionNotFoundError,
)
from workflow_kernel.models.template import TemplateVersionModel, WorkflowTemplateModel
from workflow_kernel.selectors.base import BaseSelector


class TemplateSelector(BaseSelector):
    """Query templates and their versions."""

    def list_templates(self) -> tuple[TemplateSummary, ...]:
        """Every template with its active version (None if no version is active)."""
        templates = self.session.execute(
            select(WorkflowTemplateModel)
            .order_by(WorkflowTemplateModel.created_at, WorkflowTemplateModel.name)
            .execution_options(populate_existing=True)
        ).scalars()

        summaries = []
        for template in templates:
            active = next((v for v in template.versions if v.is_active), None)
            summaries.append(
                TemplateSummary(
                    template_id=template.id,
                    name=template.name,
                    description=template.description,
                    active_version_id=active.id if active else None,
                    active_version_number=active.version_number if active else None,
                )
            )
        return tuple(summaries)

    def get_template_version(self, version_id: UUID) -> TemplateVersionRecord:
        version = self.session.execute(
            select(TemplateVersionModel)
            .where(TemplateVersionModel.id == version_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if version is None:
            raise TemplateVersionNotFoundError(str(version_id))
        return version.to_dto()

    def get_template(self, template_id: UUID) -> TemplateRecord:
        """A template with every version's step tree, oldest version first."""
        template = self.session.execute(
            select(WorkflowTemplateModel)
            .where(WorkflowTemplateModel.id == template_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if template is None:
            raise TemplateNotFoundError(str(template_id))
        return template.to_dto()
