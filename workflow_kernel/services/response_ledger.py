"""
ResponseLedger -- append-only, revision-scoped response storage.

Responsibility:
    Records responses (with their attachments) and answers revision
    questions for a (workflow, step) pair.

Architecture position:
    Kernel > Services.  The ledger stores and counts; the state machine
    decides which revision a response is tagged with and what it means.

Invariants enforced:
    - Responses and attachments are never updated or deleted (ORM
      listeners in db/immutability.py).
    - Revisions start at 1 per (workflow, step) and increase by one each
      time a revision is closed by a NEGATIVE response.
    - One response per responder per revision (DuplicateResponseError,
      backed by a unique constraint).
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID, uuid4

from sqlalchemy import func, select

from workflow_kernel.domain.completion import resolve_active_revision
from workflow_kernel.domain.workflow import AttachmentRef, ResponseRecord, ResponseType
from workflow_kernel.exceptions import DuplicateResponseError, ValidationError
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.workflow import ResponseAttachmentModel, ResponseModel
from workflow_kernel.services.base import BaseService

logger = get_logger("services.response_ledger")


class ResponseLedger(BaseService):
    """Append-only ledger of responses."""

    def current_revision(self, workflow_id: UUID, step_id: UUID) -> int:
        """Highest revision recorded for the step, 0 when none."""
        latest = self.session.execute(
            select(func.max(ResponseModel.revision_number)).where(
                ResponseModel.workflow_id == workflow_id,
                ResponseModel.step_id == step_id,
            )
        ).scalar_one()
        return latest or 0

    def is_revision_closed(self, workflow_id: UUID, step_id: UUID, revision: int) -> bool:
        """A revision is closed once it contains a NEGATIVE response."""
        negative = self.session.execute(
            select(ResponseModel.id).where(
                ResponseModel.workflow_id == workflow_id,
                ResponseModel.step_id == step_id,
                ResponseModel.revision_number == revision,
                ResponseModel.response_type == ResponseType.NEGATIVE.value,
            ).limit(1)
        ).scalar_one_or_none()
        return negative is not None

    def active_revision(self, workflow_id: UUID, step_id: UUID) -> int:
        """Revision the next response to the step belongs to."""
        current = self.current_revision(workflow_id, step_id)
        closed = current > 0 and self.is_revision_closed(workflow_id, step_id, current)
        return resolve_active_revision(current, closed)

    def append(
        self,
        workflow_id: UUID,
        step_id: UUID,
        responder_id: str,
        response_type: ResponseType,
        revision: int,
        description: str | None = None,
        attachments: Iterable[AttachmentRef] = (),
    ) -> ResponseRecord:
        """
        Record a response under ``revision``.

        Raises:
            DuplicateResponseError: responder already responded in this
                revision.
            ValidationError: revision < 1 or malformed attachment.
        """
        if revision < 1:
            raise ValidationError(f"Revision must be >= 1, got {revision}")
        attachment_refs = tuple(attachments)
        for ref in attachment_refs:
            if not ref.file_url or not ref.file_name:
                raise ValidationError("Attachments require both file_url and file_name")

        already = self.session.execute(
            select(ResponseModel.id).where(
                ResponseModel.workflow_id == workflow_id,
                ResponseModel.step_id == step_id,
                ResponseModel.revision_number == revision,
                ResponseModel.responder_id == responder_id,
            )
        ).scalar_one_or_none()
        if already is not None:
            raise DuplicateResponseError(
                str(workflow_id), str(step_id), responder_id, revision,
            )

        response = ResponseModel(
            id=uuid4(),
            workflow_id=workflow_id,
            step_id=step_id,
            responder_id=responder_id,
            response_type=ResponseType(response_type).value,
            description=description,
            revision_number=revision,
            created_at=self.clock.now(),
        )
        self.session.add(response)
        self.session.flush()

        for position, ref in enumerate(attachment_refs):
            self.session.add(
                ResponseAttachmentModel(
                    response_id=response.id,
                    position=position,
                    file_url=ref.file_url,
                    file_name=ref.file_name,
                )
            )
        if attachment_refs:
            self.session.flush()

        logger.info(
            "response_recorded",
            extra={
                "workflow_id": str(workflow_id),
                "step_id": str(step_id),
                "response_id": str(response.id),
                "responder_id": responder_id,
                "response_type": response.response_type,
                "revision": revision,
                "attachment_count": len(attachment_refs),
            },
        )
        return ResponseRecord(
            response_id=response.id,
            workflow_id=workflow_id,
            step_id=step_id,
            responder_id=responder_id,
            response_type=ResponseType(response.response_type),
            revision_number=revision,
            description=description,
            attachments=attachment_refs,
            created_at=response.created_at,
        )

    def responses_for(
        self,
        workflow_id: UUID,
        step_id: UUID,
        revision: int,
    ) -> tuple[ResponseRecord, ...]:
        rows = self.session.execute(
            select(ResponseModel)
            .where(
                ResponseModel.workflow_id == workflow_id,
                ResponseModel.step_id == step_id,
                ResponseModel.revision_number == revision,
            )
            .order_by(ResponseModel.created_at, ResponseModel.id)
        ).scalars()
        return tuple(r.to_dto() for r in rows)
