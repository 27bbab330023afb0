"""
HistoryLog -- append-only audit trail of workflow transitions.

Responsibility:
    Writes one history entry per state-changing event, allocating the next
    per-workflow sequence number from the workflow row.

Architecture position:
    Kernel > Services.  Called by the state machine only, inside the same
    transaction that moves the workflow.

Invariants enforced:
    - Sequence numbers are contiguous per workflow, starting at 1.
    - (workflow_id, sequence) is unique, so two writers that both believe
      they own the next transition cannot both commit.
    - Entries are never updated or deleted.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import select

from workflow_kernel.domain.workflow import HistoryEventType, HistoryRecord
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.workflow import HistoryEntryModel, WorkflowInstanceModel
from workflow_kernel.services.base import BaseService

logger = get_logger("services.history_log")


class HistoryLog(BaseService):
    """Append-only history writer."""

    def append(
        self,
        workflow: WorkflowInstanceModel,
        step_id: UUID,
        event_type: HistoryEventType,
        from_step_order: int | None,
        to_step_order: int | None,
        triggered_by_response_id: UUID | None = None,
    ) -> HistoryRecord:
        """Record a transition for ``workflow`` (already loaded in this session)."""
        workflow.history_seq = (workflow.history_seq or 0) + 1
        entry = HistoryEntryModel(
            id=uuid4(),
            workflow_id=workflow.id,
            step_id=step_id,
            event_type=HistoryEventType(event_type).value,
            sequence=workflow.history_seq,
            from_step_order=from_step_order,
            to_step_order=to_step_order,
            triggered_by_response_id=triggered_by_response_id,
            created_at=self.clock.now(),
        )
        self.session.add(entry)
        self.session.flush()

        logger.debug(
            "history_entry_appended",
            extra={
                "workflow_id": str(workflow.id),
                "entry_id": str(entry.id),
                "event_type": entry.event_type,
                "sequence": entry.sequence,
                "from_step_order": from_step_order,
                "to_step_order": to_step_order,
            },
        )
        return entry.to_dto()

    def entries_for(self, workflow_id: UUID) -> tuple[HistoryRecord, ...]:
        rows = self.session.execute(
            select(HistoryEntryModel)
            .where(HistoryEntryModel.workflow_id == workflow_id)
            .order_by(HistoryEntryModel.sequence)
        ).scalars()
        return tuple(r.to_dto() for r in rows)
