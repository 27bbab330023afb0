"""
ORM-level immutability enforcement for append-only workflow records.

SQLAlchemy fires mapper events before UPDATE / DELETE statements reach the
database.  The listeners registered here intercept those events and raise
ImmutabilityViolationError, aborting the flush before the database is
modified:

    session.flush()
         |
         v
    [before_update / before_delete] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Protected entities:

Entity                   | When immutable
-------------------------|------------------------------------------------
ResponseModel            | ALWAYS (ledger is append-only)
ResponseAttachmentModel  | ALWAYS (written with its response)
HistoryEntryModel        | ALWAYS (history is never mutated or deleted)
TemplateStepModel        | ALWAYS (no edit-step; revise via a new version)
TemplateStepAssigneeModel| ALWAYS
TemplateVersionModel     | Structural fields always; only is_active may change
WorkflowInstanceModel    | Once terminal (COMPLETED / CANCELED); never deleted

Usage:

    from workflow_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # create_tables() calls this
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from workflow_kernel.exceptions import ImmutabilityViolationError
from workflow_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_TERMINAL_STATUSES = frozenset({"COMPLETED", "CANCELED"})
_VERSION_MUTABLE_FIELDS = frozenset({"is_active"})


def _block(entity_type: str, target, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_append_only_update(mapper, connection, target):
    """Prevent any updates to append-only records."""
    entity_type = type(target).__name__.removesuffix("Model")
    _block(entity_type, target, "UPDATE", f"{entity_type} records are append-only")


def _check_append_only_delete(mapper, connection, target):
    """Prevent deletion of append-only records."""
    entity_type = type(target).__name__.removesuffix("Model")
    _block(entity_type, target, "DELETE", f"{entity_type} records cannot be deleted")


def _check_template_version_update(mapper, connection, target):
    """Only the activation flag of a template version may change."""
    insp = inspect(target)
    for column_attr in insp.mapper.column_attrs:
        if column_attr.key in _VERSION_MUTABLE_FIELDS:
            continue
        attr = insp.attrs[column_attr.key]
        if attr.history.has_changes():
            _block(
                "TemplateVersion",
                target,
                "UPDATE",
                f"Field '{attr.key}' of a template version cannot be modified",
            )


def _check_workflow_update(mapper, connection, target):
    """
    Prevent updates to workflows that were already terminal.

    The transition IN_PROGRESS -> COMPLETED / CANCELED is itself allowed;
    any change after it is blocked.
    """
    status_history = get_history(target, "status")

    if status_history.deleted:
        was_terminal = status_history.deleted[0] in _TERMINAL_STATUSES
    elif not status_history.added:
        was_terminal = target.status in _TERMINAL_STATUSES
    else:
        was_terminal = False

    if was_terminal:
        _block(
            "Workflow",
            target,
            "UPDATE",
            "Completed or canceled workflows cannot be modified",
        )


def _check_workflow_delete(mapper, connection, target):
    _block("Workflow", target, "DELETE", "Workflows cannot be deleted")


def _listener_table():
    from workflow_kernel.models.template import (
        TemplateStepAssigneeModel,
        TemplateStepModel,
        TemplateVersionModel,
    )
    from workflow_kernel.models.workflow import (
        HistoryEntryModel,
        ResponseAttachmentModel,
        ResponseModel,
        WorkflowInstanceModel,
    )

    listeners = []
    for model in (
        ResponseModel,
        ResponseAttachmentModel,
        HistoryEntryModel,
        TemplateStepModel,
        TemplateStepAssigneeModel,
    ):
        listeners.append((model, "before_update", _check_append_only_update))
        listeners.append((model, "before_delete", _check_append_only_delete))

    listeners.append((TemplateVersionModel, "before_update", _check_template_version_update))
    listeners.append((TemplateVersionModel, "before_delete", _check_append_only_delete))
    listeners.append((WorkflowInstanceModel, "before_update", _check_workflow_update))
    listeners.append((WorkflowInstanceModel, "before_delete", _check_workflow_delete))
    return listeners


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners (idempotent).

    Call after all models are imported and before any database operation.
    """
    for target, event_name, listener_fn in _listener_table():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)
