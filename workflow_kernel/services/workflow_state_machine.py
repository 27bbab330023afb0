"""
WorkflowStateMachine -- the workflow progression core.

Responsibility:
    Starts workflow instances, accepts responses, decides exactly once
    whether the current step is satisfied, moves the workflow to its next
    step or completes it, and records one history entry per transition.
    Owns the transaction boundary for each of these operations.

Architecture position:
    Kernel > Services -- imperative shell, owns transaction boundaries.
    Composes AssigneeRegistry, ResponseLedger and HistoryLog (all sharing
    this machine's session and clock) with the pure completion evaluator
    in domain/completion.py.

Submission flow:
    submit_response(workflow_id, step_id, responder_id, response_type, ...)
      1. Acquire the per-workflow lock (WorkflowLockRegistry)
      2. Read the workflow row FOR UPDATE
      3. Preconditions: IN_PROGRESS, step is current, responder assigned
      4. Append the response under the active revision
      5. NEGATIVE -> STEP_SENT_BACK (revision closes, position unchanged)
         POSITIVE -> evaluate; pending, STEP_ADVANCED or WORKFLOW_COMPLETED
      6. Commit (auto_commit) and release the lock

Invariants enforced:
    - A precondition violation aborts before any write.
    - Exactly one history entry per state-changing response, none for a
      pending one.
    - Status transitions follow WORKFLOW_TRANSITIONS.
    - Every submission updates the workflow row, bumping row_version, so
      two writers that bypass the shared lock cannot both commit.

Failure modes:
    - WorkflowNotFoundError, TemplateVersionNotFoundError.
    - WorkflowNotInProgressError, InvalidTemplateError,
      EmptyAssigneeListError, InvalidThresholdError (ValidationError).
    - NotAssigneeError (AuthorizationError).
    - StaleStepError.
    - ConcurrencyConflictError: lock timeout, or StaleDataError /
      IntegrityError / OperationalError raised while writing.

With ``auto_commit=False`` the caller commits; the per-workflow lock is
released when the method returns, so the caller's commit is serialized
by the database guards only.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from typing import TypeVar, assert_never
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.completion import evaluate_completion
from workflow_kernel.domain.workflow import (
    WORKFLOW_TRANSITIONS,
    AttachmentRef,
    CompletionRule,
    HistoryEventType,
    HistoryRecord,
    ResponseType,
    StartedWorkflow,
    StepDefinition,
    SubmissionOutcome,
    SubmissionResult,
    TemplateVersionRecord,
    WorkflowState,
    WorkflowStatus,
)
from workflow_kernel.exceptions import (
    ConcurrencyConflictError,
    EmptyAssigneeListError,
    InvalidTemplateError,
    InvalidThresholdError,
    StaleStepError,
    TemplateVersionNotFoundError,
    ValidationError,
    WorkflowKernelError,
    WorkflowNotFoundError,
    WorkflowNotInProgressError,
)
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_kernel.models.template import TemplateVersionModel
from workflow_kernel.models.workflow import WorkflowInstanceModel
from workflow_kernel.services.assignee_registry import AssigneeRegistry
from workflow_kernel.services.history_log import HistoryLog
from workflow_kernel.services.response_ledger import ResponseLedger
from workflow_kernel.services.workflow_lock import WorkflowLockRegistry

logger = get_logger("services.workflow_state_machine")

T = TypeVar("T")

_CONFLICT_ERRORS = (StaleDataError, IntegrityError, OperationalError)


class WorkflowStateMachine:
    """
    Orchestrates workflow transitions.

    Usage:
        locks = WorkflowLockRegistry()          # one per process
        machine = WorkflowStateMachine(session, lock_registry=locks)
        started = machine.start_workflow(version_id)
        result = machine.submit_response(
            started.workflow_id, started.current_step_id,
            "alice", ResponseType.POSITIVE,
        )
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        lock_registry: WorkflowLockRegistry | None = None,
        auto_commit: bool = True,
        lock_timeout_seconds: float | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._locks = lock_registry or WorkflowLockRegistry()
        self._auto_commit = auto_commit
        self._lock_timeout = lock_timeout_seconds

        self._registry = AssigneeRegistry(session, self._clock)
        self._ledger = ResponseLedger(session, self._clock)
        self._history = HistoryLog(session, self._clock)

    @property
    def session(self) -> Session:
        return self._session

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def start_workflow(self, version_id: UUID) -> StartedWorkflow:
        """
        Create a workflow instance positioned at the lowest step order.

        Preconditions:
            The version has at least one step, every step has at least one
            template assignee, and every K_OF_N step has
            ``1 <= k <= assignee count``.  The version becomes immutable
            once this call commits.
        """
        return self._run(
            "start_workflow",
            None,
            None,
            lambda: self._do_start(version_id),
            extra={"version_id": str(version_id)},
        )

    def submit_response(
        self,
        workflow_id: UUID,
        step_id: UUID,
        responder_id: str,
        response_type: ResponseType | str,
        description: str | None = None,
        attachments: Iterable[AttachmentRef] = (),
    ) -> SubmissionResult:
        """
        Record a response and apply whatever transition it triggers.

        Postconditions:
            - On success the response is durably recorded (when
              auto_commit=True) together with any transition and its
              history entry.
            - On failure nothing is written.
        """
        try:
            kind = ResponseType(response_type)
        except ValueError:
            raise ValidationError(f"Unknown response type {response_type!r}") from None
        attachment_refs = tuple(attachments)

        return self._run(
            "submit_response",
            workflow_id,
            responder_id,
            lambda: self._do_submit(
                workflow_id, step_id, responder_id, kind,
                description, attachment_refs,
            ),
            extra={"response_type": kind.value},
            lock=True,
            step_id=step_id,
        )

    def cancel_workflow(
        self,
        workflow_id: UUID,
        actor_id: str | None = None,
    ) -> HistoryRecord:
        """Move an IN_PROGRESS workflow to CANCELED and record it."""
        return self._run(
            "cancel_workflow",
            workflow_id,
            actor_id,
            lambda: self._do_cancel(workflow_id),
            lock=True,
        )

    def get_workflow_state(self, workflow_id: UUID) -> WorkflowState:
        """Read-only projection of the workflow; never writes."""
        from workflow_kernel.selectors.workflow_selector import WorkflowSelector

        return WorkflowSelector(self._session).get_workflow_state(workflow_id)

    # ------------------------------------------------------------------
    # Transaction handling
    # ------------------------------------------------------------------

    def _attempt(self, fn: Callable[[], T]) -> T:
        """Run ``fn`` then commit; roll back on any failure (auto_commit)."""
        try:
            result = fn()
            if self._auto_commit:
                self._session.commit()
            return result
        except Exception:
            if self._auto_commit:
                self._session.rollback()
            raise

    def _run(
        self,
        operation: str,
        workflow_id: UUID | None,
        actor_id: str | None,
        fn: Callable[[], T],
        extra: dict | None = None,
        lock: bool = False,
        step_id: UUID | None = None,
    ) -> T:
        """Run ``fn`` inside log context and, if asked, the workflow lock."""
        with LogContext.bind(
            correlation_id=str(uuid4()),
            workflow_id=str(workflow_id) if workflow_id else None,
            actor_id=actor_id,
            step_id=str(step_id) if step_id else None,
        ):
            logger.info(f"{operation}_started", extra=extra or {})
            t0 = time.monotonic()
            try:
                if lock:
                    assert workflow_id is not None
                    # Rollback happens before the lock is released
                    with self._locks.hold(workflow_id, self._lock_timeout):
                        result = self._attempt(fn)
                else:
                    result = self._attempt(fn)
            except _CONFLICT_ERRORS as exc:
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                logger.warning(
                    f"{operation}_conflict",
                    extra={
                        "duration_ms": duration_ms,
                        "db_error": type(exc).__name__,
                    },
                )
                raise ConcurrencyConflictError(
                    str(workflow_id),
                    f"{type(exc).__name__} while writing workflow",
                ) from exc
            except WorkflowKernelError as exc:
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                logger.warning(
                    f"{operation}_rejected",
                    extra={"duration_ms": duration_ms, "error_code": exc.code},
                )
                raise
            except Exception:
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                logger.error(
                    f"{operation}_failed",
                    extra={"duration_ms": duration_ms},
                    exc_info=True,
                )
                raise

            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            logger.info(
                f"{operation}_completed",
                extra={"duration_ms": duration_ms},
            )
            return result

    # ------------------------------------------------------------------
    # Operation bodies (no transaction management)
    # ------------------------------------------------------------------

    def _do_start(self, version_id: UUID) -> StartedWorkflow:
        version = self._load_version(version_id)
        self._validate_startable(version)
        first = version.first_step()
        assert first is not None

        now = self._clock.now()
        workflow = WorkflowInstanceModel(
            id=uuid4(),
            template_version_id=version_id,
            current_step_order=first.step_order,
            status=WorkflowStatus.IN_PROGRESS.value,
            created_at=now,
            updated_at=now,
            completed_at=None,
            history_seq=0,
        )
        self._session.add(workflow)
        self._session.flush()

        self._registry.materialize(workflow.id, first)
        entry = self._history.append(
            workflow,
            first.step_id,
            HistoryEventType.WORKFLOW_STARTED,
            from_step_order=None,
            to_step_order=first.step_order,
        )

        logger.info(
            "workflow_started",
            extra={
                "workflow_id": str(workflow.id),
                "version_id": str(version_id),
                "step_order": first.step_order,
                "assignee_count": len(first.assignees),
            },
        )
        return StartedWorkflow(
            workflow_id=workflow.id,
            current_step_id=first.step_id,
            current_step_order=first.step_order,
            history_entry_id=entry.entry_id,
        )

    def _do_submit(
        self,
        workflow_id: UUID,
        step_id: UUID,
        responder_id: str,
        response_type: ResponseType,
        description: str | None,
        attachments: tuple[AttachmentRef, ...],
    ) -> SubmissionResult:
        workflow = self._lock_workflow(workflow_id)
        self._require_in_progress(workflow)

        version = self._load_version(workflow.template_version_id)
        current = version.step_by_order(workflow.current_step_order)
        if current is None:
            raise InvalidTemplateError(
                f"Step order {workflow.current_step_order} missing from version",
                str(version.version_id),
            )
        if current.step_id != step_id:
            raise StaleStepError(
                str(workflow_id),
                str(step_id),
                str(current.step_id),
                workflow.current_step_order,
            )
        self._registry.require_authorized(workflow_id, step_id, responder_id)

        revision = self._ledger.active_revision(workflow_id, step_id)
        with LogContext.bind(revision=revision):
            return self._record_response(
                workflow, version, current, responder_id, response_type,
                revision, description, attachments,
            )

    def _record_response(
        self,
        workflow: WorkflowInstanceModel,
        version: TemplateVersionRecord,
        current: StepDefinition,
        responder_id: str,
        response_type: ResponseType,
        revision: int,
        description: str | None,
        attachments: tuple[AttachmentRef, ...],
    ) -> SubmissionResult:
        workflow_id = workflow.id
        step_id = current.step_id
        response = self._ledger.append(
            workflow_id,
            step_id,
            responder_id,
            response_type,
            revision,
            description=description,
            attachments=attachments,
        )

        now = self._clock.now()
        workflow.updated_at = now
        # Force the UPDATE (and row_version bump) even when the timestamp is unchanged
        flag_modified(workflow, "updated_at")
        from_order = workflow.current_step_order
        entry: HistoryRecord | None = None

        match response_type:
            case ResponseType.NEGATIVE:
                entry = self._history.append(
                    workflow,
                    step_id,
                    HistoryEventType.STEP_SENT_BACK,
                    from_step_order=from_order,
                    to_step_order=from_order,
                    triggered_by_response_id=response.response_id,
                )
                outcome = SubmissionOutcome.SENT_BACK
                logger.info(
                    "step_sent_back",
                    extra={
                        "step_order": from_order,
                        "revision": revision,
                        "next_revision": revision + 1,
                    },
                )
            case ResponseType.POSITIVE:
                responses = self._ledger.responses_for(workflow_id, step_id, revision)
                evaluation = evaluate_completion(
                    current.completion_rule,
                    [r.response_type for r in responses],
                    self._registry.assignee_count(workflow_id, step_id),
                    current.k,
                )
                if not evaluation.satisfied:
                    self._session.flush()
                    outcome = SubmissionOutcome.PENDING
                    logger.info(
                        "step_pending",
                        extra={
                            "step_order": from_order,
                            "revision": revision,
                            "rule": evaluation.rule.value,
                            "reason": evaluation.reason,
                        },
                    )
                else:
                    following = version.next_step_after(from_order)
                    if following is not None:
                        entry = self._history.append(
                            workflow,
                            step_id,
                            HistoryEventType.STEP_ADVANCED,
                            from_step_order=from_order,
                            to_step_order=following.step_order,
                            triggered_by_response_id=response.response_id,
                        )
                        workflow.current_step_order = following.step_order
                        self._session.flush()
                        self._registry.materialize(workflow_id, following)
                        outcome = SubmissionOutcome.ADVANCED
                        logger.info(
                            "step_advanced",
                            extra={
                                "from_step_order": from_order,
                                "to_step_order": following.step_order,
                                "reason": evaluation.reason,
                            },
                        )
                    else:
                        entry = self._history.append(
                            workflow,
                            step_id,
                            HistoryEventType.WORKFLOW_COMPLETED,
                            from_step_order=from_order,
                            to_step_order=None,
                            triggered_by_response_id=response.response_id,
                        )
                        self._transition(workflow, WorkflowStatus.COMPLETED, now)
                        outcome = SubmissionOutcome.COMPLETED
                        logger.info(
                            "workflow_completed",
                            extra={
                                "final_step_order": from_order,
                                "reason": evaluation.reason,
                            },
                        )
            case _:
                assert_never(response_type)

        return SubmissionResult(
            outcome=outcome,
            workflow_id=workflow_id,
            response_id=response.response_id,
            revision_number=revision,
            status=WorkflowStatus(workflow.status),
            current_step_order=workflow.current_step_order,
            history_entry_id=entry.entry_id if entry else None,
        )

    def _do_cancel(self, workflow_id: UUID) -> HistoryRecord:
        workflow = self._lock_workflow(workflow_id)
        self._require_in_progress(workflow)
        version = self._load_version(workflow.template_version_id)
        current = version.step_by_order(workflow.current_step_order)
        if current is None:
            raise InvalidTemplateError(
                f"Step order {workflow.current_step_order} missing from version",
                str(version.version_id),
            )

        now = self._clock.now()
        workflow.updated_at = now
        entry = self._history.append(
            workflow,
            current.step_id,
            HistoryEventType.WORKFLOW_CANCELED,
            from_step_order=workflow.current_step_order,
            to_step_order=None,
        )
        self._transition(workflow, WorkflowStatus.CANCELED, now)
        logger.info(
            "workflow_canceled",
            extra={"step_order": workflow.current_step_order},
        )
        return entry

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _transition(self, workflow: WorkflowInstanceModel, target: WorkflowStatus, now) -> None:
        current = WorkflowStatus(workflow.status)
        if target not in WORKFLOW_TRANSITIONS[current]:
            raise WorkflowNotInProgressError(str(workflow.id), current.value)
        workflow.status = target.value
        workflow.completed_at = now
        self._session.flush()

    def _lock_workflow(self, workflow_id: UUID) -> WorkflowInstanceModel:
        workflow = self._session.execute(
            select(WorkflowInstanceModel)
            .where(WorkflowInstanceModel.id == workflow_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if workflow is None:
            raise WorkflowNotFoundError(str(workflow_id))
        return workflow

    @staticmethod
    def _require_in_progress(workflow: WorkflowInstanceModel) -> None:
        if workflow.status != WorkflowStatus.IN_PROGRESS.value:
            raise WorkflowNotInProgressError(str(workflow.id), workflow.status)

    def _load_version(self, version_id: UUID) -> TemplateVersionRecord:
        version = self._session.execute(
            select(TemplateVersionModel)
            .where(TemplateVersionModel.id == version_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if version is None:
            raise TemplateVersionNotFoundError(str(version_id))
        return version.to_dto()

    @staticmethod
    def _validate_startable(version: TemplateVersionRecord) -> None:
        if not version.steps:
            raise InvalidTemplateError("version has no steps", str(version.version_id))
        for step in version.steps:
            if not step.assignees:
                raise EmptyAssigneeListError(str(step.step_id))
            if step.completion_rule is CompletionRule.K_OF_N:
                if step.k is None or step.k < 1:
                    raise InvalidThresholdError(
                        step.k, "K_OF_N requires a threshold", str(step.step_id),
                    )
                if step.k > len(step.assignees):
                    raise InvalidThresholdError(
                        step.k,
                        f"exceeds assignee count {len(step.assignees)}",
                        str(step.step_id),
                    )
