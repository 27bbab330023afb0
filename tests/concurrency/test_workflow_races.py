"""
Concurrency tests for workflow progression.

Threads submit satisfying responses to the same workflow at the same
instant (released together by a Barrier), each with its own session and
a shared WorkflowLockRegistry.  Exactly one submission may move the
workflow; the others must fail cleanly without partial writes.

Runs on the default SQLite database.  Point DATABASE_URL at PostgreSQL to
exercise SELECT ... FOR UPDATE as well.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from threading import Barrier
from uuid import uuid4

import pytest

from workflow_kernel.domain.workflow import (
    CompletionRule,
    HistoryEventType,
    ResponseType,
    SubmissionOutcome,
    WorkflowStatus,
)
from workflow_kernel.exceptions import (
    ConcurrencyConflictError,
    StaleStepError,
    WorkflowNotInProgressError,
)
from workflow_kernel.services.workflow_lock import WorkflowLockRegistry
from workflow_kernel.services.workflow_state_machine import WorkflowStateMachine

pytestmark = pytest.mark.slow_locks

P = ResponseType.POSITIVE


def race(session_factory, clock, lock_registry, workflow_id, step_id, responders):
    """Submit one POSITIVE per responder concurrently; return results and errors."""
    barrier = Barrier(len(responders))

    def submit(responder):
        session = session_factory()
        try:
            machine = WorkflowStateMachine(
                session, clock=clock, lock_registry=lock_registry,
            )
            barrier.wait()
            try:
                return machine.submit_response(workflow_id, step_id, responder, P)
            except (StaleStepError, WorkflowNotInProgressError, ConcurrencyConflictError) as exc:
                return exc
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=len(responders)) as pool:
        outcomes = list(pool.map(submit, responders))

    results = [o for o in outcomes if not isinstance(o, Exception)]
    errors = [o for o in outcomes if isinstance(o, Exception)]
    return results, errors


class TestConcurrentSatisfyingSubmissions:
    """Scenario D: simultaneous satisfying responses yield one transition."""

    def test_any_rule_advances_exactly_once(
        self, start_workflow, session_factory, deterministic_clock, lock_registry, workflow_selector,
    ):
        responders = [f"approver-{i}" for i in range(6)]
        started, steps = start_workflow([
            ("Approve", CompletionRule.ANY, responders),
            ("Archive", CompletionRule.ANY, ["clerk"]),
        ])

        results, errors = race(
            session_factory, deterministic_clock, lock_registry,
            started.workflow_id, steps[0].step_id, responders,
        )

        assert [r.outcome for r in results] == [SubmissionOutcome.ADVANCED]
        assert len(errors) == len(responders) - 1
        assert all(isinstance(e, StaleStepError) for e in errors)

        state = workflow_selector.get_workflow_state(started.workflow_id)
        advanced = [h for h in state.history if h.event_type is HistoryEventType.STEP_ADVANCED]
        assert len(advanced) == 1
        assert len(state.responses) == 1
        assert state.workflow.current_step_order == 2
        assert [h.sequence for h in state.history] == [1, 2]

    def test_final_step_completes_exactly_once(
        self, start_workflow, session_factory, deterministic_clock, lock_registry, workflow_selector,
    ):
        responders = ["a", "b", "c", "d"]
        started, steps = start_workflow([("Quorum", CompletionRule.K_OF_N, responders, 1)])

        results, errors = race(
            session_factory, deterministic_clock, lock_registry,
            started.workflow_id, steps[0].step_id, responders,
        )

        assert [r.outcome for r in results] == [SubmissionOutcome.COMPLETED]
        assert all(isinstance(e, WorkflowNotInProgressError) for e in errors)

        state = workflow_selector.get_workflow_state(started.workflow_id)
        assert state.workflow.status is WorkflowStatus.COMPLETED
        completed = [h for h in state.history if h.event_type is HistoryEventType.WORKFLOW_COMPLETED]
        assert len(completed) == 1

    def test_all_rule_counts_every_concurrent_positive(
        self, start_workflow, session_factory, deterministic_clock, lock_registry, workflow_selector,
    ):
        responders = ["a", "b", "c", "d", "e"]
        started, steps = start_workflow([
            ("Everyone", CompletionRule.ALL, responders),
            ("Archive", CompletionRule.ANY, ["clerk"]),
        ])

        results, errors = race(
            session_factory, deterministic_clock, lock_registry,
            started.workflow_id, steps[0].step_id, responders,
        )

        assert errors == []
        outcomes = sorted(r.outcome.value for r in results)
        assert outcomes == ["ADVANCED"] + ["PENDING"] * 4

        state = workflow_selector.get_workflow_state(started.workflow_id)
        assert len(state.responses) == 5
        assert state.workflow.current_step_order == 2


class TestWorkflowLockRegistry:
    def test_hold_is_exclusive_per_workflow(self):
        registry = WorkflowLockRegistry(default_timeout=5.0)
        workflow_id = uuid4()
        inside = 0
        peak = 0
        guard = threading.Lock()
        barrier = Barrier(4)

        def worker():
            nonlocal inside, peak
            barrier.wait()
            with registry.hold(workflow_id):
                with guard:
                    inside += 1
                    peak = max(peak, inside)
                with guard:
                    inside -= 1

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert peak == 1
        assert registry.active_count() == 0

    def test_different_workflows_do_not_contend(self):
        registry = WorkflowLockRegistry(default_timeout=0.1)
        with registry.hold(uuid4()):
            with registry.hold(uuid4()):
                assert registry.active_count() == 2

    def test_timeout_raises_retryable_conflict(self):
        registry = WorkflowLockRegistry()
        workflow_id = uuid4()
        acquired = threading.Event()
        release = threading.Event()

        def holder():
            with registry.hold(workflow_id):
                acquired.set()
                release.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        acquired.wait(5)
        try:
            with pytest.raises(ConcurrencyConflictError) as exc_info:
                with registry.hold(workflow_id, timeout=0.05):
                    pass
            assert exc_info.value.retryable
        finally:
            release.set()
            thread.join()
        assert registry.active_count() == 0
