"""
Tests for TemplateSelector and WorkflowSelector.

Covers:
- list_templates(): active version per template
- get_template_version() / get_template(): full trees, not-found errors
- get_workflow_state(): idempotent, read-only, fresh across sessions
"""

from uuid import uuid4

import pytest

from workflow_kernel.domain.workflow import CompletionRule, ResponseType
from workflow_kernel.exceptions import (
    TemplateNotFoundError,
    TemplateVersionNotFoundError,
    WorkflowNotFoundError,
)
from workflow_kernel.selectors.workflow_selector import WorkflowSelector
from workflow_kernel.services.workflow_state_machine import WorkflowStateMachine


class TestTemplateSelector:
    def test_list_templates_reports_active_version(self, catalog, template_selector, session):
        first = catalog.create_template("Expenses")
        second = catalog.create_template("Purchases")
        draft = catalog.create_version(second.template_id)
        catalog.activate_version(draft.version_id)
        session.commit()

        summaries = {s.template_id: s for s in template_selector.list_templates()}

        assert summaries[first.template_id].active_version_number == 1
        assert summaries[second.template_id].active_version_id == draft.version_id
        assert summaries[second.template_id].active_version_number == 2

    def test_get_template_version_tree(self, build_template, template_selector):
        created, steps = build_template([
            ("Review", CompletionRule.ALL, ["bob", "alice"]),
            ("Quorum", CompletionRule.K_OF_N, ["x", "y"], 1),
        ])

        version = template_selector.get_template_version(created.version_id)

        assert [s.name for s in version.steps] == ["Review", "Quorum"]
        assert version.steps[0].assignees == ("alice", "bob")
        assert version.steps[1].k == 1

    def test_get_template_lists_all_versions(self, catalog, template_selector, session):
        created = catalog.create_template("Expenses", "Reimbursements")
        catalog.create_version(created.template_id)
        session.commit()

        template = template_selector.get_template(created.template_id)

        assert template.description == "Reimbursements"
        assert [v.version_number for v in template.versions] == [1, 2]

    def test_not_found(self, template_selector):
        with pytest.raises(TemplateVersionNotFoundError):
            template_selector.get_template_version(uuid4())
        with pytest.raises(TemplateNotFoundError):
            template_selector.get_template(uuid4())


class TestWorkflowSelector:
    def test_repeated_reads_are_equal(self, start_workflow, state_machine, workflow_selector):
        started, steps = start_workflow([("Review", CompletionRule.ALL, ["alice", "bob"])])
        state_machine.submit_response(
            started.workflow_id, steps[0].step_id, "alice", ResponseType.POSITIVE,
        )

        first = workflow_selector.get_workflow_state(started.workflow_id)
        second = workflow_selector.get_workflow_state(started.workflow_id)

        assert first == second
        assert first.template_name == "Expense approval"
        assert first.version_number == 1

    def test_state_machine_exposes_same_projection(self, start_workflow, state_machine, workflow_selector):
        started, _ = start_workflow([("Review", CompletionRule.ANY, ["alice"])])
        assert state_machine.get_workflow_state(started.workflow_id) == (
            workflow_selector.get_workflow_state(started.workflow_id)
        )

    def test_reads_do_not_write(self, start_workflow, workflow_selector, session):
        started, _ = start_workflow([("Review", CompletionRule.ANY, ["alice"])])

        workflow_selector.get_workflow_state(started.workflow_id)

        assert not session.new
        assert not session.dirty
        assert not session.deleted

    def test_long_lived_session_sees_other_writers(
        self, start_workflow, session_factory, deterministic_clock, lock_registry,
    ):
        started, steps = start_workflow([
            ("Review", CompletionRule.ANY, ["alice"]),
            ("Sign-off", CompletionRule.ANY, ["carol"]),
        ])
        reader_session = session_factory()
        writer_session = session_factory()
        try:
            reader = WorkflowSelector(reader_session)
            assert reader.get_workflow_state(started.workflow_id).workflow.current_step_order == 1
            reader_session.commit()

            WorkflowStateMachine(
                writer_session, clock=deterministic_clock, lock_registry=lock_registry,
            ).submit_response(
                started.workflow_id, steps[0].step_id, "alice", ResponseType.POSITIVE,
            )

            state = reader.get_workflow_state(started.workflow_id)
            assert state.workflow.current_step_order == 2
            assert state.active_assignees == ("carol",)
        finally:
            reader_session.close()
            writer_session.close()

    def test_assignees_and_history_follow_progression(
        self, start_workflow, state_machine, workflow_selector,
    ):
        started, steps = start_workflow([
            ("Review", CompletionRule.ANY, ["bob", "alice"]),
            ("Sign-off", CompletionRule.ANY, ["carol"]),
        ])
        state_machine.submit_response(
            started.workflow_id, steps[0].step_id, "bob", ResponseType.POSITIVE,
        )

        assignees = workflow_selector.get_assignees(started.workflow_id)
        history = workflow_selector.get_history(started.workflow_id)

        assert [(a.step_id, a.identity) for a in assignees] == [
            (steps[0].step_id, "alice"),
            (steps[0].step_id, "bob"),
            (steps[1].step_id, "carol"),
        ]
        assert [h.event_type.value for h in history] == ["WORKFLOW_STARTED", "STEP_ADVANCED"]
        assert history[1].to_step_order == 2

    def test_not_found(self, workflow_selector):
        with pytest.raises(WorkflowNotFoundError):
            workflow_selector.get_workflow_state(uuid4())
