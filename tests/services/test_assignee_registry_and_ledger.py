"""
Tests for AssigneeRegistry and ResponseLedger.

Covers:
- materialize(): copies template assignees, idempotent
- is_authorized() / require_authorized(): AuthorizationError, not ValidationError
- assignee_count() / list_assignees()
- current_revision() / is_revision_closed() / active_revision()
- append(): attachments, duplicate responder per revision, append-only rows
- responses_for(): revision scoping
"""

import pytest
from sqlalchemy import select

from workflow_kernel.domain.workflow import AttachmentRef, CompletionRule, ResponseType
from workflow_kernel.exceptions import (
    AuthorizationError,
    DuplicateResponseError,
    ImmutabilityViolationError,
    NotAssigneeError,
    ValidationError,
)
from workflow_kernel.models.workflow import ResponseModel

P = ResponseType.POSITIVE
N = ResponseType.NEGATIVE


@pytest.fixture
def two_step_workflow(start_workflow):
    return start_workflow([
        ("Review", CompletionRule.ALL, ["alice", "bob"]),
        ("Sign-off", CompletionRule.ANY, ["carol"]),
    ])


class TestAssigneeRegistry:
    def test_start_materializes_first_step_only(self, two_step_workflow, registry):
        started, steps = two_step_workflow

        assert registry.assignee_count(started.workflow_id, steps[0].step_id) == 2
        assert registry.assignee_count(started.workflow_id, steps[1].step_id) == 0

    def test_materialize_is_idempotent(self, two_step_workflow, registry):
        started, steps = two_step_workflow

        registry.materialize(started.workflow_id, steps[1])
        rows = registry.materialize(started.workflow_id, steps[1])

        assert [r.identity for r in rows] == ["carol"]
        assert len(registry.list_assignees(started.workflow_id)) == 3

    def test_authorization(self, two_step_workflow, registry):
        started, steps = two_step_workflow

        assert registry.is_authorized(started.workflow_id, steps[0].step_id, "alice")
        assert not registry.is_authorized(started.workflow_id, steps[0].step_id, "carol")
        assert not registry.is_authorized(started.workflow_id, steps[1].step_id, "carol")

    def test_require_authorized_raises_authorization_error(self, two_step_workflow, registry):
        started, steps = two_step_workflow

        with pytest.raises(NotAssigneeError) as exc_info:
            registry.require_authorized(started.workflow_id, steps[0].step_id, "mallory")
        assert isinstance(exc_info.value, AuthorizationError)
        assert not isinstance(exc_info.value, ValidationError)
        assert exc_info.value.code == "NOT_ASSIGNEE"


class TestRevisions:
    def test_no_responses_means_revision_zero(self, two_step_workflow, ledger):
        started, steps = two_step_workflow
        assert ledger.current_revision(started.workflow_id, steps[0].step_id) == 0
        assert ledger.active_revision(started.workflow_id, steps[0].step_id) == 1

    def test_positive_keeps_revision_open(self, two_step_workflow, ledger):
        started, steps = two_step_workflow
        ledger.append(started.workflow_id, steps[0].step_id, "alice", P, 1)

        assert not ledger.is_revision_closed(started.workflow_id, steps[0].step_id, 1)
        assert ledger.active_revision(started.workflow_id, steps[0].step_id) == 1

    def test_negative_closes_revision(self, two_step_workflow, ledger):
        started, steps = two_step_workflow
        ledger.append(started.workflow_id, steps[0].step_id, "alice", P, 1)
        ledger.append(started.workflow_id, steps[0].step_id, "bob", N, 1)

        assert ledger.is_revision_closed(started.workflow_id, steps[0].step_id, 1)
        assert ledger.active_revision(started.workflow_id, steps[0].step_id) == 2

    def test_responses_are_scoped_to_revision(self, two_step_workflow, ledger):
        started, steps = two_step_workflow
        step_id = steps[0].step_id
        ledger.append(started.workflow_id, step_id, "alice", N, 1)
        ledger.append(started.workflow_id, step_id, "alice", P, 2)

        first = ledger.responses_for(started.workflow_id, step_id, 1)
        second = ledger.responses_for(started.workflow_id, step_id, 2)
        assert [r.response_type for r in first] == [N]
        assert [r.response_type for r in second] == [P]


class TestAppend:
    def test_attachments_are_stored_in_order(self, two_step_workflow, ledger, session):
        started, steps = two_step_workflow
        refs = (
            AttachmentRef("https://files.example/receipt.pdf", "receipt.pdf"),
            AttachmentRef("https://files.example/photo.png", "photo.png"),
        )

        record = ledger.append(
            started.workflow_id, steps[0].step_id, "alice", P, 1,
            description="Looks fine", attachments=refs,
        )
        session.commit()

        stored = ledger.responses_for(started.workflow_id, steps[0].step_id, 1)
        assert record.attachments == refs
        assert stored[0].attachments == refs
        assert stored[0].description == "Looks fine"

    def test_attachment_requires_url_and_name(self, two_step_workflow, ledger):
        started, steps = two_step_workflow
        with pytest.raises(ValidationError):
            ledger.append(
                started.workflow_id, steps[0].step_id, "alice", P, 1,
                attachments=[AttachmentRef("", "x.pdf")],
            )

    def test_one_response_per_responder_per_revision(self, two_step_workflow, ledger):
        started, steps = two_step_workflow
        ledger.append(started.workflow_id, steps[0].step_id, "alice", P, 1)

        with pytest.raises(DuplicateResponseError):
            ledger.append(started.workflow_id, steps[0].step_id, "alice", N, 1)

    def test_responses_cannot_be_modified(self, two_step_workflow, ledger, session):
        started, steps = two_step_workflow
        ledger.append(started.workflow_id, steps[0].step_id, "alice", P, 1)
        session.commit()

        row = session.execute(select(ResponseModel)).scalars().one()
        row.response_type = N.value
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_responses_cannot_be_deleted(self, two_step_workflow, ledger, session):
        started, steps = two_step_workflow
        ledger.append(started.workflow_id, steps[0].step_id, "alice", P, 1)
        session.commit()

        row = session.execute(select(ResponseModel)).scalars().one()
        session.delete(row)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
