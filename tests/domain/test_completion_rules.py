"""
Tests for the pure completion rule evaluator and revision rule.

Covers:
- ALL: every assignee positive; a negative never satisfies
- ANY: first positive satisfies; negatives ignored
- K_OF_N: threshold on positives; unset k never satisfies
- resolve_active_revision(): first, open, and closed revisions
- Property tests over arbitrary response sequences (hypothesis)
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from workflow_kernel.domain.completion import (
    CompletionEvaluation,
    evaluate_completion,
    resolve_active_revision,
)
from workflow_kernel.domain.workflow import CompletionRule, ResponseType

P = ResponseType.POSITIVE
N = ResponseType.NEGATIVE

response_lists = st.lists(st.sampled_from([P, N]), max_size=12)


class TestAllRule:
    def test_satisfied_when_every_assignee_is_positive(self):
        result = evaluate_completion(CompletionRule.ALL, [P, P], assignee_count=2)
        assert result.satisfied
        assert result.positive == 2
        assert result.submitted == 2

    def test_pending_until_everyone_responds(self):
        result = evaluate_completion(CompletionRule.ALL, [P], assignee_count=2)
        assert not result.satisfied

    def test_negative_blocks_even_when_everyone_responded(self):
        result = evaluate_completion(CompletionRule.ALL, [P, N], assignee_count=2)
        assert not result.satisfied
        assert result.negative == 1

    def test_k_is_ignored(self):
        result = evaluate_completion(CompletionRule.ALL, [P], assignee_count=1, k=5)
        assert result.satisfied
        assert result.k is None


class TestAnyRule:
    def test_single_positive_satisfies(self):
        result = evaluate_completion(CompletionRule.ANY, [P], assignee_count=3)
        assert result.satisfied

    def test_negatives_alone_never_satisfy(self):
        result = evaluate_completion(CompletionRule.ANY, [N, N], assignee_count=3)
        assert not result.satisfied

    def test_negative_does_not_cancel_positive(self):
        result = evaluate_completion(CompletionRule.ANY, [N, P], assignee_count=3)
        assert result.satisfied

    def test_no_responses(self):
        assert not evaluate_completion(CompletionRule.ANY, [], assignee_count=1).satisfied


class TestKOfNRule:
    def test_reaching_threshold_satisfies(self):
        result = evaluate_completion(CompletionRule.K_OF_N, [P, P], assignee_count=3, k=2)
        assert result.satisfied
        assert result.k == 2

    def test_below_threshold(self):
        result = evaluate_completion(CompletionRule.K_OF_N, [P, N], assignee_count=3, k=2)
        assert not result.satisfied

    def test_unset_threshold_never_satisfies(self):
        result = evaluate_completion(CompletionRule.K_OF_N, [P, P, P], assignee_count=3)
        assert not result.satisfied
        assert "not set" in result.reason


class TestResponseTypeValues:
    def test_string_values_are_counted_by_type(self):
        result = evaluate_completion(CompletionRule.ANY, ["POSITIVE"], assignee_count=1)
        assert result.satisfied
        assert (result.positive, result.negative) == (1, 0)

    def test_mixed_strings_and_members(self):
        result = evaluate_completion(
            CompletionRule.ALL, ["POSITIVE", P, "NEGATIVE"], assignee_count=3,
        )
        assert (result.positive, result.negative) == (2, 1)
        assert not result.satisfied

    def test_unknown_value_rejected(self):
        with pytest.raises(ValueError):
            evaluate_completion(CompletionRule.ANY, ["MAYBE"], assignee_count=1)


class TestResolveActiveRevision:
    def test_first_response_opens_revision_one(self):
        assert resolve_active_revision(0, False) == 1

    def test_open_revision_is_reused(self):
        assert resolve_active_revision(2, False) == 2

    def test_closed_revision_opens_next(self):
        assert resolve_active_revision(2, True) == 3

    def test_negative_revision_rejected(self):
        with pytest.raises(ValueError):
            resolve_active_revision(-1, False)


class TestEvaluatorProperties:
    @given(responses=response_lists, extra=st.integers(min_value=0, max_value=5))
    @settings(max_examples=200)
    def test_all_matches_definition(self, responses, extra):
        total = len(responses) + extra
        result = evaluate_completion(CompletionRule.ALL, responses, total)
        expected = extra == 0 and N not in responses
        assert result.satisfied == expected

    @given(responses=response_lists)
    @settings(max_examples=200)
    def test_any_depends_only_on_positives(self, responses):
        result = evaluate_completion(CompletionRule.ANY, responses, max(len(responses), 1))
        assert result.satisfied == (P in responses)

    @given(responses=response_lists, k=st.integers(min_value=1, max_value=12))
    @settings(max_examples=200)
    def test_k_of_n_ignores_negatives(self, responses, k):
        with_negatives = evaluate_completion(
            CompletionRule.K_OF_N, responses, len(responses), k,
        )
        positives_only = evaluate_completion(
            CompletionRule.K_OF_N,
            [r for r in responses if r is P],
            len(responses),
            k,
        )
        assert with_negatives.satisfied == positives_only.satisfied
        assert with_negatives.satisfied == (responses.count(P) >= k)

    @given(
        rule=st.sampled_from(list(CompletionRule)),
        responses=response_lists,
    )
    def test_counts_are_consistent(self, rule, responses):
        result = evaluate_completion(rule, responses, len(responses), k=1)
        assert isinstance(result, CompletionEvaluation)
        assert result.submitted == len(responses)
        assert result.positive + result.negative == result.submitted

    @given(
        current=st.integers(min_value=0, max_value=1000),
        closed=st.booleans(),
    )
    def test_revision_never_goes_backwards(self, current, closed):
        closed = closed and current > 0
        revision = resolve_active_revision(current, closed)
        assert revision >= max(current, 1)
        assert revision - current <= 1
