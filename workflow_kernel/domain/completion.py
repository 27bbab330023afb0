"""
Completion rule evaluation (``workflow_kernel.domain.completion``).

Responsibility
--------------
Decides whether the responses recorded in one revision of a step satisfy
that step's completion rule, and which revision a new response belongs to.

Architecture position
---------------------
**Kernel domain layer** -- pure functions.  ZERO I/O.

Rules
-----
With ``positive`` / ``negative`` counted over one revision,
``submitted = positive + negative`` and ``total`` = assignee count:

* ``ALL``    -- satisfied iff ``submitted == total`` and ``positive == total``.
  A negative does not short-circuit the evaluation; the state machine
  closes the revision when a negative arrives.
* ``ANY``    -- satisfied iff ``positive >= 1``.
* ``K_OF_N`` -- satisfied iff ``positive >= k``.  An unset ``k`` can never
  be met.

Negatives are never consulted for ``ANY`` / ``K_OF_N``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import assert_never

from workflow_kernel.domain.workflow import CompletionRule, ResponseType


@dataclass(frozen=True)
class CompletionEvaluation:
    """Result of evaluating a step's completion rule."""

    satisfied: bool
    rule: CompletionRule
    positive: int
    negative: int
    total: int
    k: int | None = None
    reason: str = ""

    @property
    def submitted(self) -> int:
        return self.positive + self.negative


def evaluate_completion(
    rule: CompletionRule,
    response_types: Iterable[ResponseType | str],
    assignee_count: int,
    k: int | None = None,
) -> CompletionEvaluation:
    """
    Evaluate a completion rule over the responses of a single revision.

    Args:
        rule: The step's completion rule.
        response_types: Types of every response in the revision; raw
            values are coerced, so an unknown one raises ``ValueError``.
        assignee_count: Number of workflow assignees for the step.
        k: Threshold for ``K_OF_N``; ignored otherwise.

    Returns:
        CompletionEvaluation with the counts and the decision.
    """
    positive = 0
    negative = 0
    for response_type in response_types:
        kind = ResponseType(response_type)
        match kind:
            case ResponseType.POSITIVE:
                positive += 1
            case ResponseType.NEGATIVE:
                negative += 1
            case _:
                assert_never(kind)
    submitted = positive + negative
    total = assignee_count

    match rule:
        case CompletionRule.ALL:
            satisfied = submitted == total and positive == total
            reason = f"{positive}/{total} positive, {submitted}/{total} submitted"
        case CompletionRule.ANY:
            satisfied = positive >= 1
            reason = f"{positive} positive, at least 1 required"
        case CompletionRule.K_OF_N:
            if k is None:
                satisfied = False
                reason = "threshold k is not set"
            else:
                satisfied = positive >= k
                reason = f"{positive} positive, {k} required"
        case _:
            assert_never(rule)

    return CompletionEvaluation(
        satisfied=satisfied,
        rule=rule,
        positive=positive,
        negative=negative,
        total=total,
        k=k if rule is CompletionRule.K_OF_N else None,
        reason=reason,
    )


def resolve_active_revision(current_revision: int, current_is_closed: bool) -> int:
    """
    Revision a new response to a step belongs to.

    ``current_revision`` is the highest revision recorded for the
    (workflow, step) pair, 0 when nothing has been recorded.  A revision is
    closed once a negative response was recorded in it.
    """
    if current_revision < 0:
        raise ValueError(f"Revision cannot be negative: {current_revision}")
    if current_revision == 0:
        return 1
    if current_is_closed:
        return current_revision + 1
    return current_revision
