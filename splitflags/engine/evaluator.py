# splitflags/engine/evaluator.py
"""Condition and split evaluation.

Provides pure functions that decide the treatment of a split for a given
evaluation context. One split evaluation walks these steps:

1. Entry: a missing split yields ``control``; a killed split yields its
   default treatment.
2. Traffic allocation: when the split only covers part of the traffic, keys
   whose allocation bucket falls outside it get the default treatment.
3. Condition scan: conditions are tried in declared order; the first one
   that matches wins.
4. Partition select: the key's bucket picks a partition of the matched
   condition.

Nothing in this module raises for bad input or missing data.
"""


from __future__ import annotations

from typing import Any, Callable, Iterable, Optional, Set

import structlog

from splitflags.engine import hashing
from splitflags.engine.matchers import MatchEnv, match
from splitflags.engine.models import (
    CONTROL,
    Condition,
    EvaluationContext,
    EvaluationResult,
    Label,
    Matcher,
    Partition,
    Split,
)


logger = structlog.get_logger(__name__)

SplitLookup = Callable[[str], Optional[Split]]
SegmentLookup = Callable[[str, str], bool]

_MISSING = object()


def _term_value(matcher: Matcher, context: EvaluationContext) -> Any:
    if matcher.attribute is None:
        return context.key
    value = context.attributes.get(matcher.attribute, _MISSING)
    return _MISSING if value is None else value


def evaluate_condition(
    condition: Condition, context: EvaluationContext, env: MatchEnv
) -> bool:
    """Return whether every matcher term of ``condition`` holds (AND).

    A term on a missing or ``None`` attribute is false whatever its
    ``negate`` flag says.

    Args:
        condition: The condition to test.
        context: The evaluation context.
        env: Collaborators for segment and dependency matchers.

    Returns:
        bool: ``True`` when the condition matches.
    """
    for matcher in condition.matchers:
        value = _term_value(matcher, context)
        if value is _MISSING:
            return False
        if match(matcher, value, env) == matcher.negate:
            return False
    return True


def select_treatment(partitions: Iterable[Partition], bucket: int) -> Optional[str]:
    """Pick the first partition whose cumulative size exceeds ``bucket``.

    Args:
        partitions: Partitions in declared order.
        bucket: A bucket in ``[0, 99]``.

    Returns:
        The treatment of the selected partition, or ``None`` when the
        partitions do not cover the bucket.
    """
    covered = 0
    for partition in partitions:
        covered += partition.size
        if covered > bucket:
            return partition.treatment
    return None


def evaluate_split(
    split: Optional[Split],
    context: EvaluationContext,
    lookup: Optional[SplitLookup] = None,
    segment_lookup: Optional[SegmentLookup] = None,
    visited: Optional[Set[str]] = None,
) -> EvaluationResult:
    """Evaluate ``split`` for ``context``.

    Args:
        split: The split to evaluate, or ``None`` when it is unknown.
        context: Key, bucketing key and attributes of the evaluation.
        lookup: Resolves other splits by name, for dependency matchers.
        segment_lookup: ``(segment_name, key) -> bool`` for segment matchers.
        visited: Names of splits already being evaluated higher up the
            dependency chain of this call.

    Returns:
        EvaluationResult: treatment, label and change number.
    """
    if split is None:
        return EvaluationResult(CONTROL, Label.DEFINITION_NOT_FOUND)

    visited = set(visited or ())
    if split.name in visited:
        logger.warning(
            "evaluator.dependency_cycle",
            split=split.name,
            chain=sorted(visited),
        )
        return EvaluationResult(
            CONTROL, Label.DEPENDENCY_CYCLE, split.change_number
        )
    visited.add(split.name)

    if split.killed:
        return EvaluationResult(
            split.default_treatment, Label.KILLED, split.change_number
        )

    bucketing_key = context.effective_bucketing_key

    if split.traffic_allocation < 100:
        allocation_seed = split.traffic_allocation_seed
        if allocation_seed is None:
            allocation_seed = split.seed
        bucket = hashing.get_bucket(allocation_seed, bucketing_key, split.algo)
        if bucket >= split.traffic_allocation:
            return EvaluationResult(
                split.default_treatment,
                Label.NOT_IN_TRAFFIC_ALLOCATION,
                split.change_number,
            )

    def _evaluate_dependency(name: str) -> EvaluationResult:
        dependency = lookup(name) if lookup is not None else None
        return evaluate_split(
            dependency,
            context,
            lookup=lookup,
            segment_lookup=segment_lookup,
            visited=visited,
        )

    env = MatchEnv(
        key=context.key,
        segment_lookup=segment_lookup,
        evaluate_dependency=_evaluate_dependency,
    )

    for condition in split.conditions:
        if not evaluate_condition(condition, context, env):
            continue

        bucket = hashing.get_bucket(split.seed, bucketing_key, split.algo)
        treatment = select_treatment(condition.partitions, bucket)
        if treatment is None:
            logger.error(
                "evaluator.partitions_incomplete",
                split=split.name,
                bucket=bucket,
            )
            return EvaluationResult(
                CONTROL, Label.EXCEPTION, split.change_number
            )
        return EvaluationResult(treatment, condition.label, split.change_number)

    return EvaluationResult(
        split.default_treatment, Label.DEFAULT_RULE, split.change_number
    )
