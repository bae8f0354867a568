# splitflags/engine/matchers.py
"""Matcher library: one pure predicate per matcher type.

Every predicate has the signature ``(data, value, env) -> bool`` where
``data`` is the matcher's typed configuration, ``value`` is the attribute
value (or the key) under test and ``env`` gives access to the few matchers
that need more than the value itself (segments and split dependencies).

Predicates never raise for malformed values: anything that is not of the
expected shape is a non-match.
"""


from __future__ import annotations

import re
from datetime import datetime
from functools import lru_cache
from numbers import Number
from typing import Any, Callable, Dict, FrozenSet, NamedTuple, Optional

import structlog

from splitflags.engine.models import (
    DataType,
    EvaluationResult,
    Label,
    Matcher,
    MatcherType,
)


logger = structlog.get_logger(__name__)

SECONDS_PER_MINUTE = 60
SECONDS_PER_DAY = 86400


class MatchEnv(NamedTuple):
    """Collaborators available to matchers during one evaluation.

    Attributes:
        key: The matching key of the evaluation.
        segment_lookup: ``(segment_name, key) -> bool`` or ``None`` when no
            segment data is available.
        evaluate_dependency: ``split_name -> EvaluationResult`` evaluating
            another split for the same context.
    """

    key: str
    segment_lookup: Optional[Callable[[str, str], bool]] = None
    evaluate_dependency: Optional[Callable[[str], EvaluationResult]] = None


# ---------- Normalization helpers ----------


def _to_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _as_string_set(value: Any) -> Optional[FrozenSet[str]]:
    """Coerce a collection to a deduplicated set of strings."""
    if not isinstance(value, (list, tuple, set, frozenset)):
        return None
    return frozenset(_to_str(item) for item in value)


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, Number):
        return None
    return value


def _as_epoch_seconds(value: Any) -> Optional[int]:
    if isinstance(value, datetime):
        return int(value.timestamp())
    number = _as_number(value)
    return None if number is None else int(number)


def _truncate(seconds: int, granularity: int) -> int:
    return seconds - seconds % granularity


def _normalize_attribute(data_type: DataType, value: Any, granularity: int):
    if data_type is DataType.DATETIME:
        seconds = _as_epoch_seconds(value)
        return None if seconds is None else _truncate(seconds, granularity)
    return _as_number(value)


def _normalize_config(data_type: DataType, value: float, granularity: int):
    # DATETIME bounds arrive in epoch milliseconds
    if data_type is DataType.DATETIME:
        return _truncate(int(value // 1000), granularity)
    return value


@lru_cache(maxsize=256)
def _compile(pattern: str) -> "re.Pattern[str]":
    return re.compile(pattern)


# ---------- Predicates ----------


def match_all_keys(data, value, env) -> bool:
    return True


def match_in_segment(data, value, env) -> bool:
    if env.segment_lookup is None or not isinstance(value, str):
        return False
    return bool(env.segment_lookup(data.segment_name, value))


def match_whitelist(data, value, env) -> bool:
    if value is None or isinstance(value, (list, tuple, set, frozenset, dict)):
        return False
    return _to_str(value) in data.value_set


def match_equal_to(data, value, env) -> bool:
    normalized = _normalize_attribute(data.data_type, value, SECONDS_PER_DAY)
    if normalized is None:
        return False
    return normalized == _normalize_config(data.data_type, data.value, SECONDS_PER_DAY)


def match_greater_than_or_equal_to(data, value, env) -> bool:
    normalized = _normalize_attribute(data.data_type, value, SECONDS_PER_MINUTE)
    if normalized is None:
        return False
    return normalized >= _normalize_config(
        data.data_type, data.value, SECONDS_PER_MINUTE
    )


def match_less_than_or_equal_to(data, value, env) -> bool:
    normalized = _normalize_attribute(data.data_type, value, SECONDS_PER_MINUTE)
    if normalized is None:
        return False
    return normalized <= _normalize_config(
        data.data_type, data.value, SECONDS_PER_MINUTE
    )


def match_between(data, value, env) -> bool:
    normalized = _normalize_attribute(data.data_type, value, SECONDS_PER_MINUTE)
    if normalized is None:
        return False
    start = _normalize_config(data.data_type, data.start, SECONDS_PER_MINUTE)
    end = _normalize_config(data.data_type, data.end, SECONDS_PER_MINUTE)
    return start <= normalized <= end


def match_equal_to_set(data, value, env) -> bool:
    candidates = _as_string_set(value)
    return candidates is not None and candidates == data.value_set


def match_part_of_set(data, value, env) -> bool:
    candidates = _as_string_set(value)
    return bool(candidates) and candidates <= data.value_set


def match_contains_all_of_set(data, value, env) -> bool:
    candidates = _as_string_set(value)
    if not candidates or not data.value_set:
        return False
    return data.value_set <= candidates


def match_contains_any_of_set(data, value, env) -> bool:
    candidates = _as_string_set(value)
    return candidates is not None and bool(candidates & data.value_set)


def _string_test(data, value, test: Callable[[str, str], bool]) -> bool:
    if not isinstance(value, str):
        return False
    if not data.case_sensitive:
        value = value.lower()
    for item in data.values:
        candidate = item if data.case_sensitive else item.lower()
        if test(value, candidate):
            return True
    return False


def match_starts_with(data, value, env) -> bool:
    return _string_test(data, value, str.startswith)


def match_ends_with(data, value, env) -> bool:
    return _string_test(data, value, str.endswith)


def match_contains_string(data, value, env) -> bool:
    return _string_test(data, value, lambda v, item: item in v)


def match_matches_string(data, value, env) -> bool:
    if not isinstance(value, str):
        return False
    try:
        return _compile(data.pattern).search(value) is not None
    except re.error:
        logger.warning("matcher.invalid_regex", pattern=data.pattern)
        return False


def match_equal_to_boolean(data, value, env) -> bool:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered not in ("true", "false"):
            return False
        value = lowered == "true"
    if not isinstance(value, bool):
        return False
    return value is data.value


def match_in_split_treatment(data, value, env) -> bool:
    if env.evaluate_dependency is None:
        return False
    result = env.evaluate_dependency(data.split_name)
    if result.label == Label.DEPENDENCY_CYCLE:
        return False
    return result.treatment in data.treatments


_MATCHERS: Dict[MatcherType, Callable[[Any, Any, MatchEnv], bool]] = {
    MatcherType.ALL_KEYS: match_all_keys,
    MatcherType.IN_SEGMENT: match_in_segment,
    MatcherType.WHITELIST: match_whitelist,
    MatcherType.EQUAL_TO: match_equal_to,
    MatcherType.GREATER_THAN_OR_EQUAL_TO: match_greater_than_or_equal_to,
    MatcherType.LESS_THAN_OR_EQUAL_TO: match_less_than_or_equal_to,
    MatcherType.BETWEEN: match_between,
    MatcherType.EQUAL_TO_SET: match_equal_to_set,
    MatcherType.PART_OF_SET: match_part_of_set,
    MatcherType.CONTAINS_ALL_OF_SET: match_contains_all_of_set,
    MatcherType.CONTAINS_ANY_OF_SET: match_contains_any_of_set,
    MatcherType.STARTS_WITH: match_starts_with,
    MatcherType.ENDS_WITH: match_ends_with,
    MatcherType.CONTAINS_STRING: match_contains_string,
    MatcherType.MATCHES_STRING: match_matches_string,
    MatcherType.EQUAL_TO_BOOLEAN: match_equal_to_boolean,
    MatcherType.IN_SPLIT_TREATMENT: match_in_split_treatment,
}


def match(matcher: Matcher, value: Any, env: MatchEnv) -> bool:
    """Run the predicate registered for ``matcher.matcher_type``.

    ``negate`` is not applied here; the condition evaluator owns it.

    Args:
        matcher: The matcher term to apply.
        value: The attribute value (or key) under test.
        env: Evaluation collaborators for segment and dependency matchers.

    Returns:
        bool: Whether the value matches.
    """
    predicate = _MATCHERS[matcher.matcher_type]
    try:
        result = predicate(matcher.data, value, env)
    except (TypeError, ValueError, OverflowError):
        result = False

    logger.debug(
        "matcher.evaluated",
        matcher_type=matcher.matcher_type.value,
        value=value,
        result=result,
    )
    return result
