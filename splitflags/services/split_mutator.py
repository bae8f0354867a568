# splitflags/services/split_mutator.py
"""Split mutator: turns raw splitChanges entries into ``Split`` objects.

Pure transformation with partial-failure tolerance: every entry is
validated on its own, and a malformed entry is logged and skipped without
affecting the rest of the batch. Archived entries never produce a
``Split``; the synchronizer uses ``archived_names`` to delete them.
"""


from __future__ import annotations

import re
from typing import Any, Callable, Dict, FrozenSet, Iterable, Optional, Tuple

import structlog

from splitflags.engine.models import (
    AllKeysData,
    BetweenData,
    BooleanData,
    Combiner,
    Condition,
    ConditionType,
    DataType,
    DependencyData,
    HashAlgorithm,
    Label,
    Matcher,
    MatcherData,
    MatcherType,
    NumericData,
    Partition,
    RegexData,
    SegmentData,
    Split,
    Status,
    WhitelistData,
)
from splitflags.errors.handlers import SplitParseError
from splitflags.validators.split_validator import validate_raw_split


logger = structlog.get_logger(__name__)


# ---------- Matcher data parsers ----------


def _section(raw: Dict[str, Any], name: str) -> Any:
    section = raw.get(name)
    if section is None:
        raise SplitParseError(f"Missing {name} for {raw['matcherType']} matcher.")
    return section


def _parse_whitelist(raw: Dict[str, Any]) -> WhitelistData:
    section = _section(raw, "whitelistMatcherData")
    whitelist = section.get("whitelist") if isinstance(section, dict) else None
    if not isinstance(whitelist, list):
        raise SplitParseError("whitelistMatcherData.whitelist must be an array.")
    values = tuple(str(item) for item in whitelist)
    return WhitelistData(
        values=values,
        value_set=frozenset(values),
        case_sensitive=raw.get("caseSensitive", True),
    )


def _data_type(section: Dict[str, Any]) -> DataType:
    try:
        return DataType[section.get("dataType") or "NUMBER"]
    except KeyError:
        raise SplitParseError(f"Invalid data type: {section.get('dataType')}")


def _number(section: Dict[str, Any], field: str) -> float:
    value = section.get(field)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SplitParseError(f"Matcher field {field!r} must be a number.")
    return value


def _parse_unary_numeric(raw: Dict[str, Any]) -> NumericData:
    section = _section(raw, "unaryNumericMatcherData")
    if not isinstance(section, dict):
        raise SplitParseError("unaryNumericMatcherData must be an object.")
    return NumericData(data_type=_data_type(section), value=_number(section, "value"))


def _parse_between(raw: Dict[str, Any]) -> BetweenData:
    section = _section(raw, "betweenMatcherData")
    if not isinstance(section, dict):
        raise SplitParseError("betweenMatcherData must be an object.")
    return BetweenData(
        data_type=_data_type(section),
        start=_number(section, "start"),
        end=_number(section, "end"),
    )


def _parse_boolean(raw: Dict[str, Any]) -> BooleanData:
    value = _section(raw, "booleanMatcherData")
    if not isinstance(value, bool):
        raise SplitParseError("booleanMatcherData must be a boolean.")
    return BooleanData(value=value)


def _parse_regex(raw: Dict[str, Any]) -> RegexData:
    pattern = _section(raw, "stringMatcherData")
    if not isinstance(pattern, str):
        raise SplitParseError("stringMatcherData must be a string.")
    try:
        re.compile(pattern)
    except re.error as exc:
        raise SplitParseError(f"Invalid regular expression {pattern!r}: {exc}")
    return RegexData(pattern=pattern)


def _parse_segment(raw: Dict[str, Any]) -> SegmentData:
    section = _section(raw, "userDefinedSegmentMatcherData")
    name = section.get("segmentName") if isinstance(section, dict) else None
    if not isinstance(name, str) or not name:
        raise SplitParseError("userDefinedSegmentMatcherData.segmentName is required.")
    return SegmentData(segment_name=name)


def _parse_dependency(raw: Dict[str, Any]) -> DependencyData:
    section = _section(raw, "dependencyMatcherData")
    if not isinstance(section, dict):
        raise SplitParseError("dependencyMatcherData must be an object.")
    split_name = section.get("split")
    treatments = section.get("treatments")
    if not isinstance(split_name, str) or not isinstance(treatments, list):
        raise SplitParseError("dependencyMatcherData needs split and treatments.")
    return DependencyData(
        split_name=split_name,
        treatments=frozenset(str(t) for t in treatments),
    )


_DATA_PARSERS: Dict[MatcherType, Callable[[Dict[str, Any]], MatcherData]] = {
    MatcherType.ALL_KEYS: lambda raw: AllKeysData(),
    MatcherType.IN_SEGMENT: _parse_segment,
    MatcherType.WHITELIST: _parse_whitelist,
    MatcherType.EQUAL_TO: _parse_unary_numeric,
    MatcherType.GREATER_THAN_OR_EQUAL_TO: _parse_unary_numeric,
    MatcherType.LESS_THAN_OR_EQUAL_TO: _parse_unary_numeric,
    MatcherType.BETWEEN: _parse_between,
    MatcherType.EQUAL_TO_SET: _parse_whitelist,
    MatcherType.PART_OF_SET: _parse_whitelist,
    MatcherType.CONTAINS_ALL_OF_SET: _parse_whitelist,
    MatcherType.CONTAINS_ANY_OF_SET: _parse_whitelist,
    MatcherType.STARTS_WITH: _parse_whitelist,
    MatcherType.ENDS_WITH: _parse_whitelist,
    MatcherType.CONTAINS_STRING: _parse_whitelist,
    MatcherType.MATCHES_STRING: _parse_regex,
    MatcherType.EQUAL_TO_BOOLEAN: _parse_boolean,
    MatcherType.IN_SPLIT_TREATMENT: _parse_dependency,
}


# ---------- Structural parsers ----------


def parse_matcher(raw: Dict[str, Any]) -> Matcher:
    """Parse one wire matcher into a ``Matcher``.

    Raises:
        SplitParseError: On an unknown matcher type or malformed data.
    """
    raw_type = raw["matcherType"]
    try:
        matcher_type = MatcherType(raw_type.strip().upper())
    except ValueError:
        raise SplitParseError(f"Invalid matcher type: {raw_type}")

    selector = raw.get("keySelector") or {}
    return Matcher(
        matcher_type=matcher_type,
        data=_DATA_PARSERS[matcher_type](raw),
        attribute=selector.get("attribute"),
        negate=raw.get("negate", False),
    )


def parse_condition(raw: Dict[str, Any]) -> Condition:
    """Parse one wire condition, checking its combiner and partition sizes.

    Raises:
        SplitParseError: If the combiner is not supported or the partition
            sizes do not add up to 100.
    """
    group = raw["matcherGroup"]
    try:
        combiner = Combiner(group["combiner"])
    except ValueError:
        raise SplitParseError(f"Invalid combiner type: {group['combiner']}")

    partitions = tuple(
        Partition(treatment=p["treatment"], size=p["size"])
        for p in raw["partitions"]
    )
    total = sum(p.size for p in partitions)
    if total != 100:
        raise SplitParseError(f"Partition sizes add up to {total}, expected 100.")

    return Condition(
        matchers=tuple(parse_matcher(m) for m in group["matchers"]),
        partitions=partitions,
        label=raw.get("label") or Label.DEFAULT_RULE,
        combiner=combiner,
        condition_type=ConditionType(raw.get("conditionType") or "ROLLOUT"),
    )


def _algorithm(value: Optional[int]) -> HashAlgorithm:
    try:
        return HashAlgorithm(value)
    except ValueError:
        return HashAlgorithm.LEGACY


def parse_split(raw: Dict[str, Any]) -> Split:
    """Validate and parse a single raw split definition.

    Args:
        raw: One element of the ``splits`` array of a splitChanges response.

    Returns:
        Split: The immutable internal representation.

    Raises:
        SplitParseError: If the definition is malformed.
    """
    validate_raw_split(raw)
    name = raw["name"]

    try:
        conditions = tuple(parse_condition(c) for c in raw.get("conditions") or [])
    except SplitParseError as exc:
        raise SplitParseError(exc.detail, split_name=name)

    traffic_allocation_seed = raw.get("trafficAllocationSeed")
    if traffic_allocation_seed is None:
        traffic_allocation_seed = raw["seed"]

    traffic_allocation = raw.get("trafficAllocation")
    if traffic_allocation is None:
        traffic_allocation = 100

    return Split(
        name=name,
        traffic_type_name=raw["trafficTypeName"],
        seed=raw["seed"],
        killed=raw["killed"],
        default_treatment=raw["defaultTreatment"],
        change_number=raw["changeNumber"],
        conditions=conditions,
        traffic_allocation=traffic_allocation,
        traffic_allocation_seed=traffic_allocation_seed,
        algo=_algorithm(raw.get("algo")),
        status=Status(raw["status"]),
    )


def _is_archived(raw: Any) -> bool:
    return isinstance(raw, dict) and raw.get("status") == Status.ARCHIVED.value


def _raw_change_number(raw: Dict[str, Any]) -> int:
    value = raw.get("changeNumber")
    if isinstance(value, bool) or not isinstance(value, int):
        return -1
    return value


def archived_names(raw_splits: Iterable[Any]) -> FrozenSet[str]:
    """Return the names whose newest entry in the batch is an archive marker.

    Entries for the same name are compared by ``changeNumber``; on a tie
    the later entry wins, as in ``mutate``.
    """
    newest: Dict[str, Tuple[int, bool]] = {}
    for raw in raw_splits or ():
        if not isinstance(raw, dict) or not isinstance(raw.get("name"), str):
            continue
        change_number = _raw_change_number(raw)
        current = newest.get(raw["name"])
        if current is None or change_number >= current[0]:
            newest[raw["name"]] = (change_number, _is_archived(raw))
    return frozenset(name for name, (_, archived) in newest.items() if archived)


def mutate(raw_splits: Iterable[Any]) -> Dict[str, Split]:
    """Transform a batch of raw split definitions into ``Split`` objects.

    Archived entries are dropped and malformed entries are skipped with a
    warning. When a batch carries the same name twice, the higher change
    number wins.

    Args:
        raw_splits: The ``splits`` array of a splitChanges response.

    Returns:
        dict: Active splits keyed by name.
    """
    splits: Dict[str, Split] = {}
    for raw in raw_splits or ():
        if _is_archived(raw):
            continue

        try:
            split = parse_split(raw)
        except SplitParseError as exc:
            logger.warning(
                "mutator.split_skipped",
                split=exc.split_name,
                detail=exc.detail,
            )
            continue

        current = splits.get(split.name)
        if current is None or split.change_number >= current.change_number:
            splits[split.name] = split

    return splits
