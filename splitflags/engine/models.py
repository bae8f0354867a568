# splitflags/engine/models.py
"""Internal representation of splits and evaluation values.

Everything here is immutable once built: the mutator creates these objects
from the wire format, the synchronizer publishes them inside a
``RuleSnapshot`` and the evaluator only ever reads them.
"""


from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, FrozenSet, Mapping, Optional, Tuple, Union


CONTROL = "control"


class Label:
    """Labels attached to an ``EvaluationResult``."""

    DEFINITION_NOT_FOUND = "definition not found"
    KILLED = "killed"
    NOT_IN_TRAFFIC_ALLOCATION = "not in traffic allocation"
    DEFAULT_RULE = "default rule"
    DEPENDENCY_CYCLE = "dependency cycle detected"
    NOT_READY = "not ready"
    INVALID_INPUT = "invalid input"
    EXCEPTION = "exception"


class Status(Enum):
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class HashAlgorithm(Enum):
    LEGACY = 1
    MURMUR = 2


class ConditionType(Enum):
    WHITELIST = "WHITELIST"
    ROLLOUT = "ROLLOUT"


class Combiner(Enum):
    AND = "AND"


class DataType(Enum):
    NUMBER = "NUMBER"
    DATETIME = "DATETIME"


class MatcherType(Enum):
    ALL_KEYS = "ALL_KEYS"
    IN_SEGMENT = "IN_SEGMENT"
    WHITELIST = "WHITELIST"
    EQUAL_TO = "EQUAL_TO"
    GREATER_THAN_OR_EQUAL_TO = "GREATER_THAN_OR_EQUAL_TO"
    LESS_THAN_OR_EQUAL_TO = "LESS_THAN_OR_EQUAL_TO"
    BETWEEN = "BETWEEN"
    EQUAL_TO_SET = "EQUAL_TO_SET"
    PART_OF_SET = "PART_OF_SET"
    CONTAINS_ALL_OF_SET = "CONTAINS_ALL_OF_SET"
    CONTAINS_ANY_OF_SET = "CONTAINS_ANY_OF_SET"
    STARTS_WITH = "STARTS_WITH"
    ENDS_WITH = "ENDS_WITH"
    CONTAINS_STRING = "CONTAINS_STRING"
    MATCHES_STRING = "MATCHES_STRING"
    EQUAL_TO_BOOLEAN = "EQUAL_TO_BOOLEAN"
    IN_SPLIT_TREATMENT = "IN_SPLIT_TREATMENT"


# ---------- Matcher data variants ----------


@dataclass(frozen=True)
class AllKeysData:
    pass


@dataclass(frozen=True)
class WhitelistData:
    """String whitelist shared by the set and string matchers.

    ``values`` keeps the wire order; ``value_set`` is the deduplicated set
    of the same strings, precomputed for the set matchers.
    """

    values: Tuple[str, ...]
    value_set: FrozenSet[str]
    case_sensitive: bool = True


@dataclass(frozen=True)
class NumericData:
    data_type: DataType
    value: float


@dataclass(frozen=True)
class BetweenData:
    data_type: DataType
    start: float
    end: float


@dataclass(frozen=True)
class BooleanData:
    value: bool


@dataclass(frozen=True)
class RegexData:
    pattern: str


@dataclass(frozen=True)
class SegmentData:
    segment_name: str


@dataclass(frozen=True)
class DependencyData:
    split_name: str
    treatments: FrozenSet[str]


MatcherData = Union[
    AllKeysData,
    WhitelistData,
    NumericData,
    BetweenData,
    BooleanData,
    RegexData,
    SegmentData,
    DependencyData,
]


@dataclass(frozen=True)
class Matcher:
    """One matcher term of a condition.

    ``attribute`` is ``None`` when the term applies to the key itself.
    """

    matcher_type: MatcherType
    data: MatcherData
    attribute: Optional[str] = None
    negate: bool = False


# ---------- Splits ----------


@dataclass(frozen=True)
class Partition:
    treatment: str
    size: int


@dataclass(frozen=True)
class Condition:
    matchers: Tuple[Matcher, ...]
    partitions: Tuple[Partition, ...]
    label: str = Label.DEFAULT_RULE
    combiner: Combiner = Combiner.AND
    condition_type: ConditionType = ConditionType.ROLLOUT


@dataclass(frozen=True)
class Split:
    name: str
    traffic_type_name: str
    seed: int
    killed: bool
    default_treatment: str
    change_number: int
    conditions: Tuple[Condition, ...] = ()
    traffic_allocation: int = 100
    traffic_allocation_seed: Optional[int] = None
    algo: HashAlgorithm = HashAlgorithm.LEGACY
    status: Status = Status.ACTIVE

    def treatments(self) -> Tuple[str, ...]:
        """Every treatment this split can return, in first-seen order."""
        seen = [self.default_treatment]
        for condition in self.conditions:
            for partition in condition.partitions:
                if partition.treatment not in seen:
                    seen.append(partition.treatment)
        return tuple(seen)


@dataclass(frozen=True)
class RuleSnapshot:
    """A published, read-only view of every known split.

    ``since`` is the cursor the snapshot was built up to (the ``till`` of
    the last applied change set).
    """

    splits: Mapping[str, Split] = field(
        default_factory=lambda: MappingProxyType({})
    )
    since: int = -1

    @classmethod
    def build(cls, splits: Mapping[str, Split], since: int) -> "RuleSnapshot":
        """Freeze a private copy of ``splits`` into a snapshot."""
        return cls(splits=MappingProxyType(dict(splits)), since=since)


# ---------- Evaluation values ----------


@dataclass(frozen=True)
class EvaluationContext:
    key: str
    bucketing_key: Optional[str] = None
    attributes: Mapping[str, Any] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @property
    def effective_bucketing_key(self) -> str:
        return self.bucketing_key if self.bucketing_key is not None else self.key


@dataclass(frozen=True)
class EvaluationResult:
    treatment: str
    label: str
    change_number: Optional[int] = None
