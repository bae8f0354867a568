"""
Unit tests for condition and split evaluation.

Splits are built from wire-format dictionaries through ``parse_split`` so
the tests cover the same shapes the synchronizer publishes. Seeds are
chosen so that the legacy bucket of key ``"k1"`` is known:
``bucket(36, "k1") == 30`` and ``bucket(12, "k1") == 70``.
"""


from types import MappingProxyType

import pytest

from splitflags.engine import hashing
from splitflags.engine.evaluator import (
    evaluate_condition,
    evaluate_split,
    select_treatment,
)
from splitflags.engine.matchers import MatchEnv
from splitflags.engine.models import (
    CONTROL,
    EvaluationContext,
    Label,
    Partition,
)
from splitflags.services.split_mutator import parse_condition, parse_split


def _ctx(key="k1", bucketing_key=None, **attributes):
    return EvaluationContext(
        key=key,
        bucketing_key=bucketing_key,
        attributes=MappingProxyType(attributes),
    )


def _attribute_condition(matcher_type, attribute, data, partitions, negate=False, label="rule"):
    matcher = {
        "keySelector": {"trafficType": "user", "attribute": attribute},
        "matcherType": matcher_type,
        "negate": negate,
    }
    matcher.update(data)
    return {
        "label": label,
        "matcherGroup": {"combiner": "AND", "matchers": [matcher]},
        "partitions": [{"treatment": t, "size": s} for t, s in partitions],
    }


# ---------- Scenarios ----------


def test_rollout_bucket_30_gets_on(raw_split):
    split = parse_split(raw_split(seed=36))
    result = evaluate_split(split, _ctx("k1"))
    assert result.treatment == "on"
    assert result.label == "default rule"
    assert result.change_number == 100


def test_rollout_bucket_70_gets_off(raw_split):
    split = parse_split(raw_split(seed=12))
    assert evaluate_split(split, _ctx("k1")).treatment == "off"


def test_killed_split_returns_default_regardless_of_attributes(raw_split):
    split = parse_split(raw_split(killed=True, defaultTreatment="off"))
    result = evaluate_split(split, _ctx("k1", plan="premium"))
    assert result.treatment == "off"
    assert result.label == Label.KILLED


def test_missing_split_is_control():
    result = evaluate_split(None, _ctx())
    assert result.treatment == CONTROL
    assert result.label == Label.DEFINITION_NOT_FOUND
    assert result.change_number is None


# ---------- Traffic allocation ----------


def test_key_outside_traffic_allocation_gets_default(raw_split):
    # bucket(36, "k1") == 30, outside a 20% allocation
    split = parse_split(
        raw_split(seed=36, trafficAllocation=20, trafficAllocationSeed=36)
    )
    result = evaluate_split(split, _ctx("k1"))
    assert result.treatment == "off"
    assert result.label == Label.NOT_IN_TRAFFIC_ALLOCATION


def test_key_inside_traffic_allocation_is_evaluated(raw_split):
    split = parse_split(
        raw_split(seed=36, trafficAllocation=31, trafficAllocationSeed=36)
    )
    assert evaluate_split(split, _ctx("k1")).treatment == "on"


def test_traffic_allocation_uses_bucketing_key(raw_split):
    split = parse_split(
        raw_split(seed=36, trafficAllocation=20, trafficAllocationSeed=36)
    )
    # Matching key differs, bucketing key is "k1"
    result = evaluate_split(split, _ctx("someone-else", bucketing_key="k1"))
    assert result.label == Label.NOT_IN_TRAFFIC_ALLOCATION


# ---------- Condition scan ----------


def test_first_matching_condition_wins(raw_split, all_keys_condition):
    conditions = [
        _attribute_condition(
            "WHITELIST",
            "plan",
            {"whitelistMatcherData": {"whitelist": ["premium"]}},
            [("premium_on", 100)],
            label="premium users",
        ),
        all_keys_condition([("off", 100)]),
    ]
    split = parse_split(raw_split(conditions=conditions))

    result = evaluate_split(split, _ctx(plan="premium"))
    assert result.treatment == "premium_on"
    assert result.label == "premium users"

    assert evaluate_split(split, _ctx(plan="free")).treatment == "off"


def test_no_matching_condition_falls_back_to_default_rule(raw_split):
    conditions = [
        _attribute_condition(
            "WHITELIST",
            "plan",
            {"whitelistMatcherData": {"whitelist": ["premium"]}},
            [("on", 100)],
        )
    ]
    split = parse_split(raw_split(conditions=conditions, defaultTreatment="dflt"))
    result = evaluate_split(split, _ctx())
    assert result.treatment == "dflt"
    assert result.label == Label.DEFAULT_RULE


def test_missing_attribute_is_false_even_when_negated():
    condition = parse_condition(
        _attribute_condition(
            "WHITELIST",
            "plan",
            {"whitelistMatcherData": {"whitelist": ["premium"]}},
            [("on", 100)],
            negate=True,
        )
    )
    env = MatchEnv(key="k1")
    assert evaluate_condition(condition, _ctx(), env) is False
    assert evaluate_condition(condition, _ctx(plan=None), env) is False
    assert evaluate_condition(condition, _ctx(plan="free"), env) is True
    assert evaluate_condition(condition, _ctx(plan="premium"), env) is False


def test_and_combiner_requires_every_term():
    raw = _attribute_condition(
        "WHITELIST",
        "plan",
        {"whitelistMatcherData": {"whitelist": ["premium"]}},
        [("on", 100)],
    )
    raw["matcherGroup"]["matchers"].append(
        {
            "keySelector": {"trafficType": "user", "attribute": "age"},
            "matcherType": "GREATER_THAN_OR_EQUAL_TO",
            "unaryNumericMatcherData": {"dataType": "NUMBER", "value": 18},
        }
    )
    condition = parse_condition(raw)
    env = MatchEnv(key="k1")
    assert evaluate_condition(condition, _ctx(plan="premium", age=20), env) is True
    assert evaluate_condition(condition, _ctx(plan="premium", age=12), env) is False
    assert evaluate_condition(condition, _ctx(plan="free", age=20), env) is False


def test_matcher_without_attribute_uses_key():
    condition = parse_condition(
        _attribute_condition(
            "WHITELIST",
            None,
            {"whitelistMatcherData": {"whitelist": ["k1"]}},
            [("on", 100)],
        )
    )
    env = MatchEnv(key="k1")
    assert evaluate_condition(condition, _ctx("k1"), env) is True
    assert evaluate_condition(condition, _ctx("k2"), env) is False


# ---------- Partition selection ----------


def test_select_treatment_covers_every_bucket_exactly_once():
    partitions = (
        Partition("a", 10),
        Partition("b", 0),
        Partition("c", 65),
        Partition("d", 25),
    )
    counts = {"a": 0, "b": 0, "c": 0, "d": 0}
    for bucket in range(100):
        counts[select_treatment(partitions, bucket)] += 1
    assert counts == {"a": 10, "b": 0, "c": 65, "d": 25}


def test_select_treatment_boundaries():
    partitions = (Partition("on", 50), Partition("off", 50))
    assert select_treatment(partitions, 0) == "on"
    assert select_treatment(partitions, 49) == "on"
    assert select_treatment(partitions, 50) == "off"
    assert select_treatment(partitions, 99) == "off"


def test_partition_select_uses_patched_bucket(monkeypatch, raw_split):
    split = parse_split(raw_split())
    monkeypatch.setattr(hashing, "get_bucket", lambda seed, key, algo: 70)
    assert evaluate_split(split, _ctx("k1")).treatment == "off"
    monkeypatch.setattr(hashing, "get_bucket", lambda seed, key, algo: 30)
    assert evaluate_split(split, _ctx("k1")).treatment == "on"


def test_evaluator_only_returns_listed_treatments(raw_split):
    split = parse_split(raw_split(algo=2, seed=-1234567))
    allowed = set(split.treatments())
    for i in range(300):
        assert evaluate_split(split, _ctx(f"user-{i}")).treatment in allowed


# ---------- Dependencies ----------


def _dependency_condition(parent, treatments):
    return {
        "label": f"in {parent}",
        "matcherGroup": {
            "combiner": "AND",
            "matchers": [
                {
                    "keySelector": None,
                    "matcherType": "IN_SPLIT_TREATMENT",
                    "negate": False,
                    "dependencyMatcherData": {
                        "split": parent,
                        "treatments": treatments,
                    },
                }
            ],
        },
        "partitions": [{"treatment": "child_on", "size": 100}],
    }


def test_dependency_matcher_evaluates_parent_split(raw_split):
    parent = parse_split(raw_split(name="parent", seed=36))  # "on" for k1
    child = parse_split(
        raw_split(name="child", conditions=[_dependency_condition("parent", ["on"])])
    )
    splits = {"parent": parent, "child": child}

    result = evaluate_split(child, _ctx("k1"), lookup=splits.get)
    assert result.treatment == "child_on"
    assert result.label == "in parent"


def test_dependency_on_missing_split_is_non_match(raw_split):
    child = parse_split(
        raw_split(name="child", conditions=[_dependency_condition("ghost", ["on"])])
    )
    result = evaluate_split(child, _ctx("k1"), lookup={}.get)
    assert result.treatment == "off"
    assert result.label == Label.DEFAULT_RULE


def test_dependency_cycle_is_detected(raw_split):
    a = parse_split(
        raw_split(name="a", conditions=[_dependency_condition("b", ["child_on", "control"])])
    )
    b = parse_split(
        raw_split(name="b", conditions=[_dependency_condition("a", ["child_on", "control"])])
    )
    splits = {"a": a, "b": b}

    result = evaluate_split(a, _ctx("k1"), lookup=splits.get)
    # b sees a cycle, so b falls back to its default, which a does not accept
    assert result.treatment == "off"
    assert result.label == Label.DEFAULT_RULE


def test_self_dependency_is_detected(raw_split):
    a = parse_split(
        raw_split(name="a", conditions=[_dependency_condition("a", ["control"])])
    )
    result = evaluate_split(a, _ctx("k1"), lookup={"a": a}.get)
    assert result.label == Label.DEFAULT_RULE
    assert result.treatment == "off"
