"""
Shared fixtures for the SplitFlags test-suite.

Raw split builders produce wire-format dictionaries (as returned by the
splitChanges endpoint) so tests can go through the real mutator.
"""


import copy

import pytest


def _all_keys_condition(partitions, label="default rule"):
    return {
        "conditionType": "ROLLOUT",
        "label": label,
        "matcherGroup": {
            "combiner": "AND",
            "matchers": [
                {
                    "keySelector": {"trafficType": "user", "attribute": None},
                    "matcherType": "ALL_KEYS",
                    "negate": False,
                }
            ],
        },
        "partitions": [
            {"treatment": treatment, "size": size}
            for treatment, size in partitions
        ],
    }


def _raw_split(name="demo", **overrides):
    split = {
        "name": name,
        "trafficTypeName": "user",
        "seed": 36,
        "status": "ACTIVE",
        "killed": False,
        "defaultTreatment": "off",
        "changeNumber": 100,
        "trafficAllocation": 100,
        "trafficAllocationSeed": 36,
        "algo": 1,
        "conditions": [_all_keys_condition([("on", 50), ("off", 50)])],
    }
    split.update(copy.deepcopy(overrides))
    return split


@pytest.fixture
def raw_split():
    """Return a builder for raw (wire-format) split definitions."""
    return _raw_split


@pytest.fixture
def all_keys_condition():
    """Return a builder for a whole-traffic raw condition."""
    return _all_keys_condition


class FakeFetcher:
    """Fetch collaborator replaying scripted responses.

    Each item of ``responses`` is either a dict (returned) or an exception
    instance (raised). ``calls`` records the ``since`` values received.
    """

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def fetch(self, since):
        self.calls.append(since)
        if not self.responses:
            return {"since": since, "till": since, "splits": []}
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def fake_fetcher():
    """Return the FakeFetcher class."""
    return FakeFetcher
