# splitflags/services/treatment_service.py
"""Public evaluation entry points.

``TreatmentClient`` reads the currently published snapshot and evaluates
splits against it. None of its methods raise: invalid input, unknown
splits, an uninitialized cache or an unexpected error all produce the
``control`` treatment.
"""


from __future__ import annotations

from numbers import Number
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional

import structlog

from splitflags.engine.evaluator import SegmentLookup, evaluate_split
from splitflags.engine.models import (
    CONTROL,
    EvaluationContext,
    EvaluationResult,
    Label,
    RuleSnapshot,
)
from splitflags.repositories.snapshot_repo import SnapshotRepository


logger = structlog.get_logger(__name__)

MAX_KEY_LENGTH = 250


def _normalize_key(key: Any) -> Optional[str]:
    """Return ``key`` as a string, or ``None`` when it cannot be used."""
    if isinstance(key, bool):
        return None
    if isinstance(key, Number):
        key = str(key)
    if not isinstance(key, str):
        return None
    key = key.strip()
    if not key or len(key) > MAX_KEY_LENGTH:
        return None
    return key


class TreatmentClient:
    """Evaluate splits against the snapshot held by ``repository``.

    Args:
        repository: The snapshot repository fed by the synchronizer.
        segment_lookup: Optional ``(segment_name, key) -> bool`` used by
            segment matchers.
    """

    def __init__(
        self,
        repository: SnapshotRepository,
        segment_lookup: Optional[SegmentLookup] = None,
    ) -> None:
        self._repository = repository
        self._segment_lookup = segment_lookup

    def _evaluate(
        self,
        snapshot: Optional[RuleSnapshot],
        key: Any,
        split_name: Any,
        attributes: Optional[Mapping[str, Any]],
        bucketing_key: Any,
    ) -> EvaluationResult:
        matching_key = _normalize_key(key)
        bucketing = None if bucketing_key is None else _normalize_key(bucketing_key)
        if matching_key is None or (bucketing_key is not None and bucketing is None):
            logger.warning("treatment.invalid_key", split=split_name)
            return EvaluationResult(CONTROL, Label.INVALID_INPUT)

        if not isinstance(split_name, str) or not split_name.strip():
            logger.warning("treatment.invalid_split_name", split=split_name)
            return EvaluationResult(CONTROL, Label.INVALID_INPUT)
        split_name = split_name.strip()

        if attributes is not None and not isinstance(attributes, Mapping):
            logger.warning("treatment.invalid_attributes", split=split_name)
            return EvaluationResult(CONTROL, Label.INVALID_INPUT)

        if snapshot is None:
            logger.warning("treatment.not_ready", split=split_name)
            return EvaluationResult(CONTROL, Label.NOT_READY)

        context = EvaluationContext(
            key=matching_key,
            bucketing_key=bucketing,
            attributes=MappingProxyType(dict(attributes or {})),
        )
        try:
            return evaluate_split(
                snapshot.splits.get(split_name),
                context,
                lookup=snapshot.splits.get,
                segment_lookup=self._segment_lookup,
            )
        except Exception:
            logger.exception("treatment.evaluation_failed", split=split_name)
            return EvaluationResult(CONTROL, Label.EXCEPTION)

    def get_treatment_with_result(
        self,
        key: Any,
        split_name: str,
        attributes: Optional[Mapping[str, Any]] = None,
        bucketing_key: Any = None,
    ) -> EvaluationResult:
        """Evaluate ``split_name`` for ``key`` and return the full result.

        Args:
            key: The matching key (string or number).
            split_name: The split to evaluate.
            attributes: Attributes used by the split's matchers.
            bucketing_key: Optional key used for bucketing instead of ``key``.

        Returns:
            EvaluationResult: treatment, label and change number.
        """
        return self._evaluate(
            self._repository.get(), key, split_name, attributes, bucketing_key
        )

    def get_treatment(
        self,
        key: Any,
        split_name: str,
        attributes: Optional[Mapping[str, Any]] = None,
        bucketing_key: Any = None,
    ) -> str:
        """Return the treatment of ``split_name`` for ``key``."""
        return self.get_treatment_with_result(
            key, split_name, attributes, bucketing_key
        ).treatment

    def get_treatments(
        self,
        key: Any,
        split_names: Iterable[str],
        attributes: Optional[Mapping[str, Any]] = None,
        bucketing_key: Any = None,
    ) -> Dict[str, str]:
        """Evaluate several splits for the same key against one snapshot.

        Returns:
            dict: Treatment per split name.
        """
        snapshot = self._repository.get()
        return {
            name: self._evaluate(
                snapshot, key, name, attributes, bucketing_key
            ).treatment
            for name in split_names
        }
