# splitflags/services/sync_service.py
"""Synchronization pipeline for split definitions.

The synchronizer owns the ``since`` cursor and is the only writer of the
snapshot repository. Each tick it asks the fetch collaborator for the
changes after the cursor, runs them through the mutator, merges them into
a private copy of the current split map and publishes the result as a new
immutable snapshot.

Failure policy:
    - A failed fetch (any error raised by the fetcher) or a malformed
      envelope keeps the cursor and the current snapshot; the next tick
      retries.
    - A ``till`` lower than the cursor is an invariant violation. It is
      logged, recorded in ``status()`` and nothing is published.
    - ``till == since`` means no changes; nothing is published.
"""


from __future__ import annotations

import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

import structlog

from splitflags.engine.models import RuleSnapshot, Split
from splitflags.errors.handlers import FetchError, InvariantViolation
from splitflags.repositories.snapshot_repo import SnapshotRepository
from splitflags.services.split_mutator import archived_names, mutate


logger = structlog.get_logger(__name__)


class SplitChangesFetcher(Protocol):
    def fetch(self, since: int) -> Dict[str, Any]:
        ...


class SyncOutcome(Enum):
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    CANCELLED = "cancelled"


def _unpack(changes: Any) -> Tuple[int, List[Any]]:
    """Extract ``till`` and ``splits`` from a splitChanges envelope.

    Raises:
        FetchError: If the envelope is not usable.
    """
    if not isinstance(changes, dict):
        raise FetchError("splitChanges payload must be a JSON object.")

    till = changes.get("till")
    if isinstance(till, bool) or not isinstance(till, int):
        raise FetchError("splitChanges payload has no integer 'till'.")

    splits = changes.get("splits")
    if splits is None:
        splits = []
    if not isinstance(splits, list):
        raise FetchError("splitChanges 'splits' must be an array.")
    return till, splits


def merge_changes(
    current: Dict[str, Split], raw_splits: List[Any]
) -> Dict[str, Split]:
    """Apply a batch of raw changes to a copy of ``current``.

    Each name is resolved to its newest entry in the batch. Names whose
    newest entry is an archive marker are deleted; parsed splits are
    inserted or replace the existing definition unless they carry an older
    change number.

    Args:
        current: The split map of the previous snapshot (left untouched).
        raw_splits: The ``splits`` array of a splitChanges response.

    Returns:
        dict: The merged split map.
    """
    merged = dict(current)
    archived = archived_names(raw_splits)
    for name in archived:
        merged.pop(name, None)

    for name, split in mutate(raw_splits).items():
        if name in archived:
            continue
        existing = merged.get(name)
        if existing is not None and split.change_number < existing.change_number:
            logger.info(
                "sync.stale_split_ignored",
                split=name,
                change_number=split.change_number,
                current_change_number=existing.change_number,
            )
            continue
        merged[name] = split
    return merged


class SplitSynchronizer:
    """Keeps a ``SnapshotRepository`` in sync with the control plane.

    Args:
        fetcher: Fetch collaborator (``fetch(since) -> dict``).
        repository: Where snapshots are published. A new one is created
            when omitted.
        interval: Seconds between two scheduled ticks.
        greedy: Keep fetching within a tick while changes keep coming.
        max_fetches_per_tick: Upper bound for greedy fetching.
    """

    def __init__(
        self,
        fetcher: SplitChangesFetcher,
        repository: Optional[SnapshotRepository] = None,
        interval: float = 30.0,
        greedy: bool = True,
        max_fetches_per_tick: int = 10,
    ) -> None:
        self._fetcher = fetcher
        self._repository = repository or SnapshotRepository()
        self._interval = interval
        self._greedy = greedy
        self._max_fetches_per_tick = max(1, max_fetches_per_tick)

        current = self._repository.get()
        self._since = current.since if current is not None else -1

        self._sync_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._ready = threading.Event()
        if current is not None:
            self._ready.set()
        self._thread: Optional[threading.Thread] = None

        self._last_synced_at: Optional[datetime] = None
        self._last_error: Optional[str] = None

    @property
    def since(self) -> int:
        return self._since

    @property
    def repository(self) -> SnapshotRepository:
        return self._repository

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _record_failure(self, detail: str) -> SyncOutcome:
        self._last_error = detail
        return SyncOutcome.FAILED

    def _record_success(self) -> None:
        self._last_synced_at = datetime.now(timezone.utc)
        self._last_error = None
        self._ready.set()

    def sync_once(
        self, cancel_event: Optional[threading.Event] = None
    ) -> SyncOutcome:
        """Fetch and apply one batch of changes.

        Args:
            cancel_event: When set by the time the fetch returns, nothing
                is published.

        Returns:
            SyncOutcome: What happened to the published snapshot.
        """
        with self._sync_lock:
            since = self._since
            try:
                till, raw_splits = _unpack(self._fetcher.fetch(since))
            except FetchError as exc:
                logger.warning("sync.fetch_failed", since=since, detail=exc.detail)
                return self._record_failure(exc.detail)
            except Exception as exc:
                logger.exception("sync.fetch_failed", since=since)
                return self._record_failure(str(exc))

            if cancel_event is not None and cancel_event.is_set():
                logger.info("sync.cancelled", since=since)
                return SyncOutcome.CANCELLED

            if till < since:
                violation = InvariantViolation(
                    f"Received till={till} lower than since={since}."
                )
                logger.error("sync.cursor_regression", since=since, till=till)
                return self._record_failure(violation.detail)

            previous = self._repository.get()
            if till == since and previous is not None:
                self._record_success()
                return SyncOutcome.UNCHANGED

            current = dict(previous.splits) if previous is not None else {}
            merged = merge_changes(current, raw_splits)
            try:
                self._repository.publish(RuleSnapshot.build(merged, till))
            except InvariantViolation as exc:
                logger.error("sync.publish_rejected", detail=exc.detail)
                return self._record_failure(exc.detail)

            self._since = till
            self._record_success()
            logger.info(
                "sync.published",
                since=since,
                till=till,
                received=len(raw_splits),
                splits=len(merged),
            )
            return SyncOutcome.UPDATED

    def refresh(
        self, cancel_event: Optional[threading.Event] = None
    ) -> SyncOutcome:
        """Run one scheduled tick.

        In greedy mode the synchronizer keeps fetching while each fetch
        publishes something, up to ``max_fetches_per_tick`` fetches.

        Returns:
            SyncOutcome: ``UPDATED`` if any fetch of the tick published,
            otherwise the outcome of the last fetch.
        """
        outcome = self.sync_once(cancel_event)
        updated = outcome is SyncOutcome.UPDATED
        fetches = 1
        while (
            self._greedy
            and outcome is SyncOutcome.UPDATED
            and fetches < self._max_fetches_per_tick
        ):
            outcome = self.sync_once(cancel_event)
            fetches += 1
        return SyncOutcome.UPDATED if updated else outcome

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                self.refresh(stop_event)
            except Exception as exc:
                # Keep the loop alive; the current snapshot stays published.
                logger.exception("sync.tick_failed")
                self._last_error = str(exc)
            if stop_event.wait(self._interval):
                break

    def start(self) -> None:
        """Start the background synchronization thread (idempotent)."""
        if self.running:
            return
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            args=(self._stop_event,),
            name="splitflags-sync",
            daemon=True,
        )
        self._thread.start()
        logger.info("sync.started", interval=self._interval)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the background thread.

        Safe to call while a fetch is in flight: that fetch will not
        publish, and the last published snapshot stays live.

        Args:
            timeout: Seconds to wait for the thread to exit.
        """
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        logger.info("sync.stopped", since=self._since)

    def block_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Wait until the first successful synchronization.

        Returns:
            bool: ``True`` if ready, ``False`` on timeout.
        """
        return self._ready.wait(timeout)

    def status(self) -> Dict[str, Any]:
        """Diagnostics for health checks."""
        return {
            "ready": self._repository.is_ready,
            "running": self.running,
            "since": self._since,
            "last_synced_at": (
                self._last_synced_at.isoformat() if self._last_synced_at else None
            ),
            "last_error": self._last_error,
        }
