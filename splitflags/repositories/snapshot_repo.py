# splitflags/repositories/snapshot_repo.py
"""In-memory holder of the published rule snapshot.

The repository keeps a single reference to an immutable ``RuleSnapshot``.
Publishing swaps that reference in one assignment, so readers either see
the previous snapshot or the new one, never a partially merged state.
Readers take no lock; writers are serialized so that the cursor check and
the swap happen together.
"""


from __future__ import annotations

import threading
from typing import Optional

from splitflags.engine.models import RuleSnapshot
from splitflags.errors.handlers import InvariantViolation


class SnapshotRepository:
    """Atomic, read-shared store for the current ``RuleSnapshot``."""

    def __init__(self, snapshot: Optional[RuleSnapshot] = None) -> None:
        self._snapshot = snapshot
        self._write_lock = threading.Lock()

    @property
    def is_ready(self) -> bool:
        """Whether a snapshot has been published at least once."""
        return self._snapshot is not None

    def get(self) -> Optional[RuleSnapshot]:
        """Return the current snapshot, or ``None`` before the first publish."""
        return self._snapshot

    def publish(self, snapshot: RuleSnapshot) -> None:
        """Replace the current snapshot.

        Args:
            snapshot: The new snapshot. Its ``since`` cursor must not be
                lower than the current one.

        Raises:
            InvariantViolation: If the cursor would move backwards.
        """
        with self._write_lock:
            current = self._snapshot
            if current is not None and snapshot.since < current.since:
                raise InvariantViolation(
                    f"Snapshot cursor cannot go back from {current.since} "
                    f"to {snapshot.since}."
                )
            self._snapshot = snapshot
