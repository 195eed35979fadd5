"""Per-requisition serialization.

Transitions on different requisitions run fully in parallel; transitions
on the same requisition are serialized in-process by a lock scoped to its
id. The database row lock and the requisition version check back this up
across processes.
"""

from contextlib import contextmanager
import threading
from typing import Dict, Hashable, Iterator


class _Entry:
    __slots__ = ("lock", "refs")

    def __init__(self):
        self.lock = threading.Lock()
        self.refs = 0


class RequisitionLockRegistry:
    """Lifecycle-scoped registry of per-requisition locks."""

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: Dict[Hashable, _Entry] = {}

    @contextmanager
    def hold(self, requisition_id: Hashable) -> Iterator[None]:
        """Hold the lock for ``requisition_id`` for the duration of the block."""
        with self._guard:
            entry = self._entries.get(requisition_id)
            if entry is None:
                entry = self._entries[requisition_id] = _Entry()
            entry.refs += 1

        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.refs -= 1
                if entry.refs == 0:
                    del self._entries[requisition_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
