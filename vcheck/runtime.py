from __future__ import annotations

from threading import Event, Lock

SelectionKey = tuple[str, str, str]  # (service_key, tenant, environment)


class RunState:
    """Transient per-run state; a fresh instance for every run."""

    def __init__(self) -> None:
        self.lock = Lock()
        self.selection_counts: dict[SelectionKey, int] = {}
        self.stop = Event()

    def next_ordinal(self, key: SelectionKey) -> int:
        """Count one more instance of ``key`` and return its 1-based ordinal."""
        with self.lock:
            n = self.selection_counts.get(key, 0) + 1
            self.selection_counts[key] = n
            return n
