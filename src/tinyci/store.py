# store.py
from __future__ import annotations

import threading
from collections import OrderedDict
from typing import List, Optional

from .model import Run


class RunStore:
    """
    In-memory run records, newest last.

    Once more than `max_runs` are held, the oldest *terminal* runs are
    dropped; pending/running runs are never evicted.
    """

    def __init__(self, max_runs: int = 100):
        if max_runs < 1:
            raise ValueError("max_runs must be >= 1")
        self.max_runs = max_runs
        self._runs: "OrderedDict[str, Run]" = OrderedDict()
        self._lock = threading.Lock()

    def add(self, run: Run) -> None:
        with self._lock:
            self._runs[run.id] = run
            self._evict()

    def _evict(self) -> None:
        excess = len(self._runs) - self.max_runs
        if excess <= 0:
            return
        for run_id in [rid for rid, r in self._runs.items() if r.terminal][:excess]:
            del self._runs[run_id]

    def get(self, run_id: str) -> Optional[Run]:
        with self._lock:
            return self._runs.get(run_id)

    def list(self) -> List[Run]:
        """Newest first."""
        with self._lock:
            return list(reversed(self._runs.values()))

    def finished(self, run: Run) -> None:
        """Called when a run reaches a terminal state so eviction can catch up."""
        with self._lock:
            if run.id in self._runs:
                self._evict()

    def __len__(self) -> int:
        with self._lock:
            return len(self._runs)
