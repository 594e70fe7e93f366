"""Per-run serialization and evaluation deadlines for the gate controller."""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager

from attestgate.errors import EvaluationTimeout, StaleSnapshotConflict


class RunLockRegistry:
    """One lock per run id, created on demand and dropped when no one holds or waits on it.

    Advances for the same run serialize; advances for different runs never
    contend. Waiting is bounded: a caller that cannot acquire within the timeout
    gets StaleSnapshotConflict and should retry.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, tuple[threading.Lock, int]] = {}

    def _checkout(self, run_id: str) -> threading.Lock:
        with self._guard:
            lock, refs = self._locks.get(run_id, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._locks[run_id] = (lock, refs + 1)
            return lock

    def _checkin(self, run_id: str) -> None:
        with self._guard:
            lock, refs = self._locks[run_id]
            if refs <= 1:
                del self._locks[run_id]
            else:
                self._locks[run_id] = (lock, refs - 1)

    @contextmanager
    def hold(self, run_id: str, timeout: float) -> Iterator[None]:
        lock = self._checkout(run_id)
        try:
            if not lock.acquire(timeout=max(timeout, 0)):
                raise StaleSnapshotConflict(
                    f"another advance for run {run_id!r} is in flight; retry"
                )
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(run_id)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


run_locks = RunLockRegistry()


class Deadline:
    """Monotonic-clock deadline; check() raises EvaluationTimeout once it has passed."""

    def __init__(self, seconds: float, what: str = "evaluation") -> None:
        self.seconds = seconds
        self.what = what
        self._expires = time.monotonic() + seconds

    def remaining(self) -> float:
        return max(self._expires - time.monotonic(), 0.0)

    def check(self) -> None:
        if time.monotonic() > self._expires:
            raise EvaluationTimeout(f"{self.what} exceeded {self.seconds:g}s")
