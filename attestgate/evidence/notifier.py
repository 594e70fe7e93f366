"""Fan-out of new-evidence events to subscribers (e.g. the gate controller).

Delivery happens on one worker thread, in publish order, so the request that
appended the evidence never waits on a subscriber.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

logger = logging.getLogger(__name__)

Subscriber = Callable[[str], None]


class EvidenceNotifier:
    """Publishes run ids after evidence for them is committed.

    Subscriber failures are logged and isolated: the evidence is already durable
    and other subscribers still run.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[Subscriber] = []
        self._executor: ThreadPoolExecutor | None = None

    def subscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def clear(self) -> None:
        with self._lock:
            self._subscribers.clear()

    def _worker(self) -> ThreadPoolExecutor:
        # Caller holds self._lock
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="evidence-notifier")
        return self._executor

    def publish(self, run_id: str) -> None:
        """Queue delivery of run_id to the current subscribers and return immediately."""
        with self._lock:
            subscribers = list(self._subscribers)
            if not subscribers:
                return
            self._worker().submit(self._deliver, subscribers, run_id)

    def _deliver(self, subscribers: list[Subscriber], run_id: str) -> None:
        for callback in subscribers:
            try:
                callback(run_id)
            except Exception:
                logger.exception("Evidence subscriber failed for run_id=%s", run_id)

    def join(self, timeout: float | None = None) -> None:
        """Block until every event published so far has been delivered."""
        with self._lock:
            executor = self._executor
            if executor is None:
                return
            marker = executor.submit(lambda: None)
        marker.result(timeout=timeout)

    def stop(self) -> None:
        """Deliver what is queued, then stop the worker. A later publish starts a new one."""
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)


notifier = EvidenceNotifier()
