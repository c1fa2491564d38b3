# Live patient list - full discharge snapshots in, sorted summaries out (latest wins)
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Awaitable, Callable, DefaultDict, List, Optional, Set, Tuple

from logic import MetricsLookup, aggregate_patients, fetch_patient_metrics, list_episodes
from models import PatientSummary, TreatmentEpisode

logger = logging.getLogger(__name__)

Snapshot = List[TreatmentEpisode]
Emit = Callable[[List[PatientSummary]], Awaitable[None]]


class EpisodeFeed:
    """
    Per-clinic publisher of discharge snapshots. Every publish delivers the
    whole current list (never a delta) to each subscriber queue. Queues belong
    to the event loop that subscribed, so publish may be called from any thread.
    """

    def __init__(self):
        self._subscribers: DefaultDict[str, List[Tuple[asyncio.AbstractEventLoop, asyncio.Queue]]] = defaultdict(list)

    def subscribe(self, clinic_id: str) -> asyncio.Queue:
        """Must be called from a running event loop."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers[clinic_id].append((asyncio.get_running_loop(), queue))
        return queue

    def unsubscribe(self, clinic_id: str, queue: asyncio.Queue) -> None:
        self._subscribers[clinic_id] = [
            (loop, q) for loop, q in self._subscribers[clinic_id] if q is not queue
        ]
        if not self._subscribers[clinic_id]:
            del self._subscribers[clinic_id]

    def subscriber_count(self, clinic_id: str) -> int:
        return len(self._subscribers.get(clinic_id, []))

    def publish(self, clinic_id: str, limit: int) -> Snapshot:
        snapshot = list_episodes(clinic_id, limit)
        for loop, queue in list(self._subscribers.get(clinic_id, [])):
            if loop.is_closed():
                continue
            loop.call_soon_threadsafe(queue.put_nowait, snapshot)
        return snapshot

    def clear(self) -> None:
        self._subscribers.clear()


class PatientListWatcher:
    """
    Re-runs the aggregation for every snapshot. Each refresh takes a
    generation token; if a newer refresh started before this one's lookups
    settled, its result is dropped. In-flight lookups are not cancelled.
    """

    def __init__(
        self,
        metrics: MetricsLookup = fetch_patient_metrics,
        timeout: Optional[float] = None,
    ):
        self.metrics = metrics
        self.timeout = timeout
        self.current: Optional[List[PatientSummary]] = None
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    async def refresh(self, snapshot: Snapshot) -> Optional[List[PatientSummary]]:
        """Aggregate one snapshot. Returns None when a newer snapshot superseded it."""
        self._generation += 1
        generation = self._generation

        summaries = await aggregate_patients(snapshot, self.metrics, self.timeout)

        if generation != self._generation:
            logger.debug("Discarding stale patient list (generation %d < %d)", generation, self._generation)
            return None
        self.current = summaries
        return summaries

    async def _refresh_and_emit(self, snapshot: Snapshot, emit: Emit) -> None:
        summaries = await self.refresh(snapshot)
        if summaries is not None:
            await emit(summaries)

    async def watch(self, snapshots: asyncio.Queue, emit: Emit) -> None:
        """Consume snapshots until cancelled; refreshes may overlap."""
        tasks: Set[asyncio.Task] = set()
        try:
            while True:
                snapshot = await snapshots.get()
                task = asyncio.ensure_future(self._refresh_and_emit(snapshot, emit))
                tasks.add(task)
                task.add_done_callback(tasks.discard)
                task.add_done_callback(_log_task_failure)
        finally:
            for task in list(tasks):
                task.cancel()


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Patient list refresh failed: %r", exc)


# Shared feed for the application
feed = EpisodeFeed()
