"""EventScheduler: turns bursty per-session changes into a bounded-rate stream.

Per session:
- IMMEDIATE changes are delivered synchronously and never queued.
- HIGH changes queue FIFO.
- NORMAL changes coalesce per kind until delivered; the entry matures a
  window after its first arrival (replacement never extends it) and the
  latest payload wins.
- LOW changes coalesce the same way with a longer window and a combined count.
- No two deliveries for one session are closer than ``min_event_interval``.
- Anything older than ``max_queue_age`` is dropped instead of delivered.

A single drain loop visits every session queue once per tick and delivers at
most one change per session per tick.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from agentgrid.config.schema import SchedulerConfig
from agentgrid.events.changes import ChangeKind, Priority, StateChange
from agentgrid.logging import TRACE, get_logger

log = get_logger("scheduler")

Deliver = Callable[[StateChange], Awaitable[None]]


@dataclass
class _Pending:
    """A coalesced change waiting for its window to mature."""

    change: StateChange
    window_start: float
    received_at: float
    count: int = 1


class SessionQueue:
    """Pending changes for one session."""

    def __init__(self, session_id: str, config: SchedulerConfig) -> None:
        self.session_id = session_id
        self._config = config
        self.events: deque[tuple[StateChange, float]] = deque()
        self.pending: dict[ChangeKind, _Pending] = {}
        self.last_delivery: float | None = None
        self.dropped = 0

    def _window(self, priority: Priority) -> float:
        if priority is Priority.NORMAL:
            return self._config.state_coalesce_window
        return self._config.pulse_coalesce_window

    def enqueue(self, change: StateChange, now: float) -> None:
        priority = change.priority
        if priority is Priority.HIGH:
            self.events.append((change, now))
            return

        current = self.pending.get(change.kind)
        if current is not None:
            # window_start is never reset on replacement
            current.count += 1
            current.change = change
            current.received_at = now
        else:
            self.pending[change.kind] = _Pending(change=change, window_start=now, received_at=now)

    def _stale(self, received_at: float, now: float) -> bool:
        return (now - received_at) > self._config.max_queue_age

    def dequeue(self, now: float) -> StateChange | None:
        """Next change ready for delivery, or None if timing forbids one now."""
        if self.last_delivery is not None and (now - self.last_delivery) < self._config.min_event_interval:
            return None

        while self.events:
            change, received_at = self.events.popleft()
            if self._stale(received_at, now):
                self.dropped += 1
                continue
            return self._delivered(change, now)

        for priority in (Priority.NORMAL, Priority.LOW):
            matured = [
                (kind, entry) for kind, entry in self.pending.items()
                if entry.change.priority is priority
                and (now - entry.window_start) >= self._window(priority)
            ]
            for kind, entry in sorted(matured, key=lambda item: item[1].window_start):
                del self.pending[kind]
                if self._stale(entry.received_at, now):
                    self.dropped += 1
                    continue
                if priority is Priority.LOW:
                    entry.change.combined_count = entry.count
                return self._delivered(entry.change, now)

        return None

    def _delivered(self, change: StateChange, now: float) -> StateChange:
        self.last_delivery = now
        return change

    def has_pending(self) -> bool:
        return bool(self.events) or bool(self.pending)

    def clear(self) -> None:
        self.events.clear()
        self.pending.clear()


class EventScheduler:
    """Rate-limits and prioritizes StateChange delivery per session.

    Example:
        scheduler = EventScheduler(deliver=hub.publish_change, exists=registry.exists)
        await scheduler.enqueue(change)
        await scheduler.start()  # runs the ~60Hz drain loop until stop()
    """

    def __init__(
        self,
        deliver: Deliver,
        exists: Callable[[str], bool],
        config: SchedulerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._deliver = deliver
        self._exists = exists
        self._config = config or SchedulerConfig()
        self._clock = clock
        self._queues: dict[str, SessionQueue] = {}
        self._before_drain: list[Callable[[float], Awaitable[None]]] = []
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def queue_count(self) -> int:
        return len(self._queues)

    def add_drain_hook(self, hook: Callable[[float], Awaitable[None]]) -> None:
        """Run ``hook(now)`` at the start of every drain tick."""
        self._before_drain.append(hook)

    async def enqueue(self, change: StateChange) -> None:
        if change.priority is Priority.IMMEDIATE:
            await self._safe_deliver(change)
            return

        queue = self._queues.get(change.session_id)
        if queue is None:
            queue = self._queues[change.session_id] = SessionQueue(change.session_id, self._config)
        queue.enqueue(change, self._clock())

    def clear_session(self, session_id: str) -> None:
        """Drop everything pending for a session that is gone."""
        queue = self._queues.pop(session_id, None)
        if queue is not None:
            queue.clear()
            log.debug("Cleared scheduler queue for %s", session_id)

    def has_pending(self, session_id: str) -> bool:
        queue = self._queues.get(session_id)
        return queue.has_pending() if queue else False

    async def drain(self, now: float | None = None) -> int:
        """One tick: at most one delivery per session. Returns the delivery count."""
        now = self._clock() if now is None else now
        for hook in self._before_drain:
            await hook(now)

        delivered = 0
        for session_id, queue in list(self._queues.items()):
            change = queue.dequeue(now)
            if change is not None:
                await self._safe_deliver(change)
                delivered += 1
            if not queue.has_pending() and not self._exists(session_id):
                self._queues.pop(session_id, None)
        return delivered

    async def _safe_deliver(self, change: StateChange) -> None:
        try:
            await self._deliver(change)
        except Exception:
            log.exception("Failed to deliver %s for %s", change.kind.value, change.session_id)
        else:
            log.log(TRACE, "Delivered %s for %s", change.kind.value, change.session_id)

    async def start(self) -> None:
        """Run the drain loop until stop() or cancellation."""
        if self._running:
            log.warning("EventScheduler already running")
            return

        self._running = True
        self._task = asyncio.current_task()
        log.info("EventScheduler started (interval: %.3fs)", self._config.processing_interval)
        try:
            while self._running:
                try:
                    await self.drain()
                except Exception:
                    log.exception("Scheduler drain failed")
                await asyncio.sleep(self._config.processing_interval)
        except asyncio.CancelledError:
            log.info("EventScheduler cancelled")
        finally:
            self._running = False

    async def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
