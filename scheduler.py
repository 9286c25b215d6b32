"""Single-threaded control loop: a timer heap plus a thread-safe inbox.

All orchestrator state is touched only from callbacks run by this loop.
Reader threads hand work over with :meth:`Scheduler.post`.
"""

from __future__ import annotations

import heapq
import itertools
import queue
import time
from typing import Any, Callable, List, Optional, Tuple


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class TimerHandle:
    __slots__ = ("deadline", "interval", "callback", "args", "cancelled")

    def __init__(
        self,
        deadline: float,
        callback: Callable[..., Any],
        args: Tuple[Any, ...],
        interval: Optional[float] = None,
    ) -> None:
        self.deadline = deadline
        self.interval = interval
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class Scheduler:
    """Cooperative event loop with millisecond timers."""

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or _monotonic_ms
        self._timers: List[Tuple[float, int, TimerHandle]] = []
        self._sequence = itertools.count()
        self._inbox: "queue.Queue[Tuple[Callable[..., Any], Tuple[Any, ...]]]" = queue.Queue()
        self._running = False

    def now(self) -> float:
        return self._clock()

    @property
    def running(self) -> bool:
        return self._running

    def call_later(self, delay_ms: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        handle = TimerHandle(self.now() + max(0.0, delay_ms), callback, args)
        self._push(handle)
        return handle

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        return self.call_later(0, callback, *args)

    def call_every(self, interval_ms: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        handle = TimerHandle(self.now() + interval_ms, callback, args, interval=interval_ms)
        self._push(handle)
        return handle

    def post(self, callback: Callable[..., Any], *args: Any) -> None:
        """Queue a callback from any thread; it runs on the next loop turn."""
        self._inbox.put((callback, args))

    def pending_timers(self) -> int:
        return sum(1 for _, _, handle in self._timers if not handle.cancelled)

    def next_deadline(self) -> Optional[float]:
        self._discard_cancelled()
        if not self._timers:
            return None
        return self._timers[0][0]

    def run_pending(self) -> int:
        """Run posted callbacks and every timer that is due. Returns the count run."""
        executed = self._drain_inbox()
        now = self.now()
        while True:
            self._discard_cancelled()
            if not self._timers or self._timers[0][0] > now:
                break
            _, _, handle = heapq.heappop(self._timers)
            self._fire(handle)
            executed += 1
            executed += self._drain_inbox()
        return executed

    def run_forever(self, idle_timeout_ms: float = 250.0) -> None:
        self._running = True
        try:
            while self._running:
                self.run_pending()
                if not self._running:
                    break
                deadline = self.next_deadline()
                wait_ms = idle_timeout_ms
                if deadline is not None:
                    wait_ms = min(wait_ms, max(0.0, deadline - self.now()))
                try:
                    callback, args = self._inbox.get(timeout=wait_ms / 1000.0)
                except queue.Empty:
                    continue
                callback(*args)
        finally:
            self._running = False

    def stop(self) -> None:
        self._running = False

    def _push(self, handle: TimerHandle) -> None:
        heapq.heappush(self._timers, (handle.deadline, next(self._sequence), handle))

    def _discard_cancelled(self) -> None:
        while self._timers and self._timers[0][2].cancelled:
            heapq.heappop(self._timers)

    def _drain_inbox(self) -> int:
        count = 0
        while True:
            try:
                callback, args = self._inbox.get_nowait()
            except queue.Empty:
                return count
            callback(*args)
            count += 1

    def _fire(self, handle: TimerHandle) -> None:
        if handle.interval is not None:
            handle.deadline += handle.interval
            self._push(handle)
        handle.callback(*handle.args)


class VirtualClock:
    def __init__(self, start_ms: float = 0.0) -> None:
        self.now_ms = start_ms

    def __call__(self) -> float:
        return self.now_ms


class ManualScheduler(Scheduler):
    """Scheduler driven by a virtual clock, for deterministic replays and tests."""

    def __init__(self, start_ms: float = 0.0) -> None:
        self.clock = VirtualClock(start_ms)
        super().__init__(self.clock)

    def advance(self, delta_ms: float) -> int:
        """Move the clock forward, firing timers in deadline order as it passes them."""
        target = self.clock.now_ms + delta_ms
        executed = self._drain_inbox()
        while True:
            deadline = self.next_deadline()
            if deadline is None or deadline > target:
                break
            self.clock.now_ms = max(self.clock.now_ms, deadline)
            executed += self.run_pending()
        self.clock.now_ms = target
        executed += self.run_pending()
        return executed

    def run_forever(self, idle_timeout_ms: float = 250.0) -> None:
        raise RuntimeError("ManualScheduler is driven with advance()")
