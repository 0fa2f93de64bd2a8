from __future__ import annotations

import heapq
import time
from collections.abc import Callable
from typing import Protocol


class Clock(Protocol):
    """Monotonic clock abstraction.

    Core logic depends on this interface rather than calling real time directly.
    """

    def now(self) -> float:
        """Return monotonic seconds."""


class RealClock:
    """Production clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


class TimerHandle:
    """Cancellation handle for a scheduled callback."""

    __slots__ = ("_scheduler", "_callback", "_interval_ms", "_due_ms", "_active")

    def __init__(
        self,
        scheduler: Scheduler,
        callback: Callable[[], None],
        *,
        due_ms: float,
        interval_ms: float | None,
    ) -> None:
        self._scheduler = scheduler
        self._callback = callback
        self._interval_ms = interval_ms
        self._due_ms = float(due_ms)
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    @property
    def due_ms(self) -> float:
        return self._due_ms

    @property
    def remaining_ms(self) -> float:
        if not self._active:
            return 0.0
        return max(0.0, self._due_ms - self._scheduler.now_ms())

    def cancel(self) -> None:
        self._active = False


class Scheduler:
    """Discrete-event timer queue running on an engine timeline in milliseconds.

    Engine time is wall time since construction minus the time spent paused,
    so a pause freezes every pending delay and resume continues it unchanged.
    Nothing fires on its own: the owner calls advance() (every frame, and
    before handling any input) and all due callbacks run in due-time order.
    While a callback runs, now_ms() reports that callback's due time.
    """

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._origin_s = float(clock.now())
        self._cursor_ms = 0.0
        self._paused_total_ms = 0.0
        self._paused_at_wall_ms: float | None = None
        self._queue: list[tuple[float, int, TimerHandle]] = []
        self._seq = 0
        self._firing = False

    @property
    def paused(self) -> bool:
        return self._paused_at_wall_ms is not None

    @property
    def pending(self) -> int:
        return sum(1 for _, _, h in self._queue if h.active)

    def now_ms(self) -> float:
        return self._cursor_ms

    def to_engine_ms(self, wall_s: float | None = None) -> float:
        wall_ms = self._wall_ms(wall_s)
        if self._paused_at_wall_ms is not None:
            wall_ms = min(wall_ms, self._paused_at_wall_ms)
        return wall_ms - self._paused_total_ms

    def after(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        due = self._cursor_ms + max(0.0, float(delay_ms))
        handle = TimerHandle(self, callback, due_ms=due, interval_ms=None)
        self._push(handle)
        return handle

    def tick(self, interval_ms: float, callback: Callable[[], None]) -> TimerHandle:
        if interval_ms <= 0.0:
            raise ValueError("interval_ms must be > 0")
        due = self._cursor_ms + float(interval_ms)
        handle = TimerHandle(self, callback, due_ms=due, interval_ms=float(interval_ms))
        self._push(handle)
        return handle

    def advance(self, wall_s: float | None = None) -> int:
        """Fire every timer due up to wall_s. Returns the number of callbacks run."""

        if self.paused or self._firing:
            return 0
        target = max(self._cursor_ms, self.to_engine_ms(wall_s))
        fired = 0
        self._firing = True
        try:
            while self._queue and self._queue[0][0] <= target:
                due, _, handle = heapq.heappop(self._queue)
                if not handle.active or handle.due_ms != due:
                    continue
                self._cursor_ms = due
                if handle._interval_ms is None:
                    handle._active = False
                else:
                    handle._due_ms = due + handle._interval_ms
                    self._push(handle)
                handle._callback()
                fired += 1
                if self.paused:
                    return fired
            self._cursor_ms = target
        finally:
            self._firing = False
        return fired

    def pause(self, wall_s: float | None = None) -> None:
        if self.paused:
            return
        if self._firing:
            # Called from inside a callback: freeze at that callback's due time.
            self._paused_at_wall_ms = self._cursor_ms + self._paused_total_ms
            return
        self.advance(wall_s)
        self._paused_at_wall_ms = max(self._wall_ms(wall_s), self._cursor_ms + self._paused_total_ms)

    def resume(self, wall_s: float | None = None) -> None:
        if self._paused_at_wall_ms is None:
            return
        wall_ms = max(self._wall_ms(wall_s), self._paused_at_wall_ms)
        self._paused_total_ms += wall_ms - self._paused_at_wall_ms
        self._paused_at_wall_ms = None

    def cancel_all(self) -> None:
        for _, _, handle in self._queue:
            handle.cancel()
        self._queue.clear()

    def _push(self, handle: TimerHandle) -> None:
        self._seq += 1
        heapq.heappush(self._queue, (handle.due_ms, self._seq, handle))

    def _wall_ms(self, wall_s: float | None) -> float:
        now_s = self._clock.now() if wall_s is None else float(wall_s)
        return (now_s - self._origin_s) * 1000.0
