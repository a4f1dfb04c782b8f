"""Timer scheduling for the board.

Every delayed effect in the engine (animation flag expiry, undo expiry,
layout refresh, toast expiry, focus requests) goes through a
:class:`Scheduler`, so production code runs on the asyncio event loop while
tests drive a :class:`ManualScheduler` with a simulated clock.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Hashable, Optional

from loguru import logger


class TimerHandle(ABC):
    @abstractmethod
    def cancel(self) -> None:
        ...

    @property
    @abstractmethod
    def cancelled(self) -> bool:
        ...


class Scheduler(ABC):
    """Minimal clock + timer contract used across the engine."""

    @abstractmethod
    def now_ms(self) -> float:
        ...

    @abstractmethod
    def call_later(self, delay_ms: float, callback: Callable[[], Any]) -> TimerHandle:
        ...


# ---------------------------------------------------------------------------
# asyncio
# ---------------------------------------------------------------------------

class _AsyncioHandle(TimerHandle):
    def __init__(self, handle: asyncio.TimerHandle) -> None:
        self._handle = handle

    def cancel(self) -> None:
        self._handle.cancel()

    @property
    def cancelled(self) -> bool:
        return self._handle.cancelled()


class AsyncioScheduler(Scheduler):
    """Schedule callbacks on an asyncio event loop.

    The loop is resolved lazily so the scheduler can be built before the loop
    starts running.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now_ms(self) -> float:
        return time.time() * 1000.0

    def call_later(self, delay_ms: float, callback: Callable[[], Any]) -> TimerHandle:
        loop = self._get_loop()
        return _AsyncioHandle(loop.call_later(max(delay_ms, 0) / 1000.0, callback))


# ---------------------------------------------------------------------------
# Simulated clock
# ---------------------------------------------------------------------------

@dataclass(order=True)
class _ManualTimer(TimerHandle):
    due: float
    seq: int
    callback: Callable[[], Any] = field(compare=False)
    _cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler(Scheduler):
    """Deterministic scheduler whose clock only moves when told to.

    Usage::

        clock = ManualScheduler(start_ms=1_000)
        clock.call_later(700, fire)
        clock.advance(699)   # nothing yet
        clock.advance(1)     # fire() runs
    """

    def __init__(self, start_ms: float = 0.0) -> None:
        self._now = float(start_ms)
        self._queue: list[_ManualTimer] = []
        self._seq = itertools.count()

    def now_ms(self) -> float:
        return self._now

    def call_later(self, delay_ms: float, callback: Callable[[], Any]) -> TimerHandle:
        timer = _ManualTimer(due=self._now + max(delay_ms, 0), seq=next(self._seq), callback=callback)
        heapq.heappush(self._queue, timer)
        return timer

    @property
    def pending(self) -> int:
        return sum(1 for timer in self._queue if not timer.cancelled)

    def advance(self, ms: float) -> int:
        """Move the clock forward by *ms*, running every timer that comes due.

        Timers scheduled by callbacks run in the same call if they fall inside
        the window.  Returns the number of callbacks executed.
        """
        target = self._now + ms
        ran = 0
        while self._queue and self._queue[0].due <= target:
            timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self._now = max(self._now, timer.due)
            timer.callback()
            ran += 1
        self._now = target
        return ran

    def run_all(self) -> int:
        """Advance until no live timers remain."""
        ran = 0
        while self.pending:
            live = [timer.due for timer in self._queue if not timer.cancelled]
            ran += self.advance(max(min(live) - self._now, 0))
        return ran


# ---------------------------------------------------------------------------
# Keyed timers
# ---------------------------------------------------------------------------

class KeyedTimers:
    """At most one outstanding timer per key.

    Arming a key that already has a pending timer cancels the old one first,
    so rapid repeated triggers re-arm instead of stacking.
    """

    def __init__(self, scheduler: Scheduler, name: str = "timers") -> None:
        self._scheduler = scheduler
        self._name = name
        self._handles: dict[Hashable, TimerHandle] = {}

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._handles

    def arm(self, key: Hashable, delay_ms: float, callback: Callable[[], Any]) -> None:
        self.cancel(key)

        def _fire() -> None:
            self._handles.pop(key, None)
            callback()

        self._handles[key] = self._scheduler.call_later(delay_ms, _fire)
        logger.debug("{}: armed {} for {}ms", self._name, key, delay_ms)

    def cancel(self, key: Hashable) -> bool:
        handle = self._handles.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self) -> int:
        count = len(self._handles)
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        if count:
            logger.debug("{}: cancelled {} pending timer(s)", self._name, count)
        return count
