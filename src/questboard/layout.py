from __future__ import annotations

from typing import Any, Callable, Optional

from loguru import logger

from .constants import LAYOUT_FRAME_MS, LAYOUT_KEYS
from .scheduler import Scheduler, TimerHandle
from .store import BoardStore


class LayoutRefresher:
    """Debounce layout refresh requests to at most one callback per frame."""

    def __init__(
        self,
        scheduler: Scheduler,
        callback: Optional[Callable[[], Any]] = None,
        frame_ms: float = LAYOUT_FRAME_MS,
    ) -> None:
        self.scheduler = scheduler
        self.callback = callback
        self.frame_ms = frame_ms
        self._pending: Optional[TimerHandle] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self.fired = 0

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def request(self) -> None:
        if self.callback is None or self._pending is not None:
            return
        self._pending = self.scheduler.call_later(self.frame_ms, self._flush)

    def _flush(self) -> None:
        self._pending = None
        if self.callback is None:
            return
        self.fired += 1
        try:
            self.callback()
        except Exception:
            logger.exception("Layout refresh callback failed")

    def attach(self, store: BoardStore) -> None:
        """Request a refresh whenever a layout-relevant store key changes."""
        self.detach()

        def _on_change(_prev, _cur, changed: frozenset) -> None:
            if changed & LAYOUT_KEYS:
                self.request()

        self._unsubscribe = store.subscribe(_on_change)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def cancel(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        self.detach()
