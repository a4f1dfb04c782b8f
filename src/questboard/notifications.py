"""User-facing notifications.

Toasts are recorded in the board store and expire on the scheduler.  Reward
payloads attached to Task Service responses are forwarded untouched to an
injected callback; the board never interprets them.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Any, Callable, Optional

from loguru import logger

from .constants import TOAST_ERROR, TOAST_INFO, TOAST_SUCCESS, TOAST_TIMEOUT_MS
from .scheduler import KeyedTimers, Scheduler
from .store import BoardStore

RewardSink = Callable[[dict[str, Any]], None]


@dataclass(frozen=True)
class Toast:
    id: int
    message: str
    level: str = TOAST_INFO


class ToastCenter:
    def __init__(
        self,
        store: BoardStore,
        scheduler: Scheduler,
        *,
        timeout_ms: float = TOAST_TIMEOUT_MS,
        reward_sink: Optional[RewardSink] = None,
    ) -> None:
        self.store = store
        self.scheduler = scheduler
        self.timeout_ms = timeout_ms
        self.reward_sink = reward_sink
        self._ids = itertools.count(1)
        self._timers = KeyedTimers(scheduler, "toasts")

    @property
    def toasts(self) -> list[Toast]:
        return list(self.store.state.toasts)

    def messages(self, level: Optional[str] = None) -> list[str]:
        return [toast.message for toast in self.store.state.toasts if level is None or toast.level == level]

    def push(self, message: str, level: str = TOAST_INFO, timeout_ms: Optional[float] = None) -> Toast:
        toast = Toast(id=next(self._ids), message=message, level=level)
        self.store.set("toasts", lambda prev: [*prev, toast], action="pushToast")
        self._timers.arm(
            toast.id,
            self.timeout_ms if timeout_ms is None else timeout_ms,
            lambda: self.dismiss(toast.id),
        )
        return toast

    def error(self, message: str) -> Toast:
        logger.debug("Board error: {}", message)
        return self.push(message, TOAST_ERROR)

    def success(self, message: str) -> Toast:
        return self.push(message, TOAST_SUCCESS)

    def dismiss(self, toast_id: int) -> None:
        self._timers.cancel(toast_id)
        self.store.set(
            "toasts",
            lambda prev: [toast for toast in prev if toast.id != toast_id],
            action="dismissToast",
        )

    def forward_rewards(self, rewards: Optional[dict[str, Any]]) -> None:
        if not rewards or self.reward_sink is None:
            return
        try:
            self.reward_sink(rewards)
        except Exception:
            logger.exception("Reward sink failed")

    def cancel_all(self) -> None:
        self._timers.cancel_all()
