"""Tests for toasts and reward forwarding."""

from __future__ import annotations

from typing import Any

import pytest

from questboard.notifications import ToastCenter
from questboard.scheduler import ManualScheduler
from questboard.store import BoardStore


@pytest.fixture
def clock() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def store() -> BoardStore:
    return BoardStore()


class TestToasts:
    def test_toast_expires_after_timeout(self, store: BoardStore, clock: ManualScheduler) -> None:
        toasts = ToastCenter(store, clock)
        toasts.error("Failed to add quest")
        assert toasts.messages("error") == ["Failed to add quest"]
        clock.advance(2_999)
        assert len(toasts.toasts) == 1
        clock.advance(1)
        assert toasts.toasts == []

    def test_levels_are_filterable(self, store: BoardStore, clock: ManualScheduler) -> None:
        toasts = ToastCenter(store, clock)
        toasts.success("Side-quest updated")
        toasts.push("hello")
        assert toasts.messages("success") == ["Side-quest updated"]
        assert toasts.messages() == ["Side-quest updated", "hello"]

    def test_dismiss_cancels_timer(self, store: BoardStore, clock: ManualScheduler) -> None:
        toasts = ToastCenter(store, clock)
        toast = toasts.push("bye")
        toasts.dismiss(toast.id)
        assert toasts.toasts == []
        assert clock.pending == 0


class TestRewards:
    def test_forwarded_untouched(self, store: BoardStore, clock: ManualScheduler) -> None:
        received: list[dict[str, Any]] = []
        toasts = ToastCenter(store, clock, reward_sink=received.append)
        payload = {"xp_events": [{"type": "quest_completed"}], "player_rpg": {"level": 3}}
        toasts.forward_rewards(payload)
        assert received == [payload]
        assert received[0] is payload

    def test_empty_rewards_not_forwarded(self, store: BoardStore, clock: ManualScheduler) -> None:
        received: list[dict[str, Any]] = []
        toasts = ToastCenter(store, clock, reward_sink=received.append)
        toasts.forward_rewards(None)
        toasts.forward_rewards({})
        assert received == []

    def test_sink_errors_are_contained(self, store: BoardStore, clock: ManualScheduler) -> None:
        def _boom(_rewards: dict[str, Any]) -> None:
            raise RuntimeError("sink down")

        toasts = ToastCenter(store, clock, reward_sink=_boom)
        toasts.forward_rewards({"xp_event": {}})
