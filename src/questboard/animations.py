"""Short-lived presentational flags derived from quest status transitions.

The controller is a pure reaction layer: callers report *what happened*
(a quest was created, a status write resolved) and the controller decides
which flags to raise in the store and when they expire.  It does not care
whether the transition was optimistic or confirmed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from .config import BoardTimings
from .constants import FLAG_ACTIVE, FLAG_FULL, FLAG_SPAWN, FLAG_SUBTLE
from .models import QuestId, QuestStatus, id_key, ids_match, side_quest_key
from .scheduler import KeyedTimers, Scheduler
from .store import BoardStore


@dataclass(frozen=True)
class AnimationFlag:
    tag: str
    expires_at: float


def _without(mapping: dict, key: str) -> dict:
    if key not in mapping:
        return mapping
    nxt = dict(mapping)
    del nxt[key]
    return nxt


class AnimationController:
    def __init__(
        self,
        store: BoardStore,
        scheduler: Scheduler,
        timings: Optional[BoardTimings] = None,
    ) -> None:
        self.store = store
        self.scheduler = scheduler
        self.timings = timings or BoardTimings()
        self._flag_timers = KeyedTimers(scheduler, "animations")
        self._collapse_timers = KeyedTimers(scheduler, "collapse")

    # -- primitives -----------------------------------------------------------

    def _raise_flag(self, map_name: str, key: str, tag: str, duration_ms: float) -> None:
        flag = AnimationFlag(tag=tag, expires_at=self.scheduler.now_ms() + duration_ms)
        self.store.set(map_name, lambda prev: {**prev, key: flag}, action=f"flag/{map_name}")
        self._flag_timers.arm(
            (map_name, key),
            duration_ms,
            lambda: self.store.set(map_name, lambda prev: _without(prev, key), action=f"expire/{map_name}"),
        )

    def is_flagged(self, map_name: str, key: str) -> bool:
        return key in self.store.get(map_name)

    # -- reactions ------------------------------------------------------------

    def quest_created(self, quest_id: QuestId) -> None:
        if quest_id is None:
            return
        key = id_key(quest_id)
        duration = self.timings.spawn_ms
        self._raise_flag("spawn_quests", key, FLAG_ACTIVE, duration)
        self._raise_flag("pulsing_quests", key, FLAG_SPAWN, duration)

    def quest_status_resolved(self, quest_id: QuestId, status: QuestStatus) -> None:
        key = id_key(quest_id)
        self._raise_flag("pulsing_quests", key, FLAG_FULL, self.timings.pulse_ms)
        if status != QuestStatus.DONE:
            return
        self._raise_flag("glow_quests", key, FLAG_ACTIVE, self.timings.glow_ms)
        self._raise_flag("celebrating_quests", key, FLAG_ACTIVE, self.timings.celebrate_ms)
        self.schedule_collapse_and_move(quest_id)

    def side_quest_status_resolved(
        self,
        quest_id: QuestId,
        side_quest_id: QuestId,
        status: QuestStatus,
    ) -> None:
        done = status == QuestStatus.DONE
        self._raise_flag(
            "pulsing_side_quests",
            side_quest_key(quest_id, side_quest_id),
            FLAG_FULL if done else FLAG_SUBTLE,
            self.timings.pulse_ms,
        )
        if done:
            self.store.expand_quest(quest_id)

    # -- completed quests sink ------------------------------------------------

    def schedule_collapse_and_move(self, quest_id: QuestId, delay_ms: Optional[float] = None) -> None:
        """After *delay_ms*, move *quest_id* to the end of the list and collapse it.

        Nothing happens if the quest is gone or no longer done by then.
        """
        delay = self.timings.collapse_delay_ms if delay_ms is None else delay_ms
        self._collapse_timers.arm(id_key(quest_id), delay, lambda: self._collapse_and_move(quest_id))

    def _collapse_and_move(self, quest_id: QuestId) -> None:
        def _sink(state) -> dict:
            index = next(
                (i for i, quest in enumerate(state.quests) if ids_match(quest.id, quest_id)),
                -1,
            )
            if index == -1 or state.quests[index].status != QuestStatus.DONE:
                return {}
            quests = list(state.quests)
            quests.append(quests.pop(index))
            return {
                "quests": quests,
                "collapsed_map": {**state.collapsed_map, id_key(quest_id): True},
            }

        self.store.update(_sink, action="collapseAndMove")
        logger.debug("Completed quest {} collapsed and moved to the end", quest_id)

    # -- teardown ---------------------------------------------------------------

    def cancel_all(self) -> None:
        self._flag_timers.cancel_all()
        self._collapse_timers.cancel_all()
