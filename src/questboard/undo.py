from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from .constants import UNDO_WINDOW_MS
from .models import Quest, clone_quest_snapshot, ids_match
from .scheduler import KeyedTimers, Scheduler
from .store import BoardStore


@dataclass(frozen=True)
class UndoEntry:
    id: str
    quest: Quest


class UndoQueue:
    """FIFO buffer of deleted-quest snapshots, each kept for a fixed window.

    Entries live in the store's ``undo_queue`` so observers can render them;
    expiry timers are owned here.
    """

    def __init__(self, store: BoardStore, scheduler: Scheduler, window_ms: float = UNDO_WINDOW_MS) -> None:
        self.store = store
        self.scheduler = scheduler
        self.window_ms = window_ms
        self._timers = KeyedTimers(scheduler, "undo")

    @property
    def entries(self) -> list[UndoEntry]:
        return list(self.store.state.undo_queue)

    def get(self, entry_id: str) -> Optional[UndoEntry]:
        return next((entry for entry in self.store.state.undo_queue if entry.id == entry_id), None)

    def _next_entry_id(self, quest: Quest) -> str:
        base = f"{quest.id}-{int(self.scheduler.now_ms())}"
        taken = {entry.id for entry in self.store.state.undo_queue}
        entry_id = base
        suffix = 1
        while entry_id in taken:
            entry_id = f"{base}-{suffix}"
            suffix += 1
        return entry_id

    def schedule(self, quest: Optional[Quest]) -> Optional[UndoEntry]:
        """Snapshot *quest* and keep it restorable for ``window_ms``."""
        if quest is None:
            return None
        entry = UndoEntry(id=self._next_entry_id(quest), quest=clone_quest_snapshot(quest))
        self.store.set("undo_queue", lambda prev: [*prev, entry], action="scheduleQuestUndo")
        self._timers.arm(entry.id, self.window_ms, lambda: self._expire(entry.id))
        return entry

    def _expire(self, entry_id: str) -> None:
        logger.debug("Undo entry {} expired", entry_id)
        self._drop(entry_id)

    def _drop(self, entry_id: str) -> None:
        self.store.set(
            "undo_queue",
            lambda prev: [entry for entry in prev if entry.id != entry_id],
            action="dropUndoEntry",
        )

    def dismiss(self, entry_id: str) -> None:
        self._timers.cancel(entry_id)
        self._drop(entry_id)

    def restore(self, snapshot: Optional[Quest], index: Optional[int] = None) -> None:
        """Put *snapshot* back into the quest list.

        An existing quest with the same id is overwritten in place; otherwise
        the snapshot is inserted at *index* (front of the list by default).
        """
        if snapshot is None:
            return
        restored = clone_quest_snapshot(snapshot)

        def _restore(prev: list[Quest]) -> list[Quest]:
            nxt = list(prev)
            for i, quest in enumerate(nxt):
                if ids_match(quest.id, restored.id):
                    nxt[i] = restored
                    return nxt
            position = 0 if index is None else max(0, min(index, len(nxt)))
            nxt.insert(position, restored)
            return nxt

        self.store.set_quests(_restore)

    def undo(self, entry_id: str) -> bool:
        entry = self.get(entry_id)
        if entry is None:
            return False
        self.restore(entry.quest)
        self.dismiss(entry_id)
        logger.info("Restored quest {} from undo buffer", entry.quest.id)
        return True

    def cancel_all(self) -> None:
        self._timers.cancel_all()
