"""Global keyboard bindings for the quest board.

=====================  ==================================================
Key                    Effect
=====================  ==================================================
j / ArrowDown          select next quest (clamped)
k / ArrowUp            select previous quest (clamped)
Space / Enter          toggle selected quest between done and in_progress
c                      cycle new-quest priority
l                      cycle new-quest task level
Escape                 clear selection
Tab / Shift+Tab        walk quests and their side quests depth-first
ArrowRight             enter the selected quest's first side quest
ArrowLeft              leave side-quest selection for the parent quest
Delete / Backspace     delete the selected side quest or quest (confirmed)
=====================  ==================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from .models import Quest, find_side_quest
from .mutations import MutationEngine
from .selection import SelectionManager
from .store import BoardStore

ConfirmCallback = Callable[[str], bool]
SpawnCallback = Callable[[Awaitable[Any]], Any]


@dataclass(frozen=True)
class KeyEvent:
    key: str
    shift: bool = False
    in_interactive: bool = False  # focus is inside an input, textarea, button...
    skip_shortcuts: bool = False  # target opted out of global shortcuts


class KeyboardController:
    def __init__(
        self,
        store: BoardStore,
        selection: SelectionManager,
        mutations: MutationEngine,
        *,
        spawn: SpawnCallback,
        confirm: Optional[ConfirmCallback] = None,
    ) -> None:
        self.store = store
        self.selection = selection
        self.mutations = mutations
        self.spawn = spawn
        self.confirm = confirm or (lambda _prompt: False)

    def handle(self, event: KeyEvent) -> bool:
        """Dispatch *event*; return True when it was consumed."""
        if event.in_interactive or event.skip_shortcuts:
            return False
        if not self.store.quests:
            return False
        key = event.key.lower() if len(event.key) == 1 else event.key
        handler = {
            "j": lambda: self._move(1),
            "ArrowDown": lambda: self._move(1),
            "k": lambda: self._move(-1),
            "ArrowUp": lambda: self._move(-1),
            " ": self._toggle_done,
            "Enter": self._toggle_done,
            "c": self.mutations.cycle_priority,
            "l": self.mutations.cycle_task_level,
            "Escape": self.selection.clear_selection,
            "Tab": (self._tab_backward if event.shift else self._tab_forward),
            "ArrowRight": self._enter_side_quests,
            "ArrowLeft": self._leave_side_quests,
            "Delete": self._delete_selected,
            "Backspace": self._delete_selected,
        }.get(key)
        if handler is None:
            return False
        consumed = handler()
        return True if consumed is None else bool(consumed)

    # -- handlers -----------------------------------------------------------------

    def _move(self, offset: int) -> bool:
        self.selection.move_quest_selection(offset)
        return True

    def _toggle_done(self) -> bool:
        quest = self.selection.selected_quest
        if quest is None:
            return False
        self.spawn(self.mutations.toggle_quest_done(quest.id))
        return True

    def _tab_forward(self) -> bool:
        quest = self.selection.selected_quest
        if quest is None:
            return False
        ref = self.store.state.selected_side_quest
        if ref is None:
            if not self.selection.select_first_side_quest(quest.id):
                self._select_neighbour(quest, 1)
            return True
        subs = quest.side_quests
        idx = next((i for i, sub in enumerate(subs) if ref.matches(quest.id, sub.id)), -1)
        if idx != -1 and idx < len(subs) - 1:
            self.selection.select_side_quest(quest.id, subs[idx + 1].id)
            return True
        if not self._select_neighbour(quest, 1):
            self.selection.clear_side_quest_selection()
        return True

    def _tab_backward(self) -> bool:
        quest = self.selection.selected_quest
        if quest is None:
            return False
        ref = self.store.state.selected_side_quest
        if ref is not None:
            subs = quest.side_quests
            idx = next((i for i, sub in enumerate(subs) if ref.matches(quest.id, sub.id)), -1)
            if idx > 0:
                self.selection.select_side_quest(quest.id, subs[idx - 1].id)
            else:
                self.selection.select_quest(quest.id)
            return True
        index = self.store.quest_index(quest.id)
        if index <= 0:
            return True
        previous = self.store.quests[index - 1]
        if not self.selection.select_last_side_quest(previous.id):
            self.selection.select_quest(previous.id)
        return True

    def _select_neighbour(self, quest: Quest, offset: int) -> bool:
        index = self.store.quest_index(quest.id)
        target = index + offset
        if index == -1 or not 0 <= target < len(self.store.quests):
            return False
        self.selection.select_quest(self.store.quests[target].id)
        return True

    def _enter_side_quests(self) -> bool:
        if self.store.state.selected_side_quest is not None:
            return False
        quest = self.selection.selected_quest
        if quest is None:
            return False
        self.selection.ensure_quest_expanded(quest.id)
        return self.selection.select_first_side_quest(quest.id)

    def _leave_side_quests(self) -> bool:
        if self.store.state.selected_side_quest is None:
            return False
        quest = self.selection.selected_quest
        if quest is not None:
            self.selection.select_quest(quest.id)
        else:
            self.selection.clear_side_quest_selection()
        return True

    def _delete_selected(self) -> bool:
        quest = self.selection.selected_quest
        if quest is None:
            return False
        ref = self.store.state.selected_side_quest
        if ref is not None:
            sub = find_side_quest(quest, ref.side_quest_id)
            label = sub.description if sub and sub.description else "this side-quest"
            if self.confirm(f"Delete {label}?"):
                self.spawn(self.mutations.delete_side_quest(ref.quest_id, ref.side_quest_id))
            return True
        label = quest.description or "this quest"
        if self.confirm(f"Delete {label}?"):
            self.spawn(self.mutations.delete_quest(quest.id))
        else:
            logger.debug("Delete of quest {} not confirmed", quest.id)
        return True
