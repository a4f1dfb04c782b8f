"""Selection and editing state machine.

The manager never holds state of its own: every field lives in the board
store and is written through its setters.  It subscribes to the store so a
selection or edit that points at a quest or side quest which has vanished
from the list is cleared in the same update cycle that removed it.
"""

from __future__ import annotations

from dataclasses import replace
from enum import Enum
from typing import Any, Callable, Optional

from loguru import logger

from .config import BoardTimings
from .models import (
    Quest,
    QuestId,
    QuestPriority,
    SideQuest,
    SideQuestEdit,
    SideQuestRef,
    _coerce_campaign,
    _coerce_enum,
    _coerce_level,
    clone_quest_snapshot,
    find_side_quest,
    id_key,
    ids_match,
)
from .scheduler import KeyedTimers, Scheduler
from .store import BoardState, BoardStore

FocusCallback = Callable[[str], Any]


class SelectionMode(str, Enum):
    NONE = "none-selected"
    QUEST_SELECTED = "quest-selected"
    SIDEQUEST_SELECTED = "sidequest-selected"
    QUEST_EDITING = "quest-editing"
    SIDEQUEST_EDITING = "sidequest-editing"


def side_quest_edit_focus_key(quest_id: QuestId, side_quest_id: QuestId) -> str:
    return f"{quest_id}:{side_quest_id}:edit"


def side_quest_add_focus_key(quest_id: QuestId) -> str:
    return f"{quest_id}:add"


def quest_edit_focus_key(quest_id: QuestId) -> str:
    return f"{quest_id}:edit"


def _stale_selection(state: BoardState) -> dict[str, Any]:
    """Fields of *state* that reference a quest or side quest no longer listed."""
    quests = {id_key(quest.id): quest for quest in state.quests}

    def _side_quest_exists(quest_id: QuestId, side_quest_id: QuestId) -> bool:
        return find_side_quest(quests.get(id_key(quest_id)), side_quest_id) is not None

    changes: dict[str, Any] = {}
    if state.selected_quest_id is not None and id_key(state.selected_quest_id) not in quests:
        changes["selected_quest_id"] = None
        changes["selected_side_quest"] = None
    ref = state.selected_side_quest
    if ref is not None and not _side_quest_exists(ref.quest_id, ref.side_quest_id):
        changes["selected_side_quest"] = None
    edit = state.editing_side_quest
    if edit is not None and not _side_quest_exists(edit.quest_id, edit.side_quest_id):
        changes["editing_side_quest"] = None
    if state.editing_quest is not None and id_key(state.editing_quest.id) not in quests:
        changes["editing_quest"] = None
    if state.adding_side_quest_to is not None and id_key(state.adding_side_quest_to) not in quests:
        changes["adding_side_quest_to"] = None
    return changes


class SelectionManager:
    def __init__(
        self,
        store: BoardStore,
        scheduler: Scheduler,
        *,
        focus: Optional[FocusCallback] = None,
        timings: Optional[BoardTimings] = None,
    ) -> None:
        self.store = store
        self.scheduler = scheduler
        self.focus = focus
        self.timings = timings or BoardTimings()
        self._focus_timers = KeyedTimers(scheduler, "focus")
        self._unsubscribe: Optional[Callable[[], None]] = None

    # -- lifecycle ----------------------------------------------------------------

    def attach(self) -> None:
        self.detach()
        self._unsubscribe = self.store.subscribe(self._on_change)
        self.heal()

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def cancel(self) -> None:
        self._focus_timers.cancel_all()
        self.detach()

    def _on_change(self, _prev: BoardState, _cur: BoardState, changed: frozenset) -> None:
        if "quests" in changed:
            self.heal()

    def heal(self) -> None:
        changes = _stale_selection(self.store.state)
        if changes:
            logger.debug("Clearing stale selection: {}", sorted(changes))
            self.store.update(lambda _s: changes, action="healSelection")

    # -- queries ------------------------------------------------------------------

    @property
    def mode(self) -> SelectionMode:
        state = self.store.state
        if state.editing_side_quest is not None:
            return SelectionMode.SIDEQUEST_EDITING
        if state.editing_quest is not None:
            return SelectionMode.QUEST_EDITING
        if state.selected_side_quest is not None:
            return SelectionMode.SIDEQUEST_SELECTED
        if state.selected_quest_id is not None:
            return SelectionMode.QUEST_SELECTED
        return SelectionMode.NONE

    def find_quest(self, quest_id: Optional[QuestId]) -> Optional[Quest]:
        if quest_id is None:
            return None
        return self.store.get_quest(quest_id)

    @property
    def selected_quest(self) -> Optional[Quest]:
        return self.find_quest(self.store.state.selected_quest_id)

    # -- focus --------------------------------------------------------------------

    def request_focus(self, key: str) -> None:
        """Ask the presentation layer to focus *key* after a short delay."""
        if self.focus is None:
            return
        focus = self.focus
        self._focus_timers.arm("focus", self.timings.focus_delay_ms, lambda: focus(key))

    # -- collapse -----------------------------------------------------------------

    def ensure_quest_expanded(self, quest_id: Optional[QuestId]) -> None:
        if quest_id is None:
            return
        self.store.expand_quest(quest_id)

    def toggle_collapse(self, quest_id: QuestId) -> None:
        key = id_key(quest_id)
        self.store.set("collapsed_map", lambda prev: {**prev, key: not prev.get(key, False)}, action="toggleCollapse")

    # -- selection ----------------------------------------------------------------

    def select_quest(self, quest_id: Optional[QuestId]) -> None:
        if quest_id is None:
            return
        self.store.update(
            lambda _s: {
                "selected_quest_id": quest_id,
                "selected_side_quest": None,
                "editing_side_quest": None,
            },
            action="selectQuest",
        )
        self.ensure_quest_expanded(quest_id)

    def select_side_quest(self, quest_id: Optional[QuestId], side_quest_id: Optional[QuestId]) -> None:
        if quest_id is None or side_quest_id is None:
            return
        self.store.update(
            lambda _s: {
                "selected_quest_id": quest_id,
                "selected_side_quest": SideQuestRef(quest_id, side_quest_id),
            },
            action="selectSideQuest",
        )
        self.ensure_quest_expanded(quest_id)

    def clear_selection(self) -> None:
        self.store.reset_selection()

    def clear_side_quest_selection(self) -> None:
        self.store.set("selected_side_quest", None, action="clearSideQuestSelection")

    def move_quest_selection(self, offset: int) -> bool:
        """Move the selected quest by *offset*, clamped to the list bounds."""
        quests = self.store.quests
        if not quests:
            return False
        selected = self.store.state.selected_quest_id
        current = self.store.quest_index(selected) if selected is not None else -1
        if current == -1:
            target = 0 if offset >= 0 else len(quests) - 1
        else:
            target = max(0, min(current + offset, len(quests) - 1))
        if target == current:
            return False
        self.select_quest(quests[target].id)
        return True

    def select_first_side_quest(self, quest_id: QuestId) -> bool:
        subs = self.store.get_side_quests(quest_id)
        if not subs:
            return False
        self.select_side_quest(quest_id, subs[0].id)
        return True

    def select_last_side_quest(self, quest_id: QuestId) -> bool:
        subs = self.store.get_side_quests(quest_id)
        if not subs:
            return False
        self.select_side_quest(quest_id, subs[-1].id)
        return True

    # -- side-quest editing -------------------------------------------------------

    def start_editing_side_quest(self, quest_id: QuestId, side_quest: Optional[SideQuest]) -> None:
        if side_quest is None:
            return
        self.store.set(
            "editing_side_quest",
            SideQuestEdit(quest_id, side_quest.id, side_quest.description or ""),
            action="startEditingSideQuest",
        )
        self.request_focus(side_quest_edit_focus_key(quest_id, side_quest.id))

    def update_side_quest_edit(self, description: str) -> None:
        self.store.set(
            "editing_side_quest",
            lambda prev: replace(prev, description=description) if prev is not None else prev,
            action="editSideQuest",
        )

    def cancel_side_quest_edit(self) -> None:
        self.store.set("editing_side_quest", None, action="cancelSideQuestEdit")

    # -- quest editing ------------------------------------------------------------

    def start_editing_quest(self, quest_id: QuestId) -> bool:
        quest = self.find_quest(quest_id)
        if quest is None:
            return False
        snapshot = clone_quest_snapshot(quest)
        self.store.update(
            lambda _s: {
                "editing_quest": snapshot,
                "editing_side_quest": None,
                "adding_side_quest_to": None,
                "selected_side_quest": None,
            },
            action="startEditingQuest",
        )
        self.request_focus(quest_edit_focus_key(quest_id))
        return True

    def update_quest_edit(self, field_name: str, value: Any) -> None:
        """Write one field of the quest edit buffer, normalizing form input."""
        if field_name == "task_level":
            value = _coerce_level(value)
        elif field_name == "campaign_id":
            value = _coerce_campaign(value)
        elif field_name == "priority":
            value = _coerce_enum(QuestPriority, value, QuestPriority.MEDIUM)
        elif field_name not in ("description", "due_date"):
            raise ValueError(f"Field is not editable: {field_name}")

        self.store.set(
            "editing_quest",
            lambda prev: replace(prev, **{field_name: value}) if prev is not None else prev,
            action="editQuest",
        )

    def cancel_quest_edit(self) -> None:
        self.store.reset_editing_quest()

    # -- adding side quests -------------------------------------------------------

    def start_adding_side_quest(self, quest_id: QuestId) -> None:
        self.store.reset_transient_state()
        self.store.set("adding_side_quest_to", quest_id, action="startAddingSideQuest")
        self.ensure_quest_expanded(quest_id)
        self.request_focus(side_quest_add_focus_key(quest_id))

    def stop_adding_side_quest(self) -> None:
        self.store.set("adding_side_quest_to", None, action="stopAddingSideQuest")

    def is_selected(self, quest_id: QuestId) -> bool:
        return ids_match(self.store.state.selected_quest_id, quest_id)
