"""Single source of truth for the quest board.

:class:`BoardStore` keeps one immutable :class:`BoardState` snapshot and swaps
it on every write.  All components mutate state exclusively through the
store's setters, and every setter accepts either a literal value or an
updater ``fn(previous) -> next`` that is applied to the *current* snapshot at
write time.  That is what keeps an interleaved optimistic write and a late
server confirmation from clobbering each other through a stale copy.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Optional, Union

from loguru import logger

from .io_utils import _load_data_with_error, _save_data
from .models import (
    Quest,
    QuestId,
    QuestPriority,
    SideQuest,
    SideQuestEdit,
    SideQuestRef,
    id_key,
    ids_match,
)

if TYPE_CHECKING:
    from .animations import AnimationFlag
    from .notifications import Toast
    from .undo import UndoEntry

CampaignFilter = Union[None, int, str]  # None = all, "uncategorized", or a campaign id
Listener = Callable[["BoardState", "BoardState", frozenset], None]

UNCATEGORIZED = "uncategorized"


@dataclass(frozen=True)
class BoardState:
    # Quest list
    quests: list[Quest] = field(default_factory=list)

    # New-quest drafts
    description: str = ""
    priority: QuestPriority = QuestPriority.MEDIUM
    task_level: int = 1
    campaign_selection: Optional[int] = None
    campaign_filter: CampaignFilter = None

    # Selection / editing
    selected_quest_id: Optional[QuestId] = None
    selected_side_quest: Optional[SideQuestRef] = None
    editing_quest: Optional[Quest] = None
    editing_side_quest: Optional[SideQuestEdit] = None
    side_quest_drafts: dict[str, str] = field(default_factory=dict)
    adding_side_quest_to: Optional[QuestId] = None
    collapsed_map: dict[str, bool] = field(default_factory=dict)
    loading_quests: frozenset[str] = frozenset()

    # Animation flags
    pulsing_quests: dict[str, "AnimationFlag"] = field(default_factory=dict)
    pulsing_side_quests: dict[str, "AnimationFlag"] = field(default_factory=dict)
    glow_quests: dict[str, "AnimationFlag"] = field(default_factory=dict)
    celebrating_quests: dict[str, "AnimationFlag"] = field(default_factory=dict)
    spawn_quests: dict[str, "AnimationFlag"] = field(default_factory=dict)

    # Bumped after every successful mutation; forces list reconciliation
    refresh_token: int = 0

    # Undo + notifications
    undo_queue: list["UndoEntry"] = field(default_factory=list)
    toasts: list["Toast"] = field(default_factory=list)


STATE_KEYS = frozenset(f.name for f in dataclasses.fields(BoardState))
SELECTION_RESET = {
    "selected_quest_id": None,
    "selected_side_quest": None,
    "editing_side_quest": None,
}
TRANSIENT_RESET = {
    "editing_quest": None,
    "editing_side_quest": None,
    "adding_side_quest_to": None,
    "selected_side_quest": None,
}


def _resolve(value: Any, current: Any) -> Any:
    return value(current) if callable(value) else value


class BoardStore:
    """Explicitly constructed state container with a defined lifecycle.

    Args:
        quests: Optional initial quest list.
    """

    def __init__(self, quests: Optional[Iterable[Quest]] = None) -> None:
        self._state = BoardState(quests=list(quests or []))
        self._listeners: list[Listener] = []

    # -- reading ------------------------------------------------------------

    @property
    def state(self) -> BoardState:
        return self._state

    @property
    def quests(self) -> list[Quest]:
        return self._state.quests

    def get(self, key: str) -> Any:
        if key not in STATE_KEYS:
            raise KeyError(f"Unknown board state key: {key}")
        return getattr(self._state, key)

    def quest_index(self, quest_id: QuestId) -> int:
        for index, quest in enumerate(self._state.quests):
            if ids_match(quest.id, quest_id):
                return index
        return -1

    def get_quest(self, quest_id: QuestId) -> Optional[Quest]:
        index = self.quest_index(quest_id)
        return self._state.quests[index] if index != -1 else None

    def get_side_quests(self, quest_id: QuestId) -> list[SideQuest]:
        quest = self.get_quest(quest_id)
        return list(quest.side_quests) if quest else []

    # -- observers ------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener* and return a callable that removes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # -- writing --------------------------------------------------------------

    def set(self, key: str, value: Any, *, action: Optional[str] = None) -> Any:
        """Set one field from a literal or an updater of the previous value."""
        if key not in STATE_KEYS:
            raise KeyError(f"Unknown board state key: {key}")
        nxt = _resolve(value, getattr(self._state, key))
        self._commit({key: nxt}, action or f"set_{key}")
        return nxt

    def update(self, fn: Callable[[BoardState], Mapping[str, Any]], *, action: str = "update") -> None:
        """Atomically apply several field changes computed from the current state."""
        changes = dict(fn(self._state) or {})
        unknown = set(changes) - STATE_KEYS
        if unknown:
            raise KeyError(f"Unknown board state keys: {sorted(unknown)}")
        self._commit(changes, action)

    def set_quests(self, value: Union[list[Quest], Callable[[list[Quest]], list[Quest]]]) -> list[Quest]:
        return self.set("quests", value, action="setQuests")

    def _commit(self, changes: dict[str, Any], action: str) -> None:
        previous = self._state
        changed = frozenset(
            key for key, value in changes.items()
            if getattr(previous, key) is not value and getattr(previous, key) != value
        )
        if not changed:
            return
        self._state = dataclasses.replace(previous, **{k: changes[k] for k in changed})
        logger.debug("questBoard/{} changed={}", action, sorted(changed))
        for listener in list(self._listeners):
            listener(previous, self._state, changed)

    # -- compound setters -------------------------------------------------------

    def reset_selection(self) -> None:
        self.update(lambda _s: SELECTION_RESET, action="resetSelection")

    def reset_transient_state(self) -> None:
        self.update(lambda _s: TRANSIENT_RESET, action="resetTransientState")

    def reset_editing_quest(self) -> None:
        self.set("editing_quest", None, action="resetEditingQuest")

    def reset_side_quest_draft(self, quest_id: Optional[QuestId] = None) -> None:
        if quest_id is None:
            self.set("side_quest_drafts", {}, action="resetSideQuestDraftAll")
            return

        def _drop(drafts: dict[str, str]) -> dict[str, str]:
            nxt = dict(drafts)
            nxt.pop(id_key(quest_id), None)
            return nxt

        self.set("side_quest_drafts", _drop, action="resetSideQuestDraft")

    def collapse_quest(self, quest_id: QuestId, collapsed: bool = True) -> None:
        key = id_key(quest_id)
        self.set(
            "collapsed_map",
            lambda prev: {**prev, key: collapsed},
            action="collapseQuest",
        )

    def expand_quest(self, quest_id: QuestId) -> None:
        """Expand *quest_id* if it is currently collapsed (no-op otherwise)."""
        key = id_key(quest_id)

        def _expand(prev: dict[str, bool]) -> dict[str, bool]:
            if not prev.get(key):
                return prev
            return {**prev, key: False}

        self.set("collapsed_map", _expand, action="expandQuest")

    def set_loading(self, quest_id: QuestId, loading: bool) -> None:
        key = id_key(quest_id)

        def _toggle(prev: frozenset[str]) -> frozenset[str]:
            return prev | {key} if loading else prev - {key}

        self.set("loading_quests", _toggle, action="setLoading")

    def bump_refresh_token(self) -> int:
        return self.set("refresh_token", lambda prev: prev + 1, action="bumpRefreshToken")

    def is_loading(self, quest_id: QuestId) -> bool:
        return id_key(quest_id) in self._state.loading_quests

    # -- lifecycle --------------------------------------------------------------

    def init(self, quests: Iterable[Quest]) -> None:
        self.set_quests(list(quests))

    def reset(self, *, clear_persisted: bool = False) -> None:
        """Return to the initial state; the collapse map survives unless cleared."""
        collapsed = {} if clear_persisted else self._state.collapsed_map
        fresh = BoardState(collapsed_map=collapsed, refresh_token=self._state.refresh_token + 1)
        self.update(
            lambda _s: {key: getattr(fresh, key) for key in STATE_KEYS},
            action="reset",
        )

    def persisted_subset(self) -> dict[str, Any]:
        return {"version": 1, "collapsed_map": dict(self._state.collapsed_map)}

    def save_persisted(self, path: Path) -> None:
        _save_data(path, self.persisted_subset())
        logger.debug("Saved persisted board state to {}", path)

    def load_persisted(self, path: Path) -> Optional[str]:
        """Merge a persisted subset from *path* into the current state.

        Returns an error message if the file exists but cannot be read; the
        state is left untouched in that case.
        """
        data, err = _load_data_with_error(path, {})
        if err:
            logger.warning("Ignoring persisted board state: {}", err)
            return err
        raw = data.get("collapsed_map")
        if isinstance(raw, dict):
            persisted = {str(k): bool(v) for k, v in raw.items()}
            self.set(
                "collapsed_map",
                lambda prev: {**prev, **persisted},
                action="mergePersistedState",
            )
        return None
