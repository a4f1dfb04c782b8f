"""Keep a user-reordered list stable across external refreshes.

:func:`reconcile_order` merges a freshly delivered list into the order the
user currently sees.  :class:`OrderedListView` applies it to one rendered
list and holds refreshes back while a drag gesture is in progress;
:class:`DragReconciler` keeps one view for the quest list and one per quest
for its side quests, re-syncing them from the store.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from typing import Any, Callable, Hashable, Optional, Sequence

from loguru import logger

from .models import Quest, QuestId, SideQuest, id_key, ids_match
from .store import BoardState, BoardStore


def _field(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def _present(value: Any) -> bool:
    return value is not None and value != ""


def get_item_key(item: Any, fallback: Hashable) -> Hashable:
    """Identity of *item*: its ``id``, else its ``key``, else *fallback*."""
    for name in ("id", "key"):
        value = _field(item, name)
        if _present(value):
            return value
    return fallback


def _match_key(item: Any, index: int) -> tuple[str, Hashable]:
    for name in ("id", "key"):
        value = _field(item, name)
        if _present(value):
            return (name, str(value))
    return ("index", index)


def reconcile_order(incoming: Optional[Sequence[Any]], previous: Optional[Sequence[Any]]) -> list[Any]:
    """Merge *incoming* into the order of *previous*.

    Items of *previous* that still exist keep their relative order (the
    *incoming* object is used), items only in *incoming* are appended in
    incoming order, and items only in *previous* are dropped.
    """
    incoming = list(incoming or [])
    if not previous:
        return incoming
    remaining: dict[tuple[str, Hashable], Any] = {}
    for index, item in enumerate(incoming):
        remaining[_match_key(item, index)] = item
    merged: list[Any] = []
    for source in (previous, incoming):
        for index, item in enumerate(source):
            key = _match_key(item, index)
            if key in remaining:
                merged.append(remaining.pop(key))
    return merged


class OrderedListView:
    """Rendered order of one list.

    While a drag is active, :meth:`sync` only records the latest incoming list;
    it is reconciled when the drag ends.
    """

    def __init__(self, items: Optional[Sequence[Any]] = None) -> None:
        self.items: list[Any] = list(items or [])
        self.dragging = False
        self._deferred: Optional[list[Any]] = None

    def sync(self, incoming: Sequence[Any]) -> bool:
        if self.dragging:
            self._deferred = list(incoming)
            return False
        nxt = reconcile_order(incoming, self.items)
        changed = nxt != self.items or any(a is not b for a, b in zip(nxt, self.items))
        self.items = nxt
        return changed

    def begin_drag(self) -> None:
        self.dragging = True

    def move(self, from_index: int, to_index: int) -> None:
        if not 0 <= from_index < len(self.items):
            raise IndexError(f"from_index out of range: {from_index}")
        to_index = max(0, min(to_index, len(self.items) - 1))
        item = self.items.pop(from_index)
        self.items.insert(to_index, item)

    def end_drag(self) -> list[Any]:
        """Finish the gesture and return the order the user settled on."""
        self.dragging = False
        final = list(self.items)
        if self._deferred is not None:
            deferred, self._deferred = self._deferred, None
            self.sync(deferred)
        return final

    def keys(self) -> list[Hashable]:
        return [get_item_key(item, index) for index, item in enumerate(self.items)]


class DragReconciler:
    """Views for the quest list and each quest's side quests, fed by the store."""

    def __init__(self, store: BoardStore) -> None:
        self.store = store
        self.quests = OrderedListView(store.quests)
        self.side_quests: dict[str, OrderedListView] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None
        self.sync()

    def attach(self) -> None:
        self.detach()

        def _on_change(_prev: BoardState, _cur: BoardState, changed: frozenset) -> None:
            if "quests" in changed or "refresh_token" in changed:
                self.sync()

        self._unsubscribe = self.store.subscribe(_on_change)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def side_quest_view(self, quest_id: QuestId) -> OrderedListView:
        key = id_key(quest_id)
        view = self.side_quests.get(key)
        if view is None:
            view = OrderedListView(self.store.get_side_quests(quest_id))
            self.side_quests[key] = view
        return view

    def sync(self) -> None:
        quests = self.store.quests
        self.quests.sync(quests)
        live = {id_key(quest.id) for quest in quests}
        for key in list(self.side_quests):
            if key not in live:
                del self.side_quests[key]
        for quest in quests:
            self.side_quest_view(quest.id).sync(quest.side_quests)

    # -- committing drags -----------------------------------------------------

    def reorder_quests(self, order: Sequence[Quest]) -> None:
        """Commit a dragged quest order; quests added meanwhile go last."""
        self.store.set_quests(lambda prev: reconcile_order(prev, order))
        logger.debug("Quest order committed ({} items)", len(order))

    def reorder_side_quests(self, quest_id: QuestId, order: Sequence[SideQuest]) -> None:
        def _apply(prev: list[Quest]) -> list[Quest]:
            nxt = list(prev)
            for index, quest in enumerate(nxt):
                if ids_match(quest.id, quest_id):
                    nxt[index] = replace(quest, side_quests=reconcile_order(quest.side_quests, order))
            return nxt

        self.store.set_quests(_apply)

    def end_quest_drag(self) -> list[Quest]:
        order = self.quests.end_drag()
        self.reorder_quests(order)
        return order

    def end_side_quest_drag(self, quest_id: QuestId) -> list[SideQuest]:
        order = self.side_quest_view(quest_id).end_drag()
        self.reorder_side_quests(quest_id, order)
        return order
