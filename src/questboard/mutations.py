"""Optimistic mutations against the Task Service.

Every operation follows the same protocol:

1. validate locally and return without side effects on invalid input;
2. apply the change to the store optimistically, remembering exactly what
   it replaced;
3. mark the owning quest as loading for the duration of the call;
4. await the Task Service through :func:`questboard.service.invoke`;
5. on ``Ok`` swap in the authoritative quest (matched by the owning quest
   id), request a layout refresh, bump the refresh token and forward any
   reward payload;
6. on ``Failure`` undo the optimistic change and push a fixed error toast.

Public operations never raise.  Rollbacks only touch values that still hold
what this call wrote, so a write made by an interleaved call survives.
"""

from __future__ import annotations

from dataclasses import replace
from enum import Enum
from typing import Any, Callable, Optional

from loguru import logger

from .animations import AnimationController
from .constants import (
    MSG_ADD_QUEST_FAILED,
    MSG_ADD_SIDE_QUEST_FAILED,
    MSG_DELETE_QUEST_FAILED,
    MSG_DELETE_SIDE_QUEST_FAILED,
    MSG_EMPTY_DESCRIPTION,
    MSG_QUEST_STATUS_FAILED,
    MSG_REFRESH_FAILED,
    MSG_SIDE_QUEST_STATUS_FAILED,
    MSG_SIDE_QUEST_UPDATED,
    MSG_UPDATE_QUEST_FAILED,
    MSG_UPDATE_SIDE_QUEST_FAILED,
)
from .layout import LayoutRefresher
from .models import (
    Quest,
    QuestId,
    QuestPriority,
    QuestStatus,
    SideQuest,
    _coerce_campaign,
    _coerce_enum,
    _coerce_level,
    find_side_quest,
    get_next_level,
    get_next_priority,
    id_key,
    ids_match,
    make_optimistic_side_quest,
)
from .notifications import ToastCenter
from .scheduler import Scheduler
from .service import Failure, Ok, TaskService, invoke, quest_fields
from .store import UNCATEGORIZED, BoardStore, CampaignFilter
from .undo import UndoQueue

QUEST_EDITABLE_FIELDS = ("description", "priority", "task_level", "due_date", "campaign_id")
SIDE_QUEST_EDITABLE_FIELDS = ("description", "weight", "priority")

_UNSET: Any = object()


def matches_campaign_filter(quest: Quest, campaign_filter: CampaignFilter) -> bool:
    if campaign_filter is None:
        return True
    if campaign_filter == UNCATEGORIZED:
        return quest.campaign_id is None
    return ids_match(quest.campaign_id, campaign_filter)


def _wire(fields: dict[str, Any]) -> dict[str, Any]:
    return {key: value.value if isinstance(value, Enum) else value for key, value in fields.items()}


def _normalize_quest_fields(fields: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in fields.items():
        if key not in QUEST_EDITABLE_FIELDS:
            continue
        if key == "task_level":
            value = _coerce_level(value)
        elif key == "campaign_id":
            value = _coerce_campaign(value)
        elif key == "priority":
            value = _coerce_enum(QuestPriority, value, QuestPriority.MEDIUM)
        elif key == "description":
            value = str(value or "")
        out[key] = value
    return out


def _normalize_side_quest_fields(fields: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in fields.items():
        if key not in SIDE_QUEST_EDITABLE_FIELDS:
            continue
        if key == "priority":
            value = _coerce_enum(QuestPriority, value, None)
        elif key == "weight" and value is not None:
            value = float(value)
        elif key == "description":
            value = str(value or "")
        out[key] = value
    return out


class MutationEngine:
    def __init__(
        self,
        store: BoardStore,
        service: TaskService,
        scheduler: Scheduler,
        *,
        animations: AnimationController,
        undo: UndoQueue,
        toasts: ToastCenter,
        layout: Optional[LayoutRefresher] = None,
        request_focus: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self.store = store
        self.service = service
        self.scheduler = scheduler
        self.animations = animations
        self.undo = undo
        self.toasts = toasts
        self.layout = layout
        self.request_focus = request_focus
        self._inflight: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Shared protocol steps
    # ------------------------------------------------------------------

    def _mark_loading(self, quest_id: QuestId) -> None:
        key = id_key(quest_id)
        self._inflight[key] = self._inflight.get(key, 0) + 1
        self.store.set_loading(quest_id, True)

    def _clear_loading(self, quest_id: QuestId) -> None:
        key = id_key(quest_id)
        remaining = self._inflight.get(key, 0) - 1
        if remaining > 0:
            self._inflight[key] = remaining
            return
        self._inflight.pop(key, None)
        self.store.set_loading(quest_id, False)

    def _map_quest(self, quest_id: QuestId, fn: Callable[[Quest], Quest]) -> None:
        self.store.set_quests(
            lambda prev: [fn(quest) if ids_match(quest.id, quest_id) else quest for quest in prev]
        )

    def _replace_quest(self, updated: Quest) -> None:
        self._map_quest(updated.id, lambda _quest: updated)

    def _confirmed(self, result: Ok) -> None:
        if self.layout is not None:
            self.layout.request()
        self.store.bump_refresh_token()
        self.toasts.forward_rewards(result.rewards)

    def _patch_quest(self, quest_id: QuestId, changes: dict[str, Any]) -> dict[str, Any]:
        """Apply *changes* to a quest and return the values they replaced."""
        previous: dict[str, Any] = {}

        def _apply(quest: Quest) -> Quest:
            previous.update({key: getattr(quest, key) for key in changes})
            return replace(quest, **changes)

        self._map_quest(quest_id, _apply)
        return previous

    def _revert_quest(self, quest_id: QuestId, previous: dict[str, Any], written: dict[str, Any]) -> None:
        def _restore(quest: Quest) -> Quest:
            back = {key: value for key, value in previous.items() if getattr(quest, key) == written[key]}
            return replace(quest, **back) if back else quest

        self._map_quest(quest_id, _restore)

    def _patch_side_quest(
        self, quest_id: QuestId, side_quest_id: QuestId, changes: dict[str, Any]
    ) -> dict[str, Any]:
        previous: dict[str, Any] = {}

        def _apply(quest: Quest) -> Quest:
            subs = []
            for sub in quest.side_quests:
                if ids_match(sub.id, side_quest_id):
                    previous.update({key: getattr(sub, key) for key in changes})
                    sub = replace(sub, **changes)
                subs.append(sub)
            return replace(quest, side_quests=subs)

        self._map_quest(quest_id, _apply)
        return previous

    def _revert_side_quest(
        self,
        quest_id: QuestId,
        side_quest_id: QuestId,
        previous: dict[str, Any],
        written: dict[str, Any],
    ) -> None:
        def _restore(quest: Quest) -> Quest:
            subs = []
            touched = False
            for sub in quest.side_quests:
                if ids_match(sub.id, side_quest_id):
                    back = {k: v for k, v in previous.items() if getattr(sub, k) == written[k]}
                    if back:
                        sub = replace(sub, **back)
                        touched = True
                subs.append(sub)
            return replace(quest, side_quests=subs) if touched else quest

        self._map_quest(quest_id, _restore)

    # ------------------------------------------------------------------
    # Quests
    # ------------------------------------------------------------------

    async def create_quest(self) -> Optional[Quest]:
        """Create a quest from the new-quest drafts.

        Creation is not optimistic: the quest only appears once the Task
        Service returns it.  A quest outside the active campaign filter
        triggers a reload instead of an insert.
        """
        state = self.store.state
        description = state.description.strip()
        if not description:
            return None
        fields: dict[str, Any] = {
            "description": description,
            "priority": state.priority.value,
            "task_level": state.task_level,
        }
        if state.campaign_selection is not None:
            fields["campaign_id"] = state.campaign_selection

        result = await invoke(self.service.create_quest, fields, what="create_quest")
        if isinstance(result, Failure):
            self.toasts.error(MSG_ADD_QUEST_FAILED)
            return None

        quest: Quest = result.value
        if matches_campaign_filter(quest, self.store.state.campaign_filter):
            self.store.set_quests(
                lambda prev: [quest, *[q for q in prev if not ids_match(q.id, quest.id)]]
            )
        else:
            await self.reload_quests()
        self.store.update(
            lambda _s: {"description": "", "priority": QuestPriority.MEDIUM, "task_level": 1},
            action="resetQuestDrafts",
        )
        self.animations.quest_created(quest.id)
        self._confirmed(result)
        logger.info("Created quest {}", quest.id)
        return quest

    async def delete_quest(self, quest_id: QuestId) -> bool:
        """Remove a quest locally, offer undo, then delete it remotely.

        If the Task Service rejects the delete the quest is put back where it
        was (unless something with the same id has appeared meanwhile) and the
        undo entry is withdrawn.
        """
        index = self.store.quest_index(quest_id)
        if index == -1:
            return False
        quest = self.store.quests[index]

        def _remove(state) -> dict[str, Any]:
            changes: dict[str, Any] = {
                "quests": [q for q in state.quests if not ids_match(q.id, quest_id)],
            }
            if state.editing_quest is not None and ids_match(state.editing_quest.id, quest_id):
                changes["editing_quest"] = None
            return changes

        self.store.update(_remove, action="deleteQuest")
        entry = self.undo.schedule(quest)
        self._mark_loading(quest_id)
        try:
            result = await invoke(self.service.delete_quest, quest_id, what="delete_quest")
        finally:
            self._clear_loading(quest_id)

        if isinstance(result, Failure) or result.value is False:
            if not isinstance(result, Failure):
                logger.warning("delete_quest refused for {}", quest_id)
            if entry is not None:
                self.undo.dismiss(entry.id)
            if self.store.quest_index(quest_id) == -1:
                self.undo.restore(quest, index=index)
            self.toasts.error(MSG_DELETE_QUEST_FAILED)
            return False
        self._confirmed(result)
        return True

    async def update_quest(self, quest_id: QuestId, fields: dict[str, Any]) -> Optional[Quest]:
        changes = _normalize_quest_fields(fields)
        if not changes or self.store.quest_index(quest_id) == -1:
            self.store.reset_editing_quest()
            return None
        previous = self._patch_quest(quest_id, changes)
        self._mark_loading(quest_id)
        try:
            result = await invoke(self.service.update_quest, quest_id, _wire(changes), what="update_quest")
        finally:
            self._clear_loading(quest_id)
            self.store.reset_editing_quest()

        if isinstance(result, Failure):
            self._revert_quest(quest_id, previous, changes)
            self.toasts.error(MSG_UPDATE_QUEST_FAILED)
            return None
        self._replace_quest(result.value)
        self._confirmed(result)
        return result.value

    async def save_quest_edit(self) -> Optional[Quest]:
        editing = self.store.state.editing_quest
        if editing is None:
            return None
        if not editing.description.strip():
            self.toasts.error(MSG_EMPTY_DESCRIPTION)
            return None
        fields = quest_fields(editing)
        fields["description"] = editing.description.strip()
        return await self.update_quest(editing.id, fields)

    async def set_quest_status(
        self, quest_id: QuestId, status: QuestStatus, note: Optional[str] = None
    ) -> Optional[Quest]:
        status = _coerce_enum(QuestStatus, status, None)
        if status is None or self.store.quest_index(quest_id) == -1:
            return None
        written = {"status": status}
        previous = self._patch_quest(quest_id, written)
        self._mark_loading(quest_id)
        try:
            result = await invoke(
                self.service.set_quest_status, quest_id, status, note, what="set_quest_status"
            )
        finally:
            self._clear_loading(quest_id)

        if isinstance(result, Failure):
            self._revert_quest(quest_id, previous, written)
            self.toasts.error(MSG_QUEST_STATUS_FAILED)
            return None
        updated: Quest = result.value
        self._replace_quest(updated)
        self.animations.quest_status_resolved(quest_id, updated.status)
        self._confirmed(result)
        return updated

    async def toggle_quest_done(self, quest_id: QuestId) -> Optional[Quest]:
        quest = self.store.get_quest(quest_id)
        if quest is None:
            return None
        target = QuestStatus.IN_PROGRESS if quest.status == QuestStatus.DONE else QuestStatus.DONE
        return await self.set_quest_status(quest_id, target)

    async def reload_quests(self, campaign_filter: CampaignFilter = _UNSET) -> bool:
        """Replace the quest list with the Task Service's; keep it on failure."""
        if campaign_filter is _UNSET:
            campaign_filter = self.store.state.campaign_filter
        result = await invoke(self.service.list_quests, campaign_filter, what="list_quests")
        if isinstance(result, Failure):
            self.toasts.error(MSG_REFRESH_FAILED)
            return False
        self.store.set_quests(list(result.value))
        self.store.bump_refresh_token()
        return True

    async def set_campaign_filter(self, campaign_filter: CampaignFilter) -> bool:
        """Switch the filter and reload; a failed reload puts the old filter back."""
        previous = self.store.state.campaign_filter
        self.store.set("campaign_filter", campaign_filter, action="setCampaignFilter")
        if await self.reload_quests(campaign_filter):
            return True
        if self.store.state.campaign_filter == campaign_filter:
            self.store.set("campaign_filter", previous, action="setCampaignFilter")
        return False

    # ------------------------------------------------------------------
    # Side quests
    # ------------------------------------------------------------------

    async def create_side_quest(self, quest_id: QuestId) -> Optional[Quest]:
        """Add the drafted side quest to *quest_id*.

        An optimistic side quest is appended right away and either replaced
        by the Task Service's version of the quest or filtered back out.
        """
        draft = self.store.state.side_quest_drafts.get(id_key(quest_id), "")
        description = draft.strip()
        if not description or self.store.quest_index(quest_id) == -1:
            return None

        optimistic = make_optimistic_side_quest(quest_id, description, int(self.scheduler.now_ms()))
        self._map_quest(
            quest_id,
            lambda quest: replace(quest, side_quests=[*quest.side_quests, optimistic]),
        )
        self.store.reset_side_quest_draft(quest_id)
        self._mark_loading(quest_id)
        try:
            result = await invoke(
                self.service.create_side_quest, quest_id, description, what="create_side_quest"
            )
        finally:
            self._clear_loading(quest_id)
            if self.request_focus is not None:
                self.request_focus(f"{quest_id}:add")

        if isinstance(result, Failure):
            self._map_quest(
                quest_id,
                lambda quest: replace(
                    quest,
                    side_quests=[sub for sub in quest.side_quests if not ids_match(sub.id, optimistic.id)],
                ),
            )
            self.toasts.error(MSG_ADD_SIDE_QUEST_FAILED)
            return None
        self._replace_quest(result.value)
        self._confirmed(result)
        return result.value

    async def update_side_quest(
        self, quest_id: QuestId, side_quest_id: QuestId, fields: dict[str, Any]
    ) -> Optional[Quest]:
        changes = _normalize_side_quest_fields(fields)
        if not changes or find_side_quest(self.store.get_quest(quest_id), side_quest_id) is None:
            return None
        previous = self._patch_side_quest(quest_id, side_quest_id, changes)
        self._mark_loading(quest_id)
        try:
            result = await invoke(
                self.service.update_side_quest,
                quest_id,
                side_quest_id,
                _wire(changes),
                what="update_side_quest",
            )
        finally:
            self._clear_loading(quest_id)

        if isinstance(result, Failure):
            self._revert_side_quest(quest_id, side_quest_id, previous, changes)
            self.toasts.error(MSG_UPDATE_SIDE_QUEST_FAILED)
            return None
        self._replace_quest(result.value)
        self._confirmed(result)
        return result.value

    async def save_side_quest_edit(self, quest_id: QuestId, side_quest_id: QuestId) -> bool:
        """Commit the side-quest edit buffer.

        The buffer is cleared only when the update succeeds, so a failed save
        leaves the user's text in place.
        """
        edit = self.store.state.editing_side_quest
        if edit is None or not edit.matches(quest_id, side_quest_id):
            return False
        description = (edit.description or "").strip()
        if not description:
            self.toasts.error(MSG_EMPTY_DESCRIPTION)
            return False
        updated = await self.update_side_quest(quest_id, side_quest_id, {"description": description})
        if updated is None:
            return False
        self.store.set(
            "editing_side_quest",
            lambda prev: None if prev is not None and prev.matches(quest_id, side_quest_id) else prev,
            action="finishSideQuestEdit",
        )
        self.toasts.success(MSG_SIDE_QUEST_UPDATED)
        return True

    async def delete_side_quest(self, quest_id: QuestId, side_quest_id: QuestId) -> bool:
        quest = self.store.get_quest(quest_id)
        if find_side_quest(quest, side_quest_id) is None:
            return False
        index = next(i for i, sub in enumerate(quest.side_quests) if ids_match(sub.id, side_quest_id))
        removed: SideQuest = quest.side_quests[index]
        self._map_quest(
            quest_id,
            lambda q: replace(
                q, side_quests=[sub for sub in q.side_quests if not ids_match(sub.id, side_quest_id)]
            ),
        )
        self._mark_loading(quest_id)
        try:
            result = await invoke(
                self.service.delete_side_quest, quest_id, side_quest_id, what="delete_side_quest"
            )
        finally:
            self._clear_loading(quest_id)

        if isinstance(result, Failure):
            def _reinsert(q: Quest) -> Quest:
                if find_side_quest(q, side_quest_id) is not None:
                    return q
                subs = list(q.side_quests)
                subs.insert(min(index, len(subs)), removed)
                return replace(q, side_quests=subs)

            self._map_quest(quest_id, _reinsert)
            self.toasts.error(MSG_DELETE_SIDE_QUEST_FAILED)
            return False
        if isinstance(result.value, Quest):
            self._replace_quest(result.value)
        self._confirmed(result)
        return True

    async def set_side_quest_status(
        self,
        quest_id: QuestId,
        side_quest_id: QuestId,
        status: QuestStatus,
        note: Optional[str] = None,
    ) -> Optional[Quest]:
        status = _coerce_enum(QuestStatus, status, None)
        if status is None or find_side_quest(self.store.get_quest(quest_id), side_quest_id) is None:
            return None
        written = {"status": status}
        previous = self._patch_side_quest(quest_id, side_quest_id, written)
        self._mark_loading(quest_id)
        try:
            result = await invoke(
                self.service.set_side_quest_status,
                quest_id,
                side_quest_id,
                status,
                note,
                what="set_side_quest_status",
            )
        finally:
            self._clear_loading(quest_id)

        if isinstance(result, Failure):
            self._revert_side_quest(quest_id, side_quest_id, previous, written)
            self.toasts.error(MSG_SIDE_QUEST_STATUS_FAILED)
            return None
        updated: Quest = result.value
        self._replace_quest(updated)
        confirmed = find_side_quest(updated, side_quest_id)
        self.animations.side_quest_status_resolved(
            quest_id, side_quest_id, confirmed.status if confirmed else status
        )
        self._confirmed(result)
        return updated

    async def toggle_side_quest_done(self, quest_id: QuestId, side_quest_id: QuestId) -> Optional[Quest]:
        sub = find_side_quest(self.store.get_quest(quest_id), side_quest_id)
        if sub is None:
            return None
        target = QuestStatus.TODO if sub.is_done else QuestStatus.DONE
        return await self.set_side_quest_status(quest_id, side_quest_id, target)

    # ------------------------------------------------------------------
    # Drafts
    # ------------------------------------------------------------------

    def set_description(self, description: str) -> None:
        self.store.set("description", description, action="setDescription")

    def set_campaign_selection(self, campaign_id: Any) -> None:
        self.store.set("campaign_selection", _coerce_campaign(campaign_id), action="setCampaignSelection")

    def set_side_quest_draft(self, quest_id: QuestId, text: str) -> None:
        key = id_key(quest_id)
        self.store.set("side_quest_drafts", lambda prev: {**prev, key: text}, action="setSideQuestDraft")

    def cycle_priority(self) -> QuestPriority:
        return self.store.set("priority", get_next_priority, action="cyclePriority")

    def cycle_task_level(self) -> int:
        return self.store.set("task_level", get_next_level, action="cycleTaskLevel")

    def cycle_editing_priority(self) -> None:
        self.store.set(
            "editing_quest",
            lambda prev: replace(prev, priority=get_next_priority(prev.priority or QuestPriority.LOW)) if prev else prev,
            action="cycleEditingPriority",
        )

    def cycle_editing_level(self) -> None:
        self.store.set(
            "editing_quest",
            lambda prev: replace(prev, task_level=get_next_level(prev.task_level or 1)) if prev else prev,
            action="cycleEditingLevel",
        )
