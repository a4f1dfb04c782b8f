"""In-process Task Service used by tests and demos."""

from __future__ import annotations

import asyncio
import copy
import itertools
from collections import defaultdict, deque
from dataclasses import replace
from typing import Any, Iterable, Optional

from loguru import logger

from .models import Quest, QuestId, QuestPriority, QuestStatus, SideQuest, _coerce_campaign, _coerce_enum, _coerce_level, ids_match
from .service import CampaignFilter, Failure, Ok, ServiceResult
from .store import UNCATEGORIZED


class InMemoryTaskService:
    """Server-side behaviour without a server.

    Ids are assigned here, like a real backend would: quests get a global
    integer sequence and side quests a per-quest one.  ``fail_next`` queues a
    rejection (or a raised error) for the next call of a given operation, and
    ``block`` holds every call at its suspension point until ``release``.
    """

    def __init__(self, quests: Optional[Iterable[Quest]] = None) -> None:
        self._quests: list[Quest] = [copy.deepcopy(q) for q in (quests or [])]
        numeric = [int(q.id) for q in self._quests if str(q.id).isdigit()]
        self._quest_ids = itertools.count(max(numeric, default=0) + 1)
        self._side_ids: dict[str, itertools.count] = {}
        for quest in self._quests:
            sub_ids = [int(s.id) for s in quest.side_quests if str(s.id).isdigit()]
            self._side_ids[str(quest.id)] = itertools.count(max(sub_ids, default=0) + 1)
        self._failures: dict[str, deque] = defaultdict(deque)
        self._gate: Optional[asyncio.Event] = None
        self.calls: list[tuple[str, tuple]] = []

    # -- test hooks -------------------------------------------------------------

    def fail_next(self, operation: str, reason: str = "rejected", *, raise_error: bool = False) -> None:
        self._failures[operation].append((reason, raise_error))

    def block(self) -> None:
        self._gate = asyncio.Event()

    def release(self) -> None:
        if self._gate is not None:
            self._gate.set()
            self._gate = None

    @property
    def quests(self) -> list[Quest]:
        return copy.deepcopy(self._quests)

    async def _enter(self, operation: str, *args: Any) -> Optional[Failure]:
        self.calls.append((operation, args))
        gate = self._gate
        if gate is not None:
            await gate.wait()
        else:
            await asyncio.sleep(0)
        if self._failures[operation]:
            reason, raise_error = self._failures[operation].popleft()
            logger.debug("InMemoryTaskService: injected failure for {}", operation)
            if raise_error:
                raise RuntimeError(reason)
            return Failure(reason=reason)
        return None

    def _index(self, quest_id: QuestId) -> int:
        for index, quest in enumerate(self._quests):
            if ids_match(quest.id, quest_id):
                return index
        return -1

    def _respond(self, quest: Quest, rewards: Optional[dict[str, Any]] = None) -> Ok[Quest]:
        return Ok(copy.deepcopy(quest), rewards)

    # -- quests -----------------------------------------------------------------

    async def list_quests(self, campaign_filter: CampaignFilter = None) -> ServiceResult[list[Quest]]:
        failure = await self._enter("list_quests", campaign_filter)
        if failure:
            return failure
        quests = self._quests
        if campaign_filter == UNCATEGORIZED:
            quests = [q for q in quests if q.campaign_id is None]
        elif campaign_filter is not None:
            quests = [q for q in quests if ids_match(q.campaign_id, campaign_filter)]
        return Ok(copy.deepcopy(quests))

    async def create_quest(self, fields: dict[str, Any]) -> ServiceResult[Quest]:
        failure = await self._enter("create_quest", fields)
        if failure:
            return failure
        description = str(fields.get("description") or "").strip()
        if not description:
            return Failure(reason="Description is required")
        quest = Quest(
            id=next(self._quest_ids),
            description=description,
            priority=_coerce_enum(QuestPriority, fields.get("priority"), QuestPriority.MEDIUM),
            task_level=_coerce_level(fields.get("task_level", 1)),
            due_date=fields.get("due_date"),
            campaign_id=_coerce_campaign(fields.get("campaign_id")),
        )
        self._side_ids[str(quest.id)] = itertools.count(1)
        self._quests.insert(0, quest)
        return self._respond(quest)

    async def delete_quest(self, quest_id: QuestId) -> ServiceResult[bool]:
        failure = await self._enter("delete_quest", quest_id)
        if failure:
            return failure
        index = self._index(quest_id)
        if index == -1:
            return Failure(reason="Quest not found")
        del self._quests[index]
        return Ok(True)

    async def update_quest(self, quest_id: QuestId, fields: dict[str, Any]) -> ServiceResult[Quest]:
        failure = await self._enter("update_quest", quest_id, fields)
        if failure:
            return failure
        index = self._index(quest_id)
        if index == -1:
            return Failure(reason="Quest not found")
        quest = self._quests[index]
        changes: dict[str, Any] = {}
        if "description" in fields:
            changes["description"] = str(fields["description"] or "")
        if "priority" in fields:
            changes["priority"] = _coerce_enum(QuestPriority, fields["priority"], quest.priority)
        if "task_level" in fields:
            changes["task_level"] = _coerce_level(fields["task_level"])
        if "due_date" in fields:
            changes["due_date"] = fields["due_date"]
        if "campaign_id" in fields:
            changes["campaign_id"] = _coerce_campaign(fields["campaign_id"])
        self._quests[index] = replace(quest, **changes)
        return self._respond(self._quests[index])

    async def set_quest_status(
        self, quest_id: QuestId, status: QuestStatus, note: Optional[str] = None
    ) -> ServiceResult[Quest]:
        failure = await self._enter("set_quest_status", quest_id, status, note)
        if failure:
            return failure
        index = self._index(quest_id)
        if index == -1:
            return Failure(reason="Quest not found")
        status = QuestStatus(status)
        previous = self._quests[index].status
        self._quests[index] = replace(self._quests[index], status=status)
        rewards = None
        if status == QuestStatus.DONE and previous != QuestStatus.DONE:
            rewards = {"xp_events": [{"type": "quest_completed", "quest_id": self._quests[index].id}]}
        return self._respond(self._quests[index], rewards)

    # -- side quests --------------------------------------------------------------

    async def create_side_quest(self, quest_id: QuestId, description: str) -> ServiceResult[Quest]:
        failure = await self._enter("create_side_quest", quest_id, description)
        if failure:
            return failure
        index = self._index(quest_id)
        if index == -1:
            return Failure(reason="Quest not found")
        quest = self._quests[index]
        counter = self._side_ids.setdefault(str(quest.id), itertools.count(1))
        sub = SideQuest(id=next(counter), description=description)
        self._quests[index] = replace(quest, side_quests=[*quest.side_quests, sub])
        return self._respond(self._quests[index])

    def _replace_side_quest(self, index: int, side_quest_id: QuestId, **changes: Any) -> bool:
        quest = self._quests[index]
        subs = list(quest.side_quests)
        for i, sub in enumerate(subs):
            if ids_match(sub.id, side_quest_id):
                subs[i] = replace(sub, **changes)
                self._quests[index] = replace(quest, side_quests=subs)
                return True
        return False

    async def update_side_quest(
        self, quest_id: QuestId, side_quest_id: QuestId, fields: dict[str, Any]
    ) -> ServiceResult[Quest]:
        failure = await self._enter("update_side_quest", quest_id, side_quest_id, fields)
        if failure:
            return failure
        index = self._index(quest_id)
        changes = {k: v for k, v in fields.items() if k in ("description", "weight")}
        if "priority" in fields:
            changes["priority"] = _coerce_enum(QuestPriority, fields["priority"], None)
        if index == -1 or not self._replace_side_quest(index, side_quest_id, **changes):
            return Failure(reason="Side quest not found")
        return self._respond(self._quests[index])

    async def delete_side_quest(self, quest_id: QuestId, side_quest_id: QuestId) -> ServiceResult[Optional[Quest]]:
        failure = await self._enter("delete_side_quest", quest_id, side_quest_id)
        if failure:
            return failure
        index = self._index(quest_id)
        if index == -1:
            return Failure(reason="Quest not found")
        quest = self._quests[index]
        subs = [sub for sub in quest.side_quests if not ids_match(sub.id, side_quest_id)]
        if len(subs) == len(quest.side_quests):
            return Failure(reason="Side quest not found")
        self._quests[index] = replace(quest, side_quests=subs)
        return self._respond(self._quests[index])

    async def set_side_quest_status(
        self,
        quest_id: QuestId,
        side_quest_id: QuestId,
        status: QuestStatus,
        note: Optional[str] = None,
    ) -> ServiceResult[Quest]:
        failure = await self._enter("set_side_quest_status", quest_id, side_quest_id, status, note)
        if failure:
            return failure
        index = self._index(quest_id)
        if index == -1 or not self._replace_side_quest(index, side_quest_id, status=QuestStatus(status)):
            return Failure(reason="Side quest not found")
        return self._respond(self._quests[index])
