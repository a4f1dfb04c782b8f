"""Weighted progress over quests and side quests."""

from __future__ import annotations

import datetime as _dt
import math
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from .constants import MIN_SIDE_QUEST_WEIGHT
from .models import Quest, QuestPriority, QuestStatus, SideQuest

PRIORITY_WEIGHTS: dict[QuestPriority, float] = {
    QuestPriority.LOW: 1.0,
    QuestPriority.MEDIUM: 1.15,
    QuestPriority.HIGH: 1.30,
}
STATUS_PROGRESS: dict[QuestStatus, int] = {
    QuestStatus.DONE: 100,
    QuestStatus.IN_PROGRESS: 50,
    QuestStatus.BLOCKED: 25,
    QuestStatus.TODO: 0,
}

TODAY_MULTIPLIER = 1.0
OVERDUE_MULTIPLIER = 0.75
BACKLOG_MULTIPLIER = 0.4


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def priority_weight(priority: Any) -> float:
    if priority is None:
        return 1.0
    try:
        return PRIORITY_WEIGHTS[QuestPriority(str(getattr(priority, "value", priority)).lower())]
    except ValueError:
        return 1.0


def side_quest_weight(side_quest: Optional[SideQuest], parent: Optional[Quest] = None) -> float:
    if side_quest is None:
        return 1.0
    if side_quest.weight is not None:
        return max(MIN_SIDE_QUEST_WEIGHT, side_quest.weight)
    if side_quest.priority is not None:
        return priority_weight(side_quest.priority)
    return priority_weight(parent.priority if parent else QuestPriority.MEDIUM)


def quest_progress(quest: Optional[Quest]) -> int:
    """Percentage complete for *quest*.

    With side quests the result is their weighted completion; without any,
    it is derived from the quest's own status.
    """
    if quest is None:
        return 0
    if quest.side_quests:
        weight_sum = 0.0
        weighted_done = 0.0
        for sub in quest.side_quests:
            weight = side_quest_weight(sub, quest)
            weight_sum += weight
            if sub.is_done:
                weighted_done += weight
        return _round_half_up(weighted_done / weight_sum * 100) if weight_sum > 0 else 0
    return STATUS_PROGRESS.get(quest.status, 0)


@dataclass(frozen=True)
class GlobalProgress:
    percent: int = 0
    count: int = 0
    today_count: int = 0
    backlog_count: int = 0
    total_count: int = 0
    weighting_today: bool = False


def global_progress(quests: Iterable[Quest], today: Optional[_dt.date] = None) -> GlobalProgress:
    """Aggregate progress across *quests*.

    When any quest is due today, only those count fully; overdue quests are
    weighted by 0.75 and the rest of the backlog by 0.4.
    """
    quests = [quest for quest in quests if quest is not None]
    if not quests:
        return GlobalProgress()

    today_key = (today or _dt.date.today()).isoformat()
    due_today = [quest for quest in quests if quest.due_date == today_key]
    backlog = [quest for quest in quests if quest.due_date != today_key]
    weighting_today = bool(due_today)

    weight_sum = 0.0
    weighted_progress = 0.0

    def _contribute(quest: Quest, multiplier: float) -> None:
        nonlocal weight_sum, weighted_progress
        base = priority_weight(quest.priority)
        subs = sum(side_quest_weight(sub, quest) for sub in quest.side_quests)
        weight = (base + subs) * max(multiplier, 0)
        if weight <= 0:
            return
        weight_sum += weight
        weighted_progress += quest_progress(quest) * weight

    for quest in due_today:
        _contribute(quest, TODAY_MULTIPLIER)
    for quest in backlog:
        multiplier = 1.0
        if weighting_today:
            overdue = isinstance(quest.due_date, str) and quest.due_date and quest.due_date < today_key
            multiplier = OVERDUE_MULTIPLIER if overdue else BACKLOG_MULTIPLIER
        _contribute(quest, multiplier)

    return GlobalProgress(
        percent=_round_half_up(weighted_progress / weight_sum) if weight_sum > 0 else 0,
        count=len(due_today) if weighting_today else len(quests),
        today_count=len(due_today),
        backlog_count=len(backlog),
        total_count=len(quests),
        weighting_today=weighting_today,
    )
