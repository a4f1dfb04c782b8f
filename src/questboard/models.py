"""Quest and side-quest models held by the board store.

Quests are treated as values: the orchestration layer never mutates a quest
that is already in the store, it builds a replacement with
:func:`dataclasses.replace` and swaps it in through a store setter.  Ids are
whatever the Task Service assigns (integers in practice) and are compared by
their string form so ``7`` and ``"7"`` refer to the same quest.
"""

from __future__ import annotations

import copy
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from .constants import OPTIMISTIC_ID_PREFIX

QuestId = Union[int, str]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class QuestStatus(str, Enum):
    """Status shared by quests and side quests."""

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    DONE = "done"


class QuestPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


PRIORITY_ORDER: tuple[QuestPriority, ...] = (
    QuestPriority.LOW,
    QuestPriority.MEDIUM,
    QuestPriority.HIGH,
)
LEVEL_OPTIONS: tuple[int, ...] = (1, 2, 3, 4, 5)


def _coerce_enum(enum_cls: type[Enum], raw: Any, default: Any) -> Any:
    if raw is None:
        return default
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(str(raw).lower())
    except (ValueError, KeyError):
        return default


def _coerce_level(raw: Any) -> int:
    try:
        level = int(raw)
    except (TypeError, ValueError):
        return 1
    return level if level in LEVEL_OPTIONS else 1


def _coerce_campaign(raw: Any) -> Optional[int]:
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Side quests
# ---------------------------------------------------------------------------

@dataclass
class SideQuest:
    """An ordered sub-item of a quest.

    ``optimistic`` marks a speculative record inserted before the Task Service
    confirmed creation; it never survives the resolution of that call.
    """

    id: QuestId
    description: str = ""
    status: QuestStatus = QuestStatus.TODO
    weight: Optional[float] = None
    priority: Optional[QuestPriority] = None
    optimistic: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_done(self) -> bool:
        return self.status == QuestStatus.DONE

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for key, value in asdict(self).items():
            if key == "extra":
                continue
            data[key] = value.value if isinstance(value, Enum) else value
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SideQuest":
        d = dict(data)
        raw_status = d.pop("status", None)
        completed = bool(d.pop("completed", False))
        if raw_status is None:
            status = QuestStatus.DONE if completed else QuestStatus.TODO
        else:
            status = _coerce_enum(QuestStatus, raw_status, QuestStatus.TODO)
        weight_raw = d.pop("weight", None)
        weight: Optional[float] = None
        if isinstance(weight_raw, (int, float)) and not isinstance(weight_raw, bool):
            weight = float(weight_raw)
        priority = _coerce_enum(QuestPriority, d.pop("priority", None), None)
        return cls(
            id=d.pop("id"),
            description=str(d.pop("description", "") or ""),
            status=status,
            weight=weight,
            priority=priority,
            optimistic=bool(d.pop("optimistic", False)),
            created_at=d.pop("created_at", None),
            updated_at=d.pop("updated_at", None),
            extra=d,
        )


# ---------------------------------------------------------------------------
# Quests
# ---------------------------------------------------------------------------

@dataclass
class Quest:
    id: QuestId
    description: str = ""
    priority: QuestPriority = QuestPriority.MEDIUM
    task_level: int = 1
    due_date: Optional[str] = None
    campaign_id: Optional[int] = None
    status: QuestStatus = QuestStatus.TODO
    side_quests: list[SideQuest] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_done(self) -> bool:
        return self.status == QuestStatus.DONE

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "description": self.description,
            "priority": self.priority.value,
            "task_level": self.task_level,
            "due_date": self.due_date,
            "campaign_id": self.campaign_id,
            "status": self.status.value,
            "side_quests": [sub.to_dict() for sub in self.side_quests],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Quest":
        """Normalize a raw quest payload.

        ``sub_tasks`` is accepted as an alias of ``side_quests`` and a legacy
        ``completed`` flag stands in for a missing status.
        """
        d = dict(data)
        raw_subs = d.pop("side_quests", None)
        legacy_subs = d.pop("sub_tasks", None)
        if not isinstance(raw_subs, list) or (not raw_subs and isinstance(legacy_subs, list)):
            raw_subs = legacy_subs if isinstance(legacy_subs, list) else []
        raw_status = d.pop("status", None)
        completed = bool(d.pop("completed", False))
        if raw_status is None:
            status = QuestStatus.DONE if completed else QuestStatus.TODO
        else:
            status = _coerce_enum(QuestStatus, raw_status, QuestStatus.TODO)
        campaign_id = _coerce_campaign(d.pop("campaign_id", None))
        return cls(
            id=d.pop("id"),
            description=str(d.pop("description", "") or ""),
            priority=_coerce_enum(QuestPriority, d.pop("priority", None), QuestPriority.MEDIUM),
            task_level=_coerce_level(d.pop("task_level", 1)),
            due_date=d.pop("due_date", None),
            campaign_id=campaign_id,
            status=status,
            side_quests=[SideQuest.from_dict(sub) for sub in raw_subs if isinstance(sub, dict)],
            created_at=d.pop("created_at", None),
            updated_at=d.pop("updated_at", None),
            extra=d,
        )


@dataclass(frozen=True)
class SideQuestRef:
    quest_id: QuestId
    side_quest_id: QuestId

    def matches(self, quest_id: QuestId, side_quest_id: QuestId) -> bool:
        return ids_match(self.quest_id, quest_id) and ids_match(self.side_quest_id, side_quest_id)


@dataclass(frozen=True)
class SideQuestEdit:
    """Edit buffer for an in-place side-quest description edit."""

    quest_id: QuestId
    side_quest_id: QuestId
    description: str = ""

    def matches(self, quest_id: QuestId, side_quest_id: QuestId) -> bool:
        return ids_match(self.quest_id, quest_id) and ids_match(self.side_quest_id, side_quest_id)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def ids_match(a: Any, b: Any) -> bool:
    if a is None or b is None:
        return False
    return str(a) == str(b)


def id_key(quest_id: QuestId) -> str:
    """Key used for every per-quest map in the store."""
    return str(quest_id)


def side_quest_key(quest_id: QuestId, side_quest_id: QuestId) -> str:
    return f"{quest_id}:{side_quest_id}"


def clone_quest_snapshot(quest: Optional[Quest]) -> Optional[Quest]:
    """Deep copy *quest* so later store writes cannot reach the snapshot."""
    if quest is None:
        return None
    return copy.deepcopy(quest)


def find_side_quest(quest: Optional[Quest], side_quest_id: QuestId) -> Optional[SideQuest]:
    if quest is None:
        return None
    for sub in quest.side_quests:
        if ids_match(sub.id, side_quest_id):
            return sub
    return None


def get_next_priority(current: Any) -> QuestPriority:
    current_enum = _coerce_enum(QuestPriority, current, None)
    if current_enum is None:
        return PRIORITY_ORDER[0]
    index = PRIORITY_ORDER.index(current_enum)
    return PRIORITY_ORDER[(index + 1) % len(PRIORITY_ORDER)]


def get_next_level(current: Any) -> int:
    try:
        index = LEVEL_OPTIONS.index(int(current))
    except (TypeError, ValueError):
        return LEVEL_OPTIONS[0]
    return LEVEL_OPTIONS[(index + 1) % len(LEVEL_OPTIONS)]


def make_optimistic_side_quest(quest_id: QuestId, description: str, now_ms: int) -> SideQuest:
    return SideQuest(
        id=f"{OPTIMISTIC_ID_PREFIX}-{quest_id}-{now_ms}",
        description=description,
        status=QuestStatus.TODO,
        optimistic=True,
    )
