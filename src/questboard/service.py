"""Task Service contract.

Every call resolves to a tagged :data:`ServiceResult`: ``Ok(value, rewards)``
on success or ``Failure(reason, error)`` on an application-level rejection
or a transport error.  :func:`invoke` is the single boundary that turns
raised exceptions and bare ``None`` results into :class:`Failure`, so the
mutation layer can branch exhaustively without ``try`` blocks of its own.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, Protocol, TypeVar, Union

from loguru import logger
from pydantic import BaseModel, ConfigDict, ValidationError

from .models import Quest, QuestId, QuestStatus

T = TypeVar("T")

REWARD_KEYS = ("xp_events", "xp_event", "player_rpg")


# ---------------------------------------------------------------------------
# Result union
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    rewards: Optional[dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    reason: str
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return False


ServiceResult = Union[Ok[T], Failure]


async def invoke(call: Callable[..., Awaitable[Any]], *args: Any, what: str = "task service call", **kwargs: Any) -> ServiceResult:
    """Await *call* and normalize whatever it produces into a ServiceResult."""
    try:
        result = await call(*args, **kwargs)
    except Exception as exc:
        logger.warning("{} failed: {}", what, exc)
        return Failure(reason=str(exc) or type(exc).__name__, error=exc)
    if result is None:
        logger.warning("{} returned no result", what)
        return Failure(reason="empty response")
    if isinstance(result, (Ok, Failure)):
        if isinstance(result, Failure):
            logger.warning("{} rejected: {}", what, result.reason)
        return result
    return Ok(result)


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

class SideQuestPayload(BaseModel):
    """Side quest as delivered by the Task Service."""

    model_config = ConfigDict(extra="allow")

    id: Union[int, str]
    description: Optional[str] = None
    status: Optional[str] = None
    weight: Optional[float] = None
    priority: Optional[str] = None


class QuestPayload(BaseModel):
    """Quest as delivered by the Task Service."""

    model_config = ConfigDict(extra="allow")

    id: Union[int, str]
    description: Optional[str] = None
    priority: Optional[str] = None
    task_level: Optional[int] = None
    due_date: Optional[str] = None
    campaign_id: Optional[Union[int, str]] = None
    status: Optional[str] = None
    side_quests: Optional[list[SideQuestPayload]] = None
    sub_tasks: Optional[list[SideQuestPayload]] = None

    def to_quest(self) -> Quest:
        return Quest.from_dict(self.model_dump(exclude_none=True))


class QuestListPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    tasks: Optional[list[QuestPayload]] = None
    quests: Optional[list[QuestPayload]] = None

    def to_quests(self) -> list[Quest]:
        items = self.tasks if self.tasks is not None else (self.quests or [])
        return [item.to_quest() for item in items]


def split_rewards(raw: dict[str, Any]) -> tuple[dict[str, Any], Optional[dict[str, Any]]]:
    """Separate the opaque reward payload from a quest response."""
    body = {key: value for key, value in raw.items() if key not in REWARD_KEYS}
    rewards = {key: raw[key] for key in REWARD_KEYS if raw.get(key) is not None}
    return body, rewards or None


def quest_result(raw: Any) -> ServiceResult[Quest]:
    """Validate a raw quest response into ``Ok(Quest, rewards)``."""
    if not isinstance(raw, dict):
        return Failure(reason="empty response" if raw is None else "malformed quest payload")
    body, rewards = split_rewards(raw)
    try:
        quest = QuestPayload.model_validate(body).to_quest()
    except ValidationError as exc:
        logger.debug("Invalid quest payload: {}", exc)
        return Failure(reason="malformed quest payload", error=exc)
    return Ok(quest, rewards)


def quest_list_result(raw: Any) -> ServiceResult[list[Quest]]:
    if isinstance(raw, list):
        raw = {"tasks": raw}
    if not isinstance(raw, dict):
        return Failure(reason="malformed quest list payload")
    try:
        quests = QuestListPayload.model_validate(raw).to_quests()
    except ValidationError as exc:
        logger.debug("Invalid quest list payload: {}", exc)
        return Failure(reason="malformed quest list payload", error=exc)
    return Ok(quests)


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------

CampaignFilter = Union[None, int, str]


class TaskService(Protocol):
    async def list_quests(self, campaign_filter: CampaignFilter = None) -> ServiceResult[list[Quest]]: ...

    async def create_quest(self, fields: dict[str, Any]) -> ServiceResult[Quest]: ...

    async def delete_quest(self, quest_id: QuestId) -> ServiceResult[bool]: ...

    async def update_quest(self, quest_id: QuestId, fields: dict[str, Any]) -> ServiceResult[Quest]: ...

    async def create_side_quest(self, quest_id: QuestId, description: str) -> ServiceResult[Quest]: ...

    async def update_side_quest(
        self, quest_id: QuestId, side_quest_id: QuestId, fields: dict[str, Any]
    ) -> ServiceResult[Quest]: ...

    async def delete_side_quest(self, quest_id: QuestId, side_quest_id: QuestId) -> ServiceResult[Optional[Quest]]: ...

    async def set_quest_status(
        self, quest_id: QuestId, status: QuestStatus, note: Optional[str] = None
    ) -> ServiceResult[Quest]: ...

    async def set_side_quest_status(
        self,
        quest_id: QuestId,
        side_quest_id: QuestId,
        status: QuestStatus,
        note: Optional[str] = None,
    ) -> ServiceResult[Quest]: ...


def quest_fields(quest: Quest) -> dict[str, Any]:
    """Editable fields of *quest* as sent on update."""
    return {
        "description": quest.description,
        "priority": quest.priority.value,
        "task_level": quest.task_level,
        "due_date": quest.due_date,
        "campaign_id": quest.campaign_id,
    }
