"""questboard: client-side orchestration engine for a quest tracker."""

from __future__ import annotations

from .board import QuestBoard
from .keyboard import KeyEvent
from .models import Quest, QuestPriority, QuestStatus, SideQuest
from .scheduler import AsyncioScheduler, ManualScheduler
from .service import Failure, Ok, TaskService
from .store import BoardState, BoardStore

__all__ = [
    "AsyncioScheduler",
    "BoardState",
    "BoardStore",
    "Failure",
    "KeyEvent",
    "ManualScheduler",
    "Ok",
    "Quest",
    "QuestBoard",
    "QuestPriority",
    "QuestStatus",
    "SideQuest",
    "TaskService",
]

__version__ = "0.1.0"
