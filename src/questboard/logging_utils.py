"""Logging setup and compact board-state summaries for diagnostics."""

from __future__ import annotations

import json
import sys
from typing import Any

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{module}</cyan>:<cyan>{line}</cyan>\n"
    "{message}"
)


def configure_logging(level: str = "INFO", sink: Any = None) -> int:
    """Replace loguru's default handler with one sink at *level*.

    Returns the handler id so callers can remove it again.
    """
    logger.remove()
    return logger.add(sink if sink is not None else sys.stderr, level=level.upper(), format=LOG_FORMAT)


def summarize_state(state: Any) -> dict[str, Any]:
    """Render a JSON-friendly summary of a board state snapshot.

    Args:
        state: A ``BoardState`` (or None).

    Returns:
        Counts and ids only, never quest text.
    """
    if state is None:
        return {"state": None}

    quests = list(getattr(state, "quests", []) or [])
    d: dict[str, Any] = {
        "quests_n": len(quests),
        "side_quests_n": sum(len(q.side_quests) for q in quests),
        "optimistic_n": sum(1 for q in quests for s in q.side_quests if s.optimistic),
        "done_n": sum(1 for q in quests if q.is_done),
        "loading": sorted(getattr(state, "loading_quests", ()) or ()),
        "undo_n": len(getattr(state, "undo_queue", []) or []),
        "toasts_n": len(getattr(state, "toasts", []) or []),
        "refresh_token": getattr(state, "refresh_token", 0),
    }
    selected = getattr(state, "selected_quest_id", None)
    if selected is not None:
        d["selected"] = selected
    ref = getattr(state, "selected_side_quest", None)
    if ref is not None:
        d["selected_side_quest"] = f"{ref.quest_id}:{ref.side_quest_id}"
    editing = getattr(state, "editing_quest", None)
    if editing is not None:
        d["editing_quest"] = editing.id
    edit = getattr(state, "editing_side_quest", None)
    if edit is not None:
        d["editing_side_quest"] = f"{edit.quest_id}:{edit.side_quest_id}"
    flags = {
        name: len(getattr(state, name, {}) or {})
        for name in ("pulsing_quests", "pulsing_side_quests", "glow_quests", "celebrating_quests", "spawn_quests")
    }
    active = {name: n for name, n in flags.items() if n}
    if active:
        d["flags"] = active
    return d


def pretty(obj: Any, *, indent: int = 2) -> str:
    """Serialize an object as JSON for readable logs."""
    try:
        return json.dumps(obj, indent=indent, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return str(obj)
