"""Load optional board configuration from `.questboard/config.yaml`."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from .constants import (
    CELEBRATE_FLAG_MS,
    COLLAPSE_AND_MOVE_DELAY_MS,
    CONFIG_FILE,
    FOCUS_DELAY_MS,
    GLOW_FLAG_MS,
    LAYOUT_FRAME_MS,
    PULSE_FLAG_MS,
    SPAWN_FLAG_MS,
    STATE_DIR_NAME,
    TOAST_TIMEOUT_MS,
    UNDO_WINDOW_MS,
)
from .io_utils import _load_data_with_error

VALID_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class BoardTimings:
    """Every delay the engine uses, in milliseconds."""

    spawn_ms: float = SPAWN_FLAG_MS
    pulse_ms: float = PULSE_FLAG_MS
    glow_ms: float = GLOW_FLAG_MS
    celebrate_ms: float = CELEBRATE_FLAG_MS
    collapse_delay_ms: float = COLLAPSE_AND_MOVE_DELAY_MS
    undo_window_ms: float = UNDO_WINDOW_MS
    toast_timeout_ms: float = TOAST_TIMEOUT_MS
    layout_frame_ms: float = LAYOUT_FRAME_MS
    focus_delay_ms: float = FOCUS_DELAY_MS


@dataclass(frozen=True)
class BoardConfig:
    timings: BoardTimings = field(default_factory=BoardTimings)
    persist_collapsed_map: bool = True
    log_level: str = "INFO"


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def get_timings_config(config: dict[str, Any]) -> BoardTimings:
    """Build :class:`BoardTimings` from the `timings` block.

    Unknown keys are ignored and non-numeric or negative values fall back to
    the defaults.
    """
    raw = _get_nested(config, "timings")
    if not isinstance(raw, dict):
        return BoardTimings()
    values: dict[str, float] = {}
    for f in fields(BoardTimings):
        value = raw.get(f.name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        if value < 0:
            continue
        values[f.name] = float(value)
    return BoardTimings(**values)


def get_log_level(config: dict[str, Any]) -> str:
    raw = _get_nested(config, "logging", "level")
    if isinstance(raw, str) and raw.upper() in VALID_LOG_LEVELS:
        return raw.upper()
    return "INFO"


def parse_board_config(config: dict[str, Any]) -> BoardConfig:
    persist = _get_nested(config, "persist", "collapsed_map")
    return BoardConfig(
        timings=get_timings_config(config),
        persist_collapsed_map=persist if isinstance(persist, bool) else True,
        log_level=get_log_level(config),
    )


def load_board_config(project_dir: Path) -> tuple[BoardConfig, str | None]:
    """Load the optional board config file.

    Args:
        project_dir: Directory holding the `.questboard/` state directory.

    Returns:
        A tuple of `(config, error_message)`. A missing file yields the
        defaults and no error; an unreadable file yields the defaults and the
        error text.
    """
    path = project_dir.resolve() / STATE_DIR_NAME / CONFIG_FILE
    data, err = _load_data_with_error(path, {})
    if err:
        return BoardConfig(), err
    return parse_board_config(data), None
