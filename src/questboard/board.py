"""Wire every board component around one store and one scheduler."""

from __future__ import annotations

import asyncio
import datetime as _dt
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from .animations import AnimationController
from .config import BoardConfig, load_board_config
from .constants import PERSISTED_STATE_FILE, STATE_DIR_NAME
from .keyboard import ConfirmCallback, KeyboardController, KeyEvent
from .layout import LayoutRefresher
from .logging_utils import configure_logging, pretty, summarize_state
from .mutations import MutationEngine
from .notifications import RewardSink, ToastCenter
from .progress import GlobalProgress, global_progress, quest_progress
from .reconcile import DragReconciler
from .scheduler import AsyncioScheduler, Scheduler
from .selection import FocusCallback, SelectionManager
from .service import TaskService
from .store import BoardStore
from .undo import UndoQueue


class QuestBoard:
    """The orchestration engine as one object.

    Components are public attributes (``store``, ``selection``,
    ``animations``, ``mutations``, ``undo``, ``drag``, ``keyboard``,
    ``toasts``, ``layout``) so callers can reach any operation directly.
    Background work started from keyboard handlers is tracked and can be
    awaited with :meth:`drain`; :meth:`close` cancels every pending task and
    timer.
    """

    def __init__(
        self,
        service: TaskService,
        *,
        scheduler: Optional[Scheduler] = None,
        store: Optional[BoardStore] = None,
        config: Optional[BoardConfig] = None,
        layout_callback: Optional[Callable[[], Any]] = None,
        focus: Optional[FocusCallback] = None,
        confirm: Optional[ConfirmCallback] = None,
        reward_sink: Optional[RewardSink] = None,
        state_path: Optional[Path] = None,
    ) -> None:
        self.config = config or BoardConfig()
        timings = self.config.timings
        self.service = service
        self.scheduler = scheduler or AsyncioScheduler()
        self.store = store or BoardStore()
        self.state_path = state_path

        self.toasts = ToastCenter(
            self.store,
            self.scheduler,
            timeout_ms=timings.toast_timeout_ms,
            reward_sink=reward_sink,
        )
        self.layout = LayoutRefresher(self.scheduler, layout_callback, frame_ms=timings.layout_frame_ms)
        self.selection = SelectionManager(self.store, self.scheduler, focus=focus, timings=timings)
        self.animations = AnimationController(self.store, self.scheduler, timings)
        self.undo = UndoQueue(self.store, self.scheduler, window_ms=timings.undo_window_ms)
        self.mutations = MutationEngine(
            self.store,
            service,
            self.scheduler,
            animations=self.animations,
            undo=self.undo,
            toasts=self.toasts,
            layout=self.layout,
            request_focus=self.selection.request_focus,
        )
        self.drag = DragReconciler(self.store)
        self.keyboard = KeyboardController(
            self.store,
            self.selection,
            self.mutations,
            spawn=self.spawn,
            confirm=confirm,
        )
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

        self.selection.attach()
        self.layout.attach(self.store)
        self.drag.attach()

    @classmethod
    def from_project(
        cls,
        project_dir: Path,
        service: TaskService,
        *,
        setup_logging: bool = False,
        **kwargs: Any,
    ) -> "QuestBoard":
        """Build a board using ``.questboard/`` under *project_dir*.

        Reads the optional config file and merges the persisted collapse map.
        Unreadable files are logged and ignored.  With *setup_logging* the
        configured ``logging.level`` is applied to the loguru sink.
        """
        config, err = load_board_config(project_dir)
        if setup_logging:
            configure_logging(config.log_level)
        if err:
            logger.warning("Using default board config: {}", err)
        state_path = project_dir.resolve() / STATE_DIR_NAME / PERSISTED_STATE_FILE
        board = cls(service, config=config, state_path=state_path, **kwargs)
        if config.persist_collapsed_map:
            board.store.load_persisted(state_path)
        return board

    # -- lifecycle ----------------------------------------------------------------

    async def load(self) -> bool:
        ok = await self.mutations.reload_quests()
        logger.debug("Board loaded:\n{}", pretty(summarize_state(self.store.state)))
        return ok

    def spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        """Run *coro* in the background and keep a handle until it finishes."""
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error("Background board task failed")

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every spawned task, including ones they spawn, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def handle_key(self, event: KeyEvent) -> bool:
        return self.keyboard.handle(event)

    # -- progress ----------------------------------------------------------------

    def quest_progress(self, quest_id: Any) -> int:
        return quest_progress(self.store.get_quest(quest_id))

    def progress(self, today: Optional[_dt.date] = None) -> GlobalProgress:
        """Weighted completion across the quests currently on the board."""
        return global_progress(self.store.quests, today=today)

    def save_state(self) -> bool:
        if self.state_path is None or not self.config.persist_collapsed_map:
            return False
        self.store.save_persisted(self.state_path)
        return True

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.animations.cancel_all()
        self.undo.cancel_all()
        self.toasts.cancel_all()
        self.layout.cancel()
        self.selection.cancel()
        self.drag.detach()
        self.save_state()
        logger.debug("Board closed")

    async def __aenter__(self) -> "QuestBoard":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
