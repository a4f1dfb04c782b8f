"""Tests for optimistic mutations, rollback and interleaving."""

from __future__ import annotations

import asyncio
from unittest.mock import Mock

import pytest
from loguru import logger

from questboard.board import QuestBoard
from questboard.memory_service import InMemoryTaskService
from questboard.models import Quest, QuestPriority, QuestStatus, SideQuest
from questboard.scheduler import ManualScheduler


@pytest.fixture
def clock() -> ManualScheduler:
    return ManualScheduler(start_ms=10_000)


@pytest.fixture
def layout_callback() -> Mock:
    return Mock()


@pytest.fixture
def reward_sink() -> Mock:
    return Mock()


def _board(service: InMemoryTaskService, clock: ManualScheduler, **kwargs) -> QuestBoard:
    board = QuestBoard(service, scheduler=clock, **kwargs)
    board.store.init(service.quests)
    clock.run_all()
    layout_callback = kwargs.get("layout_callback")
    if layout_callback is not None:
        layout_callback.reset_mock()
    return board


def _errors(board: QuestBoard) -> list[str]:
    return board.toasts.messages("error")


# ---------------------------------------------------------------------------
# Side quests
# ---------------------------------------------------------------------------

@pytest.mark.anyio
class TestCreateSideQuest:
    async def test_confirmed_side_quest_replaces_optimistic(self, clock: ManualScheduler, layout_callback: Mock) -> None:
        service = InMemoryTaskService([Quest(id=7)])
        focus = Mock()
        board = _board(service, clock, layout_callback=layout_callback, focus=focus)
        board.mutations.set_side_quest_draft(7, "Chase the bug")

        await board.mutations.create_side_quest(7)

        subs = board.store.get_side_quests(7)
        assert [(s.id, s.description, s.status, s.optimistic) for s in subs] == [(1, "Chase the bug", QuestStatus.TODO, False)]
        assert board.store.state.side_quest_drafts == {}
        assert not board.store.is_loading(7)
        clock.advance(16)
        layout_callback.assert_called_once_with()
        focus.assert_called_once_with("7:add")

    async def test_optimistic_side_quest_visible_while_pending(self, clock: ManualScheduler) -> None:
        service = InMemoryTaskService([Quest(id=7, description="Chase the bug")])
        board = _board(service, clock)
        board.mutations.set_side_quest_draft(7, "repro")
        service.block()

        task = asyncio.ensure_future(board.mutations.create_side_quest(7))
        await asyncio.sleep(0)
        subs = board.store.get_side_quests(7)
        assert len(subs) == 1
        assert subs[0].optimistic
        assert str(subs[0].id).startswith("optimistic-7-")
        assert board.store.is_loading(7)

        service.release()
        await task
        assert [s.id for s in board.store.get_side_quests(7)] == [1]
        assert not board.store.is_loading(7)

    async def test_failure_restores_subtree_and_toasts_once(self, clock: ManualScheduler) -> None:
        service = InMemoryTaskService([Quest(id=15, description="Tidy the garage")])
        board = _board(service, clock)
        before = board.store.get_quest(15)
        board.mutations.set_side_quest_draft(15, "Sort screws")
        service.fail_next("create_side_quest")

        assert await board.mutations.create_side_quest(15) is None

        assert board.store.get_quest(15) == before
        assert board.store.get_side_quests(15) == []
        assert _errors(board) == ["Failed to add side quest"]
        assert not board.store.is_loading(15)

    async def test_raised_error_is_treated_as_failure(self, clock: ManualScheduler) -> None:
        service = InMemoryTaskService([Quest(id=15)])
        board = _board(service, clock)
        board.mutations.set_side_quest_draft(15, "x")
        service.fail_next("create_side_quest", "socket closed", raise_error=True)
        assert await board.mutations.create_side_quest(15) is None
        assert _errors(board) == ["Failed to add side quest"]

    async def test_blank_draft_makes_no_call(self, clock: ManualScheduler) -> None:
        service = InMemoryTaskService([Quest(id=7)])
        board = _board(service, clock)
        board.mutations.set_side_quest_draft(7, "   ")
        assert await board.mutations.create_side_quest(7) is None
        assert service.calls == []


@pytest.mark.anyio
class TestEditSideQuest:
    @pytest.fixture
    def service(self) -> InMemoryTaskService:
        return InMemoryTaskService([
            Quest(id=1, side_quests=[SideQuest(id=1, description="a"), SideQuest(id=2, description="b")]),
        ])

    async def test_save_success_clears_buffer(self, service: InMemoryTaskService, clock: ManualScheduler) -> None:
        board = _board(service, clock)
        board.selection.start_editing_side_quest(1, board.store.get_side_quests(1)[1])
        board.selection.update_side_quest_edit("  b, revised ")
        assert await board.mutations.save_side_quest_edit(1, 2) is True
        assert board.store.get_side_quests(1)[1].description == "b, revised"
        assert board.store.state.editing_side_quest is None
        assert board.toasts.messages("success") == ["Side-quest updated"]

    async def test_save_failure_keeps_buffer_and_reverts(self, service: InMemoryTaskService, clock: ManualScheduler) -> None:
        board = _board(service, clock)
        board.selection.start_editing_side_quest(1, board.store.get_side_quests(1)[1])
        board.selection.update_side_quest_edit("b, revised")
        service.fail_next("update_side_quest")
        assert await board.mutations.save_side_quest_edit(1, 2) is False
        assert board.store.get_side_quests(1)[1].description == "b"
        assert board.store.state.editing_side_quest.description == "b, revised"
        assert _errors(board) == ["Failed to update side-quest"]

    async def test_save_blank_description(self, service: InMemoryTaskService, clock: ManualScheduler) -> None:
        board = _board(service, clock)
        board.selection.start_editing_side_quest(1, board.store.get_side_quests(1)[0])
        board.selection.update_side_quest_edit("   ")
        assert await board.mutations.save_side_quest_edit(1, 1) is False
        assert _errors(board) == ["Description cannot be empty"]
        assert service.calls == []

    async def test_delete_failure_reinserts_at_original_index(self, service: InMemoryTaskService, clock: ManualScheduler) -> None:
        board = _board(service, clock)
        service.fail_next("delete_side_quest")
        assert await board.mutations.delete_side_quest(1, 1) is False
        assert [s.id for s in board.store.get_side_quests(1)] == [1, 2]
        assert _errors(board) == ["Failed to delete side quest"]

    async def test_delete_success(self, service: InMemoryTaskService, clock: ManualScheduler) -> None:
        board = _board(service, clock)
        token = board.store.state.refresh_token
        assert await board.mutations.delete_side_quest(1, 1) is True
        assert [s.id for s in board.store.get_side_quests(1)] == [2]
        assert board.store.state.refresh_token == token + 1

    async def test_status_done_expands_parent(self, service: InMemoryTaskService, clock: ManualScheduler) -> None:
        board = _board(service, clock)
        board.store.collapse_quest(1)
        await board.mutations.toggle_side_quest_done(1, 2)
        assert board.store.get_side_quests(1)[1].status == QuestStatus.DONE
        assert board.store.state.collapsed_map["1"] is False
        assert board.store.state.pulsing_side_quests["1:2"].tag == "full"

    async def test_status_failure_reverts(self, service: InMemoryTaskService, clock: ManualScheduler) -> None:
        board = _board(service, clock)
        service.fail_next("set_side_quest_status")
        assert await board.mutations.set_side_quest_status(1, 1, QuestStatus.DONE) is None
        assert board.store.get_side_quests(1)[0].status == QuestStatus.TODO
        assert board.store.state.pulsing_side_quests == {}
        assert _errors(board) == ["Failed to update side quest status"]


# ---------------------------------------------------------------------------
# Quests
# ---------------------------------------------------------------------------

@pytest.mark.anyio
class TestCreateQuest:
    async def test_created_quest_inserted_at_front(self, clock: ManualScheduler) -> None:
        service = InMemoryTaskService([Quest(id=1, description="old")])
        board = _board(service, clock)
        board.mutations.set_description("  Fix the roof ")
        board.mutations.cycle_priority()
        board.mutations.cycle_task_level()

        quest = await board.mutations.create_quest()

        assert quest is not None
        assert [q.id for q in board.store.quests] == [quest.id, 1]
        assert quest.description == "Fix the roof"
        assert quest.priority == QuestPriority.HIGH
        assert quest.task_level == 2
        assert board.store.state.description == ""
        assert board.store.state.priority == QuestPriority.MEDIUM
        assert board.store.state.spawn_quests[str(quest.id)].tag == "active"

    async def test_quest_outside_filter_triggers_reload(self, clock: ManualScheduler) -> None:
        service = InMemoryTaskService([Quest(id=1, campaign_id=3)])
        board = _board(service, clock)
        board.store.set("campaign_filter", 3)
        board.mutations.set_description("Uncategorized chore")

        quest = await board.mutations.create_quest()

        assert quest is not None
        assert [q.id for q in board.store.quests] == [1]
        assert [name for name, _ in service.calls] == ["create_quest", "list_quests"]

    async def test_failure_toasts_and_keeps_draft(self, clock: ManualScheduler) -> None:
        service = InMemoryTaskService()
        board = _board(service, clock)
        board.mutations.set_description("Fix the roof")
        service.fail_next("create_quest")
        assert await board.mutations.create_quest() is None
        assert board.store.quests == []
        assert board.store.state.description == "Fix the roof"
        assert _errors(board) == ["Failed to add quest"]

    async def test_blank_description_makes_no_call(self, clock: ManualScheduler) -> None:
        service = InMemoryTaskService()
        board = _board(service, clock)
        assert await board.mutations.create_quest() is None
        assert service.calls == []


@pytest.mark.anyio
class TestDeleteQuest:
    @pytest.fixture
    def service(self) -> InMemoryTaskService:
        return InMemoryTaskService([Quest(id=1), Quest(id=2, description="middle"), Quest(id=3)])

    async def test_optimistic_removal_and_undo_window(self, service: InMemoryTaskService, clock: ManualScheduler) -> None:
        board = _board(service, clock)
        service.block()
        task = asyncio.ensure_future(board.mutations.delete_quest(2))
        await asyncio.sleep(0)
        assert [q.id for q in board.store.quests] == [1, 3]
        assert board.store.is_loading(2)
        assert len(board.undo.entries) == 1

        service.release()
        assert await task is True
        clock.advance(6_999)
        assert len(board.undo.entries) == 1
        clock.advance(2)
        assert board.undo.entries == []

    async def test_undo_restores_deleted_quest(self, service: InMemoryTaskService, clock: ManualScheduler) -> None:
        board = _board(service, clock)
        await board.mutations.delete_quest(2)
        entry = board.undo.entries[0]
        assert board.undo.undo(entry.id) is True
        assert board.store.quests[0].description == "middle"

    async def test_failure_reverts_at_original_index(self, service: InMemoryTaskService, clock: ManualScheduler) -> None:
        board = _board(service, clock)
        board.selection.start_editing_quest(2)
        service.fail_next("delete_quest")
        assert await board.mutations.delete_quest(2) is False
        assert [q.id for q in board.store.quests] == [1, 2, 3]
        assert board.undo.entries == []
        assert board.store.state.editing_quest is None
        assert _errors(board) == ["Failed to delete quest"]
        assert not board.store.is_loading(2)


@pytest.mark.anyio
class TestQuestStatus:
    async def test_done_celebrates_and_sinks(self, clock: ManualScheduler, reward_sink: Mock) -> None:
        service = InMemoryTaskService([Quest(id=1), Quest(id=2)])
        board = _board(service, clock, reward_sink=reward_sink)

        updated = await board.mutations.toggle_quest_done(1)

        assert updated.status == QuestStatus.DONE
        assert "1" in board.store.state.glow_quests
        reward_sink.assert_called_once_with({"xp_events": [{"type": "quest_completed", "quest_id": 1}]})
        clock.advance(600)
        assert [q.id for q in board.store.quests] == [2, 1]
        assert board.store.state.collapsed_map["1"] is True

    async def test_toggle_done_goes_back_to_in_progress(self, clock: ManualScheduler) -> None:
        service = InMemoryTaskService([Quest(id=1, status=QuestStatus.DONE)])
        board = _board(service, clock)
        updated = await board.mutations.toggle_quest_done(1)
        assert updated.status == QuestStatus.IN_PROGRESS
        assert board.store.state.glow_quests == {}

    async def test_failure_reverts_without_animation(self, clock: ManualScheduler) -> None:
        service = InMemoryTaskService([Quest(id=1)])
        board = _board(service, clock)
        service.fail_next("set_quest_status")
        assert await board.mutations.set_quest_status(1, QuestStatus.DONE) is None
        assert board.store.get_quest(1).status == QuestStatus.TODO
        assert board.store.state.pulsing_quests == {}
        assert _errors(board) == ["Failed to update quest status"]

    async def test_interleaved_failure_keeps_later_write(self, clock: ManualScheduler) -> None:
        service = InMemoryTaskService([Quest(id=1)])
        board = _board(service, clock)
        service.fail_next("set_quest_status")
        service.block()

        first = asyncio.ensure_future(board.mutations.set_quest_status(1, QuestStatus.IN_PROGRESS))
        second = asyncio.ensure_future(board.mutations.set_quest_status(1, QuestStatus.BLOCKED))
        await asyncio.sleep(0)
        assert board.store.get_quest(1).status == QuestStatus.BLOCKED
        assert board.store.is_loading(1)

        service.release()
        await asyncio.gather(first, second)
        assert board.store.get_quest(1).status == QuestStatus.BLOCKED
        assert not board.store.is_loading(1)
        assert _errors(board) == ["Failed to update quest status"]


@pytest.mark.anyio
class TestUpdateQuest:
    async def test_save_quest_edit(self, clock: ManualScheduler) -> None:
        service = InMemoryTaskService([Quest(id=1, description="old")])
        board = _board(service, clock)
        board.selection.start_editing_quest(1)
        board.selection.update_quest_edit("description", "new")
        board.selection.update_quest_edit("task_level", 3)
        updated = await board.mutations.save_quest_edit()
        assert updated.description == "new"
        assert board.store.get_quest(1).task_level == 3
        assert board.store.state.editing_quest is None

    async def test_failure_reverts_and_clears_edit(self, clock: ManualScheduler) -> None:
        service = InMemoryTaskService([Quest(id=1, description="old")])
        board = _board(service, clock)
        board.selection.start_editing_quest(1)
        service.fail_next("update_quest")
        assert await board.mutations.update_quest(1, {"description": "new"}) is None
        assert board.store.get_quest(1).description == "old"
        assert board.store.state.editing_quest is None
        assert _errors(board) == ["Failed to update quest"]

    async def test_blank_edit_is_rejected(self, clock: ManualScheduler) -> None:
        service = InMemoryTaskService([Quest(id=1, description="old")])
        board = _board(service, clock)
        board.selection.start_editing_quest(1)
        board.selection.update_quest_edit("description", "  ")
        assert await board.mutations.save_quest_edit() is None
        assert _errors(board) == ["Description cannot be empty"]
        assert service.calls == []

    async def test_concurrent_calls_share_loading_mark(self, clock: ManualScheduler) -> None:
        service = InMemoryTaskService([Quest(id=1, description="old")])
        board = _board(service, clock)
        service.block()
        update = asyncio.ensure_future(board.mutations.update_quest(1, {"description": "new"}))
        status = asyncio.ensure_future(board.mutations.set_quest_status(1, QuestStatus.IN_PROGRESS))
        await asyncio.sleep(0)
        assert board.store.is_loading(1)
        service.release()
        await update
        await status
        assert not board.store.is_loading(1)
        quest = board.store.get_quest(1)
        assert (quest.description, quest.status) == ("new", QuestStatus.IN_PROGRESS)


@pytest.mark.anyio
class TestReload:
    async def test_failure_keeps_current_list(self, clock: ManualScheduler) -> None:
        service = InMemoryTaskService([Quest(id=1)])
        board = _board(service, clock)
        service.fail_next("list_quests")
        assert await board.mutations.reload_quests() is False
        assert [q.id for q in board.store.quests] == [1]
        assert _errors(board) == ["Failed to refresh quests"]

    async def test_campaign_filter(self, clock: ManualScheduler) -> None:
        service = InMemoryTaskService([Quest(id=1, campaign_id=2), Quest(id=2)])
        board = _board(service, clock)
        assert await board.mutations.set_campaign_filter("uncategorized") is True
        assert [q.id for q in board.store.quests] == [2]
        assert board.store.state.campaign_filter == "uncategorized"

    async def test_failed_filter_switch_restores_previous_filter(self, clock: ManualScheduler) -> None:
        service = InMemoryTaskService([Quest(id=1, campaign_id=2), Quest(id=2)])
        board = _board(service, clock)
        service.fail_next("list_quests")

        assert await board.mutations.set_campaign_filter(2) is False

        assert board.store.state.campaign_filter is None
        assert [q.id for q in board.store.quests] == [1, 2]
        assert _errors(board) == ["Failed to refresh quests"]

    async def test_create_after_failed_switch_uses_restored_filter(self, clock: ManualScheduler) -> None:
        service = InMemoryTaskService([Quest(id=1, campaign_id=2), Quest(id=2)])
        board = _board(service, clock)
        service.fail_next("list_quests")
        await board.mutations.set_campaign_filter(2)
        board.mutations.set_description("Loose end")

        quest = await board.mutations.create_quest()

        assert [q.id for q in board.store.quests] == [quest.id, 1, 2]


def test_draft_cycling(clock: ManualScheduler) -> None:
    board = _board(InMemoryTaskService([Quest(id=1)]), clock)
    assert board.mutations.cycle_priority() == QuestPriority.HIGH
    assert board.mutations.cycle_priority() == QuestPriority.LOW
    assert [board.mutations.cycle_task_level() for _ in range(5)] == [2, 3, 4, 5, 1]
    board.mutations.set_campaign_selection("4")
    assert board.store.state.campaign_selection == 4

    board.selection.start_editing_quest(1)
    board.mutations.cycle_editing_priority()
    board.mutations.cycle_editing_level()
    assert board.store.state.editing_quest.priority == QuestPriority.HIGH
    assert board.store.state.editing_quest.task_level == 2


@pytest.mark.anyio
async def test_service_failure_is_logged_once(clock: ManualScheduler) -> None:
    service = InMemoryTaskService([Quest(id=1)])
    board = _board(service, clock)
    warnings: list[str] = []
    handler_id = logger.add(warnings.append, level="WARNING", format="{message}")
    try:
        service.fail_next("set_quest_status")
        await board.mutations.set_quest_status(1, QuestStatus.DONE)
    finally:
        logger.remove(handler_id)

    assert len(warnings) == 1
    assert "set_quest_status" in warnings[0]
    assert _errors(board) == ["Failed to update quest status"]
