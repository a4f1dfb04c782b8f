"""Tests for the board store."""

from __future__ import annotations

from pathlib import Path

import pytest

from questboard.models import Quest, QuestPriority, SideQuest, SideQuestEdit, SideQuestRef
from questboard.store import BoardStore


@pytest.fixture
def store() -> BoardStore:
    return BoardStore([
        Quest(id=1, description="one", side_quests=[SideQuest(id=1, description="s1")]),
        Quest(id=2, description="two"),
    ])


class TestSetters:
    def test_literal_set(self, store: BoardStore) -> None:
        store.set("description", "draft")
        assert store.state.description == "draft"

    def test_functional_update_reads_current_value(self, store: BoardStore) -> None:
        store.set("task_level", 3)
        store.set("task_level", lambda prev: prev + 1)
        assert store.state.task_level == 4

    def test_unknown_key_raises(self, store: BoardStore) -> None:
        with pytest.raises(KeyError):
            store.set("nope", 1)
        with pytest.raises(KeyError):
            store.update(lambda _s: {"nope": 1})

    def test_update_is_atomic(self, store: BoardStore) -> None:
        seen: list[frozenset] = []
        store.subscribe(lambda _p, _c, changed: seen.append(changed))
        store.update(lambda _s: {"description": "x", "priority": QuestPriority.HIGH})
        assert seen == [frozenset({"description", "priority"})]

    def test_no_change_no_notification(self, store: BoardStore) -> None:
        seen: list[frozenset] = []
        store.subscribe(lambda _p, _c, changed: seen.append(changed))
        store.set("description", "")
        assert seen == []

    def test_snapshots_are_immutable(self, store: BoardStore) -> None:
        before = store.state
        store.set("description", "x")
        assert before.description == ""
        assert store.state is not before

    def test_unsubscribe(self, store: BoardStore) -> None:
        seen: list[frozenset] = []
        unsubscribe = store.subscribe(lambda _p, _c, changed: seen.append(changed))
        unsubscribe()
        store.set("description", "x")
        assert seen == []


class TestAccessors:
    def test_get_quest_and_side_quests(self, store: BoardStore) -> None:
        assert store.get_quest("2").description == "two"
        assert store.get_quest(9) is None
        assert [s.id for s in store.get_side_quests(1)] == [1]
        assert store.get_side_quests(9) == []
        assert store.quest_index(2) == 1


class TestCompoundSetters:
    def test_reset_selection_keeps_quest_edit(self, store: BoardStore) -> None:
        store.update(lambda s: {
            "selected_quest_id": 1,
            "selected_side_quest": SideQuestRef(1, 1),
            "editing_side_quest": SideQuestEdit(1, 1, "s1"),
            "editing_quest": s.quests[0],
        })
        store.reset_selection()
        assert store.state.selected_quest_id is None
        assert store.state.selected_side_quest is None
        assert store.state.editing_side_quest is None
        assert store.state.editing_quest is not None

    def test_reset_transient_state(self, store: BoardStore) -> None:
        store.update(lambda s: {"editing_quest": s.quests[0], "adding_side_quest_to": 1, "selected_quest_id": 1})
        store.reset_transient_state()
        assert store.state.editing_quest is None
        assert store.state.adding_side_quest_to is None
        assert store.state.selected_quest_id == 1

    def test_side_quest_drafts(self, store: BoardStore) -> None:
        store.set("side_quest_drafts", {"1": "a", "2": "b"})
        store.reset_side_quest_draft(1)
        assert store.state.side_quest_drafts == {"2": "b"}
        store.reset_side_quest_draft()
        assert store.state.side_quest_drafts == {}

    def test_collapse_and_expand(self, store: BoardStore) -> None:
        store.collapse_quest(1)
        assert store.state.collapsed_map == {"1": True}
        store.expand_quest("1")
        assert store.state.collapsed_map == {"1": False}

    def test_expand_is_noop_when_not_collapsed(self, store: BoardStore) -> None:
        before = store.state
        store.expand_quest(2)
        assert store.state is before

    def test_loading_marks(self, store: BoardStore) -> None:
        store.set_loading(1, True)
        assert store.is_loading("1")
        store.set_loading(1, False)
        assert not store.is_loading(1)

    def test_refresh_token_increments(self, store: BoardStore) -> None:
        assert store.bump_refresh_token() == 1
        assert store.bump_refresh_token() == 2


class TestLifecycle:
    def test_init_and_reset(self, store: BoardStore) -> None:
        store.collapse_quest(1)
        store.set("description", "draft")
        store.reset()
        assert store.quests == []
        assert store.state.description == ""
        assert store.state.collapsed_map == {"1": True}
        store.reset(clear_persisted=True)
        assert store.state.collapsed_map == {}
        store.init([Quest(id=5)])
        assert [q.id for q in store.quests] == [5]

    def test_persisted_round_trip(self, store: BoardStore, tmp_path: Path) -> None:
        path = tmp_path / ".questboard" / "board_state.yaml"
        store.collapse_quest(2)
        store.save_persisted(path)

        fresh = BoardStore()
        fresh.collapse_quest(7)
        assert fresh.load_persisted(path) is None
        assert fresh.state.collapsed_map == {"7": True, "2": True}

    def test_load_missing_file_is_noop(self, tmp_path: Path) -> None:
        fresh = BoardStore()
        assert fresh.load_persisted(tmp_path / "missing.yaml") is None
        assert fresh.state.collapsed_map == {}

    def test_load_corrupt_file_reports_error(self, tmp_path: Path) -> None:
        path = tmp_path / "board_state.yaml"
        path.write_text("collapsed_map: [unclosed\n", encoding="utf-8")
        fresh = BoardStore()
        assert fresh.load_persisted(path)
        assert fresh.state.collapsed_map == {}
