"""Tests for board configuration loading."""

from __future__ import annotations

from pathlib import Path

import yaml

from questboard.config import BoardTimings, load_board_config, parse_board_config


def _write_config(project_dir: Path, data: object) -> None:
    state_dir = project_dir / ".questboard"
    state_dir.mkdir(parents=True, exist_ok=True)
    (state_dir / "config.yaml").write_text(yaml.safe_dump(data), encoding="utf-8")


class TestLoadBoardConfig:
    def test_missing_file_yields_defaults(self, tmp_path: Path) -> None:
        config, err = load_board_config(tmp_path)
        assert err is None
        assert config.timings == BoardTimings()
        assert config.persist_collapsed_map is True
        assert config.log_level == "INFO"

    def test_reads_overrides(self, tmp_path: Path) -> None:
        _write_config(tmp_path, {
            "timings": {"undo_window_ms": 5000, "pulse_ms": 350},
            "persist": {"collapsed_map": False},
            "logging": {"level": "debug"},
        })
        config, err = load_board_config(tmp_path)
        assert err is None
        assert config.timings.undo_window_ms == 5000
        assert config.timings.pulse_ms == 350
        assert config.timings.spawn_ms == 650
        assert config.persist_collapsed_map is False
        assert config.log_level == "DEBUG"

    def test_unreadable_file_reports_error(self, tmp_path: Path) -> None:
        state_dir = tmp_path / ".questboard"
        state_dir.mkdir()
        (state_dir / "config.yaml").write_text("timings: [oops\n", encoding="utf-8")
        config, err = load_board_config(tmp_path)
        assert err is not None
        assert "YAMLError" in err
        assert config.timings == BoardTimings()


class TestParseBoardConfig:
    def test_invalid_values_fall_back(self) -> None:
        config = parse_board_config({
            "timings": {"glow_ms": -1, "celebrate_ms": "slow", "toast_timeout_ms": True, "bogus": 3},
            "persist": {"collapsed_map": "yes"},
            "logging": {"level": "chatty"},
        })
        assert config.timings == BoardTimings()
        assert config.persist_collapsed_map is True
        assert config.log_level == "INFO"

    def test_non_dict_sections_ignored(self) -> None:
        config = parse_board_config({"timings": [1, 2], "logging": "DEBUG"})
        assert config.timings == BoardTimings()
        assert config.log_level == "INFO"
