"""Tests for settings loading."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from texpilot.config import CONFIG_FILENAME, Settings, load_settings, reload_settings


def test_defaults(tmp_path: Path) -> None:
    settings = load_settings(tmp_path)
    assert settings.workspace_root is None
    assert settings.allow_shell_escape is False
    assert settings.default_engine == "pdflatex"
    assert settings.watch_buffer_lines == 2000
    assert settings.compile_timeout == 120


def test_environment_variables(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TEXPILOT_ALLOW_SHELL_ESCAPE", "1")
    monkeypatch.setenv("TEXPILOT_WORKSPACE_ROOT", str(tmp_path))
    monkeypatch.setenv("TEXPILOT_DEFAULT_ENGINE", "lualatex")

    settings = load_settings()
    assert settings.allow_shell_escape is True
    assert settings.workspace_root == tmp_path.resolve()
    assert settings.default_engine == "lualatex"


def test_config_file_values(tmp_path: Path) -> None:
    (tmp_path / CONFIG_FILENAME).write_text(
        json.dumps({"lint_workers": 2, "compile_timeout": 10, "unknown": True})
    )
    settings = load_settings(tmp_path)
    assert settings.lint_workers == 2
    assert settings.compile_timeout == 10


def test_environment_wins_over_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    (tmp_path / CONFIG_FILENAME).write_text(json.dumps({"lint_workers": 2, "pass_timeout": 5}))
    monkeypatch.setenv("TEXPILOT_LINT_WORKERS", "7")

    settings = load_settings(tmp_path)
    assert settings.lint_workers == 7
    assert settings.pass_timeout == 5


def test_unreadable_config_file_is_ignored(tmp_path: Path) -> None:
    (tmp_path / CONFIG_FILENAME).write_text("{not json")
    assert load_settings(tmp_path).lint_workers == 4


def test_settings_are_cached_until_reload(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    first = load_settings(tmp_path)
    monkeypatch.setenv("TEXPILOT_CLEAN_TIMEOUT", "3")
    assert load_settings(tmp_path) is first

    reloaded = reload_settings(tmp_path)
    assert reloaded is not first
    assert reloaded.clean_timeout == 3


def test_invalid_engine_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(default_engine="context")


def test_file_settings_are_settings(tmp_path: Path) -> None:
    (tmp_path / CONFIG_FILENAME).write_text(json.dumps({"allow_shell_escape": True}))
    settings = load_settings(tmp_path)
    assert isinstance(settings, Settings)
    assert settings.allow_shell_escape is True
