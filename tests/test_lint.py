"""Tests for chktex linting."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from texpilot.config import Settings
from texpilot.exceptions import ToolNotFoundError, WorkspaceViolationError
from texpilot.lint import CHKTEX_FORMAT, lint_files, parse_chktex_output
from texpilot.models import RunResult


def test_parse_chktex_output() -> None:
    output = (
        "main.tex:3:7:Command terminated with space.\n"
        "\n"
        "main.tex:10:1:Wrong length of dash: may be \"--\" or \"---\".\n"
        "garbage without colons\n"
    )
    messages = parse_chktex_output(output)

    assert [(m.file, m.line, m.column) for m in messages] == [("main.tex", 3, 7), ("main.tex", 10, 1)]
    assert messages[0].message == "Command terminated with space."
    assert messages[1].raw.startswith("main.tex:10:1:")


def test_parse_chktex_message_keeps_colons() -> None:
    messages = parse_chktex_output("a.tex:1:2:Use either `` or '' as an alternative to `\"': see here")
    assert messages[0].message == "Use either `` or '' as an alternative to `\"': see here"


def test_parse_chktex_non_numeric_position() -> None:
    messages = parse_chktex_output("a.tex:x:0:odd")
    assert messages[0].line is None
    assert messages[0].column is None


def test_lint_files_runs_chktex_per_file(fake_runner, settings, tmp_path: Path) -> None:
    first = tmp_path / "a.tex"
    second = tmp_path / "b.tex"
    first.write_text("")
    second.write_text("")
    runner = fake_runner(
        {"return_code": 2, "stdout": f"{first}:1:1:Warning one\n"},
        {"return_code": 0, "stdout": ""},
    )

    messages = lint_files(
        [first, second],
        max_workers=1,
        settings=settings,
        resolver=lambda name: "/usr/bin/chktex",
        runner=runner,
    )

    assert [m.message for m in messages] == ["Warning one"]
    assert [c.args[-1] for c in runner.calls] == [str(first.resolve()), str(second.resolve())]
    assert runner.calls[0].command == "/usr/bin/chktex"
    assert runner.calls[0].args[:3] == ["-q", "-f", CHKTEX_FORMAT]


def test_lint_files_passes_config(fake_runner, settings, tmp_path: Path) -> None:
    doc = tmp_path / "a.tex"
    rc = tmp_path / "chktexrc"
    doc.write_text("")
    rc.write_text("")
    runner = fake_runner()

    lint_files([doc], config_file=rc, settings=settings, resolver=lambda name: "chktex", runner=runner)

    assert runner.calls[0].args[:2] == ["-l", str(rc.resolve())]


def test_lint_files_bounds_concurrency(settings, tmp_path: Path) -> None:
    files = []
    for n in range(6):
        path = tmp_path / f"doc{n}.tex"
        path.write_text("")
        files.append(path)

    active = 0
    peak = 0
    lock = threading.Lock()

    def runner(command, args, *, cwd=None, env=None, timeout=None) -> RunResult:
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.05)
        with lock:
            active -= 1
        return RunResult(command=command, args=list(args), return_code=0, stdout=f"{args[-1]}:1:1:x\n")

    messages = lint_files(files, max_workers=2, settings=settings, resolver=lambda n: "chktex", runner=runner)

    assert peak <= 2
    assert [m.file for m in messages] == [str(f.resolve()) for f in files]


def test_lint_files_without_chktex(settings, tmp_path: Path) -> None:
    doc = tmp_path / "a.tex"
    doc.write_text("")
    with pytest.raises(ToolNotFoundError):
        lint_files([doc], settings=settings, resolver=lambda name: None)


def test_lint_files_respects_workspace(tmp_path: Path) -> None:
    workspace = tmp_path / "ws"
    workspace.mkdir()
    outside = tmp_path / "outside.tex"
    outside.write_text("")
    with pytest.raises(WorkspaceViolationError):
        lint_files(
            [outside],
            settings=Settings(workspace_root=workspace),
            resolver=lambda name: "chktex",
        )


def test_lint_no_files(settings) -> None:
    assert lint_files([], settings=settings, resolver=lambda name: None) == []
