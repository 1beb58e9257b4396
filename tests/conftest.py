"""Shared fixtures for texpilot tests."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

import pytest

import texpilot.config
from texpilot.config import Settings
from texpilot.models import RunResult


@dataclass
class Call:
    command: str
    args: list[str]
    cwd: Optional[Path]
    timeout: Optional[float]


class FakeRunner:
    """Stands in for run_command: records calls and replays canned results.

    Each canned result is a dict of RunResult fields (command/args are
    filled from the call) or an exception to raise.
    """

    def __init__(
        self,
        *results: Union[dict, Exception],
        on_call: Optional[Callable[[Call], None]] = None,
    ) -> None:
        self.results = list(results)
        self.calls: list[Call] = []
        self.on_call = on_call

    def __call__(self, command, args, *, cwd=None, env=None, timeout=None) -> RunResult:
        call = Call(command=command, args=list(args), cwd=cwd, timeout=timeout)
        self.calls.append(call)
        if self.on_call is not None:
            self.on_call(call)
        result = self.results.pop(0) if self.results else {"return_code": 0}
        if isinstance(result, Exception):
            raise result
        return RunResult(command=command, args=list(args), **result)


def make_resolver(**tools: str) -> Callable[[str], Optional[str]]:
    """Resolver that knows only the given tools."""
    return lambda name: tools.get(name)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch):
    """Keep TEXPILOT_* variables and cached settings from leaking between tests."""
    for key in list(os.environ):
        if key.upper().startswith("TEXPILOT_"):
            monkeypatch.delenv(key, raising=False)
    texpilot.config._cache = None
    yield
    texpilot.config._cache = None


@pytest.fixture
def settings() -> Settings:
    return Settings(workspace_root=None, allow_shell_escape=False)


@pytest.fixture
def fake_runner() -> type[FakeRunner]:
    return FakeRunner


@pytest.fixture
def resolver_factory():
    return make_resolver


@pytest.fixture
def mock_tex_file(tmp_path: Path) -> Path:
    """Create a temporary .tex file for testing."""
    tex_file = tmp_path / "test.tex"
    tex_file.write_text(r"\documentclass{article}\begin{document}Test\end{document}")
    return tex_file.resolve()
