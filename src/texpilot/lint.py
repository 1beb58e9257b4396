"""Lint LaTeX sources with chktex."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional, Sequence

from texpilot.config import Settings, load_settings
from texpilot.discovery import Resolver, which
from texpilot.exceptions import ToolNotFoundError
from texpilot.models import LintMessage
from texpilot.process import Runner, run_command
from texpilot.security import ensure_inside_workspace

logger = logging.getLogger(__name__)

# file:line:column:message, one record per line
CHKTEX_FORMAT = "%f:%l:%c:%m\n"


def _optional_int(value: str) -> Optional[int]:
    """Parse a chktex position; zero or garbage means unknown."""
    try:
        number = int(value)
    except ValueError:
        return None
    return number or None


def parse_chktex_output(output: str) -> list[LintMessage]:
    """Parse chktex output produced with ``-f "%f:%l:%c:%m\\n"``."""
    messages: list[LintMessage] = []
    for raw in output.splitlines():
        if not raw.strip():
            continue
        parts = raw.split(":", 3)
        if len(parts) < 4:
            logger.debug("Skipping unparsable chktex line %r", raw)
            continue
        file, line, column, message = parts
        messages.append(
            LintMessage(
                file=file,
                line=_optional_int(line),
                column=_optional_int(column),
                message=message.strip(),
                raw=raw,
            )
        )
    return messages


def lint_files(
    files: Sequence[Path],
    *,
    config_file: Optional[Path] = None,
    max_workers: Optional[int] = None,
    settings: Optional[Settings] = None,
    resolver: Resolver = which,
    runner: Runner = run_command,
    timeout: float = 30.0,
) -> list[LintMessage]:
    """Run chktex on several files with a bounded number of concurrent processes.

    Args:
        files: Documents to lint
        config_file: Optional chktexrc passed with ``-l``
        max_workers: Concurrent chktex processes (settings.lint_workers when None)
        settings: Workspace policy
        resolver: Maps tool names to executable paths
        runner: Executes external commands
        timeout: Seconds allowed per file

    Returns:
        Findings grouped by input file, in input order

    Raises:
        WorkspaceViolationError: If a file escapes the configured workspace
        ToolNotFoundError: If chktex is not installed
    """
    settings = settings or load_settings()
    targets = [ensure_inside_workspace(f, settings.workspace_root) for f in files]
    if not targets:
        return []

    executable = resolver("chktex")
    if executable is None:
        raise ToolNotFoundError("chktex")

    base_args: list[str] = []
    if config_file is not None:
        base_args.extend(["-l", str(ensure_inside_workspace(config_file, settings.workspace_root))])
    base_args.extend(["-q", "-f", CHKTEX_FORMAT])

    def lint_one(target: Path) -> list[LintMessage]:
        result = runner(executable, [*base_args, str(target)], cwd=target.parent, timeout=timeout)
        if result.timed_out:
            logger.warning("chktex timed out on %s", target)
        return parse_chktex_output(result.stdout)

    workers = max(1, min(max_workers or settings.lint_workers, len(targets)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        per_file = list(pool.map(lint_one, targets))

    return [message for messages in per_file for message in messages]
