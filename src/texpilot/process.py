"""Run external tools without a shell and capture what they print."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence, Union

from texpilot.exceptions import ToolNotFoundError
from texpilot.models import RunResult

logger = logging.getLogger(__name__)

# Signature shared by run_command and the test doubles that replace it.
Runner = Callable[..., RunResult]


def _as_text(data: Union[str, bytes, None]) -> str:
    """Decode captured output, which is bytes when a timeout interrupts it."""
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def run_command(
    command: str,
    args: Sequence[str],
    *,
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
) -> RunResult:
    """Run an executable with an argument list and capture its output.

    Args:
        command: Executable name or absolute path
        args: Arguments passed verbatim (no shell interpretation)
        cwd: Working directory for the process
        env: Full environment for the process (inherits ours when None)
        timeout: Seconds before the process is killed (None for no timeout)

    Returns:
        RunResult with captured streams. A timed-out process has
        ``return_code`` None, ``timed_out`` True and whatever it printed
        before being killed.

    Raises:
        ToolNotFoundError: If the executable cannot be started
    """
    argv = [command, *args]
    logger.debug("Running %s (cwd=%s, timeout=%s)", argv, cwd, timeout)
    try:
        result = subprocess.run(
            argv,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
            cwd=cwd,
            env=dict(env) if env is not None else None,
        )
    except subprocess.TimeoutExpired as exc:
        logger.warning("%s exceeded %ss and was killed", command, timeout)
        stderr = _as_text(exc.stderr)
        return RunResult(
            command=command,
            args=list(args),
            return_code=None,
            stdout=_as_text(exc.stdout),
            stderr=f"{stderr}\n[timeout] process exceeded {timeout}s".lstrip("\n"),
            timed_out=True,
        )
    except OSError as exc:
        raise ToolNotFoundError(command, f"Could not start {command}: {exc}") from exc

    logger.debug("%s exited with %s", command, result.returncode)
    return RunResult(
        command=command,
        args=list(args),
        return_code=result.returncode,
        stdout=_as_text(result.stdout),
        stderr=_as_text(result.stderr),
    )
