"""Watch sessions: long-running ``latexmk -pvc`` processes with tailable output.

Each session owns a child process and a reader thread that copies the
child's output, line by line, into a bounded buffer. The registry table and
every session buffer are guarded by locks so start/stop/list/tail can be
called from any thread.
"""

from __future__ import annotations

import dataclasses
import logging
import secrets
import subprocess
import threading
import time
from collections import deque
from typing import Callable, Optional

from texpilot.config import Settings, load_settings
from texpilot.core import latexmk_args, prepare_request
from texpilot.discovery import Resolver, which
from texpilot.exceptions import ToolNotFoundError, WatchNotFoundError
from texpilot.models import CompileRequest, WatchInfo

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 2000
DEFAULT_TAIL_LINES = 200

PopenFactory = Callable[..., subprocess.Popen]


class _WatchSession:
    """One running watcher and its ring buffer of output lines."""

    def __init__(self, info: WatchInfo, process: subprocess.Popen, capacity: int) -> None:
        self.info = info
        self.process = process
        self.buffer: deque[str] = deque(maxlen=capacity)
        self.lock = threading.Lock()
        self.reader: Optional[threading.Thread] = None
        # Lines ever appended; lets followers resume after eviction.
        self.total = 0

    def append(self, chunk: str) -> None:
        lines = [line for line in chunk.splitlines() if line]
        if not lines:
            return
        with self.lock:
            self.buffer.extend(lines)
            self.total += len(lines)

    def tail(self, max_lines: int) -> list[str]:
        if max_lines <= 0:
            return []
        with self.lock:
            start = max(0, len(self.buffer) - max_lines)
            return [self.buffer[i] for i in range(start, len(self.buffer))]

    def lines_after(self, offset: int) -> tuple[list[str], int]:
        with self.lock:
            available = min(len(self.buffer), self.total - offset)
            if available <= 0:
                return [], self.total
            return list(self.buffer)[-available:], self.total

    def mark_stopped(self) -> None:
        with self.lock:
            self.info.running = False

    def snapshot(self) -> WatchInfo:
        with self.lock:
            return dataclasses.replace(self.info, args=list(self.info.args))

    def pump(self) -> None:
        """Copy process output into the buffer until EOF, then record the exit."""
        stream = self.process.stdout
        try:
            if stream is not None:
                for chunk in stream:
                    self.append(chunk)
        except (OSError, ValueError) as exc:
            # The stream is closed under us when the session is stopped.
            logger.debug("Output stream of watch %s closed: %s", self.info.id, exc)
        finally:
            code = self.process.wait()
            self.mark_stopped()
            logger.info("Watch %s exited with %s", self.info.id, code)


class WatchRegistry:
    """In-memory table of watch sessions keyed by identifier."""

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        *,
        settings: Optional[Settings] = None,
        resolver: Resolver = which,
        popen: PopenFactory = subprocess.Popen,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._settings = settings
        self._resolver = resolver
        self._popen = popen
        self._sessions: dict[str, _WatchSession] = {}
        self._lock = threading.RLock()

    @property
    def settings(self) -> Settings:
        return self._settings or load_settings()

    def _new_id(self) -> str:
        """Mint an identifier not used by any registered session."""
        while True:
            watch_id = f"w_{int(time.time() * 1000)}_{secrets.token_hex(3)}"
            if watch_id not in self._sessions:
                return watch_id

    def start(self, request: CompileRequest) -> WatchInfo:
        """Start ``latexmk -pvc`` for a request and register the session.

        Raises:
            WorkspaceViolationError: If a path escapes the configured workspace
            ToolNotFoundError: If latexmk cannot be started
        """
        request, notes = prepare_request(request, self.settings)
        executable = self._resolver("latexmk") or "latexmk"
        args = latexmk_args(request, watch=True)
        if request.outdir:
            request.outdir.mkdir(parents=True, exist_ok=True)

        try:
            process = self._popen(
                [executable, *args],
                cwd=request.root.parent,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                bufsize=1,
            )
        except OSError as exc:
            raise ToolNotFoundError("latexmk", f"Could not start latexmk: {exc}") from exc

        with self._lock:
            info = WatchInfo(
                id=self._new_id(),
                pid=process.pid,
                command=executable,
                args=args,
                root=request.root,
                started_at=time.time(),
                running=True,
            )
            session = _WatchSession(info, process, self.capacity)
            for note in notes:
                session.append(f"[texpilot] {note.message}")
            self._sessions[info.id] = session

        session.reader = threading.Thread(
            target=session.pump,
            name=f"texpilot-watch-{info.id}",
            daemon=True,
        )
        session.reader.start()
        logger.info("Started watch %s (pid %s) for %s", info.id, info.pid, info.root)
        return session.snapshot()

    def stop(self, watch_id: str) -> bool:
        """Terminate a session's process and drop it from the registry.

        Returns:
            True if the session existed, False for an unknown identifier
        """
        with self._lock:
            session = self._sessions.pop(watch_id, None)
        if session is None:
            return False
        self._terminate(session)
        return True

    def _terminate(self, session: _WatchSession) -> None:
        """Send the termination signal and mark the session stopped."""
        if session.process.poll() is None:
            try:
                session.process.terminate()
            except OSError as exc:
                logger.debug("Terminating watch %s failed: %s", session.info.id, exc)
        session.mark_stopped()
        logger.info("Stopped watch %s", session.info.id)

    def stop_all(self, join_timeout: float = 5.0) -> int:
        """Stop every session and wait for their reader threads to finish.

        Args:
            join_timeout: Seconds to wait for each reader thread

        Returns:
            How many sessions were stopped
        """
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            self._terminate(session)
        for session in sessions:
            if session.reader is not None:
                session.reader.join(join_timeout)
                if session.reader.is_alive():
                    logger.warning("Reader of watch %s still running after %ss", session.info.id, join_timeout)
        return len(sessions)

    def list_watches(self) -> list[WatchInfo]:
        """Snapshot the metadata of every registered session."""
        with self._lock:
            sessions = list(self._sessions.values())
        return [session.snapshot() for session in sessions]

    def get(self, watch_id: str) -> WatchInfo:
        return self._session(watch_id).snapshot()

    def tail(self, watch_id: str, max_lines: int = DEFAULT_TAIL_LINES) -> str:
        """Return the last ``max_lines`` buffered output lines of a session.

        Raises:
            WatchNotFoundError: If the identifier is unknown
        """
        return "\n".join(self._session(watch_id).tail(max_lines))

    def follow(self, watch_id: str, offset: int = 0) -> tuple[list[str], int]:
        """Return buffered lines appended after ``offset`` and the new offset.

        Lines evicted from the buffer before they were read are skipped.

        Raises:
            WatchNotFoundError: If the identifier is unknown
        """
        return self._session(watch_id).lines_after(offset)

    def _session(self, watch_id: str) -> _WatchSession:
        """Look up a session or raise WatchNotFoundError."""
        with self._lock:
            session = self._sessions.get(watch_id)
        if session is None:
            raise WatchNotFoundError(watch_id)
        return session

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


_default: Optional[WatchRegistry] = None
_default_lock = threading.Lock()


def default_registry() -> WatchRegistry:
    """Return the process-wide registry, creating it on first use."""
    global _default
    with _default_lock:
        if _default is None:
            _default = WatchRegistry(capacity=load_settings().watch_buffer_lines)
        return _default
