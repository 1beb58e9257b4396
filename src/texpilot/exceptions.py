"""Exception hierarchy for texpilot."""

from __future__ import annotations


class TexPilotError(RuntimeError):
    """Base exception for texpilot failures that abort an operation."""


class ToolNotFoundError(TexPilotError):
    """Raised when a required external executable cannot be located or started."""

    def __init__(self, tool: str, message: str | None = None) -> None:
        self.tool = tool
        super().__init__(message or f"{tool} executable not found on PATH")


class WorkspaceViolationError(TexPilotError):
    """Raised when a path escapes the configured workspace root."""

    def __init__(self, path: object, root: object) -> None:
        self.path = path
        self.root = root
        super().__init__(f"Path escapes workspace root: {path} (root={root})")


class WatchNotFoundError(TexPilotError):
    """Raised when a watch session identifier is unknown to the registry."""

    def __init__(self, watch_id: str) -> None:
        self.watch_id = watch_id
        super().__init__(f"No watch with id {watch_id}")
