"""Workspace path containment checks."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Union

from texpilot.exceptions import WorkspaceViolationError

PathLike = Union[str, "os.PathLike[str]"]


def ensure_inside_workspace(path: PathLike, root: Optional[PathLike]) -> Path:
    """Resolve ``path`` and check that it lives under ``root``.

    Args:
        path: Path to check
        root: Workspace root; None disables the check

    Returns:
        The resolved absolute path

    Raises:
        WorkspaceViolationError: If the path escapes the workspace
    """
    resolved = Path(path).expanduser().resolve()
    if root is None:
        return resolved

    root_path = Path(root).expanduser().resolve()
    # normcase folds case on Windows only
    candidate = Path(os.path.normcase(str(resolved)))
    base = Path(os.path.normcase(str(root_path)))
    if candidate.is_relative_to(base):
        return resolved
    raise WorkspaceViolationError(resolved, root_path)


def is_inside_workspace(path: PathLike, root: Optional[PathLike]) -> bool:
    try:
        ensure_inside_workspace(path, root)
    except WorkspaceViolationError:
        return False
    return True
