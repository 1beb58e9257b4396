"""Locate TeX toolchain executables and probe their versions."""

from __future__ import annotations

import logging
import os
import shutil
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Optional, Sequence

from texpilot.exceptions import ToolNotFoundError
from texpilot.models import TexDistribution, ToolInfo
from texpilot.process import run_command

logger = logging.getLogger(__name__)

# Maps a logical tool name to an absolute executable path, or None.
Resolver = Callable[[str], Optional[str]]

# TeX installs that are often missing from PATH (GUI launchers, fresh installs).
_EXTRA_DIRS = (
    "/Library/TeX/texbin",
    "/usr/texbin",
    "/opt/texbin",
    "/usr/local/bin",
    "/usr/bin",
)
_TEXLIVE_ROOT = Path("/usr/local/texlive")

TOOLCHAIN = (
    "latexmk",
    "pdflatex",
    "xelatex",
    "lualatex",
    "bibtex",
    "biber",
    "chktex",
    "latexindent",
    "kpsewhich",
    "texdoc",
    "tlmgr",
    "perl",
)
_DIST_PROBES = ("kpsewhich", "pdflatex", "latexmk", "biber", "bibtex")

_VERSION_FLAGS = {
    "latexmk": ("-v", "--version"),
    "perl": ("-v",),
}

_DIST_TTL = 60.0
_dist_cache: Optional[tuple[float, TexDistribution]] = None
_dist_lock = threading.Lock()


def _texlive_bin_dirs() -> list[Path]:
    """Return arch subdirectories of TeX Live bin folders, newest year first."""
    if not _TEXLIVE_ROOT.is_dir():
        return []
    roots = [_TEXLIVE_ROOT / "bin"]
    try:
        years = sorted(
            (p for p in _TEXLIVE_ROOT.iterdir() if p.name.isdigit()),
            key=lambda p: p.name,
            reverse=True,
        )
    except OSError:
        years = []
    roots.extend(year / "bin" for year in years)

    dirs: list[Path] = []
    for root in roots:
        try:
            dirs.extend(sorted(p for p in root.iterdir() if p.is_dir()))
        except OSError:
            continue
    return dirs


def which(name: str) -> Optional[str]:
    """Find the executable path for a tool.

    Args:
        name: Tool name without extension (e.g. 'latexmk')

    Returns:
        Absolute path to the executable if found, None otherwise
    """
    found = shutil.which(name)
    if found:
        return str(Path(found).resolve())
    if os.name == "nt":
        return None

    for directory in [*map(Path, _EXTRA_DIRS), *_texlive_bin_dirs()]:
        candidate = directory / name
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return str(candidate)
    return None


def probe_version(name: str, path: str, timeout: float = 1.2) -> Optional[str]:
    """Return the first line a tool prints for its version flag, or None."""
    for flag in _VERSION_FLAGS.get(name, ("--version",)):
        try:
            result = run_command(path, [flag], timeout=timeout)
        except ToolNotFoundError:
            return None
        text = result.stdout.strip() or result.stderr.strip()
        if result.timed_out:
            continue
        for line in text.splitlines():
            if line.strip():
                return line.strip()
    return None


def _probe(name: str, resolver: Resolver, timeout: float) -> ToolInfo:
    """Resolve one tool and read its version banner."""
    path = resolver(name)
    version = probe_version(name, path, timeout=timeout) if path else None
    return ToolInfo(name=name, path=path, version=version)


def detect_toolchain(
    names: Sequence[str] = TOOLCHAIN,
    *,
    resolver: Resolver = which,
    timeout: float = 1.2,
) -> list[ToolInfo]:
    """Resolve and version-probe tools concurrently.

    Each probe runs in its own worker with its own timeout, so one slow or
    hanging tool does not hold up the others.

    Returns:
        ToolInfo entries in the order of ``names``
    """
    if not names:
        return []
    with ThreadPoolExecutor(max_workers=len(names)) as pool:
        futures = [pool.submit(_probe, name, resolver, timeout) for name in names]
        tools = []
        for name, future in zip(names, futures):
            try:
                tools.append(future.result())
            except Exception as exc:
                logger.debug("Probe for %s failed: %s", name, exc)
                tools.append(ToolInfo(name=name))
    return tools


def detect_tex_distribution(*, resolver: Resolver = which) -> TexDistribution:
    """Guess whether the installed TeX distribution is MiKTeX or TeX Live.

    The answer is cached for a minute.
    """
    global _dist_cache
    with _dist_lock:
        now = time.monotonic()
        if _dist_cache is not None and now - _dist_cache[0] < _DIST_TTL:
            return _dist_cache[1]

        tools = detect_toolchain(_DIST_PROBES, resolver=resolver, timeout=0.6)
        name = "Unknown"
        details: Optional[str] = None

        kpsewhich = next((t.version for t in tools if t.name == "kpsewhich"), None) or ""
        if "miktex" in kpsewhich.lower():
            name, details = "MiKTeX", kpsewhich
        banners = [t.version for t in tools if t.version]
        texlive = next((b for b in banners if "tex live" in b.lower()), None)
        if texlive:
            name = "TeX Live"
            details = details or texlive

        info = TexDistribution(name=name, details=details, tools=tools)
        _dist_cache = (now, info)
        logger.info("Detected TeX distribution: %s", name)
        return info
