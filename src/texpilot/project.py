"""Project intelligence: root detection, dependency graphs and staleness checks."""

from __future__ import annotations

import logging
import re
from collections import deque
from pathlib import Path
from typing import Iterable, Optional, Sequence

from texpilot.core import expected_pdf_path
from texpilot.models import GraphEdge, GraphResult, OutOfDateResult, RootDetection

logger = logging.getLogger(__name__)

COMMON_ROOTS = (
    "main.tex",
    "thesis.tex",
    "report.tex",
    "paper.tex",
    "dissertation.tex",
    "book.tex",
    "article.tex",
)
TEX_EXTENSIONS = (".tex",)
GRAPHICS_EXTENSIONS = (".pdf", ".png", ".jpg", ".jpeg", ".eps")
BIB_EXTENSIONS = (".bib",)

ROOT_SCAN_BYTES = 64 * 1024
GRAPH_SCAN_BYTES = 512 * 1024

_MAGIC_ROOT_RE = re.compile(r"^%\s*!?\s*TeX\s+root\s*=\s*(.+)$", re.IGNORECASE | re.MULTILINE)
_DOCUMENTCLASS_RE = re.compile(r"\\documentclass\s*(?:\[[^\]]*\])?\s*\{[^}]+\}")
_COMMENT_RE = re.compile(r"(?<!\\)%.*$", re.MULTILINE)
_INCLUDE_RE = re.compile(r"\\(include|input|subfile)\s*\{([^}]+)\}")
_GRAPHICS_RE = re.compile(r"\\includegraphics\s*(?:\[[^\]]*\])?\s*\{([^}]+)\}")
_BIBLIOGRAPHY_RE = re.compile(r"\\(?:bibliography|addbibresource(?:\[[^\]]*\])?)\s*\{([^}]+)\}")


def read_prefix(path: Path, limit: int) -> str:
    """Read at most ``limit`` bytes of a file as text; empty string if unreadable."""
    try:
        with path.open("rb") as handle:
            return handle.read(limit).decode("utf-8", errors="replace")
    except OSError as exc:
        logger.debug("Could not read %s: %s", path, exc)
        return ""


def find_magic_root(text: str) -> Optional[str]:
    """Return the target of a ``% !TeX root = ...`` comment, if any."""
    match = _MAGIC_ROOT_RE.search(text)
    if not match:
        return None
    return match.group(1).strip().strip('"') or None


def _tex_files(directory: Path) -> list[Path]:
    """List the .tex files of a directory in name order."""
    try:
        return sorted(p for p in directory.iterdir() if p.suffix.lower() == ".tex" and p.is_file())
    except OSError:
        return []


def _scan_order(directory: Path) -> list[Path]:
    """Conventional root names first, then every other .tex file in the directory."""
    common = [directory / name for name in COMMON_ROOTS if (directory / name).is_file()]
    seen = set(common)
    return common + [p for p in _tex_files(directory) if p not in seen]


def detect_root(file: Optional[Path] = None, start_path: Optional[Path] = None) -> RootDetection:
    """Guess the root document of a LaTeX project.

    Tried in order, first match wins:

    1. ``file``, if it exists
    2. a ``% !TeX root = ...`` comment in a conventionally named or other
       ``.tex`` file of the start directory
    3. ``.latexmkrc`` next to a ``main.tex``
    4. the first scanned file declaring ``\\documentclass``
    5. ``main.tex``

    Args:
        file: Explicit root document
        start_path: File or directory to start from (defaults to the cwd)

    Returns:
        RootDetection with the chosen root (or None), the method used and the
        files inspected along the way
    """
    if file is not None:
        explicit = Path(file).resolve()
        if explicit.is_file():
            return RootDetection(root=explicit, method="explicit", candidates=[explicit])

    start = Path(start_path).resolve() if start_path else Path.cwd()
    directory = start if start.is_dir() else start.parent

    candidates: list[Path] = []
    contents: list[tuple[Path, str]] = []
    for path in _scan_order(directory):
        candidates.append(path)
        contents.append((path, read_prefix(path, ROOT_SCAN_BYTES)))

    for path, text in contents:
        target = find_magic_root(text)
        if not target:
            continue
        resolved = (directory / target).resolve()
        if resolved.is_file():
            logger.debug("Magic root comment in %s points to %s", path, resolved)
            return RootDetection(root=resolved, method="magic", candidates=candidates)

    main = directory / "main.tex"
    if (directory / ".latexmkrc").is_file() and main.is_file():
        return RootDetection(
            root=main,
            method="latexmkrc",
            candidates=[*candidates, directory / ".latexmkrc"],
        )

    for path, text in contents:
        if _DOCUMENTCLASS_RE.search(text):
            return RootDetection(root=path, method="heuristic", candidates=candidates)

    if main.is_file():
        return RootDetection(root=main, method="heuristic", candidates=candidates)

    return RootDetection(root=None, method="none", candidates=candidates)


def resolve_reference(directory: Path, target: str, extensions: Sequence[str]) -> Optional[Path]:
    """Resolve a LaTeX path argument the way TeX would look it up on disk.

    The literal path wins; otherwise each extension is appended in turn.
    """
    raw = (directory / target.strip()).resolve()
    if raw.is_file():
        return raw
    for extension in extensions:
        if raw.name.lower().endswith(extension):
            continue
        candidate = raw.with_name(raw.name + extension)
        if candidate.is_file():
            return candidate
    return None


def _split_names(argument: str) -> Iterable[str]:
    """Split a comma separated bibliography argument."""
    return (name.strip() for name in argument.split(",") if name.strip())


def build_dependency_graph(root: Path) -> GraphResult:
    """Breadth-first scan of the files a root document pulls in.

    ``\\include``, ``\\input`` and ``\\subfile`` targets are followed;
    graphics and bibliography files are recorded as leaves. Anything that
    does not resolve lands in ``missing`` and the scan carries on.

    Args:
        root: Root .tex document

    Returns:
        GraphResult with unique nodes in visit order
    """
    start = Path(root).resolve()
    graph = GraphResult()
    if not start.is_file():
        graph.missing.append(start)
        return graph

    visited: set[Path] = set()
    missing_seen: set[Path] = set()
    queue: deque[Path] = deque([start])

    def add_missing(path: Path) -> None:
        if path not in missing_seen:
            missing_seen.add(path)
            graph.missing.append(path)

    while queue:
        current = queue.popleft()
        if current in visited:
            continue
        visited.add(current)
        graph.nodes.append(current)

        directory = current.parent
        text = _COMMENT_RE.sub("", read_prefix(current, GRAPH_SCAN_BYTES))

        for kind, target in _INCLUDE_RE.findall(text):
            resolved = resolve_reference(directory, target, TEX_EXTENSIONS)
            if resolved is None:
                add_missing((directory / target.strip()).resolve())
                continue
            graph.edges.append(GraphEdge(source=current, target=resolved, kind=kind))
            if resolved not in visited:
                queue.append(resolved)

        for target in _GRAPHICS_RE.findall(text):
            resolved = resolve_reference(directory, target, GRAPHICS_EXTENSIONS)
            if resolved is None:
                add_missing((directory / target.strip()).resolve())
                continue
            graph.edges.append(GraphEdge(source=current, target=resolved, kind="graphics"))

        for argument in _BIBLIOGRAPHY_RE.findall(text):
            for name in _split_names(argument):
                resolved = resolve_reference(directory, name, BIB_EXTENSIONS)
                if resolved is None:
                    add_missing((directory / name).resolve())
                    continue
                graph.edges.append(GraphEdge(source=current, target=resolved, kind="bib"))

    logger.debug(
        "Dependency graph of %s: %d nodes, %d edges, %d missing",
        start,
        len(graph.nodes),
        len(graph.edges),
        len(graph.missing),
    )
    return graph


def _mtime(path: Path) -> Optional[float]:
    """Modification time, or None if the file is gone."""
    try:
        return path.stat().st_mtime
    except OSError:
        return None


def compute_out_of_date(
    root: Path,
    *,
    outdir: Optional[Path] = None,
    jobname: Optional[str] = None,
    pdf_path: Optional[Path] = None,
) -> OutOfDateResult:
    """Decide whether the compiled PDF of ``root`` is stale.

    Args:
        root: Root .tex document
        outdir: Output directory used for the compile
        jobname: Job name used for the compile
        pdf_path: Explicit PDF path, overriding outdir/jobname

    Returns:
        OutOfDateResult listing sources newer than the PDF (every source when
        the PDF is absent) and unresolved references
    """
    pdf = Path(pdf_path).resolve() if pdf_path else expected_pdf_path(root, outdir, jobname)
    pdf_mtime = _mtime(pdf)
    graph = build_dependency_graph(root)

    if pdf_mtime is None:
        newer = list(graph.nodes)
    else:
        newer = []
        for node in graph.nodes:
            node_mtime = _mtime(node)
            if node_mtime is not None and node_mtime > pdf_mtime:
                newer.append(node)

    return OutOfDateResult(
        pdf_path=pdf,
        pdf_mtime=pdf_mtime,
        newer_sources=newer,
        missing=list(graph.missing),
    )
