"""Data models for texpilot requests, results and diagnostics."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional

Engine = Literal["pdflatex", "xelatex", "lualatex"]
Interaction = Literal["batchmode", "nonstopmode", "scrollmode", "errorstopmode"]
Level = Literal["error", "warning", "info"]
EdgeKind = Literal["include", "input", "subfile", "graphics", "bib"]
RootMethod = Literal["explicit", "magic", "latexmkrc", "heuristic", "none"]

ENGINES: tuple[str, ...] = ("pdflatex", "xelatex", "lualatex")
INTERACTIONS: tuple[str, ...] = ("batchmode", "nonstopmode", "scrollmode", "errorstopmode")


def _str_or_none(path: Optional[Path]) -> Optional[str]:
    """Serialize an optional path."""
    return str(path) if path is not None else None


@dataclass
class Diagnostic:
    """A diagnostic message extracted from LaTeX compilation logs."""

    level: Level
    message: str
    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    code: Optional[str] = None
    hint: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert diagnostic to a dictionary for JSON serialization."""
        return {
            "level": self.level,
            "message": self.message,
            "file": self.file,
            "line": self.line,
            "column": self.column,
            "code": self.code,
            "hint": self.hint,
        }


@dataclass(frozen=True)
class CompileRequest:
    """A single compile (or watch) request for a root document."""

    root: Path
    engine: Engine = "pdflatex"
    outdir: Optional[Path] = None
    synctex: bool = True
    shell_escape: bool = False
    interaction: Interaction = "nonstopmode"
    halt_on_error: bool = False
    jobname: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert request to a dictionary for JSON serialization."""
        return {
            "root": str(self.root),
            "engine": self.engine,
            "outdir": _str_or_none(self.outdir),
            "synctex": self.synctex,
            "shell_escape": self.shell_escape,
            "interaction": self.interaction,
            "halt_on_error": self.halt_on_error,
            "jobname": self.jobname,
        }


@dataclass
class CompileResult:
    """Result of a LaTeX compilation attempt."""

    success: bool
    pdf_path: Optional[Path] = None
    log: str = ""
    diagnostics: list[Diagnostic] = field(default_factory=list)
    command: str = ""
    args: list[str] = field(default_factory=list)
    return_code: Optional[int] = None
    strategy: str = ""
    timed_out: bool = False

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.level == "error"]

    def to_dict(self) -> dict:
        """Convert result to a dictionary for JSON serialization."""
        return {
            "success": self.success,
            "pdf_path": _str_or_none(self.pdf_path),
            "log": self.log,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "command": self.command,
            "args": list(self.args),
            "return_code": self.return_code,
            "strategy": self.strategy,
            "timed_out": self.timed_out,
        }


@dataclass
class CleanResult:
    """Result of removing auxiliary build files."""

    cleaned: bool
    command: str
    args: list[str] = field(default_factory=list)
    return_code: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "cleaned": self.cleaned,
            "command": self.command,
            "args": list(self.args),
            "return_code": self.return_code,
        }


@dataclass(frozen=True)
class GraphEdge:
    """A dependency edge between two project files."""

    source: Path
    target: Path
    kind: EdgeKind

    def to_dict(self) -> dict:
        return {"from": str(self.source), "to": str(self.target), "kind": self.kind}


@dataclass
class GraphResult:
    """Files reachable from a root document, and the references that did not resolve."""

    nodes: list[Path] = field(default_factory=list)
    edges: list[GraphEdge] = field(default_factory=list)
    missing: list[Path] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "nodes": [str(n) for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "missing": [str(m) for m in self.missing],
        }


@dataclass
class RootDetection:
    """Best guess for a project's root document."""

    root: Optional[Path]
    method: RootMethod
    candidates: list[Path] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "root": _str_or_none(self.root),
            "method": self.method,
            "candidates": [str(c) for c in self.candidates],
        }


@dataclass
class OutOfDateResult:
    """Comparison of a compiled PDF against the sources it depends on."""

    pdf_path: Path
    pdf_mtime: Optional[float] = None
    newer_sources: list[Path] = field(default_factory=list)
    missing: list[Path] = field(default_factory=list)

    @property
    def up_to_date(self) -> bool:
        return not self.newer_sources and not self.missing

    def to_dict(self) -> dict:
        return {
            "pdf_path": str(self.pdf_path),
            "pdf_mtime": self.pdf_mtime,
            "newer_sources": [str(p) for p in self.newer_sources],
            "missing": [str(p) for p in self.missing],
            "up_to_date": self.up_to_date,
        }


@dataclass
class WatchInfo:
    """Metadata snapshot of a watch session."""

    id: str
    pid: Optional[int]
    command: str
    args: list[str]
    root: Path
    started_at: float
    running: bool = True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pid": self.pid,
            "command": self.command,
            "args": list(self.args),
            "root": str(self.root),
            "started_at": self.started_at,
            "running": self.running,
        }


@dataclass
class RunResult:
    """Captured outcome of one external process invocation."""

    command: str
    args: list[str]
    return_code: Optional[int]
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def output(self) -> str:
        """Stdout followed by stderr, in the order tools usually print them."""
        if not self.stderr:
            return self.stdout
        return f"{self.stdout}\n{self.stderr}"


@dataclass
class ToolInfo:
    """Location and version banner of an external tool."""

    name: str
    path: Optional[str] = None
    version: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.path is not None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "path": self.path,
            "version": self.version,
            "available": self.available,
        }


@dataclass
class TexDistribution:
    """Detected TeX distribution."""

    name: Literal["MiKTeX", "TeX Live", "Unknown"]
    details: Optional[str] = None
    tools: list[ToolInfo] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "details": self.details,
            "tools": [t.to_dict() for t in self.tools],
        }


@dataclass
class LintMessage:
    """A single chktex finding."""

    file: str
    line: Optional[int]
    column: Optional[int]
    message: str
    raw: str

    def to_dict(self) -> dict:
        return {
            "file": self.file,
            "line": self.line,
            "column": self.column,
            "message": self.message,
            "raw": self.raw,
        }
