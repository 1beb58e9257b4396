"""texpilot: LaTeX build orchestration with structured diagnostics, dependency graphs and watch mode."""

from __future__ import annotations

from texpilot.analysis import analyse_log
from texpilot.core import clean_aux, compile_tex, expected_pdf_path
from texpilot.models import (
    CleanResult,
    CompileRequest,
    CompileResult,
    Diagnostic,
    GraphEdge,
    GraphResult,
    OutOfDateResult,
    RootDetection,
    WatchInfo,
)
from texpilot.project import build_dependency_graph, compute_out_of_date, detect_root
from texpilot.watch import WatchRegistry, default_registry

__version__ = "0.1.0"
__all__ = [
    "analyse_log",
    "build_dependency_graph",
    "clean_aux",
    "compile_tex",
    "compute_out_of_date",
    "default_registry",
    "detect_root",
    "expected_pdf_path",
    "CleanResult",
    "CompileRequest",
    "CompileResult",
    "Diagnostic",
    "GraphEdge",
    "GraphResult",
    "OutOfDateResult",
    "RootDetection",
    "WatchInfo",
    "WatchRegistry",
]
