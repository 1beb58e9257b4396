"""Log analysis and diagnostic extraction from LaTeX compilation logs.

The analyzer walks the log line by line. Before a line is classified it
updates a rough file stack (``(./chapter.tex`` pushes, a bare ``)`` pops)
and the most recent ``l.<number>`` marker. Classification then tries each
registered rule in order; the first rule that yields a diagnostic wins.

File attribution is best effort: TeX wraps long lines and some tools print
unbalanced parentheses, so the stack can drift.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Optional

from texpilot.models import Diagnostic

logger = logging.getLogger(__name__)

# How far past a "! ..." line to look for its "l.<n>" marker.
ERROR_CONTEXT_LINES = 8

_PUSH_FILE_RE = re.compile(r"\(([^()\s][^()]*\.(?:tex|sty|cls|bib))\b")
_POP_FILE_RE = re.compile(r"^\s*\)\s*$")
_LINE_MARKER_RE = re.compile(r"^l\.(\d+)\b")
_FILE_LINE_RE = re.compile(r"(?P<file>(?:[A-Za-z]:)?[^\s:()]+):(?P<line>\d+):")
_UNDEFINED_CS_RE = re.compile(r"^Undefined control sequence\.?", re.IGNORECASE)
_CITATION_RE = re.compile(
    r"(?:Citation|Reference)\s+[`'].*'\s+.*undefined|There were undefined (?:references|citations)"
)
_RERUN_RE = re.compile(r"Label\(s\) may have changed|Rerun to get cross-references right")
_MISSING_LATEX_RE = re.compile(r"LaTeX Error:\s*File\s*`(?P<name>[^']+)'\s*not found")
_WHITESPACE_RE = re.compile(r"\s+")

HINT_UNDEFINED_CS = "Check for typos or missing packages providing this command."
HINT_CITATION = (
    "Run the bibliography tool (biber/bibtex) and rerun LaTeX "
    "(latexmk handles this automatically)."
)
HINT_RERUN = "Rerun LaTeX so cross-references update (latexmk does this automatically)."
HINT_MISSING_FILE = (
    "File missing: verify the path relative to the working directory "
    "and consider \\graphicspath for images."
)


def _package_hint(package: str) -> str:
    return (
        f"Package missing: try `tlmgr install {package}` (TeX Live) "
        "or install it via the MiKTeX package manager."
    )


def package_name(filename: str) -> Optional[str]:
    """Return 'foo' for 'foo.sty', None for anything that is not a package file."""
    name = filename.strip().strip("`'")
    if name.lower().endswith(".sty"):
        return name[: -len(".sty")]
    return None


@dataclass
class _ParseState:
    """Mutable scan state for a single log."""

    lines: list[str]
    index: int = 0
    file_stack: list[str] = field(default_factory=list)
    last_line: Optional[int] = None

    @property
    def line(self) -> str:
        return self.lines[self.index]

    @property
    def current_file(self) -> Optional[str]:
        return self.file_stack[-1] if self.file_stack else None

    def neighbour(self, offset: int) -> str:
        position = self.index + offset
        if 0 <= position < len(self.lines):
            return self.lines[position]
        return ""

    def track(self) -> None:
        """Update the file stack and line marker from the current line."""
        line = self.line
        self.file_stack.extend(_PUSH_FILE_RE.findall(line))
        if _POP_FILE_RE.match(line) and self.file_stack:
            self.file_stack.pop()
        marker = _LINE_MARKER_RE.match(line)
        if marker:
            self.last_line = int(marker.group(1))


# Type alias for a rule handler function
RuleHandler = Callable[[re.Match[str], _ParseState], Optional[Diagnostic]]


class LogAnalyzer:
    """Analyzes LaTeX compilation logs to extract diagnostics."""

    def __init__(self) -> None:
        """Initialize the analyzer with default rules."""
        self.rules: list[tuple[re.Pattern[str], RuleHandler]] = []
        self._register_default_rules()

    def _register_default_rules(self) -> None:
        """Register the default diagnostic rules, highest priority first."""
        self.add_rule(re.compile(r"^! (?P<message>.*)$"), self._handle_error)
        self.add_rule(_MISSING_LATEX_RE, self._handle_missing_file)
        self.add_rule(
            re.compile(r"kpathsea:.*?:\s*file\s*`(?P<name>[^']+)'\s*not found"),
            self._handle_missing_file,
        )
        self.add_rule(
            re.compile(r"^(?:LaTeX|Package\s+\S+|Class\s+\S+)\s+Warning:\s*(?P<message>.*)$"),
            self._handle_warning,
        )
        self.add_rule(
            re.compile(
                r"^(?P<kind>Overfull|Underfull) \\hbox\s*\([^)]*\)\s+"
                r"in paragraph at lines\s+(?P<start>\d+)(?:--(?P<end>\d+))?"
            ),
            self._handle_bad_box,
        )
        self.add_rule(re.compile(r"^kpathsea:"), self._handle_kpathsea)

    def add_rule(self, pattern: re.Pattern[str], handler: RuleHandler) -> None:
        """Add a new analysis rule.

        Rules are tried in registration order and the first diagnostic
        produced for a line wins.

        Args:
            pattern: Regex searched in each log line
            handler: Function that takes a match and the scan state and
                returns a Diagnostic, or None to let later rules try
        """
        self.rules.append((pattern, handler))

    def _error_line_number(self, state: _ParseState) -> tuple[Optional[str], Optional[int]]:
        """Find the source line (and maybe file) an error refers to."""
        for offset in range(1, ERROR_CONTEXT_LINES + 1):
            following = state.neighbour(offset)
            if following.startswith("! "):
                break
            marker = _LINE_MARKER_RE.match(following)
            if marker:
                return None, int(marker.group(1))

        if state.last_line is not None:
            return None, state.last_line

        for offset in (-1, 1):
            found = _FILE_LINE_RE.search(state.neighbour(offset))
            if found:
                return found.group("file"), int(found.group("line"))
        return None, None

    def _handle_error(self, match: re.Match[str], state: _ParseState) -> Diagnostic:
        """Handle '! ...' error lines."""
        message = match.group("message").strip()
        file, line = self._error_line_number(state)
        diagnostic = Diagnostic(
            level="error",
            message=message,
            file=file or state.current_file,
            line=line,
        )

        if _UNDEFINED_CS_RE.match(message):
            diagnostic.code = "undefined-control-sequence"
            diagnostic.hint = HINT_UNDEFINED_CS
            return diagnostic

        missing = _MISSING_LATEX_RE.search(message)
        if missing:
            package = package_name(missing.group("name"))
            diagnostic.code = "missing-package" if package else "missing-file"
            diagnostic.hint = _package_hint(package) if package else HINT_MISSING_FILE
        return diagnostic

    def _handle_missing_file(self, match: re.Match[str], state: _ParseState) -> Diagnostic:
        """Handle missing package/file errors reported by LaTeX or kpathsea."""
        missing = match.group("name")
        package = package_name(missing)
        return Diagnostic(
            level="error",
            message=f"Missing file: {missing}",
            file=state.current_file,
            code="missing-package" if package else "missing-file",
            hint=_package_hint(package) if package else HINT_MISSING_FILE,
        )

    def _handle_warning(self, match: re.Match[str], state: _ParseState) -> Diagnostic:
        """Handle LaTeX, package and class warnings."""
        line = state.line
        code: Optional[str] = None
        hint: Optional[str] = None
        if _CITATION_RE.search(line):
            code, hint = "citation-undefined", HINT_CITATION
        elif _RERUN_RE.search(line):
            code, hint = "rerun", HINT_RERUN
        return Diagnostic(
            level="warning",
            message=match.group("message"),
            file=state.current_file,
            code=code,
            hint=hint,
        )

    def _handle_bad_box(self, match: re.Match[str], state: _ParseState) -> Diagnostic:
        """Handle Overfull/Underfull \\hbox reports."""
        start = int(match.group("start"))
        end = int(match.group("end")) if match.group("end") else start
        return Diagnostic(
            level="warning",
            message=state.line,
            file=state.current_file,
            line=start,
            code=f"{match.group('kind').lower()}-hbox",
            hint=f"Paragraph spans lines {start}-{end}" if end != start else None,
        )

    def _handle_kpathsea(self, match: re.Match[str], state: _ParseState) -> Diagnostic:
        """Handle any other kpathsea error."""
        return Diagnostic(
            level="error",
            message=state.line,
            file=state.current_file,
            code="kpathsea",
        )

    def _classify(self, state: _ParseState) -> Optional[Diagnostic]:
        for pattern, handler in self.rules:
            match = pattern.search(state.line)
            if not match:
                continue
            try:
                diagnostic = handler(match, state)
            except Exception:
                logger.debug("Rule %s failed on %r", pattern.pattern, state.line, exc_info=True)
                continue
            if diagnostic is not None:
                return diagnostic
        return None

    def analyse(self, log: str) -> list[Diagnostic]:
        """Analyze a LaTeX compilation log and extract diagnostics.

        Args:
            log: The full compilation log text

        Returns:
            Diagnostics in the order they appear in the log
        """
        state = _ParseState(lines=re.split(r"\r?\n", log or ""))
        diagnostics: list[Diagnostic] = []

        for index in range(len(state.lines)):
            state.index = index
            state.track()
            diagnostic = self._classify(state)
            if diagnostic is not None:
                diagnostic.message = _WHITESPACE_RE.sub(" ", diagnostic.message).strip()
                diagnostics.append(diagnostic)

        return diagnostics


# Global analyzer instance
_analyzer = LogAnalyzer()


def analyse_log(log: str) -> list[Diagnostic]:
    """Analyze a LaTeX compilation log and extract diagnostics.

    This is the main entry point for log analysis.

    Args:
        log: The full compilation log text

    Returns:
        A list of Diagnostic objects extracted from the log
    """
    return _analyzer.analyse(log)
