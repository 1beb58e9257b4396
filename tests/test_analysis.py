"""Tests for log analysis functionality."""

from __future__ import annotations

import re

import pytest

from texpilot.analysis import LogAnalyzer, analyse_log, package_name
from texpilot.models import Diagnostic


def test_undefined_control_sequence() -> None:
    """An error followed by its l.<n> marker gets the line and a dedicated code."""
    log = "! Undefined control sequence.\nl.123 \\unknownCommand\n"
    diagnostics = analyse_log(log)
    assert len(diagnostics) == 1
    diag = diagnostics[0]
    assert diag.level == "error"
    assert diag.code == "undefined-control-sequence"
    assert diag.line == 123
    assert diag.message == "Undefined control sequence."
    assert "typos" in (diag.hint or "")


def test_undefined_control_sequence_is_case_insensitive() -> None:
    diagnostics = analyse_log("! undefined control sequence\nl.4 \\x")
    assert diagnostics[0].code == "undefined-control-sequence"


def test_missing_package() -> None:
    """Test detection of missing package file errors."""
    log = """
! LaTeX Error: File `missingpackage.sty' not found.

Type X to quit or <RETURN> to proceed,
or enter new name. (Default extension: sty)
"""
    diagnostics = analyse_log(log)
    assert len(diagnostics) == 1
    diag = diagnostics[0]
    assert diag.level == "error"
    assert diag.code == "missing-package"
    assert "missingpackage.sty" in diag.message
    assert "tlmgr install missingpackage" in (diag.hint or "")


def test_missing_file_without_bang_prefix() -> None:
    diagnostics = analyse_log("LaTeX Error: File `figures/plot.pdf' not found.")
    assert len(diagnostics) == 1
    assert diagnostics[0].code == "missing-file"
    assert diagnostics[0].message == "Missing file: figures/plot.pdf"
    assert "graphicspath" in (diagnostics[0].hint or "")


def test_kpathsea_missing_package() -> None:
    log = "kpathsea: /usr/bin/mktextex: file `tikz-cd.sty' not found"
    diagnostics = analyse_log(log)
    assert len(diagnostics) == 1
    assert diagnostics[0].code == "missing-package"
    assert diagnostics[0].message == "Missing file: tikz-cd.sty"


def test_generic_kpathsea_error() -> None:
    diagnostics = analyse_log("kpathsea: Running mktexpk --mfmode / --bdpi 600 cmr10")
    assert len(diagnostics) == 1
    assert diagnostics[0].level == "error"
    assert diagnostics[0].code == "kpathsea"


def test_rerun_warning() -> None:
    log = "LaTeX Warning: Label(s) may have changed. Rerun to get cross-references right."
    diagnostics = analyse_log(log)
    assert len(diagnostics) == 1
    diag = diagnostics[0]
    assert diag.level == "warning"
    assert diag.code == "rerun"
    assert diag.message == "Label(s) may have changed. Rerun to get cross-references right."


def test_citation_warning() -> None:
    log = "LaTeX Warning: Citation `knuth84' on page 1 undefined on input line 5."
    diagnostics = analyse_log(log)
    assert diagnostics[0].code == "citation-undefined"
    assert "biber" in (diagnostics[0].hint or "")


def test_citation_code_takes_precedence_over_rerun() -> None:
    log = "LaTeX Warning: There were undefined references. Rerun to get cross-references right."
    diagnostics = analyse_log(log)
    assert [d.code for d in diagnostics] == ["citation-undefined"]


def test_package_warning_strips_prefix() -> None:
    log = "Package hyperref Warning: Token not allowed in a PDF string"
    diagnostics = analyse_log(log)
    assert len(diagnostics) == 1
    assert diagnostics[0].level == "warning"
    assert diagnostics[0].message == "Token not allowed in a PDF string"
    assert diagnostics[0].code is None


def test_overfull_hbox_with_range() -> None:
    log = "Overfull \\hbox (10.0pt too wide) in paragraph at lines 10--12"
    diagnostics = analyse_log(log)
    assert len(diagnostics) == 1
    diag = diagnostics[0]
    assert diag.level == "warning"
    assert diag.code == "overfull-hbox"
    assert diag.line == 10
    assert diag.hint == "Paragraph spans lines 10-12"


def test_underfull_hbox_single_line() -> None:
    log = "Underfull \\hbox (badness 10000) in paragraph at lines 7"
    diagnostics = analyse_log(log)
    assert diagnostics[0].code == "underfull-hbox"
    assert diagnostics[0].line == 7
    assert diagnostics[0].hint is None


def test_generic_latex_error() -> None:
    """Test detection of generic LaTeX error lines."""
    log = r"""
! Something went wrong here.
l.10 \textbf{bad}
"""
    diagnostics = analyse_log(log)
    assert len(diagnostics) == 1
    assert diagnostics[0].level == "error"
    assert diagnostics[0].code is None
    assert diagnostics[0].line == 10


def test_file_stack_attribution() -> None:
    log = "\n".join(
        [
            "(./main.tex",
            "(./chapters/intro.tex",
            "! Undefined control sequence.",
            "l.3 \\foo",
            ")",
            "! Missing $ inserted.",
            "l.9 x^2",
        ]
    )
    diagnostics = analyse_log(log)
    assert [(d.file, d.line) for d in diagnostics] == [
        ("./chapters/intro.tex", 3),
        ("./main.tex", 9),
    ]


def test_file_line_pattern_from_neighbour() -> None:
    log = "./main.tex:12: error context\n! Emergency stop."
    diagnostics = analyse_log(log)
    assert len(diagnostics) == 1
    assert diagnostics[0].file == "./main.tex"
    assert diagnostics[0].line == 12


def test_message_whitespace_is_collapsed() -> None:
    diagnostics = analyse_log("!   Too   many   }'s.   ")
    assert diagnostics[0].message == "Too many }'s."


def test_multiple_diagnostics_keep_log_order() -> None:
    log = "\n".join(
        [
            "Overfull \\hbox (1.0pt too wide) in paragraph at lines 3--4",
            "! Undefined control sequence.",
            "l.5 \\foo",
            "LaTeX Warning: Label(s) may have changed. Rerun to get cross-references right.",
        ]
    )
    codes = [d.code for d in analyse_log(log)]
    assert codes == ["overfull-hbox", "undefined-control-sequence", "rerun"]


def test_parsing_is_deterministic() -> None:
    log = "(./a.tex\n! Undefined control sequence.\nl.2 \\x\n)\nLaTeX Warning: Citation `a' undefined."
    assert analyse_log(log) == analyse_log(log)


def test_empty_log() -> None:
    """Test that empty logs return no diagnostics."""
    assert analyse_log("") == []


def test_successful_compilation_log() -> None:
    """A clean run produces no diagnostics at all."""
    log = r"""
This is pdfTeX, Version 3.14159265-2.6-1.40.21 (TeX Live 2020)
entering extended mode
(./test.tex
LaTeX2e <2020-02-02> patch level 5
Document Class: article 2019/12/20 v1.4l Standard LaTeX document class
(./test.aux)
No file test.aux.
)
Output written on test.pdf (1 page, 12345 bytes).
Transcript written on test.log.
"""
    assert analyse_log(log) == []


def test_custom_rule() -> None:
    analyzer = LogAnalyzer()
    analyzer.add_rule(
        re.compile(r"^Missing character: (?P<message>.*)$"),
        lambda match, state: Diagnostic(level="info", message=match.group("message"), code="missing-glyph"),
    )
    diagnostics = analyzer.analyse("Missing character: There is no ä in font cmr10!")
    assert diagnostics == [
        Diagnostic(level="info", message="There is no ä in font cmr10!", code="missing-glyph")
    ]


@pytest.mark.parametrize(
    ("filename", "expected"),
    [("foo.sty", "foo"), ("`bar.sty'", "bar"), ("image.png", None)],
)
def test_package_name(filename: str, expected: str | None) -> None:
    assert package_name(filename) == expected
