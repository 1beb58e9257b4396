"""CLI interface for texpilot."""

from __future__ import annotations

import json
import logging
import sys
import time
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from rich.logging import RichHandler

from texpilot.config import load_settings
from texpilot.core import clean_aux, compile_tex
from texpilot.discovery import detect_tex_distribution, detect_toolchain
from texpilot.exceptions import TexPilotError
from texpilot.lint import lint_files
from texpilot.models import ENGINES, INTERACTIONS, CompileRequest, CompileResult
from texpilot.project import build_dependency_graph, compute_out_of_date, detect_root
from texpilot.security import ensure_inside_workspace
from texpilot.watch import WatchRegistry

app = typer.Typer(
    name="texpilot",
    help="Build LaTeX projects with structured diagnostics, dependency tracking and watch mode",
    no_args_is_help=True,
)

EXIT_BUILD_FAILED = 2

JsonOption = Annotated[bool, typer.Option("--json", help="Output result as JSON")]
OutdirOption = Annotated[
    Optional[Path],
    typer.Option("--outdir", "-o", help="Output directory for generated files"),
]
JobnameOption = Annotated[
    Optional[str],
    typer.Option("--jobname", "-j", help="Base name for generated files"),
]


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Log progress (-vv for debug output)"),
    ] = 0,
) -> None:
    """Compile, inspect and watch LaTeX projects."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG if verbose > 1 else logging.INFO,
            format="%(message)s",
            handlers=[RichHandler(show_path=False, rich_tracebacks=True)],
        )


def _emit_json(payload: Any) -> None:
    """Print a payload as indented JSON."""
    typer.echo(json.dumps(payload, indent=2))


def _fail(message: str, json_output: bool) -> None:
    """Report an internal failure and exit with status 1."""
    if json_output:
        _emit_json({"error": message})
    else:
        typer.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _check_choice(value: str, choices: tuple[str, ...], what: str, json_output: bool) -> str:
    """Normalize a choice option, failing on unknown values."""
    value = value.lower()
    if value not in choices:
        _fail(f"Invalid {what} '{value}'. Must be one of: {', '.join(choices)}.", json_output)
    return value


def _print_diagnostics(result: CompileResult) -> None:
    """Print diagnostics in human-readable format."""
    for diag in result.diagnostics:
        location = ""
        if diag.file or diag.line:
            location = f" {diag.file or '?'}:{diag.line or '?'}"
        code = f" [{diag.code}]" if diag.code else ""
        typer.echo(f"{diag.level.upper()}{code}{location}: {diag.message}", err=True)
        if diag.hint:
            typer.echo(f"  ↳ hint: {diag.hint}", err=True)


def _request(
    root: Path,
    engine: Optional[str],
    outdir: Optional[Path],
    jobname: Optional[str],
    synctex: bool,
    shell_escape: bool,
    interaction: str,
    halt_on_error: bool,
    json_output: bool,
) -> CompileRequest:
    """Build a compile request from command line options."""
    engine_name = _check_choice(engine or load_settings().default_engine, ENGINES, "engine", json_output)
    interaction = _check_choice(interaction, INTERACTIONS, "interaction mode", json_output)
    return CompileRequest(
        root=root,
        engine=engine_name,  # type: ignore[arg-type]
        outdir=outdir,
        synctex=synctex,
        shell_escape=shell_escape,
        interaction=interaction,  # type: ignore[arg-type]
        halt_on_error=halt_on_error,
        jobname=jobname,
    )


@app.command("compile")
def compile_command(
    input_file: Annotated[Path, typer.Argument(help="Path to the root .tex file")],
    outdir: OutdirOption = None,
    engine: Annotated[
        Optional[str],
        typer.Option("--engine", "-e", help="TeX engine (pdflatex, xelatex or lualatex)"),
    ] = None,
    jobname: JobnameOption = None,
    synctex: Annotated[bool, typer.Option("--synctex/--no-synctex")] = True,
    shell_escape: Annotated[bool, typer.Option("--shell-escape", help="Request -shell-escape")] = False,
    interaction: Annotated[str, typer.Option("--interaction")] = "nonstopmode",
    halt_on_error: Annotated[bool, typer.Option("--halt-on-error")] = False,
    json_output: JsonOption = False,
) -> None:
    """Compile a LaTeX document to PDF.

    Examples:
        texpilot compile thesis.tex
        texpilot compile main.tex --outdir=build --engine=xelatex
        texpilot compile main.tex --json
    """
    request = _request(
        input_file, engine, outdir, jobname, synctex, shell_escape, interaction, halt_on_error, json_output
    )
    try:
        result = compile_tex(request)
    except TexPilotError as exc:
        _fail(str(exc), json_output)

    if json_output:
        _emit_json(result.to_dict())
        sys.exit(0 if result.success else EXIT_BUILD_FAILED)

    if result.success:
        typer.echo(f"OK: {result.pdf_path}")
        _print_diagnostics(result)
        sys.exit(0)
    typer.echo(f"Compilation failed with {len(result.errors)} error(s).", err=True)
    _print_diagnostics(result)
    sys.exit(EXIT_BUILD_FAILED)


@app.command("clean")
def clean_command(
    root: Annotated[Path, typer.Argument(help="Path to the root .tex file")],
    deep: Annotated[bool, typer.Option("--deep", help="Also remove the PDF and other outputs")] = False,
    outdir: OutdirOption = None,
    jobname: JobnameOption = None,
    json_output: JsonOption = False,
) -> None:
    """Remove auxiliary build files with latexmk."""
    try:
        result = clean_aux(root, deep=deep, outdir=outdir, jobname=jobname)
    except TexPilotError as exc:
        _fail(str(exc), json_output)

    if json_output:
        _emit_json(result.to_dict())
    elif result.cleaned:
        typer.echo("Cleaned.")
    else:
        typer.echo(f"latexmk exited with {result.return_code}", err=True)
    sys.exit(0 if result.cleaned else EXIT_BUILD_FAILED)


@app.command("graph")
def graph_command(
    root: Annotated[Path, typer.Argument(help="Path to the root .tex file")],
    json_output: JsonOption = False,
) -> None:
    """Show the files a document depends on."""
    try:
        root = ensure_inside_workspace(root, load_settings().workspace_root)
    except TexPilotError as exc:
        _fail(str(exc), json_output)
    graph = build_dependency_graph(root)

    if json_output:
        _emit_json(graph.to_dict())
        return
    for edge in graph.edges:
        typer.echo(f"{edge.source} -[{edge.kind}]-> {edge.target}")
    for path in graph.missing:
        typer.echo(f"missing: {path}", err=True)


@app.command("root")
def root_command(
    start: Annotated[
        Optional[Path],
        typer.Argument(help="File or directory to start from (default: current directory)"),
    ] = None,
    file: Annotated[Optional[Path], typer.Option("--file", help="Explicit root document")] = None,
    json_output: JsonOption = False,
) -> None:
    """Detect the root document of a project."""
    detection = detect_root(file=file, start_path=start)
    if json_output:
        _emit_json(detection.to_dict())
    elif detection.root is not None:
        typer.echo(f"{detection.root} ({detection.method})")
    else:
        typer.echo("No root document found.", err=True)
    sys.exit(0 if detection.root is not None else 1)


@app.command("outdated")
def outdated_command(
    root: Annotated[Path, typer.Argument(help="Path to the root .tex file")],
    outdir: OutdirOption = None,
    jobname: JobnameOption = None,
    pdf: Annotated[Optional[Path], typer.Option("--pdf", help="Explicit PDF path")] = None,
    json_output: JsonOption = False,
) -> None:
    """Check whether the PDF is older than its sources."""
    try:
        root = ensure_inside_workspace(root, load_settings().workspace_root)
    except TexPilotError as exc:
        _fail(str(exc), json_output)
    result = compute_out_of_date(root, outdir=outdir, jobname=jobname, pdf_path=pdf)

    if json_output:
        _emit_json(result.to_dict())
    elif result.up_to_date:
        typer.echo(f"Up to date: {result.pdf_path}")
    else:
        for path in result.newer_sources:
            typer.echo(f"newer: {path}")
        for path in result.missing:
            typer.echo(f"missing: {path}")
    sys.exit(0 if result.up_to_date else EXIT_BUILD_FAILED)


@app.command("lint")
def lint_command(
    files: Annotated[list[Path], typer.Argument(help="Files to check with chktex")],
    config: Annotated[Optional[Path], typer.Option("--config", help="chktexrc file")] = None,
    workers: Annotated[Optional[int], typer.Option("--workers", min=1)] = None,
    json_output: JsonOption = False,
) -> None:
    """Lint documents with chktex."""
    try:
        messages = lint_files(files, config_file=config, max_workers=workers)
    except TexPilotError as exc:
        _fail(str(exc), json_output)

    if json_output:
        _emit_json({"diagnostics": [m.to_dict() for m in messages]})
    else:
        for message in messages:
            typer.echo(f"{message.file}:{message.line}:{message.column}: {message.message}")
    sys.exit(0 if not messages else EXIT_BUILD_FAILED)


@app.command("detect")
def detect_command(json_output: JsonOption = False) -> None:
    """Report which TeX tools are installed and their versions."""
    tools = detect_toolchain()
    distribution = detect_tex_distribution()
    if json_output:
        _emit_json({"distribution": distribution.to_dict(), "tools": [t.to_dict() for t in tools]})
        return
    typer.echo(f"Distribution: {distribution.name}")
    for tool in tools:
        status = tool.path or "not found"
        version = f" ({tool.version})" if tool.version else ""
        typer.echo(f"{tool.name:12} {status}{version}")


@app.command("watch")
def watch_command(
    input_file: Annotated[Path, typer.Argument(help="Path to the root .tex file")],
    outdir: OutdirOption = None,
    engine: Annotated[Optional[str], typer.Option("--engine", "-e")] = None,
    jobname: JobnameOption = None,
    synctex: Annotated[bool, typer.Option("--synctex/--no-synctex")] = True,
    shell_escape: Annotated[bool, typer.Option("--shell-escape")] = False,
    interaction: Annotated[str, typer.Option("--interaction")] = "nonstopmode",
    poll: Annotated[float, typer.Option("--poll", help="Seconds between output polls")] = 0.5,
) -> None:
    """Rebuild on every change (latexmk -pvc) and stream its output until Ctrl-C."""
    request = _request(
        input_file, engine, outdir, jobname, synctex, shell_escape, interaction, False, False
    )
    registry = WatchRegistry(capacity=load_settings().watch_buffer_lines)
    try:
        info = registry.start(request)
    except TexPilotError as exc:
        _fail(str(exc), False)

    typer.echo(f"Watching {info.root} (session {info.id}); press Ctrl-C to stop.", err=True)
    offset = 0
    try:
        while True:
            lines, offset = registry.follow(info.id, offset)
            for line in lines:
                typer.echo(line)
            if not registry.get(info.id).running:
                lines, offset = registry.follow(info.id, offset)
                for line in lines:
                    typer.echo(line)
                typer.echo("latexmk exited.", err=True)
                break
            time.sleep(poll)
    except KeyboardInterrupt:
        typer.echo("Stopping.", err=True)
    finally:
        registry.stop_all()


if __name__ == "__main__":
    app()
