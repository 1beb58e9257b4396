"""Core compilation logic for texpilot.

A compile runs through one of two strategies, chosen once per request:
latexmk when it is installed, otherwise the engine is driven directly
(engine, bibliography tool if needed, engine again).
"""

from __future__ import annotations

import dataclasses
import logging
import re
from pathlib import Path
from typing import Optional, Protocol

from texpilot.analysis import analyse_log
from texpilot.config import Settings, load_settings
from texpilot.discovery import Resolver, which
from texpilot.exceptions import ToolNotFoundError
from texpilot.models import CleanResult, CompileRequest, CompileResult, Diagnostic, RunResult
from texpilot.process import Runner, run_command
from texpilot.security import ensure_inside_workspace

logger = logging.getLogger(__name__)

_MISSING_PERL_RES = (
    re.compile(r"script engine 'perl'.*required", re.IGNORECASE),
    re.compile(r"perl\b.*not found", re.IGNORECASE),
)
_CITATION_AUX_RE = re.compile(r"\\citation|\\bibdata")

HINT_MISSING_PERL = (
    "Install Perl (e.g. Strawberry Perl on Windows) and make sure perl is on PATH; "
    "see https://miktex.org/kb/fix-script-engine-not-found"
)


def expected_pdf_path(
    root: Path,
    outdir: Optional[Path] = None,
    jobname: Optional[str] = None,
) -> Path:
    """Compute where a compile of ``root`` writes its PDF.

    The file is not required to exist.
    """
    root = Path(root).resolve()
    directory = Path(outdir).resolve() if outdir else root.parent
    return directory / f"{jobname or root.stem}.pdf"


def detect_missing_perl(log: str) -> bool:
    """Return True if the log says latexmk could not find its Perl interpreter."""
    return any(pattern.search(log) for pattern in _MISSING_PERL_RES)


def latexmk_args(request: CompileRequest, *, watch: bool = False) -> list[str]:
    """Build latexmk arguments for a request.

    Args:
        request: Compile request (paths already resolved)
        watch: Use ``-pvc`` to keep latexmk running and rebuilding on changes

    Returns:
        Argument list, target document last
    """
    args: list[str] = []
    if request.outdir:
        args.append(f"-outdir={request.outdir}")
    if request.synctex:
        args.append("-synctex=1")
    if request.shell_escape:
        args.append("-shell-escape")
    if request.halt_on_error:
        args.append("-halt-on-error")
    if request.jobname:
        args.append(f"-jobname={request.jobname}")
    args.append("-pdf")
    args.append(f"-interaction={request.interaction}")
    if watch:
        args.append("-pvc")
    args.extend(["-e", f"$pdflatex='{request.engine} %O %S'"])
    args.append(str(request.root))
    return args


def engine_args(request: CompileRequest) -> list[str]:
    """Build arguments for one direct engine pass."""
    args: list[str] = []
    if request.synctex:
        args.append("-synctex=1")
    args.append(f"-interaction={request.interaction}")
    if request.shell_escape:
        args.append("-shell-escape")
    if request.halt_on_error:
        args.append("-halt-on-error")
    if request.jobname:
        args.append(f"-jobname={request.jobname}")
    if request.outdir:
        args.append(f"-output-directory={request.outdir}")
    args.append(str(request.root))
    return args


def _failure(request: CompileRequest, code: str, message: str, **kwargs) -> CompileResult:
    """Result for a compile that never ran, with a single error diagnostic."""
    return CompileResult(
        success=False,
        pdf_path=expected_pdf_path(request.root, request.outdir, request.jobname),
        diagnostics=[Diagnostic(level="error", code=code, message=message)],
        **kwargs,
    )


def _finish(
    request: CompileRequest,
    *,
    log: str,
    last: RunResult,
    strategy: str,
    extra: Optional[list[Diagnostic]] = None,
) -> CompileResult:
    """Parse the combined log and assemble the result of a finished run."""
    diagnostics = analyse_log(log)
    diagnostics.extend(extra or [])
    if last.timed_out:
        diagnostics.append(
            Diagnostic(
                level="error",
                code="timeout",
                message=f"{Path(last.command).name} was killed after exceeding its time limit",
            )
        )
    result = CompileResult(
        success=False,
        pdf_path=expected_pdf_path(request.root, request.outdir, request.jobname),
        log=log,
        diagnostics=diagnostics,
        command=last.command,
        args=list(last.args),
        return_code=last.return_code,
        strategy=strategy,
        timed_out=last.timed_out,
    )
    result.success = last.return_code == 0 and not result.errors
    return result


class CompileStrategy(Protocol):
    """A way of turning a compile request into a compile result."""

    name: str

    def run(self, request: CompileRequest) -> CompileResult: ...


class LatexmkStrategy:
    """Single latexmk invocation; latexmk sequences engine and bibliography passes."""

    name = "latexmk"

    def __init__(self, executable: str, runner: Runner = run_command, timeout: float = 120.0) -> None:
        self.executable = executable
        self.runner = runner
        self.timeout = timeout

    def run(self, request: CompileRequest) -> CompileResult:
        try:
            result = self.runner(
                self.executable,
                latexmk_args(request),
                cwd=request.root.parent,
                timeout=self.timeout,
            )
        except ToolNotFoundError as exc:
            return _failure(request, "engine-not-found", str(exc), strategy=self.name)

        log = f"{result.stdout}\n{result.stderr}"
        extra: list[Diagnostic] = []
        if detect_missing_perl(log):
            extra.append(
                Diagnostic(
                    level="error",
                    code="missing-perl",
                    message="The script engine 'perl' required by latexmk could not be found.",
                    hint=HINT_MISSING_PERL,
                )
            )
        return _finish(request, log=log, last=result, strategy=self.name, extra=extra)


class EngineFallbackStrategy:
    """Drive the TeX engine directly: engine, bibliography tool if needed, engine."""

    name = "engine"

    def __init__(
        self,
        resolver: Resolver = which,
        runner: Runner = run_command,
        timeout: float = 90.0,
    ) -> None:
        self.resolver = resolver
        self.runner = runner
        self.timeout = timeout

    def _engine_pass(self, request: CompileRequest) -> RunResult:
        executable = self.resolver(request.engine) or request.engine
        return self.runner(
            executable,
            engine_args(request),
            cwd=request.root.parent,
            timeout=self.timeout,
        )

    def _bibliography_pass(self, request: CompileRequest) -> Optional[RunResult]:
        """Run biber or bibtex when the first pass left work for them."""
        directory = request.outdir or request.root.parent
        base = request.jobname or request.root.stem

        tool: Optional[str] = None
        if (directory / f"{base}.bcf").is_file():
            tool = "biber"
        else:
            aux = directory / f"{base}.aux"
            try:
                if aux.is_file() and _CITATION_AUX_RE.search(
                    aux.read_text(encoding="utf-8", errors="replace")
                ):
                    tool = "bibtex"
            except OSError as exc:
                logger.warning("Could not read %s: %s", aux, exc)
        if tool is None:
            return None

        executable = self.resolver(tool) or tool
        logger.info("Running %s for %s", tool, base)
        try:
            return self.runner(executable, [base], cwd=directory, timeout=self.timeout)
        except ToolNotFoundError:
            logger.warning("%s is needed for the bibliography but was not found", tool)
            return None

    def run(self, request: CompileRequest) -> CompileResult:
        try:
            first = self._engine_pass(request)
        except ToolNotFoundError as exc:
            return _failure(request, "engine-not-found", str(exc), strategy=self.name)

        outputs = [first.output]
        last = first
        if not first.timed_out:
            bibliography = self._bibliography_pass(request)
            if bibliography is not None:
                outputs.append(bibliography.output)
            if bibliography is None or not bibliography.timed_out:
                last = self._engine_pass(request)
                outputs.append(last.output)
            else:
                last = bibliography

        return _finish(request, log="\n".join(outputs), last=last, strategy=self.name)


def select_strategy(
    settings: Settings,
    resolver: Resolver = which,
    runner: Runner = run_command,
) -> CompileStrategy:
    """Pick latexmk when it is installed, the direct engine strategy otherwise."""
    latexmk = resolver("latexmk")
    if latexmk:
        logger.info("Using latexmk at %s", latexmk)
        return LatexmkStrategy(latexmk, runner=runner, timeout=settings.compile_timeout)
    logger.info("latexmk not found; driving the engine directly")
    return EngineFallbackStrategy(resolver=resolver, runner=runner, timeout=settings.pass_timeout)


def prepare_request(
    request: CompileRequest,
    settings: Settings,
) -> tuple[CompileRequest, list[Diagnostic]]:
    """Resolve paths against the workspace and apply the shell-escape policy.

    Returns:
        The request to run and any policy diagnostics to report with it

    Raises:
        WorkspaceViolationError: If the root or output directory escapes the workspace
    """
    root = ensure_inside_workspace(request.root, settings.workspace_root)
    outdir = (
        ensure_inside_workspace(request.outdir, settings.workspace_root)
        if request.outdir
        else None
    )
    notes: list[Diagnostic] = []
    shell_escape = request.shell_escape
    if shell_escape and not settings.allow_shell_escape:
        logger.warning("Shell escape requested for %s but disabled by policy", root)
        shell_escape = False
        notes.append(
            Diagnostic(
                level="warning",
                code="shell-escape-disabled",
                message="Shell escape was requested but is disabled by policy; compiled without it.",
                hint="Set TEXPILOT_ALLOW_SHELL_ESCAPE=1 to allow -shell-escape.",
            )
        )
    prepared = dataclasses.replace(request, root=root, outdir=outdir, shell_escape=shell_escape)
    return prepared, notes


def compile_tex(
    request: CompileRequest,
    *,
    settings: Optional[Settings] = None,
    resolver: Resolver = which,
    runner: Runner = run_command,
) -> CompileResult:
    """Compile a LaTeX document to PDF.

    Tool failures (missing engine, LaTeX errors, timeouts) never raise; they
    come back as ``success=False`` with diagnostics.

    Args:
        request: What to compile and how
        settings: Policy and timeouts (loaded from the environment when None)
        resolver: Maps tool names to executable paths
        runner: Executes external commands

    Returns:
        CompileResult with success status, PDF path, log, and diagnostics

    Raises:
        WorkspaceViolationError: If a path escapes the configured workspace
    """
    settings = settings or load_settings()
    request, notes = prepare_request(request, settings)

    if not request.root.exists():
        return _failure(request, "file-not-found", f"Input file not found: {request.root}")
    if not request.root.is_file():
        return _failure(request, "invalid-input", f"Input path is not a file: {request.root}")

    if request.outdir:
        request.outdir.mkdir(parents=True, exist_ok=True)

    strategy = select_strategy(settings, resolver=resolver, runner=runner)
    result = strategy.run(request)
    result.diagnostics.extend(notes)
    logger.info(
        "Compiled %s via %s: success=%s, %d diagnostics",
        request.root,
        strategy.name,
        result.success,
        len(result.diagnostics),
    )
    return result


def clean_aux(
    root: Path,
    *,
    deep: bool = False,
    outdir: Optional[Path] = None,
    jobname: Optional[str] = None,
    settings: Optional[Settings] = None,
    resolver: Resolver = which,
    runner: Runner = run_command,
) -> CleanResult:
    """Remove auxiliary files (``latexmk -c``) or all generated files (``-C``).

    Raises:
        WorkspaceViolationError: If a path escapes the configured workspace
        ToolNotFoundError: If latexmk is not installed
    """
    settings = settings or load_settings()
    root = ensure_inside_workspace(root, settings.workspace_root)
    args: list[str] = []
    if outdir:
        args.append(f"-outdir={ensure_inside_workspace(outdir, settings.workspace_root)}")
    if jobname:
        args.append(f"-jobname={jobname}")
    args.append("-C" if deep else "-c")
    args.append(str(root))

    executable = resolver("latexmk") or "latexmk"
    result = runner(executable, args, cwd=root.parent, timeout=settings.clean_timeout)
    return CleanResult(
        cleaned=result.return_code == 0,
        command=result.command,
        args=list(result.args),
        return_code=result.return_code,
    )
