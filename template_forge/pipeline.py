"""Template Forge Pipeline Orchestrator.

Implements the four-stage materialization pipeline:

Stage RESOLVE  -- classify the template identifier into a source.
Stage FETCH    -- retrieve the template into a scratch working directory.
Stage VALIDATE -- structural checks; an unusable template stops here.
Stage RENDER   -- substitute context values and write the project.

Each stage is timed, reports progress at start and completion, and on
failure is wrapped into a :class:`StageFailure` naming the stage and the
elapsed time.  Later stages never run once one fails, and
:meth:`TemplatePipeline.execute` never raises.

Usage::

    pipeline = create_default_pipeline()
    result = await pipeline.execute(
        "my-org/my-template#v2",
        PipelineOptions(output_dir=Path("./widget"), context=TemplateContext(project_name="widget")),
    )
"""

from __future__ import annotations

import asyncio
import shutil
import tempfile
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from rich.panel import Panel
from rich.progress import Progress, TaskID

from template_forge.config import Config, PipelineConfig
from template_forge.integrations.git import GitIntegrator
from template_forge.integrations.workspace import WorkspaceIntegrator
from template_forge.models import (
    FetchResult,
    FileOperation,
    GitResult,
    PipelineResult,
    ResolvedTemplate,
    StageFailure,
    StageName,
    TemplateContext,
    TemplateSource,
    ValidationReport,
    WorkspaceResult,
)
from template_forge.templates.cache import CacheStore
from template_forge.templates.fetcher import Downloader, TemplateFetcher
from template_forge.templates.metadata import fallback_metadata
from template_forge.templates.renderer import TemplateRenderer, check_context
from template_forge.templates.resolver import SourceResolver, describe_source
from template_forge.templates.validator import TemplateValidator
from template_forge.utils import (
    console,
    create_progress,
    ensure_dir,
    format_duration,
    print_error,
    print_success,
    print_summary_table,
    print_warning,
)

ProgressCallback = Callable[[StageName, int, str], None]

# (start %, end %) reported for each stage.
STAGE_PROGRESS: dict[StageName, tuple[int, int]] = {
    StageName.RESOLVE: (0, 10),
    StageName.FETCH: (10, 40),
    StageName.VALIDATE: (40, 50),
    StageName.RENDER: (70, 100),
}

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class PipelineError(Exception):
    """Raised inside a stage when it fails irrecoverably."""

    def __init__(self, stage: StageName, message: str, location: str | None = None) -> None:
        self.stage = stage
        self.message = message
        self.location = location
        self.elapsed_ms = 0.0
        super().__init__(f"{stage.value}: {message}")


# ---------------------------------------------------------------------------
# Dependencies & options
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PipelineDependencies:
    """The four stage functions the pipeline drives."""

    resolve: Callable[..., TemplateSource]
    fetch: Callable[[TemplateSource, Path], Awaitable[FetchResult]]
    validate: Callable[[Path], Awaitable[ValidationReport]]
    render: Callable[..., Awaitable[list[FileOperation]]]


@dataclass
class PipelineOptions:
    """Per-invocation inputs.

    ``dry_run`` overrides the configured value when set.  The template is
    fetched into ``work_dir/template``, which is emptied first and kept
    afterwards.  Without ``work_dir`` a temporary directory is used and
    removed when :meth:`TemplatePipeline.execute` returns.
    """

    output_dir: Path
    context: TemplateContext
    on_progress: ProgressCallback | None = None
    ref: str | None = None
    subdir: str | None = None
    work_dir: Path | None = None
    dry_run: bool | None = None


def build_default_dependencies(
    config: Config | None = None,
    cache: CacheStore | None = None,
    downloader: Downloader | None = None,
) -> PipelineDependencies:
    """Construct the resolver, fetcher, validator and renderer once."""
    config = config or Config()
    resolver = SourceResolver()
    fetcher = TemplateFetcher(config, cache=cache, downloader=downloader)
    validator = TemplateValidator(config)
    renderer = TemplateRenderer(config)
    return PipelineDependencies(
        resolve=resolver.resolve,
        fetch=fetcher.fetch,
        validate=validator.validate,
        render=renderer.render,
    )


def create_default_pipeline(config: Config | None = None) -> "TemplatePipeline":
    config = config or Config()
    return TemplatePipeline(build_default_dependencies(config), config.pipeline)


# ---------------------------------------------------------------------------
# Pipeline Orchestrator
# ---------------------------------------------------------------------------


class TemplatePipeline:
    """Drives Resolve -> Fetch -> Validate -> Render for one template.

    Attributes:
        dependencies: Injected stage functions.
        config: Dry-run, verbosity and ignore settings.
    """

    def __init__(
        self,
        dependencies: PipelineDependencies,
        config: PipelineConfig | None = None,
    ) -> None:
        self.dependencies = dependencies
        self.config = config or PipelineConfig()

    async def execute(self, template: str, options: PipelineOptions) -> PipelineResult:
        """Materialize *template* into ``options.output_dir``.

        Returns:
            A :class:`PipelineResult`; on failure ``success`` is ``False`` and
            ``error`` names the failing stage.
        """
        pipeline_start = time.perf_counter()
        result = PipelineResult()
        dry_run = self.config.dry_run if options.dry_run is None else options.dry_run
        scratch: list[Path] = []

        try:
            source: TemplateSource = await self._run_stage(
                StageName.RESOLVE, options, result, self._resolve, template, options
            )
            fetched: FetchResult = await self._run_stage(
                StageName.FETCH, options, result, self._fetch, source, options, result, scratch
            )
            resolved: ResolvedTemplate = await self._run_stage(
                StageName.VALIDATE, options, result, self._validate, source, fetched, options, result
            )
            result.template = resolved

            if dry_run:
                if self.config.verbose:
                    console.print("[dim]Dry run: render skipped[/dim]")
            else:
                result.operations = await self._run_stage(
                    StageName.RENDER, options, result, self._render, resolved, options, result
                )
                result.stats.files_processed = len(result.operations)

        except PipelineError as exc:
            result.success = False
            result.error = StageFailure(
                stage=exc.stage,
                message=exc.message,
                elapsed_ms=exc.elapsed_ms,
                location=exc.location,
            )
            if self.config.verbose:
                print_error(f"Pipeline {result.error.describe()}")

        finally:
            for path in scratch:
                await asyncio.to_thread(shutil.rmtree, path, True)
            result.stats.total_time_ms = (time.perf_counter() - pipeline_start) * 1000

        if result.success and self.config.verbose and not dry_run:
            print_success(
                f"Wrote {result.stats.files_processed} files to {options.output_dir} "
                f"in {format_duration(result.stats.total_time_ms / 1000)}"
            )
        return result

    # ------------------------------------------------------------------
    # Stage wrapper
    # ------------------------------------------------------------------

    async def _run_stage(
        self,
        stage: StageName,
        options: PipelineOptions,
        result: PipelineResult,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> Any:
        start_pct, end_pct = STAGE_PROGRESS[stage]
        self._report(options, stage, start_pct, f"{stage.value.capitalize()} started")

        started = time.perf_counter()
        try:
            value = await func(*args)
        except PipelineError as exc:
            exc.elapsed_ms = (time.perf_counter() - started) * 1000
            raise
        except Exception as exc:
            failure = PipelineError(stage, str(exc) or exc.__class__.__name__)
            failure.elapsed_ms = (time.perf_counter() - started) * 1000
            raise failure from exc
        finally:
            result.stats.stage_timings[stage.value] = (time.perf_counter() - started) * 1000

        self._report(options, stage, end_pct, f"{stage.value.capitalize()} completed")
        return value

    def _report(self, options: PipelineOptions, stage: StageName, percent: int, message: str) -> None:
        if options.on_progress is None:
            return
        try:
            options.on_progress(stage, percent, message)
        except Exception as exc:
            # A broken progress display must not abort materialization.
            if self.config.verbose:
                print_warning(f"Progress callback failed: {exc}")

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _resolve(self, template: str, options: PipelineOptions) -> TemplateSource:
        source = self.dependencies.resolve(template, options.ref, options.subdir)
        if self.config.verbose:
            console.print(f"[cyan]Resolved[/cyan] {template!r} -> {source.type.value} {describe_source(source)}")
        return source

    async def _fetch(
        self,
        source: TemplateSource,
        options: PipelineOptions,
        result: PipelineResult,
        scratch: list[Path],
    ) -> FetchResult:
        if options.work_dir is None:
            work_dir = Path(await asyncio.to_thread(tempfile.mkdtemp, prefix="template-forge-"))
            scratch.append(work_dir)
        else:
            work_dir = options.work_dir
            await asyncio.to_thread(ensure_dir, work_dir)
            stale = work_dir / "template"
            if stale.exists():
                await asyncio.to_thread(shutil.rmtree, stale)

        fetched = await self.dependencies.fetch(source, work_dir / "template")
        result.warnings.extend(fetched.warnings)
        if not fetched.success or fetched.path is None:
            raise PipelineError(
                StageName.FETCH,
                fetched.error or "Template fetch failed",
                location=fetched.location or source.location,
            )
        result.stats.cache_hit = fetched.cache_hit
        return fetched

    async def _validate(
        self,
        source: TemplateSource,
        fetched: FetchResult,
        options: PipelineOptions,
        result: PipelineResult,
    ) -> ResolvedTemplate:
        if fetched.path is None:
            raise PipelineError(
                StageName.VALIDATE, "Fetched template has no directory", location=source.location
            )
        report = await self.dependencies.validate(fetched.path)
        result.warnings.extend(report.warnings)
        if not report.valid:
            raise PipelineError(
                StageName.VALIDATE,
                "; ".join(report.errors) or "Template failed validation",
                location=source.location,
            )

        resolved = ResolvedTemplate(
            metadata=fetched.metadata or fallback_metadata(),
            source=source,
            path=fetched.path,
            context=options.context,
        )
        for name in check_context(options.context, resolved.metadata):
            result.warnings.append(f"Required template variable '{name}' was not provided")
        return resolved

    async def _render(
        self, resolved: ResolvedTemplate, options: PipelineOptions, result: PipelineResult
    ) -> list[FileOperation]:
        return await self.dependencies.render(
            resolved.path, options.output_dir, resolved.context, result.warnings
        )


# ---------------------------------------------------------------------------
# Progress display
# ---------------------------------------------------------------------------


def rich_progress_callback(progress: Progress) -> ProgressCallback:
    """Adapt a Rich ``Progress`` to the stage progress contract."""
    task_id: TaskID = progress.add_task("Materializing template", total=100)

    def _on_progress(stage: StageName, percent: int, message: str) -> None:
        progress.update(task_id, completed=percent, description=f"[{stage.value}] {message}")

    return _on_progress


# ---------------------------------------------------------------------------
# End-to-end helper
# ---------------------------------------------------------------------------


@dataclass
class MaterializeReport:
    """Pipeline outcome plus whatever the integrators did afterwards."""

    pipeline: PipelineResult
    git: GitResult | None = None
    workspace: WorkspaceResult | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.pipeline.success


async def materialize(
    template: str,
    options: PipelineOptions,
    config: Config | None = None,
    *,
    pipeline: TemplatePipeline | None = None,
    git: bool = True,
    workspace: bool = True,
    skip_install: bool = False,
    show_progress: bool = False,
) -> MaterializeReport:
    """Run the pipeline, then the git and workspace integrators.

    Integrators are skipped when the pipeline fails or runs dry.  Their
    failures never change :attr:`MaterializeReport.success`.  With
    *show_progress* and no ``on_progress`` of its own, the pipeline drives a
    Rich progress bar.
    """
    config = config or Config()
    pipeline = pipeline or create_default_pipeline(config)
    if show_progress and options.on_progress is None:
        with create_progress() as progress:
            result = await pipeline.execute(
                template, replace(options, on_progress=rich_progress_callback(progress))
            )
    else:
        result = await pipeline.execute(template, options)
    report = MaterializeReport(pipeline=result, warnings=list(result.warnings))

    dry_run = config.pipeline.dry_run if options.dry_run is None else options.dry_run
    if not result.success or dry_run:
        return report

    if git:
        report.git = await GitIntegrator(config.git).integrate(
            options.output_dir, options.context, verbose=config.pipeline.verbose
        )
        report.warnings.extend(report.git.warnings)
    if workspace:
        report.workspace = await WorkspaceIntegrator(config.workspace).integrate(
            options.output_dir,
            options.context,
            skip_install=skip_install,
            verbose=config.pipeline.verbose,
        )
        report.warnings.extend(report.workspace.warnings)
    return report


def print_report(report: MaterializeReport) -> None:
    """Print a Rich panel summarising a materialization."""
    result = report.pipeline
    lines: list[str] = []

    if result.success:
        name = result.template.metadata.name if result.template else "template"
        lines.append(f"[bold green]Created project from {name}[/bold green]")
        lines.append(f"Files written : {result.stats.files_processed}")
        lines.append(f"Cache hit     : {'yes' if result.stats.cache_hit else 'no'}")
    elif result.error is not None:
        lines.append(f"[bold red]Materialization {result.error.describe()}[/bold red]")
        if result.error.location:
            lines.append(f"Location      : {result.error.location}")
    else:
        lines.append("[bold red]Materialization failed[/bold red]")

    lines.append(f"Total time    : {format_duration(result.stats.total_time_ms / 1000)}")

    if report.git is not None:
        lines.append(
            f"Git           : initialized={report.git.initialized} "
            f"committed={report.git.committed}"
        )
        lines.extend(f"  [red]error[/red] {e}" for e in report.git.errors)
    if report.workspace is not None:
        lines.append(
            f"Workspace     : manifest={report.workspace.manifest_updated} "
            f"installed={report.workspace.dependencies_installed}"
        )
        lines.extend(f"  [red]error[/red] {e}" for e in report.workspace.errors)

    if report.warnings:
        lines.append("")
        lines.append("[bold yellow]Warnings[/bold yellow]")
        lines.extend(f"  - {w}" for w in report.warnings)

    border = "green" if result.success else "red"
    console.print()
    console.print(
        Panel("\n".join(lines), title="[bold]Template Forge[/bold]", border_style=border)
    )
    if result.stats.stage_timings:
        print_summary_table(
            {
                stage: format_duration(elapsed_ms / 1000)
                for stage, elapsed_ms in result.stats.stage_timings.items()
            },
            title="Stage timings",
            columns=("Stage", "Time"),
        )
