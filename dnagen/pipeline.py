"""dnagen generation pipeline orchestrator.

Implements the 8-stage project generation pipeline:

Stage 1: CLI-VALIDATION            -- Check the request and the output location.
Stage 2: DNA-COMPOSITION           -- Resolve modules, conflicts and dependencies.
Stage 3: PRE-GENERATION-VALIDATION -- Check templates and disk space.
Stage 4: TEMPLATE-PREPARATION      -- Open the rollback transaction.
Stage 5: TEMPLATE-GENERATION       -- Render and write every project file.
Stage 6: QUALITY-VALIDATION        -- Check the generated project structure.
Stage 7: SECURITY-SCANNING         -- Look for hardcoded credentials.
Stage 8: FINALIZATION              -- Write ``dna-generation-report.json``.

Stages 1-5 are critical: if one of them fails (or the run times out or is
aborted) every file written so far is rolled back.  Stages 6-8 only produce
warnings when they fail.

Usage::

    dnagen my-app --framework nextjs -m auth-supabase -m payment-stripe
    python -m dnagen.pipeline my-app --output ./my-app --interactive
"""

from __future__ import annotations

import asyncio
import functools
import sys
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from rich.console import Console
from rich.panel import Panel

from dnagen.config import Config
from dnagen.errors import (
    CompositionError,
    DnaError,
    PipelineAbortedError,
    PipelineTimeoutError,
    RegistryError,
    RequestValidationError,
    RollbackError,
    RollbackFailedError,
    StageError,
)
from dnagen.models import (
    EventType,
    GenerationRequest,
    GenerationResult,
    PipelineEvent,
    PipelineMetrics,
    RollbackMetrics,
    StageMetrics,
    StageStatus,
)
from dnagen.registry import (
    Composition,
    CompositionEngine,
    CompositionResult,
    ConflictResolver,
    ModuleRegistry,
    ModuleRequest,
    PromptChooser,
    SupportedFramework,
)
from dnagen.rollback import RollbackManager, RollbackReport
from dnagen.scaffolder import InstantiationResult, TemplateConfig, TemplateInstantiationEngine
from dnagen.utils import (
    console,
    create_progress,
    dump_json,
    format_duration,
    print_error,
    print_stage_header,
    print_success,
    print_summary_table,
    print_warning,
)
from dnagen.validation import (
    scan_for_secrets,
    validate_pre_generation,
    validate_project_structure,
    validate_request,
)

EventHandler = Callable[[PipelineEvent], None]


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class CancellationToken:
    """Cooperative abort flag checked at every stage boundary."""

    def __init__(self) -> None:
        self._cancelled = False
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "Generation aborted") -> None:
        self._cancelled = True
        self.reason = reason

    def raise_if_cancelled(self, stage: str) -> None:
        if self._cancelled:
            raise PipelineAbortedError(stage)


# ---------------------------------------------------------------------------
# Stages and sessions
# ---------------------------------------------------------------------------


@dataclass
class PipelineStage:
    """One step of the pipeline."""

    name: str
    weight: int
    critical: bool
    run: Callable[["PipelineSession"], Awaitable[None]]
    rollback: Optional[Callable[["PipelineSession"], Awaitable[Optional[RollbackReport]]]] = None


@dataclass
class PipelineSession:
    """Mutable state of a single :meth:`GenerationPipeline.generate` run."""

    request: GenerationRequest
    token: CancellationToken
    on_event: Optional[EventHandler] = None
    id: str = field(default_factory=lambda: f"gen_{uuid.uuid4().hex[:12]}")
    started_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    output_existed: bool = False
    transaction_id: Optional[str] = None
    composition: Optional[CompositionResult] = None
    template_config: Optional[TemplateConfig] = None
    instantiation: Optional[InstantiationResult] = None
    report_file: Optional[str] = None
    started_stages: list[PipelineStage] = field(default_factory=list)
    completed_weight: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    metrics: PipelineMetrics = field(default_factory=PipelineMetrics)


# ---------------------------------------------------------------------------
# Pipeline Orchestrator
# ---------------------------------------------------------------------------


class GenerationPipeline:
    """Drives a :class:`GenerationRequest` through the eight generation stages.

    Attributes:
        registry: Module catalogue shared by every run.
        rollback: Transaction manager every file write goes through.
        config: Thresholds, retry policy and timeout.
        engine: Renders templates into the project directory.
        composer: Resolves the requested modules into a composition.
    """

    def __init__(
        self,
        registry: ModuleRegistry,
        rollback_manager: RollbackManager,
        config: Config | None = None,
        engine: TemplateInstantiationEngine | None = None,
        composer: CompositionEngine | None = None,
        out: Console | None = None,
    ) -> None:
        self.registry = registry
        self.rollback = rollback_manager
        self.config = config or Config()
        self.console = out or console
        self.engine = engine or TemplateInstantiationEngine(
            rollback_manager, console=self.console, verbose=self.config.verbose
        )
        if composer is None:
            chooser = PromptChooser(self.console) if self.config.pipeline.interactive else None
            composer = CompositionEngine(
                registry,
                self.config.thresholds,
                ConflictResolver(registry, chooser=chooser),
                allow_experimental=self.config.pipeline.allow_experimental,
                console=self.console,
                verbose=self.config.verbose,
            )
        self.composer = composer
        self.stages: list[PipelineStage] = [
            PipelineStage("cli-validation", 5, True, self._stage_cli_validation),
            PipelineStage("dna-composition", 15, True, self._stage_composition),
            PipelineStage("pre-generation-validation", 10, True, self._stage_pre_generation),
            PipelineStage("template-preparation", 10, True, self._stage_preparation, self._rollback_transaction),
            PipelineStage("template-generation", 30, True, self._stage_generation, self._rollback_transaction),
            PipelineStage("quality-validation", 20, False, self._stage_quality),
            PipelineStage("security-scanning", 5, False, self._stage_security),
            PipelineStage("finalization", 5, False, self._stage_finalization),
        ]
        self._active: dict[str, PipelineSession] = {}

    @property
    def total_weight(self) -> int:
        return sum(stage.weight for stage in self.stages)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(
        self,
        request: GenerationRequest,
        on_event: Optional[EventHandler] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> GenerationResult:
        """Run every stage for *request* and return the outcome.

        Never raises for stage failures, timeouts or aborts: those are
        reported through ``success=False``, ``errors`` and ``rollback_status``.
        """
        session = PipelineSession(
            request=request,
            token=cancel_token or CancellationToken(),
            on_event=on_event,
        )
        self._active[session.id] = session
        pipeline_start = time.monotonic()

        self.console.print(
            Panel(
                f"[bold bright_cyan]dnagen[/bold bright_cyan]\n"
                f"Project   : {request.name}\n"
                f"Framework : {request.framework.value}\n"
                f"Modules   : {', '.join(request.modules) or 'none'}\n"
                f"Output    : {request.output_path}",
                title="[bold]Generation Start[/bold]",
                border_style="bright_cyan",
            )
        )
        self._emit(session, EventType.PIPELINE_STARTED, message=f"Generating {request.name}")

        failure: Optional[DnaError] = None
        try:
            await asyncio.wait_for(self._run_stages(session), timeout=self.config.pipeline.timeout_seconds)
        except asyncio.TimeoutError:
            failure = PipelineTimeoutError(self.config.pipeline.timeout_seconds)
        except DnaError as exc:
            failure = exc
        finally:
            self._active.pop(session.id, None)

        result = GenerationResult(
            output_path=request.output_path,
            metrics=session.metrics,
        )

        if failure is None:
            try:
                if session.transaction_id is not None:
                    await self.rollback.commit_transaction(session.transaction_id)
            except RollbackError as exc:
                session.warnings.append(f"Commit failed: {exc.message}")
            result.success = True
            if session.instantiation is not None:
                result.generated_files = list(session.instantiation.generated_files)
                session.metrics.lines_of_code = session.instantiation.metrics.lines_of_code
            if session.report_file:
                result.generated_files.append(session.report_file)
            session.metrics.files_generated = len(result.generated_files)
        else:
            session.errors.append(failure.message)
            print_error(f"Generation failed: {failure.message}", self.console)
            result.rollback_status = await self._rollback(session)

        session.metrics.total_duration_ms = round((time.monotonic() - pipeline_start) * 1000, 3)
        result.errors = list(session.errors)
        result.warnings = list(session.warnings)

        if result.success:
            self._emit(session, EventType.PIPELINE_COMPLETED, message="Generation completed", progress=100.0)
        elif isinstance(failure, PipelineAbortedError):
            self._emit(session, EventType.PIPELINE_ABORTED, message=failure.message)
        else:
            self._emit(session, EventType.PIPELINE_FAILED, message=failure.message if failure else "")

        self._print_final_summary(session, result)
        return result

    def abort(self) -> int:
        """Request cancellation of every in-flight run.

        Returns:
            The number of runs that were signalled.
        """
        sessions = list(self._active.values())
        for session in sessions:
            session.token.cancel("Generation aborted by request")
        return len(sessions)

    # ------------------------------------------------------------------
    # Stage execution
    # ------------------------------------------------------------------

    async def _run_stages(self, session: PipelineSession) -> None:
        for index, stage in enumerate(self.stages, start=1):
            session.token.raise_if_cancelled(stage.name)
            session.started_stages.append(stage)
            metrics = StageMetrics(name=stage.name, status=StageStatus.RUNNING)
            session.metrics.stages[stage.name] = metrics

            print_stage_header(index, stage.name, self.console)
            self._emit(session, EventType.STAGE_STARTED, stage=stage.name, message=f"Starting {stage.name}")

            stage_start = time.monotonic()
            try:
                await self._run_with_retries(session, stage, metrics)
            except DnaError as exc:
                metrics.status = StageStatus.FAILED
                metrics.error = exc.message
                metrics.duration_ms = round((time.monotonic() - stage_start) * 1000, 3)
                self._emit(session, EventType.STAGE_FAILED, stage=stage.name, message=exc.message)
                if stage.critical or isinstance(exc, PipelineAbortedError):
                    raise
                session.warnings.append(f"Non-critical stage {stage.name} failed: {exc.message}")
                print_warning(f"Stage {stage.name} failed (non-critical): {exc.message}", self.console)
                continue

            elapsed = time.monotonic() - stage_start
            metrics.status = StageStatus.COMPLETED
            metrics.duration_ms = round(elapsed * 1000, 3)
            session.completed_weight += stage.weight
            self._emit(session, EventType.STAGE_COMPLETED, stage=stage.name, message=f"Completed {stage.name}")
            print_success(f"Stage {stage.name} completed in {format_duration(elapsed)}", self.console)

    async def _run_with_retries(self, session: PipelineSession, stage: PipelineStage, metrics: StageMetrics) -> None:
        settings = self.config.pipeline
        attempt = 0
        while True:
            metrics.attempts = attempt + 1
            try:
                await stage.run(session)
                return
            except DnaError as exc:
                error = exc
            except Exception as exc:  # noqa: BLE001
                error = StageError(stage.name, str(exc) or type(exc).__name__)
                error.__cause__ = exc

            if not error.retryable or attempt >= settings.max_retries:
                raise error

            delay = settings.retry_backoff_seconds * (2 ** attempt)
            self._emit(
                session,
                EventType.STAGE_RETRY,
                stage=stage.name,
                message=f"Retrying {stage.name} in {delay:g}s: {error.message}",
                data={"attempt": attempt + 1, "delay_seconds": delay},
            )
            print_warning(f"  {stage.name} attempt {attempt + 1} failed: {error.message}", self.console)
            await asyncio.sleep(delay)
            attempt += 1
            session.token.raise_if_cancelled(stage.name)

    # ------------------------------------------------------------------
    # Stage 1: CLI-VALIDATION
    # ------------------------------------------------------------------

    async def _stage_cli_validation(self, session: PipelineSession) -> None:
        request = session.request
        output = Path(request.output_path)
        session.output_existed = await asyncio.to_thread(output.exists)

        validation = await asyncio.to_thread(validate_request, request)
        session.warnings.extend(validation.warnings)
        if not validation.valid:
            raise RequestValidationError(
                f"Invalid generation request: {'; '.join(validation.errors)}",
                validation.errors,
            )
        self.console.print(f"  Request valid: [bold]{request.name}[/bold] ({request.framework.value})")

    # ------------------------------------------------------------------
    # Stage 2: DNA-COMPOSITION
    # ------------------------------------------------------------------

    async def _stage_composition(self, session: PipelineSession) -> None:
        request = session.request
        seen: set[str] = set()
        requests: list[ModuleRequest] = []
        for module_id in request.modules:
            if module_id in seen:
                continue
            seen.add(module_id)
            requests.append(ModuleRequest(module_id=module_id, config=request.module_config.get(module_id, {})))

        composition = Composition(
            modules=tuple(requests),
            framework=request.framework,
            template_type=request.template_type,
            project_name=request.name,
            global_config=request.variables,
        )

        loop = asyncio.get_running_loop()

        def _forward(event: str, payload: dict[str, Any]) -> None:
            # Called from the composer's worker thread; handlers run on the loop.
            loop.call_soon_threadsafe(
                functools.partial(
                    self._emit,
                    session,
                    EventType.STAGE_PROGRESS,
                    stage="dna-composition",
                    message=event,
                    data={"event": event, **payload},
                )
            )

        # Conflict prompts block; compose in a worker thread.
        result = await asyncio.to_thread(
            self.composer.compose,
            composition,
            on_event=_forward,
            interactive=request.interactive or self.config.pipeline.interactive,
        )
        session.composition = result
        session.warnings.extend(w.message for w in result.warnings)

        if not result.valid:
            raise CompositionError(
                f"Composition failed: {'; '.join(result.error_messages())}",
                "COMPOSITION_INVALID",
                context={"errors": result.error_messages()},
            )
        self.console.print(
            f"  Modules   : {', '.join(result.dependency_order) or 'none'}\n"
            f"  Complexity: {result.performance.complexity}"
        )

    # ------------------------------------------------------------------
    # Stage 3: PRE-GENERATION-VALIDATION
    # ------------------------------------------------------------------

    async def _stage_pre_generation(self, session: PipelineSession) -> None:
        assert session.composition is not None
        validation = await asyncio.to_thread(
            validate_pre_generation, session.composition, session.request, self.registry
        )
        session.warnings.extend(validation.warnings)
        if not validation.valid:
            raise RequestValidationError(
                f"Pre-generation validation failed: {'; '.join(validation.errors)}",
                validation.errors,
                code="PRE_GENERATION_FAILED",
            )

    # ------------------------------------------------------------------
    # Stage 4: TEMPLATE-PREPARATION
    # ------------------------------------------------------------------

    async def _stage_preparation(self, session: PipelineSession) -> None:
        request = session.request
        if session.transaction_id is None:
            session.transaction_id = self.rollback.start_transaction(
                f"Generate {request.name}", request.output_path
            )
        await self.rollback.record_directory_creation(session.transaction_id, request.output_path)
        session.template_config = TemplateConfig(
            name=request.name,
            output_path=request.output_path,
            framework=request.framework,
            template_type=request.template_type,
            description=request.description,
            variables=request.variables,
        )

    # ------------------------------------------------------------------
    # Stage 5: TEMPLATE-GENERATION
    # ------------------------------------------------------------------

    async def _stage_generation(self, session: PipelineSession) -> None:
        assert session.composition is not None and session.template_config is not None
        assert session.transaction_id is not None
        stage = self._stage("template-generation")

        def _progress(message: str, percent: float) -> None:
            overall = (session.completed_weight + stage.weight * percent / 100) / self.total_weight * 100
            self._emit(session, EventType.STAGE_PROGRESS, stage=stage.name, message=message, progress=overall)

        result = await self.engine.instantiate(
            session.template_config,
            session.composition,
            session.transaction_id,
            progress=_progress,
        )
        session.instantiation = result
        session.warnings.extend(result.warnings)
        self.console.print(
            f"  Generated {result.metrics.files_generated} file(s), "
            f"{result.metrics.lines_of_code} line(s)"
        )

    # ------------------------------------------------------------------
    # Stage 6: QUALITY-VALIDATION
    # ------------------------------------------------------------------

    async def _stage_quality(self, session: PipelineSession) -> None:
        request = session.request
        validation = await validate_project_structure(request.output_path, request.framework)
        session.warnings.extend(validation.warnings)
        if not validation.valid:
            raise StageError("quality-validation", "; ".join(validation.errors), retryable=False)

    # ------------------------------------------------------------------
    # Stage 7: SECURITY-SCANNING
    # ------------------------------------------------------------------

    async def _stage_security(self, session: PipelineSession) -> None:
        scan = await scan_for_secrets(session.request.output_path)
        for finding in scan.warnings:
            session.warnings.append(f"Security: {finding}")
        if scan.warnings:
            print_warning(f"  {len(scan.warnings)} potential security issue(s) found", self.console)

    # ------------------------------------------------------------------
    # Stage 8: FINALIZATION
    # ------------------------------------------------------------------

    async def _stage_finalization(self, session: PipelineSession) -> None:
        assert session.transaction_id is not None
        request = session.request
        composition = session.composition
        report = {
            "project": request.name,
            "framework": request.framework.value,
            "template_type": request.template_type,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "session_id": session.id,
            "modules": composition.dependency_order if composition else [],
            "resolutions": [r.model_dump(mode="json") for r in composition.resolutions] if composition else [],
            "complexity": composition.performance.complexity if composition else 0,
            "files": session.instantiation.generated_files if session.instantiation else [],
            "warnings": list(session.warnings),
            "stages": {
                name: metrics.model_dump(mode="json") for name, metrics in session.metrics.stages.items()
            },
        }
        path = Path(request.output_path) / self.config.report_name
        await self.rollback.record_file_creation(session.transaction_id, path, dump_json(report))
        session.report_file = self.config.report_name

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    async def _rollback_transaction(self, session: PipelineSession) -> Optional[RollbackReport]:
        if session.transaction_id is None:
            return None
        try:
            return await self.rollback.rollback_transaction(session.transaction_id)
        except RollbackError as exc:
            if exc.code != "TRANSACTION_NOT_FOUND":
                raise
        # Transaction lost: only remove the directory if this run created it.
        if not session.output_existed:
            await self.rollback.emergency_cleanup(session.request.output_path)
        return None

    async def _rollback(self, session: PipelineSession) -> str:
        """Run the rollback action of every started stage, newest first.

        Returns:
            ``"full"``, ``"partial"`` or ``"none"``.
        """
        actions = [stage for stage in reversed(session.started_stages) if stage.rollback is not None]
        metrics = RollbackMetrics()
        session.metrics.rollback = metrics
        if not actions:
            metrics.status = "none"
            return metrics.status

        self._emit(session, EventType.ROLLBACK_STARTED, message="Rolling back generated files")
        self.console.print(Panel("[bold]Rolling back generated files...[/bold]", style="yellow"))
        rollback_start = time.monotonic()
        failed = False

        for stage in actions:
            try:
                report = await stage.rollback(session)  # type: ignore[misc]
            except RollbackFailedError as exc:
                failed = True
                metrics.undone_operations += len(exc.undone_operations)
                metrics.failed_operations.extend(exc.failed_operations)
                metrics.error = exc.message
                continue
            except DnaError as exc:
                failed = True
                metrics.error = exc.message
                continue
            if report is not None:
                metrics.undone_operations += len(report.undone)

        if not failed:
            metrics.status = "full"
        elif metrics.undone_operations:
            metrics.status = "partial"
        else:
            metrics.status = "none"
        metrics.duration_ms = round((time.monotonic() - rollback_start) * 1000, 3)

        if metrics.error:
            session.errors.append(f"Rollback incomplete: {metrics.error}")
            print_error(f"Rollback {metrics.status}: {metrics.error}", self.console)
        else:
            print_warning(f"Rollback complete: {metrics.undone_operations} operation(s) undone", self.console)

        self._emit(
            session,
            EventType.ROLLBACK_COMPLETED,
            message=f"Rollback {metrics.status}",
            data=metrics.model_dump(mode="json"),
        )
        return metrics.status

    # ------------------------------------------------------------------
    # Events and reporting
    # ------------------------------------------------------------------

    def _stage(self, name: str) -> PipelineStage:
        for stage in self.stages:
            if stage.name == name:
                return stage
        raise KeyError(name)

    def _emit(
        self,
        session: PipelineSession,
        event_type: EventType,
        *,
        stage: Optional[str] = None,
        message: str = "",
        progress: Optional[float] = None,
        data: Optional[dict[str, Any]] = None,
    ) -> None:
        if session.on_event is None:
            return
        if progress is None:
            progress = session.completed_weight / self.total_weight * 100
        event = PipelineEvent(
            type=event_type,
            session_id=session.id,
            stage=stage,
            message=message,
            progress=min(max(progress, 0.0), 100.0),
            data=data or {},
        )
        try:
            session.on_event(event)
        except Exception as exc:  # noqa: BLE001
            if self.config.verbose:
                self.console.print(f"[dim]Event handler raised {type(exc).__name__}: {exc}[/dim]")

    def _print_final_summary(self, session: PipelineSession, result: GenerationResult) -> None:
        """Print the final generation summary panel."""
        stages = session.metrics.stages
        completed = [name for name, m in stages.items() if m.status is StageStatus.COMPLETED]
        failed = [name for name, m in stages.items() if m.status is StageStatus.FAILED]

        if result.success:
            border_style = "bold green"
            status_text = "[bold green]GENERATION SUCCEEDED[/bold green]"
        else:
            border_style = "bold red"
            status_text = "[bold red]GENERATION FAILED[/bold red]"

        detail_lines = [
            status_text,
            "",
            f"Duration  : {format_duration(session.metrics.total_duration_ms / 1000)}",
            f"Files     : {len(result.generated_files)}",
            f"Completed : {', '.join(completed) or 'none'}",
        ]
        if failed:
            detail_lines.append(f"Failed    : {', '.join(failed)}")
        if result.rollback_status:
            detail_lines.append(f"Rollback  : {result.rollback_status}")
        if result.warnings:
            detail_lines.append(f"Warnings  : {len(result.warnings)}")

        self.console.print()
        self.console.print(
            Panel(
                "\n".join(detail_lines),
                title="[bold]Generation Summary[/bold]",
                border_style=border_style,
            )
        )


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """CLI entry point for ``dnagen`` / ``python -m dnagen.pipeline``."""
    import argparse

    parser = argparse.ArgumentParser(
        description="dnagen -- compose DNA modules into a new project",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  dnagen my-app --framework nextjs -m auth-supabase -m payment-stripe\n"
            "  dnagen my-app -o ./apps/my-app --interactive\n"
        ),
    )
    parser.add_argument("name", help="Project name")
    parser.add_argument("--output", "-o", default=None, help="Project directory (default: ./<name>)")
    parser.add_argument(
        "--framework", "-f",
        default=SupportedFramework.NEXTJS.value,
        choices=[fw.value for fw in SupportedFramework],
        help="Target framework (default: nextjs)",
    )
    parser.add_argument("--template-type", default="foundation", help="Template type (default: foundation)")
    parser.add_argument("--description", default="", help="Short project description")
    parser.add_argument(
        "--module", "-m",
        dest="modules",
        action="append",
        default=[],
        help="DNA module id to include (repeatable)",
    )
    parser.add_argument(
        "--catalog",
        action="append",
        default=[],
        help="Extra module catalogue directory (repeatable)",
    )
    parser.add_argument("--interactive", action="store_true", help="Ask how to resolve module conflicts")
    parser.add_argument("--overwrite", action="store_true", help="Allow a non-empty output directory")
    parser.add_argument("--allow-experimental", action="store_true", help="Allow experimental modules")
    parser.add_argument("--timeout", type=float, default=None, help="Timeout in seconds (default: 600)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Print debug output")

    args = parser.parse_args()

    config = Config.from_env()
    config.verbose = config.verbose or args.verbose
    config.pipeline.interactive = args.interactive
    if args.allow_experimental:
        config.pipeline.allow_experimental = True
    if args.timeout is not None:
        if args.timeout <= 0:
            console.print(f"[bold red]Error:[/bold red] Invalid timeout: {args.timeout}")
            sys.exit(1)
        config.pipeline.timeout_seconds = args.timeout
    config.catalog_dirs.extend(Path(p) for p in args.catalog)

    try:
        registry = ModuleRegistry.from_directories(config.catalog_dirs)
    except RegistryError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc.message}")
        sys.exit(1)

    rollback = RollbackManager(config.temp_path, console=console, verbose=config.verbose)
    pipeline = GenerationPipeline(registry, rollback, config)
    request = GenerationRequest(
        name=args.name,
        output_path=Path(args.output) if args.output else config.work_dir / args.name,
        framework=SupportedFramework(args.framework),
        template_type=args.template_type,
        description=args.description,
        modules=args.modules,
        interactive=args.interactive,
        overwrite=args.overwrite,
    )

    async def _run() -> GenerationResult:
        try:
            if args.interactive:
                return await pipeline.generate(request)
            with create_progress() as progress:
                task = progress.add_task("Generating", total=100)

                def _on_event(event: PipelineEvent) -> None:
                    progress.update(task, completed=event.progress, description=event.stage or event.type.value)

                return await pipeline.generate(request, on_event=_on_event)
        finally:
            await rollback.cleanup_temp_directory()

    result = asyncio.run(_run())

    if result.success:
        print_summary_table(
            {
                "Output": str(result.output_path),
                "Files": str(len(result.generated_files)),
                "Lines of code": str(result.metrics.lines_of_code),
                "Duration": format_duration(result.metrics.total_duration_ms / 1000),
                "Warnings": str(len(result.warnings)),
            },
            title="Generated Project",
        )
        console.print("[bold green]Project generated successfully![/bold green]")
    else:
        console.print("[bold red]Generation failed.[/bold red]")
        for error in result.errors:
            console.print(f"  [red]-[/red] {error}")
        sys.exit(1)


if __name__ == "__main__":
    main()
