"""Drives one export run: connect, export each category, then the supplemental scripts."""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence, Tuple, Union

from schema_scripter.core.identifier_corrector import IdentifierDriftCorrector
from schema_scripter.core.script_assembler import assemble_script
from schema_scripter.errors import (
    ConnectivityError,
    ExportCancelledError,
    FetchError,
    ScripterError,
    SelectionError,
    WriteError,
)
from schema_scripter.export_pipeline.metadata_provider import MetadataProvider
from schema_scripter.export_pipeline.run_context import RunContext
from schema_scripter.export_pipeline.supplemental import Supplemental
from schema_scripter.export_pipeline.writer import script_filename
from schema_scripter.models import (
    TABLES_FOLDER,
    ExportRunResult,
    ExportState,
    RoutineDefinition,
    RoutineKind,
    StageResult,
    TableDefinition,
)
from schema_scripter.utils.logger import setup_logging

logger = setup_logging(__name__)

ExportObject = Union[TableDefinition, RoutineDefinition]
# Renders one object to (script text, header matched).
Renderer = Callable[[ExportObject], Tuple[str, bool]]


class ExportOrchestrator:
    """Runs the export stages strictly in order and stops at the first failure.

    Every stage reports a ``StageResult``; nothing is retried and files that
    were already written stay on disk when a later step fails.
    """

    def __init__(
        self,
        context: RunContext,
        provider: MetadataProvider,
        *,
        corrector: Optional[IdentifierDriftCorrector] = None,
        supplemental: Optional[Supplemental] = None,
    ) -> None:
        self.context = context
        self.provider = provider
        self.corrector = corrector or IdentifierDriftCorrector()
        self.supplemental = supplemental
        self.state = ExportState.IDLE
        self.state_history: List[ExportState] = [ExportState.IDLE]

    def run(self) -> ExportRunResult:
        result = ExportRunResult(state=self.state)
        try:
            self._run(result)
        finally:
            self.context.profiler.stop()
            result.state = self.state
            result.timings = self.context.profiler.render_plain_text()
            logger.debug(result.timings)
        return result

    def _run(self, result: ExportRunResult) -> None:
        self._transition(ExportState.CONNECTING)
        error = self._connect()
        if error is not None:
            self._fail(result, error)
            return

        categories = (
            (ExportState.TABLES, "Tables", TABLES_FOLDER, self.provider.fetch_tables, self._render_table),
            (ExportState.PROCEDURES, "Stored Procedures", RoutineKind.PROCEDURE.folder,
             self.provider.fetch_procedures, self._render_routine),
            (ExportState.VIEWS, "Views", RoutineKind.VIEW.folder, self.provider.fetch_views, self._render_routine),
            (ExportState.FUNCTIONS, "Functions", RoutineKind.FUNCTION.folder,
             self.provider.fetch_functions, self._render_routine),
        )
        for state, label, folder, fetch, render in categories:
            self._transition(state)
            with self.context.profiler.step(label):
                stage = self.export_category(label, folder, fetch, render)
            result.stages.append(stage)
            if not stage.ok:
                self._fail(result, stage.error)
                return

        self._transition(ExportState.SUPPLEMENTAL)
        stage = self._run_supplemental()
        result.stages.append(stage)
        if not stage.ok:
            self._fail(result, stage.error)
            return

        self._transition(ExportState.DONE)
        for stage in result.stages:
            logger.info("%s: %s, %d exported", stage.stage, stage.status, stage.exported)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _connect(self) -> Optional[ScripterError]:
        availability = self.provider.check_availability()
        if not availability.is_success:
            return ConnectivityError(availability.error_message or "Error connecting to server")
        database = self.context.settings.database
        if not self.provider.select_database(database):
            return SelectionError(f"Cannot connect to database {database}")
        logger.debug("Connected, database %s selected", database)
        return None

    def export_category(
        self,
        label: str,
        folder: str,
        fetch: Callable[[], Sequence[ExportObject]],
        render: Renderer,
    ) -> StageResult:
        """Fetch one category and write a script per object, in catalog order."""
        try:
            objects = fetch()
        except FetchError as exc:
            logger.error("ExportOrchestrator:%s: fetch failed: %s", label, exc)
            return StageResult(stage=label, status="failed", error=exc)

        if not objects:
            logger.info("ExportOrchestrator:%s: No %s found", label, label.lower())
            return StageResult(stage=label, status="empty")
        logger.info("ExportOrchestrator:%s: %d %s found. Exporting...", label, len(objects), label.lower())

        stage = StageResult(stage=label, status="success", found=len(objects))
        for obj in objects:
            if self.context.cancelled:
                stage.status = "cancelled"
                stage.error = ExportCancelledError(
                    f"{label}: cancelled after {stage.exported} of {len(objects)} objects"
                )
                logger.warning("%s", stage.error)
                return stage

            script, header_matched = render(obj)
            if not header_matched:
                stage.uncorrected.append(obj.qualified_name)
            try:
                self.context.writer.write(folder, script_filename(obj.schema_name, obj.name), script)
            except WriteError as exc:
                logger.error("ExportOrchestrator:%s: %s", label, exc)
                stage.status = "failed"
                stage.error = exc
                return stage
            stage.exported += 1

        if stage.uncorrected:
            logger.warning(
                "ExportOrchestrator:%s: %d header(s) did not match the expected CREATE pattern and were "
                "written unchanged: %s",
                label,
                len(stage.uncorrected),
                ", ".join(stage.uncorrected),
            )
        logger.info("ExportOrchestrator:%s: %d %s exported", label, stage.exported, label.lower())
        return stage

    def _run_supplemental(self) -> StageResult:
        if self.supplemental is None or not self.context.settings.run_supplemental:
            logger.info("Supplemental scripting skipped")
            return StageResult(stage="Supplemental", status="empty")
        if self.context.cancelled:
            return StageResult(
                stage="Supplemental", status="cancelled", error=ExportCancelledError("cancelled before supplemental")
            )
        try:
            with self.context.profiler.step("Supplemental"):
                counts = self.supplemental.script_all(self.context)
        except ScripterError as exc:
            logger.error("Supplemental scripting failed: %s", exc)
            return StageResult(stage="Supplemental", status="failed", error=exc)
        total = sum(counts.values())
        return StageResult(stage="Supplemental", status="success", found=total, exported=total)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    @staticmethod
    def _render_table(table: TableDefinition) -> Tuple[str, bool]:
        # Table DDL is composed by the server with its own directives and terminators.
        return table.definition, True

    def _render_routine(self, routine: RoutineDefinition) -> Tuple[str, bool]:
        correction = self.corrector.correct(routine)
        script = assemble_script(correction.text, routine.uses_ansi_nulls, routine.uses_quoted_identifier)
        return script, correction.header_matched

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _transition(self, state: ExportState) -> None:
        if self.state in (ExportState.DONE, ExportState.FAILED):
            raise RuntimeError(f"Export run already finished in state {self.state.value}")
        logger.debug("Export state %s -> %s", self.state.value, state.value)
        self.state = state
        self.state_history.append(state)

    def _fail(self, result: ExportRunResult, error: Optional[ScripterError]) -> None:
        failed_in = self.state
        self._transition(ExportState.FAILED)
        result.error = error
        logger.error("Export failed during %s: %s", failed_in.value, error)


__all__ = ["ExportOrchestrator"]
