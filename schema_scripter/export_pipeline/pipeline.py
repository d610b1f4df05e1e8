"""High-level wiring for one schema export run."""

from __future__ import annotations

import threading
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from schema_scripter.errors import ConfigurationError
from schema_scripter.export_pipeline.metadata_provider import MetadataProvider, SqlServerMetadataProvider
from schema_scripter.export_pipeline.orchestrator import ExportOrchestrator
from schema_scripter.export_pipeline.run_context import RunContext
from schema_scripter.export_pipeline.supplemental import Supplemental, SupplementalScripter
from schema_scripter.models import ExportRunResult, ExportState, ScripterSettings
from schema_scripter.utils.logger import setup_logging
from scripter_db.database_manager import get_engine

logger = setup_logging(__name__)


class SchemaExportPipeline:
    """Build the engine, provider and supplemental scripter, then run the orchestrator."""

    def __init__(
        self,
        settings: ScripterSettings,
        *,
        engine: Optional[Engine] = None,
        provider: Optional[MetadataProvider] = None,
        supplemental: Optional[Supplemental] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.settings = settings
        self.engine = engine
        self.provider = provider
        self.supplemental = supplemental
        self.cancel_event = cancel_event or threading.Event()

    def cancel(self) -> None:
        self.cancel_event.set()

    def run(self) -> ExportRunResult:
        logger.info(
            "Starting schema export of %s. Output => %s", self.settings.database, self.settings.export_folder
        )
        engine = self.engine
        if engine is None and self.provider is None:
            try:
                engine = get_engine(self.settings)
            except SQLAlchemyError as exc:
                error = ConfigurationError(f"Cannot create a database engine: {exc}")
                logger.error("Schema export failed: %s", error)
                return ExportRunResult(state=ExportState.FAILED, error=error)

        with RunContext(self.settings, engine, cancel_event=self.cancel_event) as context:
            provider = self.provider or SqlServerMetadataProvider(lambda: context.connection)
            supplemental = self.supplemental
            if supplemental is None and engine is not None:
                supplemental = SupplementalScripter(lambda: context.connection)
            orchestrator = ExportOrchestrator(context, provider, supplemental=supplemental)
            result = orchestrator.run()

        if result.succeeded:
            logger.info("Schema export finished successfully: %s", result.counts())
        else:
            logger.error("Schema export failed: %s", result.error)
        return result


__all__ = ["SchemaExportPipeline"]
