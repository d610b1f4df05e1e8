"""Per-run resources: the database connection, the timing sink and cancellation."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Optional

from sqlalchemy.engine import Connection, Engine

from schema_scripter.models import ScripterSettings
from schema_scripter.utils.logger import setup_logging
from schema_scripter.utils.profiler import Profiler
from schema_scripter.export_pipeline.writer import SqlScriptWriter

logger = setup_logging(__name__)


class RunContext:
    """Owns everything one export run needs and releases it when the run ends.

    Use as a context manager; the connection is opened on first use and
    closed on exit whatever the outcome.
    """

    def __init__(
        self,
        settings: ScripterSettings,
        engine: Optional[Engine] = None,
        *,
        writer: Optional[SqlScriptWriter] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.settings = settings
        self.engine = engine
        self.export_root = Path(settings.export_folder).expanduser()
        self.writer = writer or SqlScriptWriter(self.export_root, write_bom=settings.write_bom)
        self.profiler = Profiler("SchemaScripter")
        self.cancel_event = cancel_event or threading.Event()
        self._connection: Optional[Connection] = None

    @property
    def connection(self) -> Connection:
        if self._connection is None:
            if self.engine is None:
                raise RuntimeError("RunContext has no engine to open a connection with")
            logger.debug("Opening connection to %s", self.settings.server or "<connection string>")
            self._connection = self.engine.connect()
        return self._connection

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None
            logger.debug("Connection closed")
        self.profiler.stop()

    def __enter__(self) -> "RunContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["RunContext"]
