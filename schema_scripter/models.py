"""Data models shared by the schema scripter."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field

from schema_scripter.errors import ScripterError


class ScripterSettings(BaseModel):
    """Connection and output settings for one export run.

    Required fields default to empty strings so that every missing value can be
    reported at once by ``schema_scripter.config.load_settings``.
    """

    server: str = ""
    user: str = ""
    password: str = ""
    database: str = ""
    export_folder: str = ""
    connection_string: Optional[str] = Field(
        None, description="JDBC or SQLAlchemy URL; takes precedence over server/user/password"
    )
    driver: str = Field("ODBC Driver 18 for SQL Server", min_length=1)
    encrypt: bool = True
    trust_server_certificate: bool = True
    write_bom: bool = Field(True, description="Prefix script files with a UTF-8 byte order mark")
    run_supplemental: bool = Field(True, description="Script types, triggers and jobs after the core export")

    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = ("server", "user", "password", "database", "export_folder")

    def missing_fields(self) -> List[str]:
        missing = []
        for name in self.REQUIRED_FIELDS:
            # server/user/password are not needed when a full connection string is given
            if self.connection_string and name in ("server", "user", "password"):
                continue
            if not str(getattr(self, name) or "").strip():
                missing.append(name)
        return missing


# ---------------------------------------------------------------------
# Catalog rows
# ---------------------------------------------------------------------


class RoutineKind(str, Enum):
    """Routine categories whose cached source text is scripted by the core."""

    PROCEDURE = "procedure"
    VIEW = "view"
    FUNCTION = "function"

    @property
    def keyword(self) -> str:
        return self.name

    @property
    def folder(self) -> str:
        return ROUTINE_FOLDERS[self]


ROUTINE_FOLDERS: Dict[RoutineKind, str] = {
    RoutineKind.PROCEDURE: "Stored Procedures",
    RoutineKind.VIEW: "Views",
    RoutineKind.FUNCTION: "Functions",
}
TABLES_FOLDER = "Tables"


@dataclass(frozen=True, slots=True)
class RoutineDefinition:
    """One compiled routine as stored in ``sys.sql_modules``."""

    kind: RoutineKind
    schema_name: str
    name: str
    definition: str
    uses_ansi_nulls: bool = True
    uses_quoted_identifier: bool = True
    object_id: Optional[int] = None

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.name}"


@dataclass(frozen=True, slots=True)
class TableDefinition:
    """A table with its full DDL script composed by the server."""

    schema_name: str
    name: str
    definition: str
    object_id: Optional[int] = None

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.name}"


@dataclass(frozen=True, slots=True)
class AvailabilityResult:
    is_success: bool
    error_message: Optional[str] = None


# ---------------------------------------------------------------------
# Identifier correction
# ---------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class IdentifierToken:
    """A schema or object name found in a routine header.

    ``start``/``end`` delimit the whole token, brackets included, so that
    ``text[start:end]`` is exactly what gets replaced.
    """

    value: str
    start: int
    end: int
    bracketed: bool

    @property
    def length(self) -> int:
        return self.end - self.start


@dataclass(frozen=True, slots=True)
class CorrectionResult:
    text: str
    header_matched: bool
    schema_corrected: bool = False
    name_corrected: bool = False

    @property
    def changed(self) -> bool:
        return self.schema_corrected or self.name_corrected


# ---------------------------------------------------------------------
# Run outcomes
# ---------------------------------------------------------------------


class ExportState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    TABLES = "tables"
    PROCEDURES = "procedures"
    VIEWS = "views"
    FUNCTIONS = "functions"
    SUPPLEMENTAL = "supplemental"
    DONE = "done"
    FAILED = "failed"


StageStatus = Literal["success", "empty", "failed", "cancelled"]


@dataclass(slots=True)
class StageResult:
    """Explicit outcome of one export stage."""

    stage: str
    status: StageStatus
    found: int = 0
    exported: int = 0
    uncorrected: List[str] = field(default_factory=list)
    error: Optional[ScripterError] = None

    @property
    def ok(self) -> bool:
        return self.status in ("success", "empty")


@dataclass(slots=True)
class ExportRunResult:
    state: ExportState
    stages: List[StageResult] = field(default_factory=list)
    error: Optional[ScripterError] = None
    timings: str = ""

    @property
    def succeeded(self) -> bool:
        return self.state is ExportState.DONE

    def counts(self) -> Dict[str, int]:
        return {stage.stage: stage.exported for stage in self.stages}


__all__ = [
    "ScripterSettings",
    "RoutineKind",
    "ROUTINE_FOLDERS",
    "TABLES_FOLDER",
    "RoutineDefinition",
    "TableDefinition",
    "AvailabilityResult",
    "IdentifierToken",
    "CorrectionResult",
    "ExportState",
    "StageStatus",
    "StageResult",
    "ExportRunResult",
]
