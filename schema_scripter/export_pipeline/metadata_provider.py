"""SQL Server catalog access for the export pipeline."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, List, Mapping, Protocol, Sequence

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from schema_scripter.errors import FetchError
from schema_scripter.models import AvailabilityResult, RoutineDefinition, RoutineKind, TableDefinition
from schema_scripter.utils.logger import setup_logging

logger = setup_logging(__name__)

SQL_DIR = Path(__file__).resolve().parent / "sql"

# Objects created by SSMS designers carry this extended property and are not user objects.
_NOT_TOOLS_SUPPORT = (
    "AND {alias}.object_id NOT IN (SELECT major_id FROM sys.extended_properties "
    "WHERE name = N'microsoft_database_tools_support' AND minor_id = 0 AND class = 1) "
)


class MetadataProvider(Protocol):
    """Catalog operations the export orchestrator depends on."""

    def check_availability(self) -> AvailabilityResult: ...

    def select_database(self, name: str) -> bool: ...

    def fetch_tables(self) -> List[TableDefinition]: ...

    def fetch_procedures(self) -> List[RoutineDefinition]: ...

    def fetch_views(self) -> List[RoutineDefinition]: ...

    def fetch_functions(self) -> List[RoutineDefinition]: ...


@lru_cache(maxsize=None)
def load_sql(name: str) -> str:
    return (SQL_DIR / name).read_text(encoding="utf-8")


def quote_identifier(name: str) -> str:
    """Bracket-quote ``name`` the way QUOTENAME does."""
    return "[" + name.replace("]", "]]") + "]"


class SqlServerMetadataProvider:
    """Reads tables and compiled routines from SQL Server system catalogs."""

    def __init__(self, connection_source: Callable[[], Connection]) -> None:
        self._connection_source = connection_source

    @property
    def connection(self) -> Connection:
        return self._connection_source()

    # ------------------------------------------------------------------
    # Connectivity
    # ------------------------------------------------------------------

    def check_availability(self) -> AvailabilityResult:
        try:
            self.connection.execute(text("SELECT 123"))
        except SQLAlchemyError as exc:
            message = str(getattr(exc, "orig", None) or exc)
            logger.debug("Availability probe failed: %s", message)
            if "server was not found" in message.lower() or "server is not found" in message.lower():
                return AvailabilityResult(False, "Server was not found.")
            if "Login failed" in message:
                return AvailabilityResult(False, message)
            return AvailabilityResult(False, None)
        return AvailabilityResult(True)

    def select_database(self, name: str) -> bool:
        try:
            self.connection.execute(text(f"USE {quote_identifier(name)}"))
        except SQLAlchemyError as exc:
            logger.debug("USE %s failed: %s", name, exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Category fetches
    # ------------------------------------------------------------------

    def fetch_tables(self) -> List[TableDefinition]:
        rows = self._fetch_rows("Tables", load_sql("tables.sql"))
        return [
            TableDefinition(
                schema_name=row["schema_name"],
                name=row["table_name"],
                definition=row["definition"] or "",
                object_id=row["object_id"],
            )
            for row in rows
        ]

    def fetch_procedures(self) -> List[RoutineDefinition]:
        return self._fetch_routines(RoutineKind.PROCEDURE, self._procedures_sql())

    def fetch_views(self) -> List[RoutineDefinition]:
        return self._fetch_routines(RoutineKind.VIEW, self._views_sql())

    def fetch_functions(self) -> List[RoutineDefinition]:
        return self._fetch_routines(RoutineKind.FUNCTION, self._functions_sql())

    # ------------------------------------------------------------------
    # SQL query builders
    # ------------------------------------------------------------------

    @staticmethod
    def _module_sql(source: str, alias: str, extra_filter: str = "") -> str:
        return (
            f"SELECT {alias}.object_id, s.name AS schema_name, {alias}.name AS object_name, "
            "       m.definition, m.uses_ansi_nulls, m.uses_quoted_identifier "
            f"FROM {source} {alias} "
            f"JOIN sys.schemas s ON s.schema_id = {alias}.schema_id "
            f"JOIN sys.sql_modules m ON m.object_id = {alias}.object_id "
            f"WHERE {alias}.is_ms_shipped = 0 "
            + _NOT_TOOLS_SUPPORT.format(alias=alias)
            + extra_filter
            + f"ORDER BY s.name, {alias}.name;"
        )

    def _procedures_sql(self) -> str:
        return self._module_sql("sys.procedures", "p")

    def _views_sql(self) -> str:
        return self._module_sql("sys.views", "v")

    def _functions_sql(self) -> str:
        return self._module_sql("sys.objects", "o", "AND o.type = 'FN' ")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _fetch_rows(self, category: str, sql: str) -> Sequence[Mapping[str, Any]]:
        try:
            result = self.connection.execute(text(sql))
            rows = result.mappings().all()
        except SQLAlchemyError as exc:
            raise FetchError(category, str(exc)) from exc
        logger.debug("%s query returned %d rows", category, len(rows))
        return rows

    def _fetch_routines(self, kind: RoutineKind, sql: str) -> List[RoutineDefinition]:
        rows = self._fetch_rows(kind.folder, sql)
        return [self._routine_from_row(kind, row) for row in rows]

    @staticmethod
    def _routine_from_row(kind: RoutineKind, row: Mapping[str, Any]) -> RoutineDefinition:
        return RoutineDefinition(
            kind=kind,
            schema_name=row["schema_name"],
            name=row["object_name"],
            definition=row["definition"] or "",
            uses_ansi_nulls=bool(row["uses_ansi_nulls"]),
            uses_quoted_identifier=bool(row["uses_quoted_identifier"]),
            object_id=row["object_id"],
        )


__all__ = ["MetadataProvider", "SqlServerMetadataProvider", "load_sql", "quote_identifier"]
