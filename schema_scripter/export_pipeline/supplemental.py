"""Scripting for object kinds outside the core routine/table export.

Covers CLR types, alias data types, table types, database-level DDL triggers
and SQL Agent jobs. Each object is rebuilt from catalog rows and written
through the run's script writer.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from schema_scripter.core.script_assembler import BATCH_TERMINATOR, LINE_BREAK, assemble_script
from schema_scripter.errors import FetchError
from schema_scripter.export_pipeline.metadata_provider import quote_identifier
from schema_scripter.export_pipeline.run_context import RunContext
from schema_scripter.export_pipeline.writer import script_filename
from schema_scripter.utils.logger import setup_logging

logger = setup_logging(__name__)

TYPES_FOLDER = "Types"
DATA_TYPES_FOLDER = "Data Types"
TABLE_TYPES_FOLDER = "Table Types"
TRIGGERS_FOLDER = "Triggers"
JOBS_FOLDER = "Jobs"

_END_BATCH = f"{LINE_BREAK}{BATCH_TERMINATOR}{LINE_BREAK}"


class Supplemental(Protocol):
    def script_all(self, context: RunContext) -> Dict[str, int]: ...


def format_type(type_name: str, max_length: Optional[int], precision: Optional[int], scale: Optional[int]) -> str:
    """Render ``[type](args)`` the way the server's own scripter does."""
    rendered = quote_identifier(type_name)
    lowered = type_name.lower()
    if lowered in ("binary", "varbinary", "char", "varchar"):
        rendered += "(max)" if max_length == -1 else f"({max_length})"
    elif lowered in ("nchar", "nvarchar"):
        rendered += "(max)" if max_length == -1 else f"({(max_length or 0) // 2})"
    elif lowered in ("numeric", "decimal"):
        rendered += f"({precision}, {scale})"
    elif lowered in ("datetime2", "datetimeoffset", "time"):
        rendered += f"({scale})"
    return rendered


def n_literal(value: Optional[str]) -> str:
    if value is None:
        return "NULL"
    return "N'" + value.replace("'", "''") + "'"


def _qualified(schema_name: str, name: str) -> str:
    return f"{quote_identifier(schema_name)}.{quote_identifier(name)}"


class SupplementalScripter:
    """Scripts types, triggers and jobs once, after the core categories."""

    def __init__(self, connection_source: Callable[[], Connection]) -> None:
        self._connection_source = connection_source

    @property
    def connection(self) -> Connection:
        return self._connection_source()

    def script_all(self, context: RunContext) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        steps = (
            (TYPES_FOLDER, self.script_clr_types),
            (DATA_TYPES_FOLDER, self.script_data_types),
            (TABLE_TYPES_FOLDER, self.script_table_types),
            (TRIGGERS_FOLDER, self.script_database_triggers),
            (JOBS_FOLDER, self.script_jobs),
        )
        for folder, step in steps:
            with context.profiler.step(folder):
                logger.debug("Exporting %s...", folder.lower())
                counts[folder] = step(context)
            logger.info("SupplementalScripter: %d %s exported", counts[folder], folder.lower())
        return counts

    # ------------------------------------------------------------------
    # Object kinds
    # ------------------------------------------------------------------

    def script_clr_types(self, context: RunContext) -> int:
        rows = self._fetch_rows(
            TYPES_FOLDER,
            "SELECT s.name AS schema_name, at.name AS type_name, a.name AS assembly_name, at.assembly_class "
            "FROM sys.assembly_types at "
            "JOIN sys.schemas s ON s.schema_id = at.schema_id "
            "JOIN sys.assemblies a ON a.assembly_id = at.assembly_id "
            "WHERE at.is_user_defined = 1 "
            "ORDER BY s.name, at.name;",
        )
        for row in rows:
            script = (
                f"CREATE TYPE {_qualified(row['schema_name'], row['type_name'])}{LINE_BREAK}"
                f"EXTERNAL NAME {quote_identifier(row['assembly_name'])}.{quote_identifier(row['assembly_class'])}"
                f"{_END_BATCH}"
            )
            self._write(context, TYPES_FOLDER, script_filename(row["schema_name"], row["type_name"]), script)
        return len(rows)

    def script_data_types(self, context: RunContext) -> int:
        rows = self._fetch_rows(
            DATA_TYPES_FOLDER,
            "SELECT s.name AS schema_name, t.name AS type_name, bt.name AS base_type, "
            "       t.max_length, t.precision, t.scale, t.is_nullable "
            "FROM sys.types t "
            "JOIN sys.schemas s ON s.schema_id = t.schema_id "
            "JOIN sys.types bt ON bt.user_type_id = t.system_type_id "
            "WHERE t.is_user_defined = 1 AND t.is_table_type = 0 AND t.is_assembly_type = 0 "
            "ORDER BY s.name, t.name;",
        )
        for row in rows:
            base = format_type(row["base_type"], row["max_length"], row["precision"], row["scale"])
            nullability = "NULL" if row["is_nullable"] else "NOT NULL"
            script = (
                f"CREATE TYPE {_qualified(row['schema_name'], row['type_name'])} FROM {base} {nullability}"
                f"{_END_BATCH}"
            )
            self._write(context, DATA_TYPES_FOLDER, script_filename(row["schema_name"], row["type_name"]), script)
        return len(rows)

    def script_table_types(self, context: RunContext) -> int:
        types = self._fetch_rows(
            TABLE_TYPES_FOLDER,
            "SELECT s.name AS schema_name, tt.name AS type_name, tt.type_table_object_id "
            "FROM sys.table_types tt "
            "JOIN sys.schemas s ON s.schema_id = tt.schema_id "
            "WHERE tt.is_user_defined = 1 "
            "ORDER BY s.name, tt.name;",
        )
        if not types:
            return 0
        columns = self._fetch_rows(
            TABLE_TYPES_FOLDER,
            "SELECT c.object_id, c.column_id, c.name AS column_name, ty.name AS type_name, "
            "       c.max_length, c.precision, c.scale, c.is_nullable "
            "FROM sys.columns c "
            "JOIN sys.types ty ON ty.user_type_id = c.user_type_id "
            "WHERE c.object_id IN (SELECT type_table_object_id FROM sys.table_types) "
            "ORDER BY c.object_id, c.column_id;",
        )
        by_type: Dict[int, List[Mapping[str, Any]]] = defaultdict(list)
        for column in columns:
            by_type[column["object_id"]].append(column)

        for row in types:
            column_lines = [
                "\t"
                + quote_identifier(column["column_name"])
                + " "
                + format_type(column["type_name"], column["max_length"], column["precision"], column["scale"])
                + (" NULL" if column["is_nullable"] else " NOT NULL")
                for column in by_type.get(row["type_table_object_id"], [])
            ]
            script = (
                f"CREATE TYPE {_qualified(row['schema_name'], row['type_name'])} AS TABLE({LINE_BREAK}"
                + f",{LINE_BREAK}".join(column_lines)
                + f"{LINE_BREAK}){_END_BATCH}"
            )
            self._write(context, TABLE_TYPES_FOLDER, script_filename(row["schema_name"], row["type_name"]), script)
        return len(types)

    def script_database_triggers(self, context: RunContext) -> int:
        rows = self._fetch_rows(
            TRIGGERS_FOLDER,
            "SELECT tr.name AS trigger_name, tr.is_disabled, m.definition, "
            "       m.uses_ansi_nulls, m.uses_quoted_identifier "
            "FROM sys.triggers tr "
            "JOIN sys.sql_modules m ON m.object_id = tr.object_id "
            "WHERE tr.parent_class = 0 AND tr.is_ms_shipped = 0 "
            "ORDER BY tr.name;",
        )
        for row in rows:
            script = assemble_script(
                row["definition"] or "",
                bool(row["uses_ansi_nulls"]),
                bool(row["uses_quoted_identifier"]),
            )
            if row["is_disabled"]:
                script += f"DISABLE TRIGGER {quote_identifier(row['trigger_name'])} ON DATABASE{_END_BATCH}"
            self._write(context, TRIGGERS_FOLDER, script_filename(row["trigger_name"]), script)
        return len(rows)

    def script_jobs(self, context: RunContext) -> int:
        try:
            jobs = self._query(
                "SELECT j.job_id, j.name AS job_name, j.enabled, j.description, "
                "       c.name AS category_name, SUSER_SNAME(j.owner_sid) AS owner_login "
                "FROM msdb.dbo.sysjobs j "
                "LEFT JOIN msdb.dbo.syscategories c ON c.category_id = j.category_id "
                "ORDER BY j.name;"
            )
            steps = self._query(
                "SELECT s.job_id, s.step_id, s.step_name, s.subsystem, s.command, s.database_name, "
                "       s.on_success_action, s.on_fail_action, s.retry_attempts, s.retry_interval "
                "FROM msdb.dbo.sysjobsteps s "
                "ORDER BY s.job_id, s.step_id;"
            )
        except SQLAlchemyError as exc:
            # Agent metadata needs msdb access, which a schema-only login often lacks.
            logger.warning("Skipping SQL Agent jobs, msdb is not readable: %s", exc)
            self.connection.rollback()
            return 0

        steps_by_job: Dict[Any, List[Mapping[str, Any]]] = defaultdict(list)
        for step in steps:
            steps_by_job[step["job_id"]].append(step)

        for job in jobs:
            script = self._job_script(job, steps_by_job.get(job["job_id"], []))
            self._write(context, JOBS_FOLDER, script_filename(job["job_name"]), script)
        return len(jobs)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _job_script(job: Mapping[str, Any], steps: Sequence[Mapping[str, Any]]) -> str:
        job_name = n_literal(job["job_name"])
        parts = [
            f"USE [msdb]{_END_BATCH}",
            "EXEC msdb.dbo.sp_add_job "
            f"@job_name={job_name}, "
            f"@enabled={1 if job['enabled'] else 0}, "
            f"@description={n_literal(job['description'])}, "
            f"@category_name={n_literal(job['category_name'])}, "
            f"@owner_login_name={n_literal(job['owner_login'])}"
            f"{_END_BATCH}",
        ]
        for step in steps:
            parts.append(
                "EXEC msdb.dbo.sp_add_jobstep "
                f"@job_name={job_name}, "
                f"@step_name={n_literal(step['step_name'])}, "
                f"@step_id={step['step_id']}, "
                f"@subsystem={n_literal(step['subsystem'])}, "
                f"@command={n_literal(step['command'])}, "
                f"@database_name={n_literal(step['database_name'])}, "
                f"@on_success_action={step['on_success_action']}, "
                f"@on_fail_action={step['on_fail_action']}, "
                f"@retry_attempts={step['retry_attempts']}, "
                f"@retry_interval={step['retry_interval']}"
                f"{_END_BATCH}"
            )
        parts.append(f"EXEC msdb.dbo.sp_add_jobserver @job_name={job_name}, @server_name=N'(local)'{_END_BATCH}")
        return "".join(parts)

    def _query(self, sql: str) -> Sequence[Mapping[str, Any]]:
        return self.connection.execute(text(sql)).mappings().all()

    def _fetch_rows(self, category: str, sql: str) -> Sequence[Mapping[str, Any]]:
        try:
            return self._query(sql)
        except SQLAlchemyError as exc:
            raise FetchError(category, str(exc)) from exc

    @staticmethod
    def _write(context: RunContext, folder: str, filename: str, script: str) -> None:
        context.writer.write(folder, filename, script)


__all__ = [
    "Supplemental",
    "SupplementalScripter",
    "format_type",
    "n_literal",
    "TYPES_FOLDER",
    "DATA_TYPES_FOLDER",
    "TABLE_TYPES_FOLDER",
    "TRIGGERS_FOLDER",
    "JOBS_FOLDER",
]
