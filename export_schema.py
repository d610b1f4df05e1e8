"""CLI entrypoint for exporting a database schema to script files."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Optional, Sequence

from schema_scripter.config import load_settings
from schema_scripter.errors import ConfigurationError
from schema_scripter.export_pipeline import SchemaExportPipeline
from schema_scripter.models import ExportRunResult, ScripterSettings
from schema_scripter.utils.logger import cleanup_old_logs, set_level, setup_logging

logger = setup_logging(__name__)


def export(settings: ScripterSettings) -> ExportRunResult:
    """Run the export pipeline for already-validated settings."""

    logger.info("Exporting %s from %s", settings.database, settings.server or "<connection string>")
    pipeline = SchemaExportPipeline(settings)
    return pipeline.run()


def _overrides(args: argparse.Namespace) -> dict:
    overrides = {
        "server": args.server,
        "user": args.user,
        "password": args.password,
        "database": args.database,
        "export_folder": str(args.export_folder) if args.export_folder else None,
    }
    if args.no_supplemental:
        overrides["run_supplemental"] = False
    return overrides


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export tables, procedures, views and functions as .sql scripts")
    parser.add_argument("--config", type=Path, help="Path to appsettings.json (defaults to config/appsettings.json)")
    parser.add_argument("--server", help="SQL Server host, optionally host,port")
    parser.add_argument("--user", help="SQL login name")
    parser.add_argument("--password", help="SQL login password")
    parser.add_argument("--database", help="Database to export")
    parser.add_argument("--export-folder", type=Path, help="Root folder for the exported scripts")
    parser.add_argument(
        "--no-supplemental",
        action="store_true",
        help="Skip types, data types, table types, triggers and jobs",
    )
    parser.add_argument("--log-level", help="Override log level (DEBUG, INFO, WARNING, ...)")
    parser.add_argument("--keep-logs-days", type=int, default=30, help="Delete log files older than this many days")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    if args.log_level:
        set_level(args.log_level)
    cleanup_old_logs(args.keep_logs_days)

    try:
        settings = load_settings(args.config, overrides=_overrides(args))
    except ConfigurationError as exc:
        logger.error("%s", exc)
        return 1

    result = export(settings)
    if not result.succeeded:
        return 1
    logger.info("Scripts written to %s", Path(settings.export_folder).resolve())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
