"""Centralized SQL Server engine helpers."""

from __future__ import annotations

from functools import lru_cache
from urllib.parse import quote_plus

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from schema_scripter.models import ScripterSettings
from schema_scripter.utils.logger import setup_logging

logger = setup_logging(__name__)

DEFAULT_DRIVER = "ODBC Driver 18 for SQL Server"


def _odbc_url(odbc_parts: list[str]) -> str:
    return f"mssql+pyodbc:///?odbc_connect={quote_plus(';'.join(odbc_parts))}"


def _odbc_value(value: str) -> str:
    """Brace-quote values that would otherwise end the attribute early."""
    if any(char in value for char in ";{}") or value != value.strip():
        return "{" + value.replace("}", "}}") + "}"
    return value


def _yes_no(flag: bool) -> str:
    return "yes" if flag else "no"


def normalize_connection_string(connection_string: str) -> str:
    """Convert a JDBC SQL Server connection string to SQLAlchemy format."""
    if connection_string.startswith("jdbc:sqlserver://"):
        rest = connection_string[len("jdbc:sqlserver://") :]
        host_port, _, params = rest.partition(";")
        host, _, port = host_port.partition(":")
        database = ""
        user = ""
        password = ""
        driver = DEFAULT_DRIVER
        for part in params.split(";"):
            if not part:
                continue
            key, _, value = part.partition("=")
            key = key.lower()
            if key == "databasename":
                database = value
            elif key == "user":
                user = value
            elif key == "password":
                password = value
            elif key == "driver":
                driver = value
        server_part = f"{host},{port}" if port else host
        odbc_parts = [
            f"DRIVER={driver}",
            f"SERVER={server_part}",
            f"DATABASE={database}",
            f"UID={_odbc_value(user)}",
            f"PWD={_odbc_value(password)}",
            "Encrypt=yes",
            "TrustServerCertificate=yes",
        ]
        return _odbc_url(odbc_parts)
    return connection_string


def build_connection_url(settings: ScripterSettings) -> str:
    """SQLAlchemy URL for the configured server.

    No database is named in the URL: the export selects it explicitly with
    ``USE`` so that a missing database is reported as its own failure.
    """
    if settings.connection_string:
        return normalize_connection_string(settings.connection_string)
    odbc_parts = [
        f"DRIVER={settings.driver}",
        f"SERVER={settings.server}",
        f"UID={_odbc_value(settings.user)}",
        f"PWD={_odbc_value(settings.password)}",
        f"Encrypt={_yes_no(settings.encrypt)}",
        f"TrustServerCertificate={_yes_no(settings.trust_server_certificate)}",
    ]
    return _odbc_url(odbc_parts)


@lru_cache(maxsize=8)
def _engine_cache(url: str) -> Engine:
    return create_engine(url, pool_pre_ping=True, pool_recycle=1800)


def get_engine(settings: ScripterSettings) -> Engine:
    """Retrieve a cached SQLAlchemy engine for the configured server."""
    url = build_connection_url(settings)
    logger.debug("Using engine for server %s", settings.server or "<connection string>")
    return _engine_cache(url)


__all__ = ["build_connection_url", "get_engine", "normalize_connection_string"]
