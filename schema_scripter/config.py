"""Configuration loading utilities for the schema scripter."""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from schema_scripter.errors import ConfigurationError
from schema_scripter.models import ScripterSettings
from schema_scripter.utils.logger import setup_logging

# Load environment variables from .env if present.
load_dotenv()

logger = setup_logging(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "appsettings.json"
CONFIG_SECTION = "AppConfig"
ENV_PREFIX = "SCHEMA_SCRIPTER_"


def _snake_case(key: str) -> str:
    """ExportFolder -> export_folder; already snake_case keys pass through."""
    return re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", key).lower()


def _load_raw_config(config_path: Path) -> Dict[str, Any]:
    with config_path.open("r", encoding="utf-8-sig") as cfg_file:
        data = json.load(cfg_file)
    section = data.get(CONFIG_SECTION, data) if isinstance(data, dict) else {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"'{CONFIG_SECTION}' in {config_path} must be an object")
    return {_snake_case(key): value for key, value in section.items()}


def _env_overrides(environ: Mapping[str, str]) -> Dict[str, str]:
    overrides: Dict[str, str] = {}
    for name in ScripterSettings.model_fields:
        value = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if value is not None and value != "":
            overrides[name] = value
    return overrides


def load_settings(
    config_path: Optional[Path] = None,
    *,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ScripterSettings:
    """Build settings from the JSON file, the environment and explicit overrides.

    Later sources win. Every blank required field is logged before a single
    ``ConfigurationError`` is raised, so one run reports all of them.
    """

    values: Dict[str, Any] = {}

    path = config_path or DEFAULT_CONFIG_PATH
    absolute_path = path if path.is_absolute() else (PROJECT_ROOT / path).resolve()
    if absolute_path.exists():
        try:
            values.update(_load_raw_config(absolute_path))
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Configuration file {absolute_path} is not valid JSON: {exc}") from exc
        logger.debug("Loaded configuration from %s", absolute_path)
    elif config_path is not None:
        raise ConfigurationError(f"Configuration file not found: {absolute_path}")

    values.update(_env_overrides(os.environ if environ is None else environ))
    if overrides:
        values.update({key: value for key, value in overrides.items() if value is not None})

    known = {key: value for key, value in values.items() if key in ScripterSettings.model_fields}
    try:
        settings = ScripterSettings.model_validate(known)
    except ValidationError as exc:
        fields = [".".join(str(part) for part in error["loc"]) for error in exc.errors()]
        for field_name in fields:
            logger.error("Invalid %s", field_name)
        raise ConfigurationError(f"Invalid configuration: {', '.join(fields)}", fields) from exc

    missing = settings.missing_fields()
    if missing:
        for field_name in missing:
            logger.error("Invalid %s", field_name)
        raise ConfigurationError(f"Missing required settings: {', '.join(missing)}", missing)

    if settings.connection_string:
        settings = settings.model_copy(
            update={"connection_string": os.path.expandvars(settings.connection_string)}
        )
    return settings


__all__ = ["load_settings", "DEFAULT_CONFIG_PATH", "ENV_PREFIX"]
