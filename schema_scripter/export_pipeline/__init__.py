"""Schema export pipeline package."""

from .metadata_provider import MetadataProvider, SqlServerMetadataProvider
from .orchestrator import ExportOrchestrator
from .pipeline import SchemaExportPipeline
from .run_context import RunContext
from .supplemental import SupplementalScripter
from .writer import SqlScriptWriter, script_filename

__all__ = [
    "MetadataProvider",
    "SqlServerMetadataProvider",
    "ExportOrchestrator",
    "SchemaExportPipeline",
    "RunContext",
    "SupplementalScripter",
    "SqlScriptWriter",
    "script_filename",
]
