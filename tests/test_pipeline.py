from pathlib import Path

from schema_scripter.errors import ConfigurationError
from schema_scripter.export_pipeline.pipeline import SchemaExportPipeline
from schema_scripter.models import AvailabilityResult, ExportState, ScripterSettings


class UnreachableProvider:
    def check_availability(self) -> AvailabilityResult:
        return AvailabilityResult(False, "Server was not found.")


def test_unparseable_connection_string_fails_the_run(tmp_path: Path) -> None:
    settings = ScripterSettings(
        connection_string="not a url at all", database="Sales", export_folder=str(tmp_path)
    )

    result = SchemaExportPipeline(settings).run()

    assert result.state is ExportState.FAILED
    assert isinstance(result.error, ConfigurationError)
    assert "engine" in str(result.error)
    assert not any(tmp_path.iterdir())


def test_given_provider_skips_engine_creation(tmp_path: Path) -> None:
    settings = ScripterSettings(
        connection_string="not a url at all", database="Sales", export_folder=str(tmp_path)
    )

    result = SchemaExportPipeline(settings, provider=UnreachableProvider()).run()

    assert result.state is ExportState.FAILED
    assert str(result.error) == "Server was not found."
