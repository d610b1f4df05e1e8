from pathlib import Path
from typing import Dict, List, Optional

import pytest

from schema_scripter.errors import (
    ConnectivityError,
    ExportCancelledError,
    FetchError,
    SelectionError,
    WriteError,
)
from schema_scripter.export_pipeline.orchestrator import ExportOrchestrator
from schema_scripter.export_pipeline.run_context import RunContext
from schema_scripter.export_pipeline.writer import SqlScriptWriter
from schema_scripter.models import (
    AvailabilityResult,
    ExportState,
    RoutineDefinition,
    RoutineKind,
    ScripterSettings,
    TableDefinition,
)


class FakeProvider:
    def __init__(
        self,
        *,
        tables: Optional[List[TableDefinition]] = None,
        procedures: Optional[List[RoutineDefinition]] = None,
        views: Optional[List[RoutineDefinition]] = None,
        functions: Optional[List[RoutineDefinition]] = None,
        availability: AvailabilityResult = AvailabilityResult(True),
        selectable: bool = True,
        failing_fetch: Optional[str] = None,
    ) -> None:
        self.tables = tables or []
        self.procedures = procedures or []
        self.views = views or []
        self.functions = functions or []
        self.availability = availability
        self.selectable = selectable
        self.failing_fetch = failing_fetch
        self.calls: List[str] = []

    def check_availability(self) -> AvailabilityResult:
        self.calls.append("check_availability")
        return self.availability

    def select_database(self, name: str) -> bool:
        self.calls.append(f"select_database:{name}")
        return self.selectable

    def _fetch(self, category: str, rows):
        self.calls.append(category)
        if category == self.failing_fetch:
            raise FetchError(category, "connection reset")
        return rows

    def fetch_tables(self):
        return self._fetch("tables", self.tables)

    def fetch_procedures(self):
        return self._fetch("procedures", self.procedures)

    def fetch_views(self):
        return self._fetch("views", self.views)

    def fetch_functions(self):
        return self._fetch("functions", self.functions)


class FakeSupplemental:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.calls = 0
        self.error = error

    def script_all(self, context) -> Dict[str, int]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return {"Types": 1, "Jobs": 2}


class FailingWriter(SqlScriptWriter):
    """Fails on the n-th write; earlier writes go to disk."""

    def __init__(self, output_dir: Path, fail_on: int) -> None:
        super().__init__(output_dir)
        self.fail_on = fail_on
        self.attempts = 0

    def write(self, folder_name: str, filename: str, script: str) -> Path:
        self.attempts += 1
        if self.attempts == self.fail_on:
            raise WriteError(self.output_dir / folder_name / filename, "disk full")
        return super().write(folder_name, filename, script)


class CancellingWriter(SqlScriptWriter):
    def __init__(self, output_dir: Path, context_ref: List[RunContext], cancel_after: int) -> None:
        super().__init__(output_dir)
        self.context_ref = context_ref
        self.cancel_after = cancel_after
        self.writes = 0

    def write(self, folder_name: str, filename: str, script: str) -> Path:
        path = super().write(folder_name, filename, script)
        self.writes += 1
        if self.writes == self.cancel_after:
            self.context_ref[0].cancel()
        return path


def _settings(tmp_path: Path, **kwargs) -> ScripterSettings:
    values = {"server": "localhost", "user": "sa", "password": "pw", "database": "Demo"}
    values.update(kwargs)
    return ScripterSettings(export_folder=str(tmp_path), **values)


def _procedure(name: str, definition: Optional[str] = None, schema: str = "dbo") -> RoutineDefinition:
    return RoutineDefinition(
        kind=RoutineKind.PROCEDURE,
        schema_name=schema,
        name=name,
        definition=definition or f"CREATE PROCEDURE [{schema}].[{name}] AS SELECT 1",
    )


def _view(name: str, definition: Optional[str] = None) -> RoutineDefinition:
    return RoutineDefinition(
        kind=RoutineKind.VIEW,
        schema_name="dbo",
        name=name,
        definition=definition or f"CREATE VIEW [dbo].[{name}] AS SELECT 1 AS x",
        uses_quoted_identifier=False,
    )


def _function(name: str) -> RoutineDefinition:
    return RoutineDefinition(
        kind=RoutineKind.FUNCTION,
        schema_name="dbo",
        name=name,
        definition=f"CREATE FUNCTION [dbo].[{name}]() RETURNS int AS BEGIN RETURN 1 END\r\n",
    )


def _table(name: str) -> TableDefinition:
    return TableDefinition(
        schema_name="dbo",
        name=name,
        definition=f"SET ANSI_NULLS ON\r\nGO\r\nCREATE TABLE [dbo].[{name}] ([id] int NOT NULL)\r\nGO\r\n",
    )


def test_full_run_writes_every_category(tmp_path: Path) -> None:
    provider = FakeProvider(
        tables=[_table("Users")],
        procedures=[_procedure("GetUsers", "CREATE PROCEDURE [old].[GetUsersV1] AS SELECT 1")],
        views=[_view("v_active")],
        functions=[_function("fn_one")],
    )
    supplemental = FakeSupplemental()
    with RunContext(_settings(tmp_path)) as context:
        orchestrator = ExportOrchestrator(context, provider, supplemental=supplemental)
        result = orchestrator.run()

    assert result.succeeded
    assert result.error is None
    assert orchestrator.state_history == [
        ExportState.IDLE,
        ExportState.CONNECTING,
        ExportState.TABLES,
        ExportState.PROCEDURES,
        ExportState.VIEWS,
        ExportState.FUNCTIONS,
        ExportState.SUPPLEMENTAL,
        ExportState.DONE,
    ]
    assert provider.calls == [
        "check_availability",
        "select_database:Demo",
        "tables",
        "procedures",
        "views",
        "functions",
    ]
    assert supplemental.calls == 1
    assert result.counts() == {
        "Tables": 1,
        "Stored Procedures": 1,
        "Views": 1,
        "Functions": 1,
        "Supplemental": 3,
    }

    table_bytes = (tmp_path / "Tables" / "dbo.Users.sql").read_bytes()
    assert table_bytes == b"\xef\xbb\xbf" + _table("Users").definition.encode("utf-8")

    procedure = (tmp_path / "Stored Procedures" / "dbo.GetUsers.sql").read_text(encoding="utf-8-sig")
    assert procedure == (
        "SET ANSI_NULLS ON\r\nGO\r\nSET QUOTED_IDENTIFIER ON\r\nGO\r\n"
        "CREATE PROCEDURE [dbo].[GetUsers] AS SELECT 1\r\nGO\r\n"
    )

    view = (tmp_path / "Views" / "dbo.v_active.sql").read_text(encoding="utf-8-sig")
    assert "SET QUOTED_IDENTIFIER OFF\r\nGO\r\n" in view

    function = (tmp_path / "Functions" / "dbo.fn_one.sql").read_text(encoding="utf-8-sig")
    assert function.endswith("END\r\nGO\r\n")


def test_empty_categories_do_not_stop_the_run(tmp_path: Path) -> None:
    provider = FakeProvider(views=[_view("v1")])
    with RunContext(_settings(tmp_path)) as context:
        result = ExportOrchestrator(context, provider, supplemental=FakeSupplemental()).run()

    assert result.succeeded
    statuses = {stage.stage: stage.status for stage in result.stages}
    assert statuses["Tables"] == "empty"
    assert statuses["Stored Procedures"] == "empty"
    assert statuses["Views"] == "success"
    assert statuses["Functions"] == "empty"
    assert not (tmp_path / "Tables").exists()
    assert (tmp_path / "Views" / "dbo.v1.sql").exists()


def test_third_write_failure_stops_the_run(tmp_path: Path) -> None:
    procedures = [_procedure(f"p{i:02d}") for i in range(10)]
    provider = FakeProvider(procedures=procedures, views=[_view("never_written")])
    supplemental = FakeSupplemental()
    writer = FailingWriter(tmp_path, fail_on=3)

    with RunContext(_settings(tmp_path), writer=writer) as context:
        orchestrator = ExportOrchestrator(context, provider, supplemental=supplemental)
        result = orchestrator.run()

    assert not result.succeeded
    assert result.state is ExportState.FAILED
    assert isinstance(result.error, WriteError)
    assert orchestrator.state_history[-2:] == [ExportState.PROCEDURES, ExportState.FAILED]

    written = sorted(path.name for path in (tmp_path / "Stored Procedures").iterdir())
    assert written == ["dbo.p00.sql", "dbo.p01.sql"]
    assert writer.attempts == 3

    procedures_stage = result.stages[-1]
    assert procedures_stage.status == "failed"
    assert procedures_stage.exported == 2
    assert "views" not in provider.calls
    assert supplemental.calls == 0


def test_fetch_failure_is_distinct_from_empty(tmp_path: Path) -> None:
    provider = FakeProvider(tables=[_table("T")], failing_fetch="views")
    with RunContext(_settings(tmp_path)) as context:
        result = ExportOrchestrator(context, provider, supplemental=FakeSupplemental()).run()

    assert isinstance(result.error, FetchError)
    assert result.stages[-1].stage == "Views"
    assert result.stages[-1].status == "failed"
    assert "functions" not in provider.calls
    assert (tmp_path / "Tables" / "dbo.T.sql").exists()


def test_unreachable_server_fails_before_any_fetch(tmp_path: Path) -> None:
    provider = FakeProvider(availability=AvailabilityResult(False, "Server was not found."))
    with RunContext(_settings(tmp_path)) as context:
        orchestrator = ExportOrchestrator(context, provider, supplemental=FakeSupplemental())
        result = orchestrator.run()

    assert isinstance(result.error, ConnectivityError)
    assert str(result.error) == "Server was not found."
    assert provider.calls == ["check_availability"]
    assert orchestrator.state_history == [ExportState.IDLE, ExportState.CONNECTING, ExportState.FAILED]
    assert not any(tmp_path.iterdir())


def test_unknown_connection_error_gets_generic_message(tmp_path: Path) -> None:
    provider = FakeProvider(availability=AvailabilityResult(False))
    with RunContext(_settings(tmp_path)) as context:
        result = ExportOrchestrator(context, provider).run()

    assert isinstance(result.error, ConnectivityError)
    assert str(result.error) == "Error connecting to server"


def test_database_selection_failure(tmp_path: Path) -> None:
    provider = FakeProvider(selectable=False)
    with RunContext(_settings(tmp_path, database="Missing")) as context:
        result = ExportOrchestrator(context, provider).run()

    assert isinstance(result.error, SelectionError)
    assert "Missing" in str(result.error)
    assert provider.calls == ["check_availability", "select_database:Missing"]


def test_supplemental_failure_is_fatal(tmp_path: Path) -> None:
    provider = FakeProvider(procedures=[_procedure("p")])
    supplemental = FakeSupplemental(error=FetchError("Types", "permission denied"))
    with RunContext(_settings(tmp_path)) as context:
        orchestrator = ExportOrchestrator(context, provider, supplemental=supplemental)
        result = orchestrator.run()

    assert result.state is ExportState.FAILED
    assert orchestrator.state_history[-2:] == [ExportState.SUPPLEMENTAL, ExportState.FAILED]
    assert result.stages[-1].stage == "Supplemental"
    assert (tmp_path / "Stored Procedures" / "dbo.p.sql").exists()


def test_supplemental_can_be_disabled(tmp_path: Path) -> None:
    supplemental = FakeSupplemental()
    with RunContext(_settings(tmp_path, run_supplemental=False)) as context:
        result = ExportOrchestrator(context, FakeProvider(), supplemental=supplemental).run()

    assert result.succeeded
    assert supplemental.calls == 0


def test_unmatched_headers_are_written_and_reported(tmp_path: Path) -> None:
    odd = _procedure("p_odd", "CREATE PROCEDURE p_odd AS SELECT 1")
    provider = FakeProvider(procedures=[_procedure("p_ok"), odd])
    with RunContext(_settings(tmp_path)) as context:
        result = ExportOrchestrator(context, provider).run()

    stage = next(stage for stage in result.stages if stage.stage == "Stored Procedures")
    assert stage.uncorrected == ["dbo.p_odd"]
    assert stage.exported == 2
    text = (tmp_path / "Stored Procedures" / "dbo.p_odd.sql").read_text(encoding="utf-8-sig")
    assert "CREATE PROCEDURE p_odd AS SELECT 1\r\nGO\r\n" in text


def test_cancellation_stops_before_next_write(tmp_path: Path) -> None:
    procedures = [_procedure(f"p{i}") for i in range(5)]
    context_ref: List[RunContext] = []
    writer = CancellingWriter(tmp_path, context_ref, cancel_after=2)
    supplemental = FakeSupplemental()

    with RunContext(_settings(tmp_path), writer=writer) as context:
        context_ref.append(context)
        result = ExportOrchestrator(context, FakeProvider(procedures=procedures), supplemental=supplemental).run()

    assert result.state is ExportState.FAILED
    assert isinstance(result.error, ExportCancelledError)
    assert result.stages[-1].status == "cancelled"
    assert writer.writes == 2
    assert len(list((tmp_path / "Stored Procedures").iterdir())) == 2
    assert supplemental.calls == 0


def test_finished_orchestrator_cannot_rerun(tmp_path: Path) -> None:
    with RunContext(_settings(tmp_path)) as context:
        orchestrator = ExportOrchestrator(context, FakeProvider())
        orchestrator.run()

        with pytest.raises(RuntimeError):
            orchestrator.run()


def test_timings_cover_each_category(tmp_path: Path) -> None:
    with RunContext(_settings(tmp_path)) as context:
        result = ExportOrchestrator(context, FakeProvider(), supplemental=FakeSupplemental()).run()

    for label in ("Tables", "Stored Procedures", "Views", "Functions", "Supplemental"):
        assert label in result.timings
