import logging
import os

import numpy as np

from simsweep.core.engine import MetricSeries
from simsweep.core.jobs import ParameterSet
from simsweep.core.outcome import Failure, Success
from simsweep.core.result_log import (
    LogHandle,
    ResultRow,
    append_row,
    build_row,
    discover_schema,
    ensure_initialized,
    load_result_log,
    metric_column_name,
    sanitize_text,
)

EXPECTED_HEADER = [
    "Back Offset",
    "Side Offset",
    "Cd [none]",
    "Drag [N]",
    "Total Meshing Time [min]",
    "Cell Count",
    "Face Count",
    "Vertex Count",
    "Iteration",
    "Continuity",
    "Error",
    "Comment",
]


def _read_lines(path):
    with open(path, "r", encoding="utf-8") as f:
        return f.read().splitlines()


class TestSchema:
    def test_discover_schema_order(self, engine):
        assert discover_schema(engine) == EXPECTED_HEADER

    def test_metric_column_name_strips_monitor_and_adds_unit(self):
        assert metric_column_name(MetricSeries("Lift Monitor", "N")) == "Lift [N]"

    def test_delimiter_is_stripped_from_column_names(self, engine):
        engine.values = {"Offset, back": 1.0}
        engine.series["residuals"] = [MetricSeries("Energy, total")]
        columns = discover_schema(engine)
        assert columns[0] == "Offset back"
        assert "Energy total" in columns
        assert all("," not in name for name in columns)


class TestEnsureInitialized:
    def test_creates_file_with_single_header(self, engine, log_path):
        handle = ensure_initialized(log_path, lambda: discover_schema(engine))
        assert handle.columns == EXPECTED_HEADER
        assert _read_lines(log_path) == [",".join(EXPECTED_HEADER)]

    def test_creates_parent_directories(self, engine, tmp_path):
        path = str(tmp_path / "nested" / "dir" / "results.csv")
        ensure_initialized(path, lambda: discover_schema(engine))
        assert os.path.exists(path)

    def test_existing_file_is_left_untouched(self, engine, log_path):
        ensure_initialized(log_path, lambda: discover_schema(engine))
        with open(log_path, "a", encoding="utf-8") as f:
            f.write("row\n")
        before = _read_lines(log_path)

        calls = []

        def factory():
            calls.append(1)
            return ["Other"]

        handle = ensure_initialized(log_path, factory)
        assert calls == []
        assert handle.columns == EXPECTED_HEADER
        assert _read_lines(log_path) == before

    def test_creation_error_is_reported_not_raised(self, tmp_path, caplog):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        path = str(blocker / "results.csv")
        with caplog.at_level(logging.ERROR):
            handle = ensure_initialized(path, lambda: ["a", "Error", "Comment"])
        assert handle.columns == ["a", "Error", "Comment"]
        assert "Failed to create result log" in caplog.text


class TestSanitize:
    def test_delimiter_replaced_and_newlines_removed(self):
        assert sanitize_text("a, b\nc\r\n") == "a/ bc"

    def test_custom_delimiter(self):
        assert sanitize_text("x;y", delimiter=";", placeholder="|") == "x|y"

    def test_none_becomes_empty(self):
        assert sanitize_text(None) == ""


class TestRows:
    def _handle(self, engine, log_path):
        return ensure_initialized(log_path, lambda: discover_schema(engine))

    def test_success_row(self, engine, log_path):
        handle = self._handle(engine, log_path)
        outcome = Success(
            parameters=ParameterSet({"Back Offset": 6.0}),
            parameter_values=[("Back Offset", 6.0), ("Side Offset", 2.0)],
            metrics=list(zip(EXPECTED_HEADER[2:10], [0.35, 8.5, 1.0, 100, 300, 120, 3, 0.01])),
        )
        row = build_row(handle, outcome, "baseline")
        assert row.error == "N/A"
        assert row.column_names() == handle.data_columns
        assert append_row(handle, row)
        assert _read_lines(log_path)[1] == "6.0,2.0,0.35,8.5,1.0,100,300,120,3,0.01,N/A,baseline"

    def test_failure_row_has_blank_metrics(self, engine, log_path):
        handle = self._handle(engine, log_path)
        outcome = Failure(
            parameters=ParameterSet({"Back Offset": 8.0}),
            parameter_values=[("Back Offset", 8.0), ("Side Offset", 2.0)],
            error="mesh failed",
        )
        row = build_row(handle, outcome)
        assert row.column_names() == handle.data_columns
        append_row(handle, row)
        assert _read_lines(log_path)[1] == "8.0,2.0,,,,,,,,,mesh failed,N/A"

    def test_free_text_with_delimiter_round_trips(self, engine, log_path):
        handle = self._handle(engine, log_path)
        outcome = Failure(
            parameters=ParameterSet({}),
            parameter_values=[("Back Offset", 8.0), ("Side Offset", 2.0)],
            error="Volume mesh failed: cells 0, faces 0",
        )
        append_row(handle, build_row(handle, outcome, "retry, smaller base\nsize"))

        df = load_result_log(log_path)
        assert list(df.columns) == EXPECTED_HEADER
        assert len(df) == 1
        assert df.loc[0, "Error"] == "Volume mesh failed: cells 0/ faces 0"
        assert df.loc[0, "Comment"] == "retry/ smaller basesize"
        assert np.isnan(df.loc[0, "Cd [none]"])

    def test_failure_without_snapshot_aligns_parameters_by_name(
        self, engine, log_path
    ):
        handle = self._handle(engine, log_path)
        outcome = Failure(parameters=ParameterSet({"Side Offset": 7.0}), error="x")
        row = build_row(handle, outcome)

        assert row.column_names() == handle.data_columns
        append_row(handle, row)
        assert _read_lines(log_path)[1] == ",7.0,,,,,,,,,x,N/A"

    def test_success_parameters_follow_header_order(self, engine, log_path):
        handle = self._handle(engine, log_path)
        outcome = Success(
            parameters=ParameterSet({}),
            parameter_values=[("Side Offset", 3.0), ("Back Offset", 6.0)],
            metrics=list(zip(EXPECTED_HEADER[2:10], [0.35, 8.5, 1.0, 100, 300, 120, 3, 0.01])),
        )
        row = build_row(handle, outcome)
        assert row.column_names() == handle.data_columns
        assert row.fields[:2] == [("Back Offset", 6.0), ("Side Offset", 3.0)]

    def test_quote_characters_round_trip(self, engine, log_path):
        handle = self._handle(engine, log_path)
        for comment in ['"draft', 'second "take"']:
            outcome = Failure(parameters=ParameterSet({"Back Offset": 1.0}), error='"x')
            append_row(handle, build_row(handle, outcome, comment))

        df = load_result_log(log_path)
        assert list(df["Comment"]) == ['"draft', 'second "take"']
        assert list(df["Error"]) == ['"x', '"x']
        assert list(df["Back Offset"]) == [1.0, 1.0]

    def test_append_never_raises(self, tmp_path, caplog):
        handle = LogHandle(str(tmp_path), ["a", "Error", "Comment"])
        with caplog.at_level(logging.ERROR):
            written = append_row(handle, ResultRow(fields=[("a", 1.0)]))
        assert written is False
        assert "Failed to append row" in caplog.text

    def test_schema_drift_is_appended_positionally(self, tmp_path, caplog):
        path = str(tmp_path / "drift.csv")
        handle = ensure_initialized(path, lambda: ["a", "b", "Error", "Comment"])
        row = ResultRow(fields=[("a", 1.0), ("c", 2.0), ("d", 3.0)])
        with caplog.at_level(logging.WARNING):
            assert append_row(handle, row)
        assert "differ from the log header" in caplog.text
        assert _read_lines(path)[1] == "1.0,2.0,3.0,N/A,N/A"

    def test_rows_accumulate_across_handles(self, engine, log_path):
        for _ in range(3):
            handle = self._handle(engine, log_path)
            outcome = Failure(parameters=ParameterSet({"Back Offset": 1.0}), error="x")
            append_row(handle, build_row(handle, outcome))
        lines = _read_lines(log_path)
        assert len(lines) == 4
        assert lines[0] == ",".join(EXPECTED_HEADER)
