import json
import logging

import numpy as np
import pandas as pd
import pytest

from simsweep.postprocess.failure_report import summarize_failures
from simsweep.postprocess.static_alarm import check_thresholds


@pytest.fixture()
def results_df():
    return pd.DataFrame(
        {
            "Back Offset": [6.0, 8.0, 10.0, 12.0],
            "Cd [none]": [0.31, 0.42, np.nan, 0.28],
            "Drag [N]": [120.0, 180.0, np.nan, 95.0],
            "Error": ["N/A", "N/A", "mesh failed", "N/A"],
            "Comment": ["N/A", "N/A", "N/A", "N/A"],
        }
    )


def _read_report(path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


class TestCheckThresholds:
    def test_violations_are_reported_by_row(self, results_df, tmp_path, caplog):
        rules = [{"columns": ["Drag"], "max": 150.0, "min": 100.0}]
        with caplog.at_level(logging.ERROR):
            check_thresholds(results_df, str(tmp_path), rules)

        report = _read_report(tmp_path / "alarm_report.json")
        assert report == [{"column": "Drag [N]", "has_alarm": True, "rows": [1, 3]}]
        assert "exceeds maximum threshold" in caplog.text
        assert "below minimum threshold" in caplog.text

    def test_failed_runs_are_ignored(self, results_df, tmp_path):
        rules = [{"columns": ["Cd [none]"], "min": 0.2}]
        check_thresholds(results_df, str(tmp_path), rules)
        report = _read_report(tmp_path / "alarm_report.json")
        assert report == [{"column": "Cd [none]", "has_alarm": False, "rows": []}]

    def test_rules_on_the_same_column_merge_rows(self, results_df, tmp_path):
        rules = [
            {"columns": ["Cd"], "max": 0.4},
            {"columns": ["Cd"], "min": 0.3},
        ]
        check_thresholds(results_df, str(tmp_path), rules)
        report = _read_report(tmp_path / "alarm_report.json")
        assert report[0]["rows"] == [1, 3]

    def test_unknown_columns_are_skipped(self, results_df, tmp_path, caplog):
        rules = [{"max": 1.0}, {"columns": ["Lift"], "max": 1.0}]
        with caplog.at_level(logging.WARNING):
            check_thresholds(
                results_df, str(tmp_path), rules, output_filename="alarms.json"
            )
        assert _read_report(tmp_path / "alarms.json") == []
        assert "does not specify 'columns'" in caplog.text
        assert "Column 'Lift' not found" in caplog.text


class TestSummarizeFailures:
    def test_failed_runs_are_written(self, results_df, tmp_path):
        summarize_failures(results_df, str(tmp_path))

        report = pd.read_csv(tmp_path / "failure_report.csv")
        assert list(report["run"]) == [2]
        assert list(report["Error"]) == ["mesh failed"]

    def test_all_succeeded_writes_empty_report(self, results_df, tmp_path, caplog):
        ok = results_df[results_df["Error"] == "N/A"]
        with caplog.at_level(logging.INFO):
            summarize_failures(ok, str(tmp_path))
        assert len(pd.read_csv(tmp_path / "failure_report.csv")) == 0
        assert "All 3 runs succeeded" in caplog.text

    def test_missing_error_column_is_skipped(self, results_df, tmp_path):
        summarize_failures(results_df, str(tmp_path), error_column="Status")
        assert not (tmp_path / "failure_report.csv").exists()
