"""Append-only, self-describing result log.

The column set of the log is not known in advance: it is discovered from the
live simulation (its parameters and the metric series it records) the first
time the log is created, written as the header line, and frozen for the life
of the file. Each run then appends exactly one line.

The file is opened, written, flushed and closed on every call so that a crash
mid-sweep loses at most the row being written.
"""

import csv
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

import pandas as pd

from simsweep.core.engine import MetricSeries, SimulationEngine
from simsweep.core.outcome import Failure, RunOutcome, Success

logger = logging.getLogger(__name__)

DEFAULT_DELIMITER = ","
DEFAULT_PLACEHOLDER = "/"
NO_ERROR = "N/A"

MESHING_TIME_COLUMN = "Total Meshing Time [min]"
DERIVED_COLUMNS = [
    MESHING_TIME_COLUMN,
    "Cell Count",
    "Face Count",
    "Vertex Count",
    "Iteration",
]
TRAILING_COLUMNS = ["Error", "Comment"]


def sanitize_text(
    text: Any,
    delimiter: str = DEFAULT_DELIMITER,
    placeholder: str = DEFAULT_PLACEHOLDER,
) -> str:
    """Makes free text safe to store in a single delimited field.

    Line breaks are removed and every occurrence of the delimiter is replaced
    by the placeholder.
    """
    text = "" if text is None else str(text)
    text = text.replace("\r", "").replace("\n", "")
    return text.replace(delimiter, placeholder).strip()


def _column_name(name: str, delimiter: str) -> str:
    return sanitize_text(name, delimiter, "")


def metric_column_name(
    series: MetricSeries, delimiter: str = DEFAULT_DELIMITER, with_unit: bool = True
) -> str:
    """Builds the column name of a metric series.

    A redundant 'Monitor' label is stripped and the unit is appended in
    brackets, e.g. 'Drag Monitor' in N becomes 'Drag [N]'.
    """
    name = series.name.replace("Monitor", "").strip()
    if with_unit:
        name = f"{name} [{series.unit}]"
    return _column_name(name, delimiter)


def discover_schema(
    engine: SimulationEngine, delimiter: str = DEFAULT_DELIMITER
) -> List[str]:
    """Enumerates the columns of the log from the live simulation.

    Args:
        engine: The simulation whose parameters and metric series are listed.
        delimiter: Field delimiter; it is stripped from every column name.

    Returns:
        Ordered column names: parameters, coefficients, reports, derived
        metrics, residuals, then 'Error' and 'Comment'.
    """
    columns = []

    logger.info("|--Getting parameters...")
    columns.extend(_column_name(name, delimiter) for name in engine.parameter_names())

    logger.info("|--Getting coefficients...")
    columns.extend(
        metric_column_name(series, delimiter)
        for series in engine.metric_series("coefficients")
    )

    logger.info("|--Getting reports...")
    columns.extend(
        metric_column_name(series, delimiter)
        for series in engine.metric_series("reports")
    )

    columns.extend(DERIVED_COLUMNS)

    logger.info("|--Getting residuals...")
    columns.extend(
        _column_name(series.name, delimiter)
        for series in engine.metric_series("residuals")
    )

    columns.extend(TRAILING_COLUMNS)
    return columns


@dataclass
class ResultRow:
    """One line of the log: ordered (column, value) pairs plus trailing fields."""

    fields: List[Tuple[str, Any]] = field(default_factory=list)
    error: str = NO_ERROR
    comment: str = NO_ERROR

    def column_names(self) -> List[str]:
        return [name for name, _ in self.fields]


@dataclass
class LogHandle:
    """A result log whose schema has been frozen."""

    path: str
    columns: List[str]
    delimiter: str = DEFAULT_DELIMITER
    placeholder: str = DEFAULT_PLACEHOLDER

    @property
    def data_columns(self) -> List[str]:
        """Columns before the trailing 'Error' and 'Comment' fields."""
        return self.columns[: -len(TRAILING_COLUMNS)]


def _read_header(path: str, delimiter: str) -> List[str]:
    with open(path, "r", encoding="utf-8") as f:
        first_line = f.readline().rstrip("\r\n")
    return [name.strip() for name in first_line.split(delimiter)] if first_line else []


def ensure_initialized(
    path: str,
    schema_factory: Callable[[], List[str]],
    delimiter: str = DEFAULT_DELIMITER,
    placeholder: str = DEFAULT_PLACEHOLDER,
) -> LogHandle:
    """Creates the log with its header unless it already exists.

    Args:
        path: Path of the log file.
        schema_factory: Called only when the file has to be created, to
            discover the column names.
        delimiter: Field delimiter.
        placeholder: Replacement for the delimiter inside free text.

    Returns:
        A handle carrying the frozen columns. For an existing file these are
        read back from its header line and the file is not touched.

    Note:
        An I/O error while creating the file is logged, not raised; the handle
        is still returned so the sweep can proceed.
    """
    if os.path.exists(path) and os.path.getsize(path) > 0:
        columns = _read_header(path, delimiter)
        logger.info(
            "Appending to existing result log",
            extra={"file_path": path, "num_columns": len(columns)},
        )
        return LogHandle(path, columns, delimiter, placeholder)

    columns = [_column_name(name, delimiter) for name in schema_factory()]
    header = delimiter.join(columns)
    try:
        parent = os.path.dirname(os.path.abspath(path))
        os.makedirs(parent, exist_ok=True)
        logger.info("File created", extra={"file_path": path})
        logger.info("Writing spreadsheet header")
        with open(path, "w", encoding="utf-8") as f:
            f.write(header + "\n")
            f.flush()
        logger.info(f"Header written: {header}")
    except OSError:
        logger.error(
            "Failed to create result log", exc_info=True, extra={"file_path": path}
        )
    return LogHandle(path, columns, delimiter, placeholder)


def _format_value(value: Any, delimiter: str, placeholder: str) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return sanitize_text(value, delimiter, placeholder)
    return str(value)


def build_row(
    handle: LogHandle, outcome: RunOutcome, comment: Optional[str] = None
) -> ResultRow:
    """Turns a run outcome into a log row.

    Parameter values are placed under their header column by name, whatever
    subset of the parameters the outcome carries; header parameters it lacks
    are left blank. A successful run then carries its metrics in live order
    and the 'N/A' error sentinel. A failed run fills every other column of the
    frozen schema with blanks and carries the error message.
    """
    comment = comment if comment is not None else NO_ERROR

    if isinstance(outcome, Success):
        metric_names = {name for name, _ in outcome.metrics}
        parameter_columns = [
            name for name in handle.data_columns if name not in metric_names
        ]
        fields = _parameter_fields(handle, outcome, parameter_columns)
        fields.extend(outcome.metrics)
        return ResultRow(fields=fields, error=NO_ERROR, comment=comment)

    fields = _parameter_fields(handle, outcome, handle.data_columns)
    error = outcome.error if isinstance(outcome, Failure) else "Unknown failure"
    return ResultRow(fields=fields, error=error or "Unknown failure", comment=comment)


def _parameter_fields(
    handle: LogHandle, outcome: RunOutcome, columns: List[str]
) -> List[Tuple[str, Any]]:
    values = {
        _column_name(name, handle.delimiter): value
        for name, value in outcome.logged_parameters()
    }
    unknown = [name for name in values if name not in columns]
    if unknown:
        logger.warning(
            "Parameters missing from the log header are not recorded",
            extra={"file_path": handle.path, "parameters": unknown},
        )
    return [(name, values.get(name, "")) for name in columns]


def append_row(handle: LogHandle, row: ResultRow) -> bool:
    """Appends one row to the log.

    Never raises: a serialization or I/O failure is logged and the row is
    dropped, so one lost row cannot abort a sweep.

    Returns:
        True if the row was written.
    """
    try:
        if row.column_names() != handle.data_columns:
            logger.warning(
                "Result columns differ from the log header, appending positionally",
                extra={
                    "file_path": handle.path,
                    "expected": handle.data_columns,
                    "actual": row.column_names(),
                },
            )

        values = [
            _format_value(value, handle.delimiter, handle.placeholder)
            for _, value in row.fields
        ]
        values.append(sanitize_text(row.error, handle.delimiter, handle.placeholder))
        values.append(sanitize_text(row.comment, handle.delimiter, handle.placeholder))
        data = handle.delimiter.join(values)

        with open(handle.path, "a", encoding="utf-8") as f:
            f.write(data + "\n")
            f.flush()
        logger.info(f"Data written: {data}")
        return True
    except Exception:
        logger.error(
            "Failed to append row to result log",
            exc_info=True,
            extra={"file_path": handle.path},
        )
        return False


def load_result_log(path: str, delimiter: str = DEFAULT_DELIMITER) -> pd.DataFrame:
    """Reads a result log back into a DataFrame.

    Blank metric fields of failed runs become NaN; the 'N/A' sentinel in the
    'Error' and 'Comment' columns is kept as text. Fields are never quoted by
    `append_row`, so quote characters are read as plain text.
    """
    return pd.read_csv(
        path,
        sep=delimiter,
        quoting=csv.QUOTE_NONE,
        skipinitialspace=True,
        keep_default_na=False,
        na_values=[""],
    )
