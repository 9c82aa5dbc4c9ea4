import logging
import os

import pandas as pd

logger = logging.getLogger(__name__)


def summarize_failures(
    results_df: pd.DataFrame, output_dir: str, error_column: str = "Error", **kwargs
) -> None:
    """Writes the failed runs of a sweep to a CSV report.

    A run has failed when its error column holds anything other than the
    'N/A' sentinel.

    Args:
        results_df: The result log, one row per run.
        output_dir: Directory for saving the report.
        error_column: Name of the error column.
        **kwargs: Additional parameters from configuration, such as 'output_filename'.
    """
    logger.info("Starting post-processing: Summarizing failed runs...")

    if error_column not in results_df.columns:
        logger.warning(f"Column '{error_column}' not found in result log, skipping.")
        return

    errors = results_df[error_column].fillna("").astype(str).str.strip()
    failed = results_df[(errors != "N/A") & (errors != "")]

    output_filename = kwargs.get("output_filename", "failure_report.csv")
    report_path = os.path.join(output_dir, output_filename)
    failed.to_csv(report_path, index_label="run")

    if failed.empty:
        logger.info(
            f"All {len(results_df)} runs succeeded. Report generated at: {report_path}"
        )
        return

    counts = failed[error_column].value_counts()
    for message, count in counts.items():
        logger.warning(
            "Failed runs",
            extra={"error": message, "count": int(count)},
        )
    logger.info(
        f"{len(failed)} of {len(results_df)} runs failed. Report generated at: {report_path}"
    )
