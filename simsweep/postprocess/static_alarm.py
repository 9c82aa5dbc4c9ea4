import json
import logging
import os
from typing import Any, Dict, List

import pandas as pd

logger = logging.getLogger(__name__)


def check_thresholds(
    results_df: pd.DataFrame, output_dir: str, rules: List[Dict[str, Any]], **kwargs
) -> None:
    """Checks that metric columns of the result log stay within threshold ranges.

    A rule names columns by their exact header name or by the name without the
    bracketed unit, so 'Drag' matches the column 'Drag [N]'.

    Args:
        results_df: The result log, one row per run.
        output_dir: Directory for saving the alarm report.
        rules: List of rules, where each rule defines columns and their min/max thresholds.
            Format: [{"columns": ["var1", "var2"], "min": value, "max": value}, ...]
        **kwargs: Additional parameters from configuration, such as 'output_filename'.

    Note:
        Failed runs (blank metrics) are ignored. Logs ERROR for each threshold
        violation with the offending run rows. Writes alarm_report.json with one
        entry per checked column and a 'has_alarm' flag.
    """
    logger.info("Starting post-processing: Checking thresholds...")

    checked_columns_status: Dict[str, Dict[str, Any]] = {}

    for i, rule in enumerate(rules):
        min_val = rule.get("min")
        max_val = rule.get("max")
        columns_to_check = rule.get("columns", [])

        if not columns_to_check:
            logger.warning(f"Rule {i+1} does not specify 'columns', skipping.")
            continue

        for base_col_name in columns_to_check:
            matches = [
                col
                for col in results_df.columns
                if col == base_col_name or col.split(" [")[0] == base_col_name
            ]
            if not matches:
                logger.warning(
                    f"Column '{base_col_name}' not found in result log, skipping."
                )
                continue

            for df_col_name in matches:
                values = pd.to_numeric(results_df[df_col_name], errors="coerce")
                status = checked_columns_status.setdefault(
                    df_col_name, {"column": df_col_name, "has_alarm": False, "rows": []}
                )

                violations = pd.Series(False, index=values.index)
                if max_val is not None:
                    exceeded_max = values > max_val
                    if exceeded_max.any():
                        logger.error(
                            f"ALARM: Column '{df_col_name}' exceeds maximum threshold (Threshold: {max_val}, Value: {values[exceeded_max].max()})"
                        )
                    violations |= exceeded_max

                if min_val is not None:
                    exceeded_min = values < min_val
                    if exceeded_min.any():
                        logger.error(
                            f"ALARM: Column '{df_col_name}' is below minimum threshold (Threshold: {min_val}, Value: {values[exceeded_min].min()})"
                        )
                    violations |= exceeded_min

                if violations.any():
                    status["has_alarm"] = True
                    flagged = values.index[violations.to_numpy()]
                    rows = set(status["rows"]) | {int(r) for r in flagged}
                    status["rows"] = sorted(rows)

    final_report = list(checked_columns_status.values())

    output_filename = kwargs.get("output_filename", "alarm_report.json")
    report_path = os.path.join(output_dir, output_filename)
    with open(report_path, "w", encoding="utf-8") as f:
        json.dump(final_report, f, indent=4, ensure_ascii=False)

    total_alarms = sum(1 for entry in final_report if entry["has_alarm"])
    if total_alarms > 0:
        logger.info(
            f"{total_alarms} columns with alarms were found. See logs for details. Report generated at: {report_path}"
        )
    else:
        logger.info(
            f"Threshold check complete. All checked columns are within their thresholds. Report generated at: {report_path}"
        )
