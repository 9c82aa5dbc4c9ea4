"""Status channel of a sweep.

Every status line of a sweep (run banners, countdown, per-run failures) goes
through the standard `logging` module as JSON. A sweep started from a config
file also keeps its own log file, `sweep_<run_timestamp>.log`, in the log
directory of its run workspace. The result log is separate and is never
written here.
"""

import functools
import json
import logging
import os
import sys
import time
from typing import Any, Callable, Dict, Optional

from pythonjsonlogger import jsonlogger

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def delete_old_logs(log_dir: str, max_files: int) -> None:
    """Removes the oldest sweep log files so that at most `max_files` remain.

    Args:
        log_dir: Directory holding the `.log` files of earlier sweeps.
        max_files: Number of `.log` files to keep, newest by modification time.
    """
    log_files = [
        os.path.join(log_dir, f) for f in os.listdir(log_dir) if f.endswith(".log")
    ]
    if len(log_files) <= max_files:
        return

    log_files.sort(key=os.path.getmtime)
    for path in log_files[: len(log_files) - max_files]:
        os.remove(path)


def _compact(config: Dict[str, Any]) -> str:
    return json.dumps(config, separators=(",", ":"), ensure_ascii=False)


def setup_logging(
    config: Dict[str, Any], original_config: Optional[Dict[str, Any]] = None
) -> Optional[str]:
    """Routes the sweep's status lines to the console and its run workspace.

    Args:
        config: The runtime configuration. Reads 'logging.log_level',
            'logging.log_to_console', 'logging.log_count', 'paths.log_dir'
            and 'run_timestamp'.
        original_config: The configuration as written by the user, recorded
            next to the runtime one so a sweep can be traced back to its file.

    Returns:
        Path of the sweep log file, or None when no log directory is configured.

    Note:
        Replaces any handler already on the root logger, so calling it twice
        does not duplicate lines. Old sweep logs beyond 'logging.log_count'
        are deleted before the new file is opened.
    """
    log_config = config.get("logging", {})
    log_level_str = log_config.get("log_level", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    formatter = jsonlogger.JsonFormatter(LOG_FORMAT)

    if log_config.get("log_to_console", True):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    log_dir = config.get("paths", {}).get("log_dir")
    if not log_dir:
        return None

    log_dir = os.path.abspath(log_dir)
    os.makedirs(log_dir, exist_ok=True)
    delete_old_logs(log_dir, log_config.get("log_count", 5))

    run_timestamp = config.get("run_timestamp", "manual")
    log_file_path = os.path.join(log_dir, f"sweep_{run_timestamp}.log")
    file_handler = logging.FileHandler(log_file_path, mode="a", encoding="utf-8")
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    logger.info(
        "Sweep log opened",
        extra={
            "log_file": log_file_path,
            "result_log": config.get("paths", {}).get("log_path"),
        },
    )
    logger.info(f"Runtime configuration: {_compact(config)}")
    if original_config:
        logger.info(f"Configuration as written: {_compact(original_config)}")
    return log_file_path


def log_execution_time(func: Callable) -> Callable:
    """Logs how long the decorated call took, in milliseconds."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        result = func(*args, **kwargs)
        duration_ms = (time.perf_counter() - start_time) * 1000

        logger.info(
            "Function executed",
            extra={
                "function_name": func.__name__,
                "function_module": func.__module__,
                "duration_ms": round(duration_ms, 2),
            },
        )
        return result

    return wrapper
