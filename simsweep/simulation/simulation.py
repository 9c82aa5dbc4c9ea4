import argparse
import enum
import logging
import os
import sys
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import pandas as pd

from simsweep.core.engine import (
    SimulationEngine,
    load_engine,
    load_module_from_config,
)
from simsweep.core.exceptions import ConfigurationError
from simsweep.core.executor import RunExecutor, sanitize_error
from simsweep.core.jobs import ParameterSet, SweepSpec, build_sweep_spec
from simsweep.core.outcome import Failure, RunOutcome
from simsweep.core.result_log import (
    LogHandle,
    append_row,
    build_row,
    discover_schema,
    ensure_initialized,
    load_result_log,
)
from simsweep.utils.config_utils import prepare_config
from simsweep.utils.log_utils import log_execution_time, setup_logging
from simsweep.utils.throttle import Throttle

# Standard logger setup
logger = logging.getLogger(__name__)


class SweepState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    ABORTED = "aborted"


@dataclass
class SweepSummary:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    rows_written: int = 0


class SweepController:
    """Drives one run per grid point and logs exactly one row per run.

    Args:
        known_parameters: Parameter names the simulation accepts. When given,
            a spec referencing any other name is refused before the first run.
    """

    def __init__(self, known_parameters=None):
        self.known_parameters = (
            list(known_parameters) if known_parameters is not None else None
        )
        self.state = SweepState.IDLE
        self.axis_indices: Tuple[int, ...] = ()

    def validate(self, spec: SweepSpec) -> None:
        try:
            spec.validate(self.known_parameters)
        except ConfigurationError:
            self.state = SweepState.ABORTED
            logger.error("Sweep refused, invalid configuration", exc_info=True)
            raise

    def run(
        self,
        spec: SweepSpec,
        on_each: Callable[[ParameterSet], RunOutcome],
        log: LogHandle,
        comment: str = "N/A",
        throttle: Optional[Throttle] = None,
    ) -> SweepSummary:
        """Runs the whole sweep.

        Args:
            spec: The grid to expand, outer axis varying slowest.
            on_each: Executes one run, normally `RunExecutor.execute`.
            log: The initialized result log.
            comment: Free text written to the 'Comment' column of every row.
            throttle: Optional pause between consecutive runs.

        Returns:
            Counts of runs, failures and rows written.

        Raises:
            ConfigurationError: If the sweep cannot be run. No run is started.
        """
        self.validate(spec)

        summary = SweepSummary(total=len(spec))
        self.state = SweepState.RUNNING
        logger.info("Starting sweep", extra={"num_runs": summary.total})

        for run_index, (indices, params) in enumerate(spec.iter_indexed()):
            self.axis_indices = indices
            logger.info(f"|=====--- {params.describe()} ---=====|")
            logger.info(
                "Running sequential job",
                extra={
                    "job_index": f"{run_index + 1}/{summary.total}",
                    "axis_indices": list(indices),
                },
            )

            try:
                outcome = on_each(params)
            except Exception as e:
                logger.error("Run raised outside the executor", exc_info=True)
                outcome = Failure(parameters=params, error=sanitize_error(e))

            if outcome.ok:
                summary.succeeded += 1
            else:
                summary.failed += 1

            if append_row(log, build_row(log, outcome, comment)):
                summary.rows_written += 1

            if throttle is not None and run_index + 1 < summary.total:
                throttle.pause()

        self.state = SweepState.IDLE
        self.axis_indices = ()
        logger.info(
            "Sweep finished",
            extra={
                "num_runs": summary.total,
                "succeeded": summary.succeeded,
                "failed": summary.failed,
            },
        )
        return summary


def _run_post_processing(
    config: Dict[str, Any], results_df: pd.DataFrame, post_processing_output_dir: str
) -> None:
    """Dynamically loads and runs post-processing modules.

    Args:
        config: The main configuration dictionary.
        results_df: The result log, re-parsed into a DataFrame.
        post_processing_output_dir: The directory to save any output from the tasks.

    Note:
        Supports two loading methods: 'script_path' for direct .py files, or
        'module' for installed packages. Passes results_df, output_dir, and
        user-specified params to each task function. Logs errors for failed
        tasks but continues with remaining tasks.
    """
    post_processing_configs = config.get("post_processing")
    if not post_processing_configs:
        logger.info("No post-processing task configured, skipping this step.")
        return

    logger.info("Starting post-processing phase")
    os.makedirs(post_processing_output_dir, exist_ok=True)

    for i, task_config in enumerate(post_processing_configs):
        try:
            function_name = task_config["function"]
            params = task_config.get("params", {})
            logger.info(
                "Running post-processing task",
                extra={
                    "task_index": i + 1,
                    "source": task_config.get("script_path")
                    or task_config.get("module"),
                    "function": function_name,
                },
            )

            try:
                module = load_module_from_config(task_config, what="post-processing")
            except ConfigurationError as e:
                logger.error(
                    "Failed to load post-processing module, skipping task",
                    extra={"task_index": i + 1, "exception": str(e)},
                )
                continue

            post_processing_func = getattr(module, function_name)
            post_processing_func(
                results_df=results_df,
                output_dir=post_processing_output_dir,
                **params,
            )

        except Exception:
            logger.error(
                "Post-processing task failed",
                exc_info=True,
                extra={"task_index": i + 1},
            )
    logger.info("Post-processing phase ended")


@log_execution_time
def run_simulation(
    config: Dict[str, Any], engine: Optional[SimulationEngine] = None
) -> SweepSummary:
    """Orchestrates a sweep described by the configuration.

    Builds the engine (unless one is given), expands the sweep, initializes the
    result log on first use, runs the sweep and then any post-processing tasks
    on the complete log.

    Args:
        config: The runtime configuration.
        engine: An already constructed engine, overriding 'engine' in config.

    Returns:
        The sweep summary.

    Raises:
        ConfigurationError: If the sweep, engine or parameters are invalid.
    """
    sim_config = config.get("simulation", {})
    delimiter = sim_config.get("delimiter", ",")
    placeholder = sim_config.get("placeholder", "/")
    log_path = config["paths"]["log_path"]

    spec = build_sweep_spec(config)
    if engine is None:
        engine = load_engine(config["engine"])

    try:
        known_parameters = engine.parameter_names()
    except Exception as e:
        raise ConfigurationError(f"Could not list simulation parameters: {e}") from e

    controller = SweepController(known_parameters=known_parameters)
    # Refuse a bad sweep before the log file is created.
    controller.validate(spec)

    max_steps = sim_config.get("max_steps")
    if max_steps:
        engine.set_max_steps(max_steps)

    log = ensure_initialized(
        log_path,
        lambda: discover_schema(engine, delimiter),
        delimiter=delimiter,
        placeholder=placeholder,
    )

    executor = RunExecutor(engine, delimiter=delimiter)
    summary = controller.run(
        spec,
        executor.execute,
        log,
        comment=sim_config.get("comment", "N/A"),
        throttle=Throttle.from_config(config),
    )

    if config.get("post_processing"):
        try:
            results_df = load_result_log(log_path, delimiter)
        except Exception:
            logger.error(
                "Could not read result log for post-processing",
                exc_info=True,
                extra={"file_path": log_path},
            )
        else:
            run_workspace = os.path.abspath(config.get("run_timestamp", "."))
            output_dir = config["paths"].get(
                "results_dir", os.path.join(run_workspace, "post_processing")
            )
            _run_post_processing(config, results_df, output_dir)

    return summary


def main(config_path: str) -> None:
    """Main entry point for a sweep run.

    Prepares the configuration, sets up logging, and calls `run_simulation`.
    A configuration error is reported on stderr and exits with status 1.

    Args:
        config_path (str): The path to the JSON configuration file.
    """
    try:
        config, original_config = prepare_config(config_path)
    except ConfigurationError as e:
        # Logger is not set up yet, so print directly to stderr
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config, original_config)
    logger.info(
        "Loading configuration",
        extra={
            "config_path": os.path.abspath(config_path),
        },
    )
    try:
        summary = run_simulation(config)
        logger.info(
            "Main execution completed successfully",
            extra={"failed_runs": summary.failed, "total_runs": summary.total},
        )
    except ConfigurationError as e:
        logger.error("Sweep aborted", extra={"exception": str(e)})
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        logger.error(
            "Main execution failed", exc_info=True, extra={"exception": str(e)}
        )
        sys.exit(1)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run a parameter sweep.")
    parser.add_argument(
        "-c",
        "--config",
        type=str,
        required=True,
        help="Path to the JSON configuration file.",
    )
    args = parser.parse_args()
    main(args.config)
