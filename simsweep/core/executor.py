import logging
import time
from typing import Callable, List, Tuple

from simsweep.core.engine import DEFAULT_RESET_FLAGS, SimulationEngine
from simsweep.core.jobs import ParameterSet
from simsweep.core.outcome import Failure, RunOutcome, Success
from simsweep.core.result_log import (
    DEFAULT_DELIMITER,
    DERIVED_COLUMNS,
    metric_column_name,
    sanitize_text,
)

logger = logging.getLogger(__name__)

NO_ITERATIONS_ERROR = "Solver completed no iterations"


def sanitize_error(error: BaseException) -> str:
    """Flattens an exception into a single-line message."""
    message = str(error).replace("\r", "").replace("\n", "").strip()
    return message or type(error).__name__


class RunExecutor:
    """Executes exactly one configure -> mesh -> solve run on an engine.

    Args:
        engine: The simulation to drive.
        clock: Monotonic clock in seconds, used to time geometry preparation
            and meshing.
        reset_flags: What `reset_solution` clears before every run.
        delimiter: Log delimiter, stripped from metric column names.
    """

    def __init__(
        self,
        engine: SimulationEngine,
        clock: Callable[[], float] = time.perf_counter,
        reset_flags=DEFAULT_RESET_FLAGS,
        delimiter: str = DEFAULT_DELIMITER,
    ):
        self.engine = engine
        self.clock = clock
        self.reset_flags = tuple(reset_flags)
        self.delimiter = delimiter

    def apply_parameters(self, params: ParameterSet) -> None:
        for name, value in params.items():
            unit = params.unit(name)
            if unit:
                self.engine.set_parameter_unit(name, unit)
            self.engine.set_parameter_value(name, value)

    def snapshot_parameters(self, params: ParameterSet) -> List[Tuple[str, float]]:
        """Reads every engine parameter back, in engine order.

        Falls back to the requested set if the engine cannot be queried.
        """
        try:
            return [
                (
                    sanitize_text(name, self.delimiter, ""),
                    float(self.engine.parameter_value(name)),
                )
                for name in self.engine.parameter_names()
            ]
        except Exception:
            logger.warning(
                "Could not read parameter values back from the engine", exc_info=True
            )
            return list(params.items())

    def _mesh(self) -> float:
        """Prepares geometry and meshes it, returning the elapsed minutes."""
        start = self.clock()
        self.engine.prepare_geometry()
        self.engine.generate_mesh()
        return (self.clock() - start) / 60.0

    def _solve(self) -> int:
        self.engine.reset_solution(self.reset_flags)
        self.engine.initialize_solution()
        self.engine.run_to_stopping_criterion()
        return int(self.engine.current_iteration())

    def _collect_metrics(
        self, iterations: int, meshing_minutes: float
    ) -> List[Tuple[str, float]]:
        # Series are zero-indexed against completed iterations.
        index = iterations - 1
        metrics = []
        for category in ("coefficients", "reports"):
            for series in self.engine.metric_series(category):
                metrics.append(
                    (
                        metric_column_name(series, self.delimiter),
                        float(series.value_at_iteration(index)),
                    )
                )

        counts = self.engine.mesh_counts()
        derived = [
            float(meshing_minutes),
            int(counts.cells),
            int(counts.faces),
            int(counts.vertices),
            iterations,
        ]
        metrics.extend(zip(DERIVED_COLUMNS, derived))

        for series in self.engine.metric_series("residuals"):
            metrics.append(
                (
                    sanitize_text(series.name, self.delimiter, ""),
                    float(series.value_at_iteration(index)),
                )
            )
        return metrics

    def execute(self, params: ParameterSet) -> RunOutcome:
        """Runs the simulation for one parameter set.

        Never raises. Any exception from the engine is returned as a Failure
        carrying the flattened message, and so is a solve that completed no
        iterations, since there is then no iteration to sample metrics at.
        """
        try:
            self.apply_parameters(params)
            meshing_minutes = self._mesh()
            iterations = self._solve()
            logger.info("Running finished", extra={"iterations": iterations})

            if iterations <= 0:
                logger.warning(NO_ITERATIONS_ERROR, extra={"parameters": params.values})
                return Failure(
                    parameters=params,
                    parameter_values=self.snapshot_parameters(params),
                    error=NO_ITERATIONS_ERROR,
                )

            metrics = self._collect_metrics(iterations, meshing_minutes)
            return Success(
                parameters=params,
                parameter_values=self.snapshot_parameters(params),
                metrics=metrics,
            )
        except Exception as e:
            error = sanitize_error(e)
            logger.error(
                "Run failed",
                exc_info=True,
                extra={"parameters": params.values, "error": error},
            )
            return Failure(
                parameters=params,
                parameter_values=self.snapshot_parameters(params),
                error=error,
            )
