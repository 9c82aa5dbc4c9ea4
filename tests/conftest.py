import itertools
from functools import partial
from typing import Callable, Dict, List, Optional, Sequence

import pytest

from simsweep.core.engine import MeshCounts, MetricSeries, SimulationEngine

FailHook = Callable[[str, Dict[str, float]], Optional[Exception]]


class FakeEngine(SimulationEngine):
    """In-memory engine recording every call.

    `fail_when(step, values)` may return an exception to raise from the named
    control step, given the current parameter values.
    """

    def __init__(
        self,
        parameters: Optional[Dict[str, float]] = None,
        series: Optional[Dict[str, List[MetricSeries]]] = None,
        iterations: int = 3,
        fail_when: Optional[FailHook] = None,
    ):
        self.values = dict(parameters or {"Back Offset": 6.0, "Side Offset": 2.0})
        self.units: Dict[str, str] = {}
        self.series = series or {
            "coefficients": [MetricSeries("Cd Monitor", "none", [0.5, 0.4, 0.35])],
            "reports": [MetricSeries("Drag Monitor", "N", [10.0, 9.0, 8.5])],
            "residuals": [MetricSeries("Continuity", "", [1.0, 0.1, 0.01])],
        }
        self.iterations = iterations
        self.fail_when = fail_when
        self.max_steps = None
        self.completed = 0
        self.calls: List[str] = []
        self.reset_flags: Sequence[str] = ()

    def _step(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_when is not None:
            error = self.fail_when(name, self.values)
            if error is not None:
                raise error

    def parameter_names(self):
        return list(self.values)

    def parameter_value(self, name):
        return self.values[name]

    def set_parameter_value(self, name, value):
        if name not in self.values:
            raise KeyError(f"No global parameter named '{name}'")
        self.values[name] = value

    def set_parameter_unit(self, name, unit):
        self.units[name] = unit

    def set_max_steps(self, steps):
        self.max_steps = steps

    def prepare_geometry(self):
        self._step("prepare_geometry")

    def generate_mesh(self):
        self._step("generate_mesh")

    def reset_solution(self, flags=()):
        self._step("reset_solution")
        self.reset_flags = tuple(flags)
        self.completed = 0

    def initialize_solution(self):
        self._step("initialize_solution")

    def run_to_stopping_criterion(self):
        self._step("run_to_stopping_criterion")
        self.completed = self.iterations

    def current_iteration(self):
        return self.completed

    def mesh_counts(self):
        return MeshCounts(cells=100, faces=300, vertices=120)

    def metric_series(self, category):
        return self.series.get(category, [])


def fake_clock(seconds_per_call: float = 60.0):
    """A clock advancing by a fixed amount on every call."""
    return partial(next, itertools.count(0.0, seconds_per_call))


@pytest.fixture()
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture()
def log_path(tmp_path) -> str:
    return str(tmp_path / "results.csv")
