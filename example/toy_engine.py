"""A synthetic engine for trying out simsweep without a CFD product.

It pretends to mesh a bluff body in a tunnel and returns drag and lift
coefficients that depend smoothly on the tunnel offsets and mesh size.
"""

import math
import time
from typing import Dict, List, Sequence

from simsweep.core.engine import MeshCounts, MetricSeries, SimulationEngine

PARAMETERS = {
    "Back Offset": 9.0,
    "Front Offset": 4.0,
    "Side Offset": 2.0,
    "Top Offset": 3.0,
    "Mesh Base": 20.0,
    "Mesh Target": 20.0,
}


class ToyTunnelEngine(SimulationEngine):
    def __init__(
        self, iterations: int = 50, delay: float = 0.0, fail_below: float = 0.0
    ):
        self.values: Dict[str, float] = dict(PARAMETERS)
        self.units: Dict[str, str] = {}
        self.max_steps = iterations
        self.delay = delay
        self.fail_below = fail_below
        self._iterations = 0
        self._series: Dict[str, List[MetricSeries]] = {}

    def parameter_names(self) -> List[str]:
        return list(self.values)

    def parameter_value(self, name: str) -> float:
        return self.values[name]

    def set_parameter_value(self, name: str, value: float) -> None:
        if name not in self.values:
            raise KeyError(f"No global parameter named '{name}'")
        self.values[name] = float(value)

    def set_parameter_unit(self, name: str, unit: str) -> None:
        self.units[name] = unit

    def set_max_steps(self, steps: int) -> None:
        self.max_steps = steps

    def prepare_geometry(self) -> None:
        time.sleep(self.delay)

    def generate_mesh(self) -> None:
        if self.values["Mesh Target"] < self.fail_below:
            raise RuntimeError("Surface mesh failed:\ntarget size too small")
        time.sleep(self.delay)

    def reset_solution(self, flags: Sequence[str] = ()) -> None:
        self._iterations = 0
        self._series = {}

    def initialize_solution(self) -> None:
        pass

    def run_to_stopping_criterion(self) -> None:
        blockage = 1.0 / (self.values["Side Offset"] * self.values["Top Offset"])
        wake = math.exp(-self.values["Back Offset"] / 10.0)
        drag_final = 0.3 + 0.2 * blockage + 0.05 * wake
        lift_final = 0.01 * blockage

        steps = self.max_steps
        decay = [math.exp(-5.0 * i / max(steps, 1)) for i in range(steps)]
        drag = [drag_final * (1 + d) for d in decay]
        lift = [lift_final * (1 + d) for d in decay]
        self._series = {
            "coefficients": [
                MetricSeries("Cd Monitor", "none", drag),
                MetricSeries("Cl Monitor", "none", lift),
            ],
            "reports": [MetricSeries("Drag Monitor", "N", [cd * 612.5 for cd in drag])],
            "residuals": [
                MetricSeries("Continuity", "", decay),
                MetricSeries("X-momentum", "", [0.5 * d for d in decay]),
            ],
        }
        self._iterations = steps

    def current_iteration(self) -> int:
        return self._iterations

    def mesh_counts(self) -> MeshCounts:
        cells = int(2e6 / self.values["Mesh Target"])
        return MeshCounts(cells=cells, faces=cells * 3, vertices=int(cells * 1.2))

    def metric_series(self, category: str) -> List[MetricSeries]:
        # Before the first solve the series exist but hold no values.
        return self._series.get(category) or _empty_series().get(category, [])


def _empty_series() -> Dict[str, List[MetricSeries]]:
    return {
        "coefficients": [
            MetricSeries("Cd Monitor", "none"),
            MetricSeries("Cl Monitor", "none"),
        ],
        "reports": [MetricSeries("Drag Monitor", "N")],
        "residuals": [MetricSeries("Continuity"), MetricSeries("X-momentum")],
    }


def create_engine(**kwargs) -> ToyTunnelEngine:
    return ToyTunnelEngine(**kwargs)
