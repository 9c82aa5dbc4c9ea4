"""Result of a single run, returned by value from the run executor."""

from dataclasses import dataclass, field
from typing import List, Tuple

from simsweep.core.jobs import ParameterSet


@dataclass
class RunOutcome:
    """Base of `Success` and `Failure`.

    `parameters` is the set the run was asked for; `parameter_values` is the
    snapshot of every engine parameter read back after applying it, which is
    what the log records.
    """

    parameters: ParameterSet
    parameter_values: List[Tuple[str, float]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return isinstance(self, Success)

    def logged_parameters(self) -> List[Tuple[str, float]]:
        return self.parameter_values or list(self.parameters.items())


@dataclass
class Success(RunOutcome):
    """A completed run.

    `metrics` are (column name, value) pairs in the order the engine reported
    them: coefficients, reports, derived mesh and time metrics, residuals.
    """

    metrics: List[Tuple[str, float]] = field(default_factory=list)


@dataclass
class Failure(RunOutcome):
    error: str = ""
