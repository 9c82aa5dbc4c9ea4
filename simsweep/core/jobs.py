import itertools
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

import numpy as np

from simsweep.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

TARGET_MODES = ("offset", "scale")


@dataclass
class ParameterSet:
    """Parameter values for one run, in the order they are applied.

    Units are metadata only; the raw numbers are what gets logged.
    """

    values: Dict[str, float] = field(default_factory=dict)
    units: Dict[str, str] = field(default_factory=dict)

    def __getitem__(self, name: str) -> float:
        return self.values[name]

    def __len__(self) -> int:
        return len(self.values)

    def items(self):
        return self.values.items()

    def names(self) -> List[str]:
        return list(self.values)

    def unit(self, name: str) -> Optional[str]:
        return self.units.get(name)

    def describe(self, separator: str = ", ") -> str:
        """Renders the set as 'name=value unit' pairs for status lines."""
        parts = []
        for name, value in self.values.items():
            unit = self.units.get(name)
            parts.append(f"{name}={value} {unit}" if unit else f"{name}={value}")
        return separator.join(parts)


@dataclass
class AxisTarget:
    """How an axis value is applied to one parameter.

    'offset' assigns base + value, 'scale' assigns base * value.
    """

    base: float
    mode: str = "offset"

    def apply(self, value: float) -> float:
        if self.mode == "scale":
            return round(self.base * value, 8)
        return round(self.base + value, 8)


@dataclass
class Axis:
    """One swept input dimension.

    Args:
        name: Axis name. When `targets` is empty, the parameter the axis sets.
        start: First value of the axis.
        step: Increment between values, must be positive.
        max: Largest value visited (inclusive).
        snap_first: Visit `start` once, then continue on the multiples of
            `step` instead of `start + k * step`. Only takes effect when
            `step > start`, e.g. a scale factor axis starting at 1.
        targets: Parameters driven by this axis, keyed by parameter name.
    """

    name: str
    start: float
    step: float
    max: float
    snap_first: bool = False
    targets: Dict[str, AxisTarget] = field(default_factory=dict)

    def validate(self) -> None:
        for attr in ("start", "step", "max"):
            value = getattr(self, attr)
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ConfigurationError(
                    f"Axis '{self.name}' has a non-finite '{attr}': {value!r}"
                )
        if self.step <= 0:
            raise ConfigurationError(
                f"Axis '{self.name}' has a non-positive step ({self.step}); "
                "the sweep would never terminate."
            )
        for param, target in self.targets.items():
            if target.mode not in TARGET_MODES:
                raise ConfigurationError(
                    f"Axis '{self.name}' target '{param}' has unknown mode "
                    f"'{target.mode}', expected one of {TARGET_MODES}"
                )

    def values(self) -> List[float]:
        """Expands the axis into its ordered list of values.

        Values are computed from the index rather than accumulated, and rounded
        to 8 decimal places to avoid floating point drift.
        """
        if self.max < self.start:
            logger.warning(
                "Axis maximum is below its start, axis is empty",
                extra={"axis": self.name, "start": self.start, "max": self.max},
            )
            return []

        head: List[float] = []
        first = self.start
        if self.snap_first and self.step > self.start:
            head = [round(float(self.start), 8)]
            first = self.step

        regular = np.arange(first, self.max + self.step / 2, self.step)
        regular = regular[regular <= self.max + 1e-9]
        return head + regular.round(8).tolist()

    def assign(self, value: float) -> Dict[str, float]:
        """Returns the parameter assignments for one value of this axis."""
        if not self.targets:
            return {self.name: value}
        return {param: target.apply(value) for param, target in self.targets.items()}

    def parameters(self) -> List[str]:
        return list(self.targets) if self.targets else [self.name]


@dataclass
class SweepSpec:
    """A declarative grid of runs.

    Iterating a SweepSpec yields one ParameterSet per grid point with the first
    axis varying slowest. Iteration is lazy and starts over on every call.
    """

    axes: List[Axis] = field(default_factory=list)
    fixed: Dict[str, float] = field(default_factory=dict)
    units: Dict[str, str] = field(default_factory=dict)

    def validate(self, known_parameters: Optional[Iterable[str]] = None) -> None:
        """Checks the sweep can be run.

        Raises:
            ConfigurationError: On a malformed axis, or a parameter name that is
                not in `known_parameters` when that list is given.
        """
        for axis in self.axes:
            axis.validate()

        if known_parameters is None:
            return
        known = set(known_parameters)
        referenced = list(self.fixed) + list(self.units)
        for axis in self.axes:
            referenced.extend(axis.parameters())
        unknown = [name for name in dict.fromkeys(referenced) if name not in known]
        if unknown:
            raise ConfigurationError(
                f"Unknown simulation parameter(s): {', '.join(unknown)}"
            )

    def iter_indexed(self) -> Iterator[Tuple[Tuple[int, ...], ParameterSet]]:
        """Yields (axis indices, ParameterSet) for every grid point in order."""
        axis_values = [axis.values() for axis in self.axes]
        index_ranges = [range(len(values)) for values in axis_values]
        for indices in itertools.product(*index_ranges):
            values = dict(self.fixed)
            for axis, values_of_axis, i in zip(self.axes, axis_values, indices):
                values.update(axis.assign(values_of_axis[i]))
            units = {name: self.units[name] for name in values if name in self.units}
            yield indices, ParameterSet(values=values, units=units)

    def __iter__(self) -> Iterator[ParameterSet]:
        for _, parameter_set in self.iter_indexed():
            yield parameter_set

    def __len__(self) -> int:
        return math.prod(len(axis.values()) for axis in self.axes)


def _parse_range_string(name: str, value: str) -> Tuple[float, float, float]:
    """Parses a compact 'start:max:step' range, e.g. '6:10:2'."""
    try:
        start, stop, step = map(float, value.split(":"))
    except ValueError as e:
        raise ConfigurationError(
            f"Axis '{name}' has an invalid range '{value}', expected 'start:max:step'"
        ) from e
    return start, stop, step


def _build_axis(axis_config: Dict[str, Any]) -> Axis:
    if "name" not in axis_config:
        raise ConfigurationError(f"Sweep axis is missing 'name': {axis_config}")
    name = axis_config["name"]

    if "range" in axis_config:
        start, stop, step = _parse_range_string(name, axis_config["range"])
    else:
        try:
            start = axis_config["start"]
            step = axis_config["step"]
            stop = axis_config["max"]
        except KeyError as e:
            raise ConfigurationError(
                f"Sweep axis '{name}' is missing {e}; give 'start', 'step' and "
                "'max' or a 'range' string"
            ) from e

    targets = {}
    for param, target in axis_config.get("targets", {}).items():
        if isinstance(target, (int, float)):
            targets[param] = AxisTarget(base=float(target))
        else:
            targets[param] = AxisTarget(
                base=float(target.get("base", 0.0)),
                mode=target.get("mode", "offset"),
            )

    return Axis(
        name=name,
        start=start,
        step=step,
        max=stop,
        snap_first=bool(axis_config.get("snap_first", False)),
        targets=targets,
    )


def build_sweep_spec(config: Dict[str, Any]) -> SweepSpec:
    """Builds a SweepSpec from the 'sweep' and 'simulation' config sections.

    Args:
        config: The full runtime configuration. Axes are read from
            'sweep.axes' (outer axis first); constant values from
            'simulation.fixed_parameters' and unit tags from 'simulation.units'.

    Returns:
        The validated SweepSpec.

    Raises:
        ConfigurationError: If an axis is malformed.

    Note:
        Each axis is either {"name", "start", "step", "max"} or {"name",
        "range": "start:max:step"}, optionally with "snap_first" and "targets".
        A target maps a parameter name to a base value (offset mode) or to
        {"base": ..., "mode": "offset" | "scale"}.
    """
    sweep_config = config.get("sweep", {})
    sim_config = config.get("simulation", {})

    spec = SweepSpec(
        axes=[_build_axis(axis) for axis in sweep_config.get("axes", [])],
        fixed={k: float(v) for k, v in sim_config.get("fixed_parameters", {}).items()},
        units=dict(sim_config.get("units", {})),
    )
    spec.validate()

    logger.info(
        "Generated sweep",
        extra={
            "axes": [axis.name for axis in spec.axes],
            "num_runs": len(spec),
        },
    )
    return spec
