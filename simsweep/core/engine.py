"""Interfaces to the external simulation engine.

The harness never talks to a simulation product directly. It drives an object
implementing `SimulationEngine`, which bundles the three collaborators a sweep
needs: a key/value parameter store with unit metadata, the run control steps
(geometry, mesh, solve), and the metric series the solver records.

Engines are supplied by the user through a factory function named in the
configuration and loaded with `load_engine`.
"""

import importlib
import importlib.util
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any, Dict, List, Sequence

from simsweep.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

METRIC_CATEGORIES = ("coefficients", "reports", "residuals")

DEFAULT_RESET_FLAGS = ("History", "Fields", "LagrangianDem")


@dataclass
class MeshCounts:
    """Element counts of the volume mesh produced by the last meshing step."""

    cells: int = 0
    faces: int = 0
    vertices: int = 0


@dataclass
class MetricSeries:
    """A named, unit-tagged series of values indexed by completed iteration.

    Args:
        name: Display name of the series (e.g. 'Drag Coefficient Monitor').
        unit: Display unit of the values (e.g. 'N').
        values: Recorded values, index 0 being the first completed iteration.
    """

    name: str
    unit: str = ""
    values: List[float] = field(default_factory=list)

    def value_at_iteration(self, index: int) -> float:
        if index < 0:
            raise IndexError(f"Negative iteration index {index} for '{self.name}'")
        return float(self.values[index])


class SimulationEngine(ABC):
    """The external simulation as seen by the sweep harness.

    Every method may raise; the run executor converts such exceptions into a
    failed run outcome.
    """

    # --- configuration interface ---

    @abstractmethod
    def parameter_names(self) -> List[str]:
        """Returns the names of all global parameters, in display order."""

    @abstractmethod
    def parameter_value(self, name: str) -> float:
        """Returns the current raw value of a parameter."""

    @abstractmethod
    def set_parameter_value(self, name: str, value: float) -> None: ...

    @abstractmethod
    def set_parameter_unit(self, name: str, unit: str) -> None: ...

    # --- simulation control interface ---

    @abstractmethod
    def set_max_steps(self, steps: int) -> None:
        """Configures the step-count stopping criterion of the solver."""

    @abstractmethod
    def prepare_geometry(self) -> None:
        """Runs the destructive geometry preparation (e.g. a boolean subtract)."""

    @abstractmethod
    def generate_mesh(self) -> None: ...

    @abstractmethod
    def reset_solution(self, flags: Sequence[str] = DEFAULT_RESET_FLAGS) -> None:
        """Clears solution history, fields and any other transient state."""

    @abstractmethod
    def initialize_solution(self) -> None: ...

    @abstractmethod
    def run_to_stopping_criterion(self) -> None: ...

    @abstractmethod
    def current_iteration(self) -> int:
        """Returns the number of iterations completed by the last solve."""

    @abstractmethod
    def mesh_counts(self) -> MeshCounts: ...

    # --- metrics interface ---

    @abstractmethod
    def metric_series(self, category: str) -> List[MetricSeries]:
        """Returns the series of one category: coefficients, reports or residuals."""


def load_module_from_config(
    section_config: Dict[str, Any], what: str = "engine"
) -> ModuleType:
    """Imports the module named by a config section.

    Supports a direct 'script_path' to a .py file or an importable 'module'
    name. Used for the engine factory and for post-processing tasks.

    Args:
        section_config: The config section, e.g. 'engine' or one entry of
            'post_processing'.
        what: Label used in error messages.

    Raises:
        ConfigurationError: If neither key is given, the script is missing or
            the module cannot be imported.
    """
    if "script_path" in section_config:
        script_path = Path(section_config["script_path"]).resolve()
        if not script_path.is_file():
            raise ConfigurationError(
                f"{what.capitalize()} script not found: {script_path}"
            )

        spec = importlib.util.spec_from_file_location(script_path.stem, script_path)
        if not (spec and spec.loader):
            raise ConfigurationError(
                f"Could not create module spec from {what} script: {script_path}"
            )
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module

    if "module" in section_config:
        try:
            return importlib.import_module(section_config["module"])
        except ImportError as e:
            raise ConfigurationError(
                f"Could not import {what} module '{section_config['module']}': {e}"
            ) from e

    raise ConfigurationError(
        f"{what.capitalize()} configuration needs 'script_path' or 'module'."
    )


def load_engine(engine_config: Dict[str, Any]) -> SimulationEngine:
    """Builds the simulation engine described in the configuration.

    Args:
        engine_config: The 'engine' section of the configuration. Must name a
            'script_path' or 'module', and may give the factory 'function'
            (defaults to 'create_engine') and its keyword 'params'.

    Returns:
        The engine returned by the factory.

    Raises:
        ConfigurationError: If the factory cannot be found or does not return
            a SimulationEngine.
    """
    function_name = engine_config.get("function", "create_engine")
    params = engine_config.get("params", {})

    module = load_module_from_config(engine_config)
    factory = getattr(module, function_name, None)
    if factory is None:
        raise ConfigurationError(
            f"Engine factory '{function_name}' not found in {module.__name__}"
        )

    logger.info(
        "Creating simulation engine",
        extra={"module_name": module.__name__, "function": function_name},
    )
    engine = factory(**params)
    if not isinstance(engine, SimulationEngine):
        raise ConfigurationError(
            f"Engine factory '{function_name}' returned {type(engine).__name__}, "
            "expected a SimulationEngine"
        )
    return engine
