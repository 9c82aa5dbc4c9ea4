"""Configuration utility functions for simsweep."""

import json
import logging
import os
from datetime import datetime
from typing import Any, Dict

from simsweep.core.exceptions import ConfigurationError

# Standard logger setup
logger = logging.getLogger(__name__)


# Define the structure of required configuration keys and their expected types
REQUIRED_CONFIG_KEYS = {
    "paths": {
        "log_path": str,
    },
    "engine": dict,
    "sweep": {
        "axes": list,
    },
}

OPTIONAL_CONFIG_TYPES = {
    "simulation": {
        "max_steps": int,
        "comment": str,
        "delimiter": str,
        "placeholder": str,
        "fixed_parameters": dict,
        "units": dict,
    },
    "throttle": {
        "seconds": (int, float),
        "announce_at": list,
    },
    "post_processing": list,
}


def convert_relative_paths_to_absolute(
    config: Dict[str, Any], base_dir: str
) -> Dict[str, Any]:
    """Recursively converts relative paths to absolute paths in configuration.

    Args:
        config: Configuration dictionary to process.
        base_dir: Base directory path for resolving relative paths.

    Returns:
        Configuration dictionary with converted absolute paths.

    Note:
        Processes log_dir, results_dir and any key ending with '_path'
        (log_path, script_path, ...). Handles nested dictionaries and lists
        recursively.
    """

    def _process_value(value, key_name=""):
        if isinstance(value, dict):
            return {k: _process_value(v, k) for k, v in value.items()}
        elif isinstance(value, list):
            return [_process_value(item) for item in value]
        elif isinstance(value, str):
            path_keys = ["log_dir", "results_dir"]

            if key_name.endswith("_path") or key_name in path_keys:
                if not os.path.isabs(value) and value:
                    abs_path = os.path.abspath(os.path.join(base_dir, value))
                    logger.debug(
                        "Converted path",
                        extra={
                            "key_name": key_name,
                            "original_value": value,
                            "absolute_path": abs_path,
                        },
                    )
                    return abs_path
            return value
        else:
            return value

    return _process_value(config)


def _check_types(
    config: Dict[str, Any], expected: Dict, parent_key: str, required: bool
) -> None:
    for key, expected_type_or_dict in expected.items():
        full_key_path = f"{parent_key}.{key}" if parent_key else key

        if key not in config:
            if required:
                raise ConfigurationError(
                    f"Missing required configuration key: '{full_key_path}'"
                )
            continue

        if isinstance(expected_type_or_dict, dict):
            if not isinstance(config[key], dict):
                raise ConfigurationError(
                    f"Configuration key '{full_key_path}' must be a dictionary."
                )
            _check_types(
                config[key], expected_type_or_dict, full_key_path, required=required
            )
        elif not isinstance(config[key], expected_type_or_dict) or isinstance(
            config[key], bool
        ):
            raise ConfigurationError(
                f"Configuration key '{full_key_path}' has incorrect type. "
                f"Expected {expected_type_or_dict}, but got {type(config[key])}."
            )


def validate_config(config: Dict[str, Any]) -> None:
    """Validates the configuration against the required structure.

    Args:
        config: Configuration dictionary to validate.

    Raises:
        ConfigurationError: If a required key is missing, a key has the wrong
            type, or a value is unusable.

    Note:
        Structural validation covers required keys and the types of known
        optional keys. Value validation checks the engine section names a
        'script_path' or 'module', that an engine script exists, and that the
        log delimiter is a single character distinct from its placeholder.
    """
    # --- Structural Validation ---
    _check_types(config, REQUIRED_CONFIG_KEYS, "", required=True)
    _check_types(config, OPTIONAL_CONFIG_TYPES, "", required=False)

    # --- Value Validation ---
    engine_config = config["engine"]
    if "script_path" not in engine_config and "module" not in engine_config:
        raise ConfigurationError(
            "Configuration key 'engine' must give a 'script_path' or a 'module'."
        )
    script_path = engine_config.get("script_path")
    if script_path and not os.path.exists(script_path):
        raise ConfigurationError(
            f"File specified in 'engine.script_path' not found: {script_path}"
        )

    sim_config = config.get("simulation", {})
    delimiter = sim_config.get("delimiter", ",")
    placeholder = sim_config.get("placeholder", "/")
    if len(delimiter) != 1 or delimiter in ("\n", "\r"):
        raise ConfigurationError(
            f"'simulation.delimiter' must be a single character, got {delimiter!r}"
        )
    if delimiter in placeholder:
        raise ConfigurationError(
            "'simulation.placeholder' must not contain the delimiter."
        )

    max_steps = sim_config.get("max_steps")
    if max_steps is not None and max_steps <= 0:
        raise ConfigurationError(
            f"'simulation.max_steps' must be positive, got {max_steps}"
        )


def prepare_config(config_path: str) -> tuple[Dict[str, Any], Dict[str, Any]]:
    """Loads and prepares the configuration from the given path.

    Args:
        config_path: Path to the JSON configuration file.

    Returns:
        A tuple of (runtime_config, original_config).

    Raises:
        ConfigurationError: If the file cannot be read or parsed, or fails
            validation.

    Note:
        Converts relative paths to absolute (relative to the config file),
        adds run_timestamp and creates the run workspace with its log_dir.
        The result log itself stays at paths.log_path so that later sweeps
        append to it.
    """
    try:
        config_path = os.path.abspath(config_path)
        with open(config_path, "r", encoding="utf-8") as f:
            base_config = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            f"Failed to load or parse config file {config_path}: {e}"
        ) from e

    original_config_dir = os.path.dirname(config_path)

    absolute_config = convert_relative_paths_to_absolute(
        base_config, original_config_dir
    )

    validate_config(absolute_config)

    config = json.loads(json.dumps(absolute_config))
    config["run_timestamp"] = datetime.now().strftime("%Y%m%d_%H%M%S")

    run_workspace = os.path.abspath(config["run_timestamp"])

    config["paths"]["log_dir"] = os.path.join(
        run_workspace, base_config["paths"].get("log_dir", "log")
    )
    config["paths"]["results_dir"] = os.path.join(
        run_workspace, base_config["paths"].get("results_dir", "post_processing")
    )

    os.makedirs(config["paths"]["log_dir"], exist_ok=True)

    return config, base_config
