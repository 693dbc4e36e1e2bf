"""
Central configuration for jogarm tunables and shared constants.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml

from jogarm.errors import ConfigError

TRACE: int = 5
logging.addLevelName(TRACE, "TRACE")
# Add Logger.trace if missing
if not hasattr(logging.Logger, "trace"):

    def _trace(self, msg, *args, **kwargs):
        if self.isEnabledFor(TRACE):
            self._log(TRACE, msg, args, **kwargs)

    logging.Logger.trace = _trace  # type: ignore[attr-defined]
    logging.TRACE = TRACE  # type: ignore[attr-defined]

TRACE_ENABLED = str(os.getenv("JOGARM_TRACE", "0")).lower() in ("1", "true", "yes", "on")

logger = logging.getLogger(__name__)

# Default publish/calculation rate (Hz)
CONTROL_RATE_HZ: float = float(os.getenv("JOGARM_CONTROL_RATE_HZ", "125"))

# Centralized loop interval (seconds).
INTERVAL_S: float = max(1e-6, 1.0 / max(CONTROL_RATE_HZ, 1.0))

# Time before a deadline at which LoopTimer switches from sleep to busy-wait
BUSY_THRESHOLD_MS: float = float(os.getenv("JOGARM_BUSY_THRESHOLD_MS", "1.0"))

# Server/runtime defaults (overridable by env/CLI)
SERVER_IP: str = "127.0.0.1"
SERVER_PORT: int = 5011
OUTPUT_IP: str = os.getenv("JOGARM_OUTPUT_IP", "127.0.0.1")
OUTPUT_PORT: int = int(os.getenv("JOGARM_OUTPUT_PORT", "5012"))
MAX_POLL_COUNT: int = int(os.getenv("JOGARM_MAX_POLL_COUNT", "16"))
LOG_LEVEL_DEFAULT: str = "INFO"

# Minimum interval between repeated warnings from the high-rate loops (s)
WARN_INTERVAL_S: float = float(os.getenv("JOGARM_WARN_INTERVAL_S", "2.0"))

CommandInType = Literal["unitless", "speed_units"]
CommandOutType = Literal["trajectory", "array"]

_ENV_PREFIX = "JOGARM_"


@dataclass(frozen=True, slots=True)
class JogParameters:
    """All tunables of the jog server.

    Gains and thresholds are in SI units. Singularity thresholds apply to
    the smallest singular value of the Jacobian, collision thresholds to
    the minimum distance to collision (m).
    """

    planning_frame: str = "base_link"
    command_in_type: CommandInType = "unitless"
    command_out_type: CommandOutType = "trajectory"

    # Command gains (per-cycle increments when command_in_type is unitless)
    linear_scale: float = 0.006
    rotational_scale: float = 0.08
    joint_scale: float = 0.01

    # Singularity handling
    lower_singularity_threshold: float = 0.04
    hard_stop_singularity_threshold: float = 0.01
    singularity_epsilon: float = 1e-6
    singularity_lookahead: float = 1e-3

    # Collision handling
    collision_check: bool = True
    collision_check_rate: float = 10.0  # Hz
    lower_collision_proximity_threshold: float = 0.03
    hard_stop_collision_proximity_threshold: float = 0.01

    # Smoothing
    low_pass_filter_coeff: float = 2.0

    # Timing
    publish_period: float = INTERVAL_S
    publish_delay: float = 0.005
    incoming_command_timeout: float = 0.5
    model_timeout: float = 0.02
    num_halt_msgs_to_publish: int = 4

    # Limits
    joint_limit_margin: float = 0.1
    zero_command_tolerance: float = 1e-9

    # Output composition
    publish_joint_positions: bool = True
    publish_joint_velocities: bool = False
    publish_joint_accelerations: bool = False
    min_trajectory_points: int = 1
    controller_period: float = 0.0

    @property
    def collision_check_period(self) -> float:
        return 1.0 / self.collision_check_rate

    def errors(self) -> list[str]:
        """Return a list of human-readable problems with these parameters."""
        problems: list[str] = []
        if self.command_in_type not in ("unitless", "speed_units"):
            problems.append(f"command_in_type must be unitless or speed_units, got {self.command_in_type!r}")
        if self.command_out_type not in ("trajectory", "array"):
            problems.append(f"command_out_type must be trajectory or array, got {self.command_out_type!r}")
        for name in (
            "publish_period",
            "collision_check_rate",
            "incoming_command_timeout",
            "model_timeout",
            "low_pass_filter_coeff",
            "singularity_lookahead",
        ):
            if getattr(self, name) <= 0:
                problems.append(f"{name} must be positive")
        for name in (
            "linear_scale",
            "rotational_scale",
            "joint_scale",
            "joint_limit_margin",
            "publish_delay",
            "singularity_epsilon",
            "zero_command_tolerance",
            "controller_period",
            "hard_stop_singularity_threshold",
            "hard_stop_collision_proximity_threshold",
        ):
            if getattr(self, name) < 0:
                problems.append(f"{name} must not be negative")
        if self.hard_stop_singularity_threshold >= self.lower_singularity_threshold:
            problems.append(
                "hard_stop_singularity_threshold must be below lower_singularity_threshold"
            )
        if (
            self.hard_stop_collision_proximity_threshold
            >= self.lower_collision_proximity_threshold
        ):
            problems.append(
                "hard_stop_collision_proximity_threshold must be below "
                "lower_collision_proximity_threshold"
            )
        if self.num_halt_msgs_to_publish < 0:
            problems.append("num_halt_msgs_to_publish must not be negative")
        if self.min_trajectory_points < 1:
            problems.append("min_trajectory_points must be at least 1")
        if self.command_out_type == "array" and (
            self.publish_joint_positions == self.publish_joint_velocities
        ):
            problems.append(
                "array output needs exactly one of publish_joint_positions "
                "or publish_joint_velocities"
            )
        if not (
            self.publish_joint_positions
            or self.publish_joint_velocities
            or self.publish_joint_accelerations
        ):
            problems.append("at least one publish_joint_* output must be enabled")
        return problems

    def validate(self) -> JogParameters:
        """Raise ConfigError if the parameters are inconsistent, else return self."""
        problems = self.errors()
        if problems:
            raise ConfigError("Invalid jog parameters: " + "; ".join(problems))
        return self

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> JogParameters:
        """Build parameters from a mapping, rejecting unknown keys."""
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ConfigError(f"Unknown jog parameters: {', '.join(unknown)}")
        kwargs = {
            name: _coerce(name, known[name].type, value) for name, value in data.items()
        }
        return cls(**kwargs).validate()

    def with_env_overrides(self, environ: Mapping[str, str] | None = None) -> JogParameters:
        """Apply JOGARM_<FIELD> environment overrides on top of these values."""
        env = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        for f in fields(self):
            raw = env.get(_ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            overrides[f.name] = _coerce(f.name, f.type, raw)
        if not overrides:
            return self
        logger.info("Jog parameter overrides from environment: %s", sorted(overrides))
        return replace(self, **overrides).validate()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> JogParameters:
        return cls().with_env_overrides(environ)


def _coerce(name: str, type_name: Any, value: Any) -> Any:
    """Convert a raw config value (possibly a string) to the field's type."""
    # Annotations are strings because of `from __future__ import annotations`
    t = str(type_name)
    try:
        if t == "bool":
            if isinstance(value, str):
                s = value.strip().lower()
                if s in ("1", "true", "yes", "on"):
                    return True
                if s in ("0", "false", "no", "off"):
                    return False
                raise ValueError(value)
            return bool(value)
        if t == "int":
            return int(value)
        if t == "float":
            return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from e
    return str(value)


def load_parameters(path: str | os.PathLike[str], node: str | None = None) -> JogParameters:
    """
    Load jog parameters from a YAML file.

    The file may hold the parameters at top level, or nested under
    ``<node>: {ros__parameters: {...}}`` / ``<node>: {...}`` when ``node``
    is given. Environment overrides are applied last.

    Raises:
        ConfigError: if the file cannot be read or holds invalid values
    """
    p = Path(path)
    try:
        with p.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read parameter file {p}: {e}") from e

    if node is not None:
        data = data.get(node, {}) if isinstance(data, dict) else {}
        if isinstance(data, dict) and "ros__parameters" in data:
            data = data["ros__parameters"]
    if not isinstance(data, dict):
        raise ConfigError(f"Parameter file {p} must contain a mapping")

    params = JogParameters.from_mapping(data).with_env_overrides()
    logger.info("Loaded jog parameters from %s", p)
    return params
