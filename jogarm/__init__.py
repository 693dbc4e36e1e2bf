"""
jogarm: real-time velocity jogging for robot manipulators.

Streams of Cartesian twists or joint velocities are turned into
safety-bounded joint trajectory increments at a fixed publish rate.

Key components:
- JogParameters / load_parameters: tunables and their sources
- JogServer: UDP front end that owns the shared state and worker loops
- JogEngine: the calculation loop (usable without the server)
- RobotModel / RobotModelClient: model service interface and its bounded-time client
"""

from ._version import __version__
from .config import JogParameters, load_parameters
from .errors import ConfigError, JogArmError, MalformedCommandError, ModelUnavailableError
from .model import RobotModel, RobotModelClient
from .server.jog_engine import CycleOutcome, JogEngine
from .server.jog_server import JogServer, ServerConfig
from .server.state import SharedState

__all__ = [
    "__version__",
    "ConfigError",
    "CycleOutcome",
    "JogArmError",
    "JogEngine",
    "JogParameters",
    "JogServer",
    "MalformedCommandError",
    "ModelUnavailableError",
    "RobotModel",
    "RobotModelClient",
    "ServerConfig",
    "SharedState",
    "load_parameters",
]
