"""Robot model interface and the bounded-time client used by the jog loops."""

from jogarm.model.base import RobotModel
from jogarm.model.client import RobotModelClient

__all__ = ["RobotModel", "RobotModelClient"]
