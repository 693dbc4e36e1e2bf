"""Exception types raised by jogarm."""


class JogArmError(Exception):
    """Base class for all jogarm errors."""


class ConfigError(JogArmError, ValueError):
    """Jog parameters are missing, malformed or inconsistent."""


class ModelUnavailableError(JogArmError):
    """The robot model service failed or did not answer in time."""


class MalformedCommandError(JogArmError, ValueError):
    """A command does not fit the active joint group (names or dimensions)."""
