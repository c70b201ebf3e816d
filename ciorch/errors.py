"""
Error classes for ciorch.

Step-level failures never leave the plan driver as exceptions; they are
converted into StepResults at the step runner boundary:
- SpawnError: the step's program could not be started
- LogOpenError: neither the step log nor the fallback log could be opened

The remaining errors surface at the command boundary:
- CommandError: invalid command line, recorded as the "cli" step
- ConfigError: unreadable or invalid configuration file
"""


class CiOrchError(Exception):
    """Base exception for ciorch."""
    pass


class SpawnError(CiOrchError):
    """
    The step's program could not be started.

    Examples:
    - Binary not found on PATH
    - Permission denied on the executable
    - Working directory missing
    """
    pass


class LogOpenError(CiOrchError):
    """Neither the primary nor the fallback log file could be opened."""

    def __init__(self, fallback_path, primary_error, fallback_error):
        self.fallback_path = fallback_path
        self.primary_error = primary_error
        self.fallback_error = fallback_error
        super().__init__(f"primary={primary_error} fallback={fallback_error}")


class CommandError(CiOrchError):
    """Invalid command line input."""
    pass


class ConfigError(CiOrchError):
    """Configuration validation error."""
    pass
