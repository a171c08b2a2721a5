"""
fimtrace - Startup errors.

Only failures before the event loop starts are fatal; each carries the
process exit status the CLI returns.
"""


class StartupError(RuntimeError):
    """Fatal error raised before monitoring begins."""

    exit_code = 1


class PrivilegeError(StartupError):
    exit_code = 1


class TargetDirectoryError(StartupError):
    exit_code = 2


class AuditSubsystemError(StartupError):
    exit_code = 3


class ConfigError(StartupError):
    exit_code = 4
