class MCpalError(Exception):
    """Base class for everything MCpal raises on purpose"""


class FatalConfigurationError(MCpalError):
    """Startup cannot continue, the operator has to fix something first"""


class InvalidStartArgumentsError(FatalConfigurationError):
    pass


class ServerStartError(FatalConfigurationError):
    """The server executable or its directory could not be launched"""


class ServerNotRunningError(MCpalError):
    pass


class ConsoleClosedError(MCpalError):
    """Writing to the server console failed, the child process is gone"""


class BackupError(MCpalError):
    pass


class BackupRejectedError(BackupError):
    """A backup was requested while the server may be writing world data"""
