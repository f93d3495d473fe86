class CDeckError(Exception):
    """
    Base class for failures surfaced to the UI. The message is meant to be shown as-is.
    """


class DaemonConnectionError(CDeckError):
    """
    The docker daemon could not be reached, or the client was never connected.
    """


class ContainerLookupError(CDeckError, LookupError):
    """
    The requested container does not exist or its telemetry feed produced nothing.
    """


class ExecutionError(CDeckError):
    """
    An external process could not be spawned or exited with a non-zero status.
    """

    def __init__(self, message: str, stderr: str = '', returncode: int = None):
        super().__init__(f"{message}: {stderr.strip()}" if stderr.strip() else message)
        self.stderr = stderr
        self.returncode = returncode


class SessionConflictError(CDeckError):
    """
    A log session is already active for the container and the registry policy is `reject`.
    """
