class ExporterError(Exception):
    """Base class for failures that end up as a ``status="error"`` label."""


class ConfigError(ExporterError, ValueError):
    """Missing or invalid configuration (RPC mapping, path, account, ...)."""


class ChainSessionError(ExporterError):
    """A chain session could not be established."""


class ChainConnectionError(ChainSessionError):
    """The endpoint could not be reached."""


class ChainInitError(ChainSessionError):
    """The endpoint answered but is not usable (bad response, wrong chain)."""


class TransientRPCError(ExporterError):
    """A single query failed; callers may retry it."""


class ExhaustedRetryError(ExporterError):
    def __init__(self, description: str, attempts: int, last_error: Exception):
        super().__init__(f"{description}: giving up after {attempts} attempt(s): {last_error}")
        self.description = description
        self.attempts = attempts
        self.last_error = last_error


class CancellationError(Exception):
    """The scrape deadline passed or the process is shutting down.

    Not an ``ExporterError``: cancelled work emits nothing instead of an
    error sample.
    """
