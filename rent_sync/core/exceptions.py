"""Exception types shared by the crawl and sync pipeline."""


class SyncError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(SyncError):
    """Raised when required settings or credentials are missing or invalid.

    Fatal to the store being processed, never to the whole run.
    """


class BackendError(SyncError):
    """Raised when a persistent store API call fails."""


class OperationTimeoutError(BackendError):
    """Raised when a single attempt of an operation exceeds its timeout."""

    def __init__(self, label: str, timeout: float):
        self.label = label
        self.timeout = timeout
        super().__init__(f"{label} timed out after {timeout:g}s")


class BlockedError(SyncError):
    """The source answered with an anti-bot or rate-limit signal."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class TransientFetchError(SyncError):
    """A navigation or network fault that may succeed on retry."""


class PageTimeoutError(SyncError):
    """A page fetch hit a navigation or wall-clock timeout. Never retried."""
