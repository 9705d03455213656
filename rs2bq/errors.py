from typing import List, Optional


class FrameworkError(Exception):
    """Base framework exception."""

    def __init__(self, message: str, step: Optional[str] = None):
        super().__init__(message)
        self.step = step


class ConfigError(FrameworkError):
    """Raised when configuration is invalid or incomplete."""


class CliError(ConfigError):
    """Raised when command line arguments are missing or malformed."""

    def __init__(self, message: str, details: List[str], usage: str):
        super().__init__(message)
        self.details = list(details)
        self.usage = usage


class ConnectError(FrameworkError):
    """Raised when a warehouse or cloud client cannot connect or authenticate."""


class LockError(FrameworkError):
    """Raised when a concurrent run is detected."""


class ExtractError(FrameworkError):
    """Raised when the Redshift UNLOAD fails."""


class TransferError(FrameworkError):
    """Raised when the Storage Transfer job cannot be submitted, polled or fails."""


class LoadError(FrameworkError):
    """Raised when the BigQuery load job fails."""


class CleanupError(FrameworkError):
    """Raised when an intermediate object cannot be deleted."""
