"""
Core error handling for the model lifecycle manager.
"""

from .error_handling import (
    BackupUnavailableError,
    CompatibilityError,
    DownloadError,
    ErrorCategory,
    ErrorSeverity,
    InsufficientResourcesError,
    IntegrityError,
    LockTimeoutError,
    ModelKeeperError,
    NetworkError,
    NotFoundError,
    RetryPolicy,
    StateCommitError,
    StateCorruptionError,
)

__all__ = [
    "BackupUnavailableError",
    "CompatibilityError",
    "DownloadError",
    "ErrorCategory",
    "ErrorSeverity",
    "InsufficientResourcesError",
    "IntegrityError",
    "LockTimeoutError",
    "ModelKeeperError",
    "NetworkError",
    "NotFoundError",
    "RetryPolicy",
    "StateCommitError",
    "StateCorruptionError",
]
