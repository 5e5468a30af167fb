"""
Error Taxonomy and Retry Policy

Typed errors raised by the model lifecycle components, plus the pure retry
policy used by the downloader. Every error carries enough context to tell the
caller which model/version was targeted, which stage failed and whether a
partial artifact was left behind.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union


class ErrorSeverity(Enum):
    """Error severity levels."""
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    NETWORK = "network"
    INTEGRITY = "integrity"
    COMPATIBILITY = "compatibility"
    NOT_FOUND = "not_found"
    STATE = "state"
    BACKUP = "backup"
    LOCK = "lock"
    VALIDATION = "validation"


class ModelKeeperError(Exception):
    """Base exception class for model lifecycle errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.VALIDATION,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        retryable: bool = False,
        model_id: Optional[str] = None,
        version: Optional[str] = None,
        stage: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.retryable = retryable
        self.model_id = model_id
        self.version = version
        self.stage = stage
        self.partial_artifact_left = False
        self.metadata = metadata or {}
        self.timestamp = datetime.now()
        self.error_id = str(uuid.uuid4())

    def attach(
        self,
        model_id: Optional[str] = None,
        version: Optional[str] = None,
        stage: Optional[str] = None,
    ) -> "ModelKeeperError":
        """Fill in operation context that was unknown where the error was raised."""
        self.model_id = self.model_id or model_id
        self.version = self.version or version
        self.stage = self.stage or stage
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "error_id": self.error_id,
            "timestamp": self.timestamp.isoformat(),
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "model_id": self.model_id,
            "version": self.version,
            "stage": self.stage,
            "partial_artifact_left": self.partial_artifact_left,
            "metadata": self.metadata,
        }

    def __str__(self) -> str:
        target = ""
        if self.model_id:
            target = f" [{self.model_id}" + (f"@{self.version}" if self.version else "") + "]"
        return f"{self.message}{target}"


class NetworkError(ModelKeeperError):
    """Transport failures and non-200 responses. Retryable."""

    def __init__(self, message: str, status: Optional[int] = None, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.NETWORK,
            retryable=True,
            **kwargs
        )
        self.status = status


class IntegrityError(ModelKeeperError):
    """Size, checksum or structure mismatch. Retryable only by re-downloading."""

    def __init__(self, message: str, dimension: str = "checksum", **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.INTEGRITY,
            retryable=True,
            **kwargs
        )
        self.dimension = dimension

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["dimension"] = self.dimension
        return result


class CompatibilityError(ModelKeeperError):
    """The host application cannot run this model version. Raised before any I/O."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.COMPATIBILITY,
            retryable=False,
            **kwargs
        )


class InsufficientResourcesError(CompatibilityError):
    """The machine does not meet the declared minimum RAM."""


class NotFoundError(ModelKeeperError):
    """Unknown model, version or variant."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.NOT_FOUND,
            retryable=False,
            **kwargs
        )


class StateCorruptionError(ModelKeeperError):
    """A store document is malformed. Never repaired automatically."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.STATE,
            severity=ErrorSeverity.CRITICAL,
            retryable=False,
            **kwargs
        )
        self.path = path


class StateCommitError(ModelKeeperError):
    """The artifact was placed on disk but the local state could not be written."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.STATE,
            severity=ErrorSeverity.CRITICAL,
            retryable=False,
            **kwargs
        )


class BackupUnavailableError(ModelKeeperError):
    """No usable backup exists. Degrades rollback, never blocks install/update."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.BACKUP,
            severity=ErrorSeverity.WARNING,
            retryable=False,
            **kwargs
        )


class LockTimeoutError(ModelKeeperError):
    """Another process held a store or model lock for too long."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.LOCK,
            retryable=True,
            **kwargs
        )


DownloadError = Union[NetworkError, IntegrityError]


@dataclass
class RetryPolicy:
    """Bounded retry schedule. Pure: computes delays, never sleeps."""
    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 60.0
    exponential_backoff: bool = False

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")

    def attempts(self) -> range:
        """Attempt numbers, 1-based."""
        return range(1, self.max_attempts + 1)

    def should_retry(self, attempt: int, error: BaseException) -> bool:
        """Whether another attempt follows a failed ``attempt``."""
        if attempt >= self.max_attempts:
            return False
        return isinstance(error, ModelKeeperError) and error.retryable

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after failed ``attempt`` before the next one."""
        if self.exponential_backoff:
            return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        return min(self.base_delay, self.max_delay)
