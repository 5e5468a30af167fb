"""
Model Keeper Model Lifecycle

Registry and local state documents, integrity verification, downloads,
backups and the orchestrator that installs, updates and rolls back models.
"""

from .backup import Backup, BackupManager
from .downloader import AiohttpTransport, Downloader, DownloadResult, HttpTransport, TransportResponse
from .integrity import IntegrityVerifier, VerificationReport
from .local_state import LocalStateStore
from .model_updater import UpdateOrchestrator
from .progress import DownloadProgressTracker
from .registry import ModelRegistry, default_registry
from .types import (
    ArtifactFormat,
    InstalledModel,
    LocalState,
    ModelInfo,
    ModelVersion,
    OperationResult,
    OperationStage,
    RegistryDocument,
    UpdateCandidate,
    UpdateOutcome,
    UpdateProgress,
)
from .versioning import UpdateType, VersionComparator

__all__ = [
    "Backup",
    "BackupManager",
    "AiohttpTransport",
    "Downloader",
    "DownloadResult",
    "HttpTransport",
    "TransportResponse",
    "IntegrityVerifier",
    "VerificationReport",
    "LocalStateStore",
    "UpdateOrchestrator",
    "DownloadProgressTracker",
    "ModelRegistry",
    "default_registry",
    "ArtifactFormat",
    "InstalledModel",
    "LocalState",
    "ModelInfo",
    "ModelVersion",
    "OperationResult",
    "OperationStage",
    "RegistryDocument",
    "UpdateCandidate",
    "UpdateOutcome",
    "UpdateProgress",
    "UpdateType",
    "VersionComparator",
]
