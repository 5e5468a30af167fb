"""
Model Lifecycle Data Model

Typed documents for the registry (what can be installed) and the local state
(what is installed), plus the result types the orchestrator hands back.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .versioning import UpdateType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ArtifactFormat(str, Enum):
    """On-disk artifact formats and their file extensions."""
    ONNX = "onnx"
    GGUF = "gguf"
    SAFETENSORS = "safetensors"
    BIN = "bin"

    @property
    def extension(self) -> str:
        return self.value

    @classmethod
    def from_tag(cls, tag: Optional[str]) -> "ArtifactFormat":
        """Map loose format tags ("ONNX", "PyTorch", ".gguf") onto a format."""
        normalized = (tag or "onnx").strip().lower().lstrip(".")
        aliases = {"pytorch": cls.BIN, "pt": cls.BIN, "safetensor": cls.SAFETENSORS}
        if normalized in aliases:
            return aliases[normalized]
        try:
            return cls(normalized)
        except ValueError:
            return cls.BIN


class ModelVersion(BaseModel):
    """One downloadable artifact variant. Never mutated, only superseded."""

    model_config = ConfigDict(extra="ignore", frozen=True, protected_namespaces=())

    model_id: str
    version: str
    variant: str = "default"
    download_url: str = ""
    size_bytes: int = Field(default=0, ge=0)
    checksum: Optional[str] = None
    compatibility: List[str] = Field(default_factory=list)
    minimum_ram_gb: float = Field(default=0.0, ge=0)
    recommended_ram_gb: float = Field(default=0.0, ge=0)
    release_date: Optional[datetime] = None
    changelog: str = ""
    deprecated: bool = False
    format: ArtifactFormat = ArtifactFormat.ONNX

    @model_validator(mode="before")
    @classmethod
    def normalize_format(cls, data: Any) -> Any:
        if isinstance(data, dict) and "format" in data and not isinstance(data["format"], ArtifactFormat):
            data = {**data, "format": ArtifactFormat.from_tag(data["format"])}
        return data

    @property
    def extension(self) -> str:
        return self.format.extension

    @property
    def has_checksum(self) -> bool:
        return bool(self.checksum and self.checksum.strip())


class ModelInfo(BaseModel):
    """One logical model and all of its published versions."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    description: str = ""
    current_version: str
    versions: Dict[str, ModelVersion] = Field(default_factory=dict)
    tags: Set[str] = Field(default_factory=set)
    category: str = ""

    @model_validator(mode="before")
    @classmethod
    def accept_model_id_key(cls, data: Any) -> Any:
        # Registries written by older tooling key the id as "model_id".
        if isinstance(data, dict) and "id" not in data and "model_id" in data:
            data = {**data, "id": data["model_id"]}
        return data

    @model_validator(mode="after")
    def check_current_version(self) -> "ModelInfo":
        if self.versions and self.current_version not in self.versions:
            raise ValueError(
                f"current_version {self.current_version} of {self.id} is not among its versions"
            )
        return self

    @property
    def current(self) -> Optional[ModelVersion]:
        return self.versions.get(self.current_version)


class RegistryDocument(BaseModel):
    """Catalog of every known model. Replaced as a whole, never merged."""

    model_config = ConfigDict(extra="ignore")

    models: Dict[str, ModelInfo] = Field(default_factory=dict)
    registry_version: str = "1.0.0"
    last_updated: datetime = Field(default_factory=utcnow)


def state_key(model_id: str, variant: str) -> str:
    return f"{model_id}-{variant}"


class InstalledModel(BaseModel):
    """What is actually installed for one (model_id, variant)."""

    model_config = ConfigDict(extra="ignore", protected_namespaces=())

    model_id: str
    version: str
    variant: str = "default"
    installed_at: datetime = Field(default_factory=utcnow)
    last_used: Optional[datetime] = None
    file_path: str
    checksum: Optional[str] = None
    size_bytes: int = Field(default=0, ge=0)

    @property
    def key(self) -> str:
        return state_key(self.model_id, self.variant)

    @property
    def path(self) -> Path:
        return Path(self.file_path)


class LocalState(BaseModel):
    """Record of installed artifacts: a function from (model_id, variant) to an install."""

    model_config = ConfigDict(extra="ignore")

    installed_models: Dict[str, InstalledModel] = Field(default_factory=dict)
    last_check: Optional[datetime] = None
    auto_update_enabled: bool = False

    @model_validator(mode="after")
    def rekey_entries(self) -> "LocalState":
        # Keys are always derived from the entry so one pair maps to one install.
        self.installed_models = {entry.key: entry for entry in self.installed_models.values()}
        return self

    def get(self, model_id: str, variant: str) -> Optional[InstalledModel]:
        return self.installed_models.get(state_key(model_id, variant))

    def for_model(self, model_id: str) -> List[InstalledModel]:
        return [m for m in self.installed_models.values() if m.model_id == model_id]

    def put(self, installed: InstalledModel) -> None:
        self.installed_models[installed.key] = installed

    def pop(self, model_id: str, variant: str) -> Optional[InstalledModel]:
        return self.installed_models.pop(state_key(model_id, variant), None)


class OperationStage(str, Enum):
    """Per-operation state machine."""
    IDLE = "idle"
    CHECKING = "checking"
    BACKING_UP = "backing_up"
    DOWNLOADING = "downloading"
    VERIFYING = "verifying"
    COMMITTING = "committing"
    DONE = "done"
    FAILING = "failing"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


@dataclass
class UpdateProgress:
    """Progress snapshot for one model operation."""
    model_id: str
    variant: str
    version: str
    stage: OperationStage = OperationStage.IDLE
    progress_percent: float = 0.0
    bytes_downloaded: int = 0
    total_bytes: int = 0
    speed_mbps: float = 0.0
    eta_seconds: Optional[int] = None
    attempt: int = 0
    error_message: Optional[str] = None


@dataclass
class UpdateCandidate:
    """An installed model with a newer compatible registry version."""
    model_id: str
    variant: str
    current_version: str
    latest_version: str
    update_type: UpdateType
    is_breaking: bool
    changelog: str = ""
    size_bytes: int = 0
    deprecated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_id": self.model_id,
            "variant": self.variant,
            "current_version": self.current_version,
            "latest_version": self.latest_version,
            "update_type": self.update_type.value,
            "is_breaking": self.is_breaking,
            "changelog": self.changelog,
            "size_bytes": self.size_bytes,
            "deprecated": self.deprecated,
        }


@dataclass
class OperationResult:
    """Outcome of an install, update or rollback."""
    model_id: str
    variant: str
    version: str
    action: str
    changed: bool = True
    previous_version: Optional[str] = None
    source: str = "download"
    backup_created: bool = False
    low_trust: bool = False
    file_path: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_id": self.model_id,
            "variant": self.variant,
            "version": self.version,
            "action": self.action,
            "changed": self.changed,
            "previous_version": self.previous_version,
            "source": self.source,
            "backup_created": self.backup_created,
            "low_trust": self.low_trust,
            "file_path": self.file_path,
            "warnings": list(self.warnings),
        }


@dataclass
class UpdateOutcome:
    """Per-model entry of a batch update. Exactly one of result/error is set."""
    model_id: str
    variant: str
    result: Optional[OperationResult] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        error = None
        if self.error is not None:
            error = self.error.to_dict() if hasattr(self.error, "to_dict") else {"message": str(self.error)}
        return {
            "model_id": self.model_id,
            "variant": self.variant,
            "ok": self.ok,
            "result": self.result.to_dict() if self.result else None,
            "error": error,
        }
