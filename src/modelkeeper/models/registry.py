"""
Model Registry

Read access to the catalog of installable models. The registry document is
always replaced as a whole; individual fields are never merged.
"""

import json
from pathlib import Path
from typing import List, Optional

from loguru import logger
from pydantic import ValidationError

from ..core.error_handling import NotFoundError, StateCorruptionError
from ..utils.json_store import JsonStore
from .types import ModelInfo, ModelVersion, RegistryDocument
from .versioning import compare, sort_versions


def default_registry() -> RegistryDocument:
    return RegistryDocument(models={}, registry_version="1.0.0")


class ModelRegistry:
    """Catalog of models and their published versions, stored as ``registry.json``."""

    def __init__(self, path: Path, lock_timeout: float = 600.0):
        self.store: JsonStore[RegistryDocument] = JsonStore(
            path, RegistryDocument, default_factory=default_registry, lock_timeout=lock_timeout
        )

    @property
    def path(self) -> Path:
        return self.store.path

    def load(self) -> RegistryDocument:
        return self.store.load()

    def list_models(self) -> List[ModelInfo]:
        return list(self.load().models.values())

    def find_model(self, model_id: str) -> Optional[ModelInfo]:
        return self.load().models.get(model_id)

    def get_model(self, model_id: str) -> ModelInfo:
        """
        Look up a model.

        Raises:
            NotFoundError: if the registry does not list ``model_id``
        """
        model = self.find_model(model_id)
        if model is None:
            raise NotFoundError(f"Model '{model_id}' is not in the registry", model_id=model_id)
        return model

    def get_version(self, model_id: str, version: Optional[str] = None) -> ModelVersion:
        """
        Look up one published version, defaulting to the model's current version.

        Raises:
            NotFoundError: for an unknown model or version
        """
        model = self.get_model(model_id)
        target = version or model.current_version
        entry = model.versions.get(target)
        if entry is None:
            raise NotFoundError(
                f"Version {target} of '{model_id}' is not in the registry",
                model_id=model_id,
                version=target,
            )
        return entry

    def version_history(self, model_id: str) -> List[ModelVersion]:
        """All versions of a model, newest release first. Undated versions sort last."""
        model = self.get_model(model_id)
        dated = [v for v in model.versions.values() if v.release_date is not None]
        undated = [v for v in model.versions.values() if v.release_date is None]
        dated.sort(key=lambda v: v.release_date, reverse=True)
        undated = sort_versions([v.version for v in undated], reverse=True)
        return dated + [model.versions[v] for v in undated]

    def previous_version(self, model_id: str, current: str) -> Optional[str]:
        """Numerically greatest published version below ``current``."""
        model = self.get_model(model_id)
        older = [v for v in model.versions if compare(v, current) < 0]
        return sort_versions(older)[-1] if older else None

    def replace(self, document: RegistryDocument) -> RegistryDocument:
        """Swap in a whole new registry document."""
        self.store.save(document)
        logger.info(
            f"Registry replaced: {len(document.models)} models, version {document.registry_version}"
        )
        return document

    def refresh_from_file(self, source: Path) -> RegistryDocument:
        """
        Replace the registry with the document at ``source``.

        Raises:
            StateCorruptionError: if ``source`` is not a valid registry document
        """
        source = Path(source)
        try:
            data = json.loads(source.read_text(encoding="utf-8"))
            document = RegistryDocument.model_validate(data)
        except FileNotFoundError:
            raise NotFoundError(f"Registry source {source} does not exist") from None
        except (json.JSONDecodeError, ValidationError) as e:
            raise StateCorruptionError(f"Registry source {source} is invalid: {e}", path=str(source)) from e
        return self.replace(document)
