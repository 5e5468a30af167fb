"""
Local State Store

Persistent record of which (model_id, variant) is installed at which version.
Every mutation goes through a locked read-modify-write of the whole document.
"""

from pathlib import Path
from typing import List, Optional

from loguru import logger

from .types import InstalledModel, LocalState, utcnow
from ..utils.json_store import JsonStore


class LocalStateStore:
    """``local-state.json``: the single source of truth for installed models."""

    def __init__(self, path: Path, lock_timeout: float = 600.0):
        self.store: JsonStore[LocalState] = JsonStore(path, LocalState, lock_timeout=lock_timeout)

    @property
    def path(self) -> Path:
        return self.store.path

    def load(self) -> LocalState:
        return self.store.load()

    def get(self, model_id: str, variant: str) -> Optional[InstalledModel]:
        return self.load().get(model_id, variant)

    def installed_for(self, model_id: str) -> List[InstalledModel]:
        return self.load().for_model(model_id)

    def list_installed(self) -> List[InstalledModel]:
        return sorted(self.load().installed_models.values(), key=lambda m: m.key)

    def commit(self, installed: InstalledModel) -> LocalState:
        """Record ``installed`` as the entry for its (model_id, variant)."""
        state = self.store.update(lambda doc: doc.put(installed))
        logger.debug(f"Committed {installed.key} at version {installed.version}")
        return state

    def remove(self, model_id: str, variant: str) -> Optional[InstalledModel]:
        removed = []

        def drop(doc: LocalState) -> None:
            entry = doc.pop(model_id, variant)
            if entry is not None:
                removed.append(entry)

        self.store.update(drop)
        return removed[0] if removed else None

    def touch_last_check(self) -> LocalState:
        def touch(doc: LocalState) -> None:
            doc.last_check = utcnow()

        return self.store.update(touch)

    def set_auto_update(self, enabled: bool) -> LocalState:
        def toggle(doc: LocalState) -> None:
            doc.auto_update_enabled = enabled

        return self.store.update(toggle)

    def mark_used(self, model_id: str, variant: str) -> Optional[InstalledModel]:
        marked = []

        def touch(doc: LocalState) -> None:
            entry = doc.get(model_id, variant)
            if entry is not None:
                entry.last_used = utcnow()
                marked.append(entry)

        self.store.update(touch)
        return marked[0] if marked else None
