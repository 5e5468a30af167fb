"""
Backup Management

Snapshots of installed artifacts kept under ``<models_dir>/backups`` as
``<model_id>-<version>.<ext>``, used to roll back without re-downloading.
"""

import asyncio
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

from loguru import logger

from ..utils.file_utils import atomic_copy, remove_file


@dataclass(frozen=True)
class Backup:
    """One backup file."""
    model_id: str
    version: str
    path: Path
    mtime: float
    size_bytes: int

    @property
    def created_at(self) -> datetime:
        return datetime.fromtimestamp(self.mtime)

    def to_dict(self) -> dict:
        return {
            "model_id": self.model_id,
            "version": self.version,
            "path": str(self.path),
            "created_at": self.created_at.isoformat(),
            "size_bytes": self.size_bytes,
        }


_NAME_PATTERN = re.compile(r"^(?P<model_id>.+)-(?P<version>\d.*)$")


def parse_backup_name(path: Path, model_ids: Iterable[str] = ()) -> Optional[Tuple[str, str]]:
    """
    Split ``<model_id>-<version>.<ext>`` into its model id and version.

    Both parts may contain dashes. A known model id that prefixes the name
    wins (longest first). Otherwise the version starts at the last dash
    followed by a digit, so ``phi-3-mini-2.0.0-beta`` reads as ``phi-3-mini``
    at ``2.0.0-beta``. Names with no such dash split on the last dash.
    """
    if path.name.startswith(".") or not path.suffix:
        return None
    stem = path.name[: -len(path.suffix)]
    for model_id in sorted(set(model_ids), key=len, reverse=True):
        version = stem[len(model_id) + 1:]
        if stem.startswith(f"{model_id}-") and version[:1].isdigit():
            return model_id, version

    match = _NAME_PATTERN.match(stem)
    if match:
        return match.group("model_id"), match.group("version")
    if "-" not in stem:
        return None
    model_id, version = stem.rsplit("-", 1)
    if not model_id or not version:
        return None
    return model_id, version


class BackupManager:
    """Creates, restores, lists and prunes artifact backups."""

    def __init__(self, backup_dir: Path):
        self.backup_dir = Path(backup_dir)

    def backup_path(self, model_id: str, version: str, extension: str) -> Path:
        return self.backup_dir / f"{model_id}-{version}.{extension.lstrip('.')}"

    async def backup(self, model_id: str, version: str, source_path: Path) -> Optional[Path]:
        """
        Copy the installed artifact into the backup directory.

        Returns:
            The backup path, or None if the copy failed. An earlier backup of
            the same name is left as it was.
        """
        source_path = Path(source_path)
        target = self.backup_path(model_id, version, source_path.suffix or ".bin")
        try:
            await asyncio.to_thread(atomic_copy, source_path, target)
        except OSError as e:
            logger.warning(f"Failed to back up {model_id} {version}: {e}")
            return None
        logger.info(f"Backed up {model_id} {version} to {target.name}")
        return target

    def find(self, model_id: str, version: str) -> Optional[Backup]:
        for backup in self.list_backups(model_id):
            if backup.version == version:
                return backup
        return None

    def has_backup(self, model_id: str, version: str) -> bool:
        return self.find(model_id, version) is not None

    async def restore(self, model_id: str, version: str, target_path: Path,
                      extension: Optional[str] = None) -> bool:
        """
        Copy a backup to ``target_path``.

        Returns:
            False if no backup of ``model_id`` at ``version`` exists
        """
        if extension:
            source = self.backup_path(model_id, version, extension)
            backup = self._describe(source, [model_id]) if source.is_file() else None
        else:
            backup = self.find(model_id, version)
        if backup is None:
            logger.info(f"No backup of {model_id} {version} to restore")
            return False
        try:
            await asyncio.to_thread(atomic_copy, backup.path, target_path)
        except OSError as e:
            logger.warning(f"Failed to restore backup {backup.path.name}: {e}")
            return False
        logger.info(f"Restored {model_id} {version} from backup")
        return True

    def _describe(self, path: Path, model_ids: Iterable[str] = ()) -> Optional[Backup]:
        parsed = parse_backup_name(path, model_ids)
        if parsed is None:
            return None
        stat = path.stat()
        return Backup(parsed[0], parsed[1], path, stat.st_mtime, stat.st_size)

    def list_backups(self, model_id: Optional[str] = None, model_ids: Iterable[str] = ()) -> List[Backup]:
        """
        Backups, newest first, optionally for one model.

        ``model_ids`` are known ids used to split names whose version
        contains a dash.
        """
        known = set(model_ids)
        if model_id is not None:
            known.add(model_id)
        if not self.backup_dir.is_dir():
            return []
        backups = []
        for path in self.backup_dir.iterdir():
            if not path.is_file():
                continue
            backup = self._describe(path, known)
            if backup is None:
                continue
            if model_id is None or backup.model_id == model_id:
                backups.append(backup)
        backups.sort(key=lambda b: b.mtime, reverse=True)
        return backups

    def remove(self, model_id: str, version: str) -> bool:
        backup = self.find(model_id, version)
        if backup is None:
            return False
        return remove_file(backup.path)

    def prune(self, keep_count: int, protect: Iterable[Tuple[str, str]] = (),
              model_ids: Iterable[str] = ()) -> List[Backup]:
        """
        Keep only the newest ``keep_count`` backups per model.

        Args:
            keep_count: Backups retained per model, at least 1
            protect: ``(model_id, version)`` pairs never deleted
            model_ids: Known model ids, see ``list_backups``

        Returns:
            The backups that were deleted
        """
        if keep_count < 1:
            raise ValueError("keep_count must be at least 1")
        protected: Set[Tuple[str, str]] = set(protect)

        by_model: Dict[str, List[Backup]] = {}
        for backup in self.list_backups(model_ids=model_ids):
            by_model.setdefault(backup.model_id, []).append(backup)

        deleted = []
        for model_id, backups in by_model.items():
            for backup in backups[keep_count:]:
                if (backup.model_id, backup.version) in protected:
                    logger.debug(f"Keeping protected backup {backup.path.name}")
                    continue
                if remove_file(backup.path):
                    deleted.append(backup)
                    logger.info(f"Removed old backup {backup.path.name}")
        return deleted
