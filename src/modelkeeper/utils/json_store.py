"""
JSON Document Store

A whole-document JSON store backed by a pydantic model. The document is
loaded fully into memory, written atomically, and writers serialize on an
OS-level lock so concurrent read-modify-write cycles never lose updates.
"""

import json
from pathlib import Path
from typing import Callable, Generic, Optional, Type, TypeVar

from loguru import logger
from pydantic import BaseModel, ValidationError

from ..core.error_handling import StateCorruptionError
from .file_lock import FileLock, lock_path_for
from .file_utils import atomic_write_text

T = TypeVar("T", bound=BaseModel)


class JsonStore(Generic[T]):
    """
    Persistent pydantic document.

    Args:
        path: Location of the JSON document
        model: Pydantic model class describing the document
        default_factory: Builds the document written when none exists yet
        lock_timeout: Seconds to wait for the writer lock
    """

    def __init__(
        self,
        path: Path,
        model: Type[T],
        default_factory: Optional[Callable[[], T]] = None,
        lock_timeout: float = 600.0,
    ):
        self.path = Path(path)
        self.model = model
        self.default_factory = default_factory or model
        self.lock_timeout = lock_timeout

    @property
    def lock_path(self) -> Path:
        return lock_path_for(self.path)

    def _lock(self) -> FileLock:
        return FileLock(self.lock_path, timeout=self.lock_timeout)

    def _read(self) -> Optional[T]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return self.model.model_validate(json.loads(raw))
        except json.JSONDecodeError as e:
            raise StateCorruptionError(
                f"{self.path.name} is not valid JSON: {e}", path=str(self.path)
            ) from e
        except ValidationError as e:
            raise StateCorruptionError(
                f"{self.path.name} does not match the {self.model.__name__} schema: "
                f"{e.error_count()} error(s)",
                path=str(self.path),
                metadata={"errors": [err["msg"] for err in e.errors()]},
            ) from e

    def _write(self, document: T) -> None:
        atomic_write_text(self.path, document.model_dump_json(indent=2))

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> T:
        """
        Read the last committed document.

        A missing document is bootstrapped: the default is written under the
        writer lock before it is returned. Malformed documents raise
        StateCorruptionError and are left untouched.
        """
        document = self._read()
        if document is not None:
            return document

        with self._lock():
            document = self._read()
            if document is None:
                document = self.default_factory()
                self._write(document)
                logger.info(f"Created default {self.path.name} at {self.path}")
        return document

    def save(self, document: T) -> None:
        """Replace the whole document."""
        with self._lock():
            self._write(document)

    def update(self, mutator: Callable[[T], Optional[T]]) -> T:
        """
        Read-modify-write under the writer lock.

        The document is re-read after the lock is taken, so changes committed
        by other writers in the meantime are preserved. ``mutator`` may modify
        the document in place or return a replacement.
        """
        with self._lock():
            document = self._read()
            if document is None:
                document = self.default_factory()
            replacement = mutator(document)
            if replacement is not None:
                document = replacement
            self._write(document)
        return document
