"""
File Locks

Advisory OS-level exclusive locks (``fcntl`` on Unix, ``msvcrt`` on Windows)
for serializing store writers across processes, and a keyed async lock for
serializing operations on the same (model_id, variant).
"""

import asyncio
import platform
import time
from pathlib import Path
from typing import Dict, Optional

from loguru import logger

from ..core.error_handling import LockTimeoutError

POLL_INTERVAL_SECONDS = 0.05


class FileLock:
    """
    Exclusive lock on a sidecar lock file.

    Usable as a blocking context manager (``with``) or an async one
    (``async with``); the async form polls without blocking the event loop.
    """

    def __init__(self, lock_path: Path, timeout: float = 600.0):
        self.lock_path = Path(lock_path)
        self.timeout = timeout
        self._lock_file = None

    @property
    def locked(self) -> bool:
        return self._lock_file is not None

    def _try_acquire(self) -> bool:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        lock_file = open(self.lock_path, "a+")
        try:
            if platform.system() == "Windows":
                import msvcrt

                lock_file.seek(0)
                msvcrt.locking(lock_file.fileno(), msvcrt.LK_NBLCK, 1)
            else:
                import fcntl

                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            lock_file.close()
            return False
        self._lock_file = lock_file
        return True

    def acquire(self) -> None:
        """Block until the lock is held, or raise LockTimeoutError."""
        deadline = time.monotonic() + self.timeout
        while not self._try_acquire():
            if time.monotonic() >= deadline:
                raise LockTimeoutError(f"Timed out waiting for lock {self.lock_path}")
            time.sleep(POLL_INTERVAL_SECONDS)

    async def acquire_async(self) -> None:
        """Wait for the lock without blocking the event loop."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        while not self._try_acquire():
            if loop.time() >= deadline:
                raise LockTimeoutError(f"Timed out waiting for lock {self.lock_path}")
            await asyncio.sleep(POLL_INTERVAL_SECONDS)

    def release(self) -> None:
        if self._lock_file is None:
            return
        try:
            if platform.system() == "Windows":
                import msvcrt

                self._lock_file.seek(0)
                msvcrt.locking(self._lock_file.fileno(), msvcrt.LK_UNLCK, 1)
            else:
                import fcntl

                fcntl.flock(self._lock_file.fileno(), fcntl.LOCK_UN)
        except OSError as e:
            logger.warning(f"Failed to unlock {self.lock_path}: {e}")
        finally:
            self._lock_file.close()
            self._lock_file = None

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False

    async def __aenter__(self) -> "FileLock":
        await self.acquire_async()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


class ModelLock:
    """
    Mutual exclusion for operations targeting one (model_id, variant).

    Combines an in-process ``asyncio.Lock`` (so coroutines in this process
    queue fairly) with a cross-process file lock under ``lock_dir``.
    """

    def __init__(self, lock_dir: Path, timeout: float = 600.0):
        self.lock_dir = Path(lock_dir)
        self.timeout = timeout
        self._local_locks: Dict[str, asyncio.Lock] = {}

    def _key(self, model_id: str, variant: str) -> str:
        return f"{model_id}-{variant}"

    def hold(self, model_id: str, variant: str) -> "_HeldModelLock":
        key = self._key(model_id, variant)
        local = self._local_locks.setdefault(key, asyncio.Lock())
        file_lock = FileLock(self.lock_dir / f"{key}.lock", timeout=self.timeout)
        return _HeldModelLock(key, local, file_lock, self.timeout)

    def is_held(self, model_id: str, variant: str) -> bool:
        lock = self._local_locks.get(self._key(model_id, variant))
        return bool(lock and lock.locked())


class _HeldModelLock:
    def __init__(self, key: str, local: asyncio.Lock, file_lock: FileLock, timeout: float):
        self.key = key
        self.local = local
        self.file_lock = file_lock
        self.timeout = timeout

    async def __aenter__(self):
        try:
            await asyncio.wait_for(self.local.acquire(), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise LockTimeoutError(f"Timed out waiting for operation lock on {self.key}") from None
        try:
            await self.file_lock.acquire_async()
        except BaseException:
            self.local.release()
            raise
        logger.debug(f"Acquired operation lock for {self.key}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.file_lock.release()
        self.local.release()
        logger.debug(f"Released operation lock for {self.key}")
        return False


def lock_path_for(path: Path) -> Optional[Path]:
    """Sidecar lock file for a store document."""
    path = Path(path)
    return path.with_name(path.name + ".lock")
