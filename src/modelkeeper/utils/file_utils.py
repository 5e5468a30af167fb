"""
File Utilities

Hashing, atomic writes and copies, and size formatting for model artifacts
and store documents.
"""

import hashlib
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Union

from loguru import logger

HASH_CHUNK_SIZE = 1024 * 1024


def get_file_hash(file_path: Union[str, Path], algorithm: str = "sha256") -> str:
    """
    Calculate a file hash by streaming it in chunks.

    Args:
        file_path: Path to the file
        algorithm: Any algorithm name accepted by ``hashlib.new``

    Returns:
        Lowercase hex digest

    Raises:
        FileNotFoundError: if the file does not exist
        ValueError: if the algorithm is unknown
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    hash_obj = hashlib.new(algorithm)
    with open(file_path, "rb") as f:
        while chunk := f.read(HASH_CHUNK_SIZE):
            hash_obj.update(chunk)
    return hash_obj.hexdigest()


def fsync_directory(directory: Path) -> None:
    # Not supported on Windows; the rename is still atomic there.
    if os.name == "nt":
        return
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def atomic_write_bytes(path: Union[str, Path], data: bytes) -> None:
    """
    Replace ``path`` with ``data`` so readers see either the old or new content.

    Writes a temp file in the same directory, fsyncs it, then renames it over
    the destination.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        remove_file(Path(tmp_name))
        raise
    fsync_directory(path.parent)


def atomic_write_text(path: Union[str, Path], text: str, encoding: str = "utf-8") -> None:
    atomic_write_bytes(path, text.encode(encoding))


def atomic_copy(source: Union[str, Path], destination: Union[str, Path]) -> Path:
    """
    Copy ``source`` to ``destination`` through a unique temp file and rename.

    A crash mid-copy never leaves a truncated file at ``destination``, and
    concurrent copies to the same destination never share a temp file.
    """
    source = Path(source)
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{destination.name}.", suffix=".tmp", dir=destination.parent)
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        shutil.copyfile(source, tmp_path)
        with open(tmp_path, "rb+") as f:
            os.fsync(f.fileno())
        os.replace(tmp_path, destination)
    except BaseException:
        remove_file(tmp_path)
        raise
    return destination


def remove_file(path: Optional[Path]) -> bool:
    """Delete a file if present. Returns True if something was removed."""
    if path is None:
        return False
    try:
        Path(path).unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"Could not remove {path}: {e}")
        return False


def format_bytes(bytes_size: float) -> str:
    """Format bytes into human-readable string."""
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if abs(bytes_size) < 1024.0:
            return f"{bytes_size:.1f} {unit}"
        bytes_size /= 1024.0
    return f"{bytes_size:.1f} PB"
