"""
Model Keeper Utilities

File locking, atomic JSON documents, file helpers and system probes.
"""

from .file_lock import FileLock, ModelLock
from .file_utils import atomic_copy, atomic_write_bytes, format_bytes, get_file_hash, remove_file
from .json_store import JsonStore
from .system import MemoryInfo, get_memory_info, total_ram_gb

__all__ = [
    "FileLock",
    "ModelLock",
    "JsonStore",
    "atomic_copy",
    "atomic_write_bytes",
    "format_bytes",
    "get_file_hash",
    "remove_file",
    "MemoryInfo",
    "get_memory_info",
    "total_ram_gb",
]
