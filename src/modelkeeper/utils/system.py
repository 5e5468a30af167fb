"""
System Resource Probes

Total and available memory as reported by psutil, in gigabytes.
"""

from dataclasses import dataclass

import psutil
from loguru import logger

GB = 1024**3


@dataclass
class MemoryInfo:
    """Snapshot of system memory."""
    total_gb: float
    available_gb: float
    percent_used: float


def get_memory_info() -> MemoryInfo:
    memory = psutil.virtual_memory()
    return MemoryInfo(
        total_gb=memory.total / GB,
        available_gb=memory.available / GB,
        percent_used=memory.percent,
    )


def total_ram_gb() -> float:
    """Total physical memory in GB. The orchestrator's default RAM probe."""
    total = get_memory_info().total_gb
    logger.debug(f"Detected {total:.1f}GB of system memory")
    return total
