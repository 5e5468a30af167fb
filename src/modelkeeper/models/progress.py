"""
Progress Tracking

Turns a stream of byte counts into ``UpdateProgress`` snapshots with speed
and ETA, and fans them out to registered callbacks.
"""

import asyncio
import inspect
import time
from dataclasses import replace
from typing import Awaitable, Callable, List, Optional, Union

from loguru import logger

from .types import OperationStage, UpdateProgress

ProgressCallback = Callable[[UpdateProgress], Union[None, Awaitable[None]]]


async def notify_callbacks(callbacks: List[ProgressCallback], progress: UpdateProgress) -> None:
    """
    Deliver a snapshot to every callback.

    Callbacks may be sync or async. A failing callback is logged and skipped;
    it never affects the operation reporting progress.
    """
    for callback in list(callbacks):
        try:
            result = callback(replace(progress))
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in progress callback: {e}")


class DownloadProgressTracker:
    """
    Tracks one artifact transfer.

    Snapshots are rate limited to ``min_interval`` seconds except for the
    first and last chunk.
    """

    def __init__(
        self,
        template: UpdateProgress,
        callbacks: Optional[List[ProgressCallback]] = None,
        min_interval: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.template = template
        self.callbacks = callbacks if callbacks is not None else []
        self.min_interval = min_interval
        self.clock = clock
        self.start_time = clock()
        self.last_report = 0.0
        self.bytes_downloaded = 0
        self.total_bytes = template.total_bytes

    def start_attempt(self, attempt: int, total_bytes: int) -> None:
        self.template = replace(self.template, attempt=attempt)
        self.total_bytes = total_bytes
        self.bytes_downloaded = 0
        self.start_time = self.clock()
        self.last_report = 0.0

    def snapshot(self, stage: OperationStage = OperationStage.DOWNLOADING,
                 error_message: Optional[str] = None) -> UpdateProgress:
        elapsed = self.clock() - self.start_time
        speed = self.bytes_downloaded / elapsed if elapsed > 0 else 0.0
        percent = 0.0
        eta = None
        if self.total_bytes > 0:
            percent = min(100.0, self.bytes_downloaded / self.total_bytes * 100)
            if speed > 0:
                eta = int(max(0, self.total_bytes - self.bytes_downloaded) / speed)
        return replace(
            self.template,
            stage=stage,
            progress_percent=percent,
            bytes_downloaded=self.bytes_downloaded,
            total_bytes=self.total_bytes,
            speed_mbps=speed / (1024 * 1024),
            eta_seconds=eta,
            error_message=error_message,
        )

    async def advance(self, chunk_len: int) -> None:
        first = self.bytes_downloaded == 0
        self.bytes_downloaded += chunk_len
        now = self.clock()
        done = self.total_bytes > 0 and self.bytes_downloaded >= self.total_bytes
        if first or done or now - self.last_report >= self.min_interval:
            self.last_report = now
            await notify_callbacks(self.callbacks, self.snapshot())

    async def report(self, stage: OperationStage, error_message: Optional[str] = None) -> None:
        await notify_callbacks(self.callbacks, self.snapshot(stage, error_message))
