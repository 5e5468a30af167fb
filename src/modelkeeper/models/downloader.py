"""
Artifact Downloader

Streams an artifact over HTTP to a destination path, verifies it, and retries
the whole transfer on network or integrity failure. The destination never
holds a partial or unverified file once ``fetch`` returns or raises.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from pathlib import Path
from typing import AsyncIterator, AsyncContextManager, Awaitable, Callable, Optional, Protocol

import aiohttp
from loguru import logger

from ..core.error_handling import IntegrityError, ModelKeeperError, NetworkError, RetryPolicy
from ..utils.file_utils import format_bytes, remove_file
from .integrity import IntegrityVerifier, VerificationReport
from .progress import DownloadProgressTracker
from .types import ArtifactFormat, OperationStage

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class TransportResponse:
    """An opened HTTP GET: status, declared length and a chunk stream."""
    status: int
    content_length: Optional[int]
    chunks: AsyncIterator[bytes]


class HttpTransport(Protocol):
    """Anything that can open a streaming GET."""

    def stream(self, url: str, chunk_size: int) -> AsyncContextManager[TransportResponse]:
        ...


class AiohttpTransport:
    """
    Default transport backed by ``aiohttp``.

    Uses the given session, or opens one per request when none is supplied.
    """

    def __init__(self, session: Optional[aiohttp.ClientSession] = None,
                 connect_timeout: float = 30.0):
        self._session = session
        self.connect_timeout = connect_timeout

    @asynccontextmanager
    async def stream(self, url: str, chunk_size: int):
        session = self._session
        owns_session = session is None
        if owns_session:
            session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=self.connect_timeout)
            )
        try:
            async with session.get(url) as response:
                yield TransportResponse(
                    status=response.status,
                    content_length=response.content_length,
                    chunks=response.content.iter_chunked(chunk_size),
                )
        except aiohttp.ClientError as e:
            raise NetworkError(f"Transport error fetching {url}: {e}") from e
        finally:
            if owns_session:
                await session.close()


@dataclass
class DownloadResult:
    """A verified artifact at its destination."""
    path: Path
    bytes_written: int
    attempts: int
    report: VerificationReport

    @property
    def low_trust(self) -> bool:
        return self.report.low_trust


class Downloader:
    """
    Fetch-and-verify with bounded retries.

    Args:
        verifier: Integrity checks run after every transfer
        transport: HTTP transport; defaults to ``AiohttpTransport``
        retry_policy: Attempt count and delays between attempts
        attempt_timeout: Upper bound on one transfer, in seconds
        chunk_size: Streaming chunk size in bytes
        sleep: Awaitable used for retry delays (injectable for tests)
    """

    def __init__(
        self,
        verifier: IntegrityVerifier,
        transport: Optional[HttpTransport] = None,
        retry_policy: Optional[RetryPolicy] = None,
        attempt_timeout: float = 300.0,
        chunk_size: int = 65536,
        sleep: Sleep = asyncio.sleep,
    ):
        self.verifier = verifier
        self.transport = transport or AiohttpTransport()
        self.retry_policy = retry_policy or RetryPolicy()
        self.attempt_timeout = attempt_timeout
        self.chunk_size = chunk_size
        self.sleep = sleep

    async def _transfer(self, url: str, dest_path: Path, expected_size: Optional[int],
                        tracker: Optional[DownloadProgressTracker], attempt: int) -> int:
        try:
            async with self.transport.stream(url, self.chunk_size) as response:
                if response.status != 200:
                    raise NetworkError(f"Download failed with status {response.status}", status=response.status)

                total = expected_size or response.content_length or 0
                if tracker:
                    tracker.start_attempt(attempt, total)

                written = 0
                with open(dest_path, "wb") as f:
                    async for chunk in response.chunks:
                        f.write(chunk)
                        written += len(chunk)
                        if tracker:
                            await tracker.advance(len(chunk))
        except OSError as e:
            raise NetworkError(f"Transfer to {dest_path.name} failed: {e}") from e

        if expected_size and written != expected_size:
            raise IntegrityError(
                f"Received {written} bytes, expected {expected_size}", dimension="size"
            )
        return written

    async def fetch(
        self,
        url: str,
        dest_path: Path,
        expected_size: Optional[int] = None,
        expected_checksum: Optional[str] = None,
        max_retries: Optional[int] = None,
        progress: Optional[DownloadProgressTracker] = None,
        deadline: Optional[float] = None,
        artifact_format: ArtifactFormat = ArtifactFormat.ONNX,
    ) -> DownloadResult:
        """
        Download ``url`` to ``dest_path`` and verify it.

        Args:
            url: Artifact URL
            dest_path: Destination file, overwritten on each attempt
            expected_size: Exact byte count required, if known
            expected_checksum: ``"algo:hex"`` digest, if declared
            max_retries: Total attempts; defaults to the retry policy's
            progress: Tracker receiving per-chunk and stage updates
            deadline: Event loop time after which no further attempt starts
            artifact_format: Format used for the structure check

        Returns:
            DownloadResult for the verified file

        Raises:
            NetworkError: transport failure or deadline expiry after the last attempt
            IntegrityError: verification failure after the last attempt
        """
        dest_path = Path(dest_path)
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        policy = self.retry_policy
        if max_retries is not None:
            policy = replace(policy, max_attempts=max_retries)
        loop = asyncio.get_running_loop()
        last_error: Optional[ModelKeeperError] = None

        for attempt in policy.attempts():
            timeout = self.attempt_timeout
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    last_error = NetworkError(f"Download deadline expired before attempt {attempt}")
                    break
                timeout = min(timeout, remaining)

            logger.info(f"Downloading {url} (attempt {attempt}/{policy.max_attempts})")
            try:
                written = await asyncio.wait_for(
                    self._transfer(url, dest_path, expected_size, progress, attempt), timeout
                )
                if progress:
                    await progress.report(OperationStage.VERIFYING)
                report = await asyncio.to_thread(
                    self.verifier.ensure_verified,
                    dest_path,
                    expected_size=expected_size,
                    expected_checksum=expected_checksum,
                    exact_size=True,
                    artifact_format=artifact_format,
                )
                logger.info(f"Downloaded and verified {dest_path.name} ({format_bytes(written)})")
                return DownloadResult(dest_path, written, attempt, report)
            except asyncio.TimeoutError:
                last_error = NetworkError(f"Download attempt {attempt} timed out after {timeout:.0f}s")
            except (NetworkError, IntegrityError) as e:
                last_error = e
            except BaseException:
                remove_file(dest_path)
                raise

            remove_file(dest_path)
            logger.warning(f"Attempt {attempt} for {dest_path.name} failed: {last_error.message}")
            if progress:
                await progress.report(OperationStage.DOWNLOADING, error_message=last_error.message)
            if not policy.should_retry(attempt, last_error):
                break

            delay = policy.delay_for(attempt)
            if deadline is not None and loop.time() + delay >= deadline:
                last_error = NetworkError(
                    f"Download deadline expires before retry after attempt {attempt}: {last_error.message}"
                )
                break
            await self.sleep(delay)

        remove_file(dest_path)
        raise last_error
