#!/usr/bin/env python3
"""
Model Keeper - Test Configuration

Shared fixtures: an isolated models directory, a scripted in-memory HTTP
transport, a registry builder and a sleep that records delays instead of
waiting.
"""

import hashlib
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from loguru import logger

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from modelkeeper.config.settings import ModelKeeperSettings
from modelkeeper.core.error_handling import NetworkError
from modelkeeper.models.downloader import TransportResponse
from modelkeeper.models.model_updater import UpdateOrchestrator
from modelkeeper.models.registry import ModelRegistry
from modelkeeper.models.types import ArtifactFormat, ModelInfo, ModelVersion, RegistryDocument

BASE_URL = "https://models.example.com"


def artifact_bytes(size: int = 4096, fmt: ArtifactFormat = ArtifactFormat.ONNX, seed: int = 0) -> bytes:
    """Deterministic bytes that pass the structure check for ``fmt``."""
    if fmt == ArtifactFormat.GGUF:
        header = b"GGUF"
    elif fmt == ArtifactFormat.SAFETENSORS:
        body = b'{"__metadata__":{}}'
        header = len(body).to_bytes(8, "little") + body
    elif fmt == ArtifactFormat.ONNX:
        header = b"\x08\x07"
    else:
        header = b""
    filler = bytes((seed + i) % 251 for i in range(max(0, size - len(header))))
    return header + filler


def sha256_tag(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


async def _chunks(data: bytes, chunk_size: int):
    for start in range(0, len(data), chunk_size):
        yield data[start:start + chunk_size]


class FakeTransport:
    """
    In-memory transport.

    ``serve`` registers content for a URL. ``script`` queues one action per
    future request to a URL: an int status code, ``"error"`` (transport
    failure), ``"corrupt"`` (same size, wrong bytes) or ``"truncate"``.
    URLs in ``always_corrupt`` are corrupted on every request.
    """

    def __init__(self):
        self.files: Dict[str, bytes] = {}
        self.calls: List[str] = []
        self.plan: Dict[str, list] = {}
        self.always_corrupt = set()

    def serve(self, url: str, data: bytes) -> None:
        self.files[url] = data

    def script(self, url: str, *actions) -> None:
        self.plan.setdefault(url, []).extend(actions)

    def calls_to(self, url: str) -> int:
        return self.calls.count(url)

    @asynccontextmanager
    async def stream(self, url: str, chunk_size: int):
        self.calls.append(url)
        queued = self.plan.get(url)
        action = queued.pop(0) if queued else None
        if url in self.always_corrupt:
            action = "corrupt"

        if action == "error":
            raise NetworkError(f"connection reset while fetching {url}")

        data = self.files.get(url)
        if isinstance(action, int):
            yield TransportResponse(action, None, _chunks(b"", chunk_size))
            return
        if data is None:
            yield TransportResponse(404, None, _chunks(b"", chunk_size))
            return
        if action == "corrupt":
            data = data[:2] + bytes(b ^ 0xFF for b in data[2:])
        elif action == "truncate":
            data = data[: len(data) // 2]
        yield TransportResponse(200, len(data), _chunks(data, chunk_size))


class Catalog:
    """Builds registry documents whose artifacts are served by a FakeTransport."""

    def __init__(self, registry_path: Path, transport: FakeTransport):
        self.registry = ModelRegistry(registry_path, lock_timeout=5)
        self.transport = transport
        self.models: Dict[str, ModelInfo] = {}
        self.payloads: Dict[tuple, bytes] = {}

    def add(
        self,
        model_id: str,
        version: str,
        size: int = 4096,
        compatibility: Optional[List[str]] = None,
        current: bool = True,
        checksum: bool = True,
        fmt: ArtifactFormat = ArtifactFormat.ONNX,
        variant: str = "default",
        released: Optional[datetime] = None,
        minimum_ram_gb: float = 0.0,
        recommended_ram_gb: float = 0.0,
        url: Optional[str] = None,
    ) -> ModelVersion:
        data = artifact_bytes(size, fmt, seed=len(self.payloads) + 1)
        url = url if url is not None else f"{BASE_URL}/{model_id}/{version}/{model_id}.{fmt.extension}"
        if url:
            self.transport.serve(url, data)
        self.payloads[(model_id, version)] = data

        entry = ModelVersion(
            model_id=model_id,
            version=version,
            variant=variant,
            download_url=url,
            size_bytes=len(data),
            checksum=sha256_tag(data) if checksum else None,
            compatibility=["*"] if compatibility is None else compatibility,
            minimum_ram_gb=minimum_ram_gb,
            recommended_ram_gb=recommended_ram_gb,
            release_date=released or datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(days=len(self.payloads)),
            changelog=f"{model_id} {version}",
            format=fmt,
        )
        info = self.models.get(model_id)
        versions = dict(info.versions) if info else {}
        versions[version] = entry
        current_version = version if current or info is None else info.current_version
        self.models[model_id] = ModelInfo(
            id=model_id,
            name=model_id.replace("-", " ").title(),
            current_version=current_version,
            versions=versions,
            category="text",
        )
        return entry

    def url(self, model_id: str, version: str) -> str:
        return self.models[model_id].versions[version].download_url

    def payload(self, model_id: str, version: str) -> bytes:
        return self.payloads[(model_id, version)]

    def publish(self) -> RegistryDocument:
        return self.registry.replace(RegistryDocument(models=dict(self.models)))


@pytest.fixture
def models_dir(tmp_path):
    return tmp_path / "models"


@pytest.fixture
def settings(models_dir):
    return ModelKeeperSettings(
        _env_file=None,
        models_dir=models_dir,
        app_version="1.0.0",
        max_retries=3,
        retry_delay_seconds=2.0,
        lock_timeout_seconds=5.0,
        attempt_timeout_seconds=30.0,
        chunk_size=1024,
    )


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def sleep(delay: float) -> None:
        sleeps.append(delay)
    return sleep


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def orchestrator(settings, transport, fake_sleep):
    return UpdateOrchestrator(settings, transport=transport, sleep=fake_sleep, ram_probe=lambda: 64.0)


@pytest.fixture
def catalog(settings, transport):
    settings.ensure_directories()
    return Catalog(settings.registry_path, transport)


def pytest_configure(config):
    """Configure loguru for test runs."""
    logger.remove()
    logger.add(
        lambda msg: print(msg, end=""),
        level="WARNING",
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}\n",
    )
