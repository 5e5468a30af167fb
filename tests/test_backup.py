#!/usr/bin/env python3
"""
Backup manager tests.
"""

import asyncio
import os

import pytest

from modelkeeper.models.backup import BackupManager, parse_backup_name

from conftest import artifact_bytes


@pytest.fixture
def manager(tmp_path):
    return BackupManager(tmp_path / "backups")


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "phi-3-mini-default.onnx"
    path.write_bytes(artifact_bytes(2048))
    return path


def age(path, seconds_ago):
    stat = path.stat()
    os.utime(path, (stat.st_atime - seconds_ago, stat.st_mtime - seconds_ago))


class TestNames:
    def test_model_ids_may_contain_dashes(self, tmp_path):
        assert parse_backup_name(tmp_path / "phi-3-mini-1.2.0.onnx") == ("phi-3-mini", "1.2.0")

    def test_ignores_unrelated_files(self, tmp_path):
        assert parse_backup_name(tmp_path / ".phi-3-mini-1.0.0.onnx.tmp") is None
        assert parse_backup_name(tmp_path / "README") is None
        assert parse_backup_name(tmp_path / "nodash.onnx") is None

    def test_versions_may_contain_dashes(self, tmp_path):
        assert parse_backup_name(tmp_path / "phi-3-mini-2.0.0-beta.onnx") == ("phi-3-mini", "2.0.0-beta")
        assert parse_backup_name(tmp_path / "phi-3-1.0.onnx") == ("phi-3", "1.0")

    def test_known_model_ids_take_precedence(self, tmp_path):
        path = tmp_path / "phi-3-mini-2.0.0-1.onnx"
        assert parse_backup_name(path) == ("phi-3-mini-2.0.0", "1")
        assert parse_backup_name(path, ["phi-3-mini"]) == ("phi-3-mini", "2.0.0-1")
        assert parse_backup_name(path, ["phi-3"]) == ("phi-3-mini-2.0.0", "1")


class TestBackupRestore:
    @pytest.mark.asyncio
    async def test_backup_and_restore(self, manager, source, tmp_path):
        path = await manager.backup("phi-3-mini", "1.0.0", source)
        assert path.name == "phi-3-mini-1.0.0.onnx"
        assert manager.has_backup("phi-3-mini", "1.0.0")

        target = tmp_path / "restored.onnx"
        assert await manager.restore("phi-3-mini", "1.0.0", target, "onnx")
        assert target.read_bytes() == source.read_bytes()

    @pytest.mark.asyncio
    async def test_restore_missing_returns_false(self, manager, tmp_path):
        assert not await manager.restore("phi-3-mini", "0.9.0", tmp_path / "x.onnx")
        assert not (tmp_path / "x.onnx").exists()

    @pytest.mark.asyncio
    async def test_failed_backup_keeps_earlier_copy(self, manager, source, tmp_path):
        path = await manager.backup("phi-3-mini", "1.0.0", source)
        missing = tmp_path / "phi-3-mini-gone.onnx"
        assert await manager.backup("phi-3-mini", "1.0.0", missing) is None
        assert manager.has_backup("phi-3-mini", "1.0.0")
        assert path.read_bytes() == source.read_bytes()

    @pytest.mark.asyncio
    async def test_concurrent_backups_of_same_version(self, manager, tmp_path):
        sources = []
        for seed, variant in enumerate(("cpu", "gpu")):
            path = tmp_path / f"phi-3-mini-{variant}.onnx"
            path.write_bytes(artifact_bytes(2 * 1024 * 1024, seed=seed))
            sources.append(path)

        for _ in range(5):
            results = await asyncio.gather(
                *(manager.backup("phi-3-mini", "1.0.0", source) for source in sources)
            )
            assert all(results)
            backup = manager.find("phi-3-mini", "1.0.0")
            assert backup.path.read_bytes() in {s.read_bytes() for s in sources}

        assert [p.name for p in manager.backup_dir.iterdir()] == ["phi-3-mini-1.0.0.onnx"]

    @pytest.mark.asyncio
    async def test_remove(self, manager, source):
        await manager.backup("phi-3-mini", "1.0.0", source)
        assert manager.remove("phi-3-mini", "1.0.0")
        assert not manager.remove("phi-3-mini", "1.0.0")


class TestPrune:
    async def _populate(self, manager, source, model_id, versions):
        for offset, version in enumerate(versions):
            path = await manager.backup(model_id, version, source)
            age(path, 1000 - offset * 10)

    @pytest.mark.asyncio
    async def test_keeps_newest_per_model(self, manager, source):
        await self._populate(manager, source, "phi-3-mini", ["1.0.0", "1.1.0", "1.2.0", "1.3.0"])
        await self._populate(manager, source, "whisper", ["0.1.0", "0.2.0"])

        deleted = manager.prune(keep_count=2)

        assert sorted(b.version for b in deleted) == ["1.0.0", "1.1.0"]
        assert [b.version for b in manager.list_backups("phi-3-mini")] == ["1.3.0", "1.2.0"]
        assert len(manager.list_backups("whisper")) == 2

    @pytest.mark.asyncio
    async def test_protected_backups_survive(self, manager, source):
        await self._populate(manager, source, "phi-3-mini", ["1.0.0", "1.1.0", "1.2.0"])
        deleted = manager.prune(keep_count=1, protect=[("phi-3-mini", "1.0.0")])
        assert [b.version for b in deleted] == ["1.1.0"]
        assert {b.version for b in manager.list_backups("phi-3-mini")} == {"1.2.0", "1.0.0"}

    def test_keep_count_must_be_positive(self, manager):
        with pytest.raises(ValueError):
            manager.prune(keep_count=0)

    def test_empty_directory(self, manager):
        assert manager.prune(keep_count=3) == []
        assert manager.list_backups() == []

    @pytest.mark.asyncio
    async def test_prerelease_versions_group_with_their_model(self, manager, source):
        await self._populate(manager, source, "phi-3-mini", ["1.0.0", "2.0.0-beta", "2.0.0-1"])

        assert manager.has_backup("phi-3-mini", "2.0.0-beta")
        deleted = manager.prune(keep_count=1, model_ids=["phi-3-mini"])

        assert sorted(b.version for b in deleted) == ["1.0.0", "2.0.0-beta"]
        assert [b.version for b in manager.list_backups("phi-3-mini")] == ["2.0.0-1"]
