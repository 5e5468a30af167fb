#!/usr/bin/env python3
"""
Command surface and CLI tests.
"""

import json

import pytest

from modelkeeper import cli
from modelkeeper.commands import ModelCommands


@pytest.fixture
def commands(orchestrator):
    return ModelCommands(orchestrator=orchestrator)


class TestModelCommands:
    @pytest.mark.asyncio
    async def test_install_then_list(self, commands, catalog):
        catalog.add("phi-3-mini", "1.0.0")
        catalog.publish()

        result = await commands.install("phi-3-mini")
        assert result.success
        assert result.version == "1.0.0"
        assert result.data["changed"]

        listing = await commands.list()
        assert [m["model_id"] for m in listing.data] == ["phi-3-mini"]

    @pytest.mark.asyncio
    async def test_failures_are_structured(self, commands, catalog, transport):
        catalog.add("phi-3-mini", "1.0.0")
        catalog.publish()
        transport.always_corrupt.add(catalog.url("phi-3-mini", "1.0.0"))

        result = await commands.install("phi-3-mini")

        assert not result.success
        assert result.model_id == "phi-3-mini"
        assert result.version == "1.0.0"
        assert result.stage == "downloading"
        assert result.partial_artifact_left is False
        assert result.error["error_type"] == "IntegrityError"
        assert result.error["dimension"] == "checksum"

    @pytest.mark.asyncio
    async def test_compatibility_failure(self, commands, catalog):
        catalog.add("phi-3-mini", "3.0.0", compatibility=[">=3.0.0"])
        catalog.publish()

        result = await commands.install("phi-3-mini")

        assert not result.success
        assert result.error["category"] == "compatibility"
        assert result.stage == "checking"

    @pytest.mark.asyncio
    async def test_check_update_rollback_cycle(self, commands, catalog):
        catalog.add("phi-3-mini", "1.0.0")
        catalog.publish()
        await commands.install("phi-3-mini")
        catalog.add("phi-3-mini", "1.1.0")
        catalog.publish()

        check = await commands.check()
        assert check.data[0]["update_type"] == "minor"

        update = await commands.update()
        assert update.success
        assert update.data[0]["result"]["version"] == "1.1.0"

        rollback = await commands.rollback("phi-3-mini")
        assert rollback.success
        assert rollback.version == "1.0.0"
        assert rollback.data["source"] == "backup"

    @pytest.mark.asyncio
    async def test_update_reports_partial_failure(self, commands, catalog, transport):
        catalog.add("a-model", "1.0.0")
        catalog.add("b-model", "1.0.0")
        catalog.publish()
        await commands.install("a-model")
        await commands.install("b-model")
        catalog.add("a-model", "1.1.0")
        catalog.add("b-model", "1.1.0")
        catalog.publish()
        transport.script(catalog.url("b-model", "1.1.0"), 500, 500, 500)

        result = await commands.update()

        assert not result.success
        assert result.message == "1 updated, 1 failed"
        assert result.error["error_type"] == "NetworkError"

    @pytest.mark.asyncio
    async def test_install_all_reports_each_model(self, commands, catalog, transport):
        catalog.add("phi-3-mini", "1.0.0")
        catalog.add("whisper-small", "1.0.0")
        catalog.publish()
        transport.always_corrupt.add(catalog.url("whisper-small", "1.0.0"))

        result = await commands.install_all()

        assert not result.success
        assert result.message == "1 installed, 1 failed"
        assert result.error["error_type"] == "IntegrityError"
        assert {o["model_id"]: o["ok"] for o in result.data} == {"phi-3-mini": True, "whisper-small": False}

    @pytest.mark.asyncio
    async def test_history_and_available(self, commands, catalog):
        catalog.add("phi-3-mini", "1.0.0")
        catalog.add("phi-3-mini", "1.1.0")
        catalog.add("whisper-small", "0.9.0")
        catalog.publish()
        await commands.install("phi-3-mini")

        history = await commands.history("phi-3-mini")
        assert [v["version"] for v in history.data] == ["1.1.0", "1.0.0"]

        available = await commands.available()
        assert [m["id"] for m in available.data] == ["whisper-small"]

        missing = await commands.history("nope")
        assert not missing.success
        assert missing.error["category"] == "not_found"

    @pytest.mark.asyncio
    async def test_verify_remove_cleanup_auto_update(self, commands, catalog):
        catalog.add("phi-3-mini", "1.0.0")
        catalog.publish()
        await commands.install("phi-3-mini")

        verify = await commands.verify()
        assert verify.success
        assert verify.data["phi-3-mini-default"]["ok"]

        cleanup = await commands.cleanup(keep_count=1)
        assert cleanup.success

        toggle = await commands.auto_update(True)
        assert toggle.data == {"auto_update_enabled": True}

        removed = await commands.remove("phi-3-mini")
        assert removed.success
        assert (await commands.list()).data == []

    @pytest.mark.asyncio
    async def test_refresh(self, commands, catalog, tmp_path):
        catalog.publish()
        source = tmp_path / "registry-next.json"
        source.write_text(json.dumps({
            "models": {"m": {"id": "m", "current_version": "1.0.0",
                             "versions": {"1.0.0": {"model_id": "m", "version": "1.0.0"}}}},
        }))

        result = await commands.refresh(source)

        assert result.success
        assert result.data["models"] == ["m"]


class TestCli:
    @pytest.fixture
    def patched(self, monkeypatch, orchestrator):
        monkeypatch.setattr(
            cli, "ModelCommands", lambda settings: ModelCommands(orchestrator=orchestrator)
        )
        return orchestrator

    def test_install_json(self, patched, catalog, models_dir, capsys):
        catalog.add("phi-3-mini", "1.0.0")
        catalog.publish()

        code = cli.main(["--models-dir", str(models_dir), "--json", "install", "phi-3-mini"])

        assert code == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload["success"]
        assert payload["command"] == "install"
        assert payload["version"] == "1.0.0"

    def test_install_all_flag(self, patched, catalog, models_dir, capsys):
        catalog.add("phi-3-mini", "1.0.0")
        catalog.add("whisper-small", "1.0.0")
        catalog.publish()

        code = cli.main(["--models-dir", str(models_dir), "--json", "install", "--all"])

        assert code == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload["command"] == "install_all"
        assert {o["model_id"] for o in payload["data"]} == {"phi-3-mini", "whisper-small"}

    def test_install_needs_one_model_without_all(self, patched, models_dir):
        with pytest.raises(SystemExit):
            cli.main(["--models-dir", str(models_dir), "install"])

    def test_failure_exit_code(self, patched, catalog, models_dir, capsys):
        catalog.publish()

        code = cli.main(["--models-dir", str(models_dir), "--json", "install", "missing"])

        assert code == 1
        payload = json.loads(capsys.readouterr().out)
        assert payload["error"]["error_type"] == "NotFoundError"

    def test_rich_rendering(self, patched, catalog, models_dir):
        catalog.add("phi-3-mini", "1.0.0")
        catalog.add("phi-3-mini", "1.1.0")
        catalog.publish()

        assert cli.main(["--models-dir", str(models_dir), "install", "phi-3-mini"]) == 0
        assert cli.main(["--models-dir", str(models_dir), "list"]) == 0
        assert cli.main(["--models-dir", str(models_dir), "history", "phi-3-mini"]) == 0
        assert cli.main(["--models-dir", str(models_dir), "auto-update", "on"]) == 0
        assert patched.local_state.load().auto_update_enabled

    def test_parser_requires_command(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])
