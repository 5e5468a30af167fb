#!/usr/bin/env python3
"""
Settings loading and error reporting tests.
"""

import pytest
from pydantic import ValidationError

from modelkeeper.config.settings import ModelKeeperSettings, load_settings
from modelkeeper.core.error_handling import (
    ErrorCategory,
    IntegrityError,
    ModelKeeperError,
    NetworkError,
    NotFoundError,
)


class TestSettings:
    def test_environment_prefix(self, monkeypatch, tmp_path):
        monkeypatch.setenv("MODELKEEPER_MODELS_DIR", str(tmp_path / "m"))
        monkeypatch.setenv("MODELKEEPER_MAX_RETRIES", "5")
        settings = ModelKeeperSettings(_env_file=None)
        assert settings.models_dir == tmp_path / "m"
        assert settings.max_retries == 5
        assert settings.registry_path == tmp_path / "m" / "registry.json"

    def test_overrides_win_and_none_is_ignored(self, monkeypatch, tmp_path):
        monkeypatch.setenv("MODELKEEPER_APP_VERSION", "2.0.0")
        settings = load_settings(models_dir=tmp_path, app_version=None, max_retries=4)
        assert settings.app_version == "2.0.0"
        assert settings.max_retries == 4

    def test_retry_policy(self, tmp_path):
        settings = ModelKeeperSettings(
            _env_file=None, models_dir=tmp_path, max_retries=4,
            retry_delay_seconds=1.0, exponential_backoff=True,
        )
        policy = settings.retry_policy()
        assert policy.max_attempts == 4
        assert [policy.delay_for(a) for a in policy.attempts()] == [1.0, 2.0, 4.0, 8.0]

    def test_rejects_out_of_range(self, tmp_path):
        with pytest.raises(ValidationError):
            ModelKeeperSettings(_env_file=None, models_dir=tmp_path, max_retries=0)

    def test_ensure_directories(self, tmp_path):
        settings = ModelKeeperSettings(_env_file=None, models_dir=tmp_path / "models")
        settings.ensure_directories()
        assert settings.backup_dir.is_dir()
        assert settings.lock_dir.is_dir()


class TestErrors:
    def test_attach_keeps_existing_context(self):
        error = NetworkError("HTTP 503", status=503, model_id="phi-3-mini")
        error.attach(model_id="other", version="1.0.0", stage="downloading")
        assert error.model_id == "phi-3-mini"
        assert error.version == "1.0.0"
        assert error.stage == "downloading"
        assert str(error) == "HTTP 503 [phi-3-mini@1.0.0]"

    def test_to_dict(self):
        error = IntegrityError("checksum mismatch", dimension="checksum").attach(model_id="m")
        data = error.to_dict()
        assert data["error_type"] == "IntegrityError"
        assert data["category"] == "integrity"
        assert data["dimension"] == "checksum"
        assert data["model_id"] == "m"
        assert data["partial_artifact_left"] is False

    def test_retryability(self):
        assert NetworkError("x").retryable
        assert not NotFoundError("x").retryable
        assert ModelKeeperError("x").category == ErrorCategory.VALIDATION
