"""Tests for environment-driven configuration (``config.settings``)."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from config.settings import Settings


class TestSettings:
    def test_reads_environment(self, settings) -> None:
        assert settings.anthropic_api_key == "sk-ant-test-key-not-real"
        assert settings.gateway_api_key == "sk-or-test-key-not-real"
        assert settings.log_level == "DEBUG"

    def test_defaults(self, settings) -> None:
        assert settings.min_confidence == 0.6
        assert settings.max_response_length == 4096
        assert settings.catalog_cache_ttl_seconds == 60.0
        assert settings.gateway_model.endswith(":free")
        assert all(m.endswith(":free") for m in settings.gateway_fallback_models)

    def test_list_from_json_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GATEWAY_FALLBACK_MODELS", '["a/b:free"]')
        assert Settings(_env_file=None).gateway_fallback_models == ["a/b:free"]

    def test_quantity_range_validated(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MIN_QUANTITY", "10")
        monkeypatch.setenv("MAX_QUANTITY", "5")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_confidence_range_validated(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MIN_CONFIDENCE", "1.5")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_memory_db_path(self, settings) -> None:
        assert str(settings.abs_db_path) == ":memory:"

    def test_relative_db_path_anchored_at_project_root(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DB_PATH", "data/x.db")
        settings = Settings(_env_file=None)
        assert settings.abs_db_path == settings.base_dir / "data" / "x.db"

    def test_log_dir_from_environment(self, monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
        monkeypatch.setenv("COMPTOIR_LOG_DIR", str(tmp_path))
        settings = Settings(_env_file=None)
        assert settings.log_dir == str(tmp_path)
        assert settings.abs_log_dir == tmp_path

    def test_log_dir_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("COMPTOIR_LOG_DIR", raising=False)
        monkeypatch.delenv("LOG_DIR", raising=False)
        assert Settings(_env_file=None).abs_log_dir is None
