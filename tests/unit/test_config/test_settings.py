"""Tests for configuration loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from screenrelay.config.settings import (
    LoggingConfig,
    RelayConfig,
    ServerConfig,
    Settings,
    load_settings,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for var in ("PORT", "NODE_ENV", "RELAY_ENV", "SCREENRELAY_SERVER__PORT"):
        monkeypatch.delenv(var, raising=False)
    # Keep any developer .env out of the picture
    monkeypatch.chdir(tmp_path)


class TestSettings:
    def test_default_settings(self) -> None:
        settings = Settings()
        assert settings.server.port == 8080
        assert settings.server.max_payload_bytes == 5_000_000
        assert settings.server.ping_interval == 25.0
        assert settings.server.ping_timeout == 60.0
        assert settings.relay.default_display_name == "Unknown"
        assert settings.logging.level == "INFO"

    def test_server_config_validation(self) -> None:
        with pytest.raises(ValidationError):
            ServerConfig(port=0)
        with pytest.raises(ValidationError):
            ServerConfig(max_payload_bytes=0)

    def test_relay_config_defaults(self) -> None:
        assert RelayConfig().outbox_limit == 256

    def test_logging_config_defaults(self) -> None:
        assert LoggingConfig().file is None


class TestLoadSettings:
    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        settings = load_settings(tmp_path / "nonexistent.yaml")
        assert settings.server.port == 8080

    def test_yaml_file(self, tmp_path: Path) -> None:
        path = tmp_path / "relay.yaml"
        path.write_text(
            "server:\n  port: 9100\n  environment: production\n"
            "relay:\n  default_display_name: Unknown PC\n"
        )
        settings = load_settings(path)
        assert settings.server.port == 9100
        assert settings.server.environment == "production"
        assert settings.relay.default_display_name == "Unknown PC"

    def test_legacy_env_vars(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PORT", "7000")
        monkeypatch.setenv("NODE_ENV", "staging")
        settings = load_settings(tmp_path / "nonexistent.yaml")
        assert settings.server.port == 7000
        assert settings.server.environment == "staging"

    def test_prefixed_env_beats_yaml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "relay.yaml"
        path.write_text("server:\n  port: 9100\n  environment: production\n")
        monkeypatch.setenv("SCREENRELAY_SERVER__PORT", "9200")
        settings = load_settings(path)
        assert settings.server.port == 9200
        assert settings.server.environment == "production"
