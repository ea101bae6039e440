"""Configuration management for screenrelay.

Loads settings from a YAML configuration file with environment variable
overrides. Supports .env files and the un-prefixed PORT / NODE_ENV
variables older deployments of the relay relied on.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/screenrelay.yaml")


class ServerConfig(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080, ge=1, le=65535)
    environment: str = Field(default="development")
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    ws_path: str = Field(default="/ws")
    ping_interval: float = Field(default=25.0, gt=0, description="WebSocket ping interval (s)")
    ping_timeout: float = Field(default=60.0, gt=0, description="WebSocket ping timeout (s)")
    max_payload_bytes: int = Field(
        default=5_000_000, gt=0, description="Largest inbound WebSocket message"
    )
    max_http_body_bytes: int = Field(
        default=10_000_000, gt=0, description="Largest inbound HTTP JSON body"
    )
    heartbeat_interval: float = Field(default=60.0, gt=0)


class RelayConfig(BaseModel):
    default_display_name: str = Field(default="Unknown")
    outbox_limit: int = Field(
        default=256, gt=0, description="Pending outbound events per connection"
    )


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for the screenrelay service.

    Loads from YAML file and supports environment variable overrides.
    Reads .env files automatically.
    """

    model_config = {
        "env_prefix": "SCREENRELAY_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    server: ServerConfig = Field(default_factory=ServerConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # YAML values arrive as init kwargs and must lose to the environment.
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: env vars > .env file > YAML file > defaults
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    # Load .env file manually for non-prefixed vars
    _load_dotenv()

    yaml_data = {}
    if path.exists():
        with open(path) as f:
            yaml_data = yaml.safe_load(f) or {}
        logger.info("Loaded configuration from %s", path)
    else:
        logger.warning("Config file %s not found, using defaults + env vars", path)

    _apply_env_overrides(yaml_data)

    return Settings(**yaml_data)


def _load_dotenv() -> None:
    """Load .env file into os.environ if it exists."""
    env_path = Path(".env")
    if not env_path.exists():
        return
    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip()
                if not os.environ.get(key):
                    os.environ[key] = value


def _apply_env_overrides(yaml_data: dict) -> None:
    """Apply un-prefixed PORT and NODE_ENV/RELAY_ENV overrides."""
    port = os.environ.get("PORT", "")
    environment = os.environ.get("RELAY_ENV", "") or os.environ.get("NODE_ENV", "")

    if not port and not environment:
        return

    server = yaml_data.setdefault("server", {})
    if port:
        server["port"] = int(port)
    if environment:
        server["environment"] = environment
