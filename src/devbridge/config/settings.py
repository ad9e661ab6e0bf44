"""Configuration management for devbridge.

Loads settings from a YAML configuration file with environment variable
overrides. The command allowlist is deliberately not part of the
configuration; it is a fixed table in ``devbridge.security``.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/devbridge.yaml")

DEFAULT_INIT_PROMPT = "You are now connected to a new session."


class ServerConfig(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, ge=1, le=65535)
    root: Path = Field(default_factory=Path.cwd, description="Project directory served to clients")
    ws_ping_interval: float = Field(default=30.0, gt=0)
    ws_ping_timeout: float = Field(default=20.0, gt=0)


class TerminalConfig(BaseModel):
    timeout: float = Field(default=60.0, gt=0, description="Seconds before a command is terminated")
    kill_grace: float = Field(default=5.0, gt=0, description="Seconds between SIGTERM and SIGKILL on cancel")
    env_passthrough: list[str] = Field(
        default_factory=lambda: ["PATH", "HOME", "USER"],
        description="Environment variables forwarded to spawned commands",
    )


class AgentConfig(BaseModel):
    command: str = Field(default="claude")
    allowed_tools: str = Field(default="Read,Write,Edit,Execute")
    init_prompt: str = Field(default=DEFAULT_INIT_PROMPT)
    extra_args: list[str] = Field(default_factory=lambda: ["--verbose"])


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for the devbridge daemon.

    Loads from YAML file and supports environment variable overrides,
    e.g. ``DEVBRIDGE_SERVER__PORT=4000``.
    """

    model_config = {
        "env_prefix": "DEVBRIDGE_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    server: ServerConfig = Field(default_factory=ServerConfig)
    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML values arrive as init kwargs; environment must beat them.
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: env vars > .env file > YAML file > defaults
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    yaml_data = {}
    if path.exists():
        with open(path) as f:
            yaml_data = yaml.safe_load(f) or {}
        logger.info("Loaded configuration from %s", path)
    else:
        logger.warning("Config file %s not found, using defaults + env vars", path)

    return Settings(**yaml_data)
