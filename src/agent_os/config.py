"""Configuration management for agent-os."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
import os

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .paths import expand_home


class AgentOSSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    home_dir: Path = Field(default_factory=Path.home, validation_alias="AGENTOS_HOME_DIR")
    data_dir: Path = Field(default=Path("~/.agent-os"), validation_alias="AGENTOS_DATA_DIR")
    chroma_persist_path: Path | None = Field(default=None, validation_alias="CHROMA_PERSIST_PATH")
    log_level: str = Field(default="INFO", validation_alias="AGENTOS_LOG_LEVEL")

    tmux_path: str = Field(default="tmux", validation_alias="AGENTOS_TMUX_PATH")
    docker_path: str = Field(default="docker", validation_alias="AGENTOS_DOCKER_PATH")
    claude_path: str | None = Field(default=None, validation_alias="CLAUDE_PATH")
    default_model: str = Field(default="sonnet", validation_alias="AGENTOS_DEFAULT_MODEL")
    provider_paths: tuple[Path, ...] = Field(default=(), validation_alias="AGENTOS_PROVIDER_PATHS")

    port_base: int = Field(default=3100, validation_alias="AGENTOS_PORT_BASE")
    port_increment: int = Field(default=10, validation_alias="AGENTOS_PORT_INCREMENT")
    port_max: int = Field(default=3900, validation_alias="AGENTOS_PORT_MAX")

    status_cooldown_seconds: float = Field(default=2.0, validation_alias="AGENTOS_STATUS_COOLDOWN")
    spike_window_seconds: float = Field(default=1.0, validation_alias="AGENTOS_SPIKE_WINDOW")
    sustained_threshold: int = Field(default=2, validation_alias="AGENTOS_SUSTAINED_THRESHOLD")
    session_cache_seconds: float = Field(default=2.0, validation_alias="AGENTOS_SESSION_CACHE")

    ready_poll_interval: float = Field(default=2.0, validation_alias="AGENTOS_READY_POLL_INTERVAL")
    ready_timeout: float = Field(default=30.0, validation_alias="AGENTOS_READY_TIMEOUT")
    setup_timeout: float = Field(default=300.0, validation_alias="AGENTOS_SETUP_TIMEOUT")

    conductor_session_id: str | None = Field(default=None, validation_alias="CONDUCTOR_SESSION_ID")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "AGENTOS_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("provider_paths", mode="before")
    @classmethod
    def _parse_provider_paths(cls, value):
        if value is None or value == "":
            return ()
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts)
        raise TypeError("AGENTOS_PROVIDER_PATHS must be a list of paths or a path-separated string")

    @field_validator("sustained_threshold", "port_increment")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("value must be >= 1")
        return value

    @model_validator(mode="after")
    def _validate_port_range(self) -> "AgentOSSettings":
        if self.port_base > self.port_max:
            raise ValueError("AGENTOS_PORT_BASE must not exceed AGENTOS_PORT_MAX")
        return self

    @property
    def logs_dir(self) -> Path:
        return self.data_dir / "logs"

    @property
    def worktrees_dir(self) -> Path:
        return self.data_dir / "worktrees"

    def resolve_paths(self) -> "AgentOSSettings":
        """Expand every configured path against ``home_dir``."""

        self.home_dir = Path(self.home_dir).expanduser().resolve()
        self.data_dir = expand_home(self.data_dir, self.home_dir).resolve()
        if self.chroma_persist_path is None:
            self.chroma_persist_path = self.data_dir / "chroma"
        self.chroma_persist_path = expand_home(self.chroma_persist_path, self.home_dir).resolve()
        self.provider_paths = tuple(
            expand_home(path, self.home_dir).resolve() for path in self.provider_paths
        )
        return self


@lru_cache(maxsize=1)
def get_settings() -> AgentOSSettings:
    """Return cached settings instance."""

    return AgentOSSettings().resolve_paths()


__all__ = ["AgentOSSettings", "get_settings"]
