from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PORT = 47225


class PuppeteerSettings(BaseSettings):
    """Controller-side settings."""

    host: str = "localhost"
    port: int = DEFAULT_PORT
    assets_dir: Path | None = None
    # wait_for_connection re-checks the session at least this often
    connection_poll_interval: float = 1.0

    model_config = SettingsConfigDict(env_prefix="PUPPETEER_")


class PuppetSettings(BaseSettings):
    """Agent-side settings."""

    server_url: str = f"ws://localhost:{DEFAULT_PORT}"
    visibility_poll_interval: float = 0.2
    scroll_debounce: float = 0.5
    insert_assertion_debounce: float = 0.5
    wait_timeout: float = 10.0
    wait_poll_interval: float = 0.1
    reconnect_delay: float = 1.0
    max_reconnect_delay: float = 30.0
    # pushed events kept for the next connection while disconnected
    max_queued_events: int = 100
    ignored_classes: list[str] = Field(default_factory=list)

    model_config = SettingsConfigDict(env_prefix="PUPPET_")

    @field_validator("server_url")
    @classmethod
    def check_server_url(cls, v: str) -> str:
        if not v.startswith(("ws://", "wss://")) or len(v.split("://", 1)[1]) == 0:
            raise ValueError(f"missing or invalid server_url, expected 'ws://...', got {v!r}")
        return v


class WindowBounds(BaseModel):
    width: int
    height: int
    x: int | None = None
    y: int | None = None


class SpawnerConfig(BaseModel):
    """Settings for launching the browser that hosts the agent."""

    executable_path: str
    temp_profile_dir: Path | None = None
    window_bounds: WindowBounds | None = None
    extra_args: list[str] = Field(default_factory=list)
