"""Tests for settings models."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from browser_puppeteer.config import (
    DEFAULT_PORT,
    PuppeteerSettings,
    PuppetSettings,
    SpawnerConfig,
    WindowBounds,
)


class TestPuppeteerSettings:
    def test_defaults(self, monkeypatch) -> None:
        monkeypatch.delenv("PUPPETEER_PORT", raising=False)
        settings = PuppeteerSettings()
        assert settings.host == "localhost"
        assert settings.port == DEFAULT_PORT == 47225
        assert settings.assets_dir is None

    def test_env_overrides(self, monkeypatch) -> None:
        monkeypatch.setenv("PUPPETEER_PORT", "9000")
        monkeypatch.setenv("PUPPETEER_ASSETS_DIR", "/srv/puppet")
        settings = PuppeteerSettings()
        assert settings.port == 9000
        assert settings.assets_dir == Path("/srv/puppet")


class TestPuppetSettings:
    def test_defaults(self) -> None:
        settings = PuppetSettings()
        assert settings.server_url == "ws://localhost:47225"
        assert settings.visibility_poll_interval == 0.2
        assert settings.scroll_debounce == 0.5
        assert settings.insert_assertion_debounce == 0.5
        assert settings.wait_timeout == 10.0
        assert settings.ignored_classes == []

    def test_env_override(self, monkeypatch) -> None:
        monkeypatch.setenv("PUPPET_SERVER_URL", "wss://example.com:1234")
        monkeypatch.setenv("PUPPET_IGNORED_CLASSES", '["active", "hover"]')
        settings = PuppetSettings()
        assert settings.server_url == "wss://example.com:1234"
        assert settings.ignored_classes == ["active", "hover"]

    @pytest.mark.parametrize("url", ["http://localhost:47225", "ws://", "localhost:47225"])
    def test_rejects_non_websocket_urls(self, url: str) -> None:
        with pytest.raises(ValidationError, match="server_url"):
            PuppetSettings(server_url=url)


class TestSpawnerConfig:
    def test_minimal(self) -> None:
        config = SpawnerConfig(executable_path="/usr/bin/chromium")
        assert config.window_bounds is None
        assert config.extra_args == []

    def test_bounds(self) -> None:
        config = SpawnerConfig(
            executable_path="chrome",
            window_bounds={"width": 800, "height": 600, "x": 10, "y": 20},
        )
        assert config.window_bounds == WindowBounds(width=800, height=600, x=10, y=20)
