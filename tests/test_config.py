"""Tests for client settings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from hassws.config import ClientSettings


class TestClientSettings:
    """Tests for ClientSettings."""

    def test_defaults(self) -> None:
        settings = ClientSettings(_env_file=None)
        assert settings.port == 8123
        assert settings.heartbeat_interval == 30.0
        assert settings.max_missed_heartbeats == 3
        assert settings.auth_attempts == 5
        assert settings.minimum_version == "2024.1.0"
        assert settings.ordered_delivery is True

    @pytest.mark.parametrize(
        ("host", "secure", "ws_url", "http_url"),
        [
            ("hass.local", False, "ws://hass.local:8123/api/websocket", "http://hass.local:8123/api/"),
            ("hass.local:443", True, "wss://hass.local:443/api/websocket", "https://hass.local:443/api/"),
            ("http://10.0.0.2:8124/", False, "ws://10.0.0.2:8124/api/websocket", "http://10.0.0.2:8124/api/"),
            ("  hass.local ", False, "ws://hass.local:8123/api/websocket", "http://hass.local:8123/api/"),
        ],
    )
    def test_urls(self, host: str, secure: bool, ws_url: str, http_url: str) -> None:
        settings = ClientSettings(_env_file=None, host=host, secure=secure)
        assert settings.websocket_url == ws_url
        assert settings.http_url == http_url

    def test_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """HASSWS_* variables should populate the settings."""
        monkeypatch.setenv("HASSWS_HOST", "ha.example")
        monkeypatch.setenv("HASSWS_TOKEN", "abc")
        monkeypatch.setenv("HASSWS_SECURE", "true")

        settings = ClientSettings(_env_file=None)

        assert settings.token == "abc"
        assert settings.websocket_url == "wss://ha.example:8123/api/websocket"

    def test_bounds(self) -> None:
        with pytest.raises(ValidationError):
            ClientSettings(_env_file=None, max_workers=0)
