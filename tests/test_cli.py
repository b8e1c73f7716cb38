"""Tests for the command line entry point."""

from __future__ import annotations

import pytest

from hassws.__main__ import build_parser, load_settings, main


class TestCli:
    """Tests for argument parsing and settings resolution."""

    def test_watch_arguments(self) -> None:
        args = build_parser().parse_args(
            ["--host", "hass.local", "watch", "--domain", "light", "--domain", "switch", "--pattern", "kitchen$"]
        )
        assert args.command == "watch"
        assert args.domain == ["light", "switch"]
        assert args.pattern == ["kitchen$"]
        assert args.entity == []

    def test_flags_override_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HASSWS_HOST", "env.local")
        monkeypatch.setenv("HASSWS_TOKEN", "env-token")

        settings = load_settings(build_parser().parse_args(["--host", "flag.local", "--secure", "states"]))

        assert settings.host == "flag.local"
        assert settings.token == "env-token"
        assert settings.secure is True

    def test_command_is_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    @pytest.mark.asyncio
    async def test_missing_configuration_exits_with_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("HASSWS_HOST", raising=False)
        monkeypatch.delenv("HASSWS_TOKEN", raising=False)
        monkeypatch.chdir("/")

        assert await main(["states"]) == 1
