"""Tests for endpoint derivation and environment settings."""

import pytest

from tinyphone_events.config import TinyphoneSettings, events_url


class TestEventsUrl:
    @pytest.mark.parametrize(
        ("base_url", "expected"),
        [
            ("http://localhost:6060", "ws://localhost:6060/events"),
            ("https://pbx.example.com", "wss://pbx.example.com/events"),
            ("http://localhost:6060/", "ws://localhost:6060/events"),
            ("HTTP://10.0.0.1:6060/api", "ws://10.0.0.1:6060/api/events"),
            ("ws://localhost:6060", "ws://localhost:6060/events"),
            ("http://localhost:6060?token=abc", "ws://localhost:6060/events?token=abc"),
        ],
    )
    def test_mapping(self, base_url, expected):
        assert events_url(base_url) == expected

    @pytest.mark.parametrize("base_url", ["ftp://example.com", "localhost:6060", "http://", ""])
    def test_rejected(self, base_url):
        with pytest.raises(ValueError):
            events_url(base_url)


class TestSettings:
    def test_defaults(self):
        settings = TinyphoneSettings()
        assert settings.base_url == "http://localhost:6060"
        assert settings.timeout_seconds == 30.0
        assert settings.reconnect_delay == 5.0
        assert settings.events_url == "ws://localhost:6060/events"

    def test_from_env(self):
        settings = TinyphoneSettings.from_env(
            {
                "TINYPHONE_BASE_URL": "https://pbx.example",
                "TINYPHONE_TIMEOUT_SECONDS": "12.5",
                "TINYPHONE_RECONNECT_DELAY": "1",
            }
        )
        assert settings.base_url == "https://pbx.example"
        assert settings.timeout_seconds == 12.5
        assert settings.reconnect_delay == 1.0

    def test_from_env_keeps_defaults(self):
        settings = TinyphoneSettings.from_env({"TINYPHONE_TIMEOUT_SECONDS": " "})
        assert settings == TinyphoneSettings()

    def test_from_env_custom_prefix(self):
        settings = TinyphoneSettings.from_env({"TP_BASE_URL": "http://pbx:1"}, prefix="TP_")
        assert settings.base_url == "http://pbx:1"

    def test_from_process_environment(self, monkeypatch):
        monkeypatch.setenv("TINYPHONE_RECONNECT_DELAY", "0.5")
        assert TinyphoneSettings.from_env().reconnect_delay == 0.5

    @pytest.mark.parametrize("value", ["soon", "-1"])
    def test_from_env_invalid_number(self, value):
        with pytest.raises(ValueError, match="TINYPHONE_RECONNECT_DELAY"):
            TinyphoneSettings.from_env({"TINYPHONE_RECONNECT_DELAY": value})
