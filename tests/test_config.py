"""Tests for settings parsing."""
from __future__ import annotations

from pairroom.core.config import Settings


def test_list_settings_accept_comma_separated_values():
    settings = Settings(ice_servers="stun:a.example:3478, turn:b.example:3478", cors_allow_origins="http://x.test")

    assert settings.ice_servers == ["stun:a.example:3478", "turn:b.example:3478"]
    assert settings.cors_allow_origins == ["http://x.test"]


def test_list_settings_read_from_environment(monkeypatch):
    monkeypatch.setenv("ICE_SERVERS", "stun:env.example:3478")
    monkeypatch.setenv("PORT", "4000")

    settings = Settings()

    assert settings.ice_servers == ["stun:env.example:3478"]
    assert settings.port == 4000


def test_defaults_serve_on_port_3000():
    settings = Settings(_env_file=None)

    assert settings.port == 3000
    assert settings.room_code_min_length == 4
