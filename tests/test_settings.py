"""Tests for configuration settings."""
from pathlib import Path

import pytest

from config.settings import Settings

pytestmark = pytest.mark.unit


def test_defaults(monkeypatch):
    """Defaults apply when no LIDMAP_* variables are set."""
    for name in ("LIDMAP_CONTACTS_FILE", "LIDMAP_SCAN_MESSAGE_LIMIT", "LIDMAP_DEDUPE_ENABLED",
                 "LIDMAP_AUTO_SAVE", "LIDMAP_BRIDGE_URL", "LIDMAP_SCAN_CHAT_DELAY_MS"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.contacts_file == Path("./data/contacts.json")
    assert settings.scan_message_limit == 50
    assert settings.scan_chat_delay == 0.1
    assert settings.auto_save is True
    assert settings.dedupe_enabled is False
    assert settings.bridge_url == "http://localhost:8192"


def test_env_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("LIDMAP_CONTACTS_FILE", str(tmp_path / "c.json"))
    monkeypatch.setenv("LIDMAP_SCAN_CHAT_DELAY_MS", "250")
    monkeypatch.setenv("LIDMAP_DEDUPE_ENABLED", "true")

    settings = Settings(_env_file=None)

    assert settings.contacts_file == tmp_path / "c.json"
    assert settings.scan_chat_delay == 0.25
    assert settings.dedupe_enabled is True


def test_seed_file_fallback(monkeypatch, tmp_path):
    monkeypatch.delenv("LIDMAP_SEED_FILE", raising=False)
    assert Settings(_env_file=None).resolved_seed_file.name == "seed_contacts.yaml"

    monkeypatch.setenv("LIDMAP_SEED_FILE", str(tmp_path / "seeds.yaml"))
    assert Settings(_env_file=None).resolved_seed_file == tmp_path / "seeds.yaml"
