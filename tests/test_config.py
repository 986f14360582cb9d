from __future__ import annotations

import logging
from pathlib import Path

from oneclick.config import load_settings, validate_runtime_settings
from oneclick.logging_config import resolve_level


def test_settings_defaults(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    for key in ("ONECLICK_API_URL", "ONECLICK_USER_ID", "ONECLICK_TIMEZONE"):
        monkeypatch.delenv(key, raising=False)

    settings = load_settings()

    assert settings.api_url is None
    assert settings.rules_cache_key_prefix == "OneClick_Rules"
    assert settings.rule_order_key_prefix == "OneClick_RuleOrder"
    assert settings.local_store_path == Path("~/.oneclick").expanduser()


def test_settings_read_prefixed_environment(monkeypatch):
    monkeypatch.setenv("ONECLICK_USER_ID", "jamie")
    monkeypatch.setenv("ONECLICK_REQUEST_TIMEOUT_SEC", "2.5")
    monkeypatch.setenv("ONECLICK_TIMEZONE", "Asia/Kolkata")

    settings = load_settings(team_id="Fabrikam Team")

    assert settings.user_id == "jamie"
    assert settings.request_timeout_sec == 2.5
    assert settings.team_id == "Fabrikam Team"
    assert settings.timezone == "Asia/Kolkata"


def test_validate_runtime_settings_warns(caplog):
    caplog.set_level(logging.WARNING, logger="config")
    settings = load_settings(api_url="http://rules.test", api_token="", timezone="Mars/Olympus")

    validate_runtime_settings(settings)

    messages = [rec.message for rec in caplog.records]
    assert any("ONECLICK_API_TOKEN is missing" in m for m in messages)
    assert any("Unknown ONECLICK_TIMEZONE" in m for m in messages)
    assert str(settings.tzinfo()) == "UTC"


def test_resolve_level():
    assert resolve_level("debug") == logging.DEBUG
    assert resolve_level(logging.ERROR) == logging.ERROR
    assert resolve_level("nonsense") == logging.INFO
