"""
Test configuration loading and environment overrides.
"""

import sys
from datetime import timedelta
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from storefront_sessions.config import DEV_SECRET_KEY, load_config, session_config_from

ENV_VARS = (
    "SESSION_MAX_AGE_HOURS", "SESSION_IDLE_TIMEOUT_MINUTES", "SESSION_MAX_CONCURRENT",
    "SESSION_ENFORCE_IP_MATCH", "BACKEND_API_URL", "APP_HOST", "APP_PORT",
    "APP_ENV", "SESSION_SECRET_KEY",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)


def test_defaults_without_file(tmp_path):
    config = load_config(tmp_path / "missing.yaml")
    session = session_config_from(config)

    assert config["secret_key"] == DEV_SECRET_KEY
    assert config["production"] is False
    assert session.max_age == timedelta(hours=24)
    assert session.idle_timeout == timedelta(hours=2)
    assert session.max_concurrent_sessions == 5
    assert session.extend_on_activity is True
    assert session.secure_only is False
    assert session.same_site == "strict"
    assert session.grace_window == timedelta(hours=1)
    assert session.refresh_max_age == timedelta(days=7)
    assert session.cleanup_interval == 300.0


def test_yaml_file_merges_over_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "session:\n"
        "  max_concurrent: 3\n"
        "  enforce_ip_match: true\n"
        "backend:\n"
        "  api_url: http://api.internal:9000\n"
    )

    config = load_config(path)
    session = session_config_from(config)

    assert session.max_concurrent_sessions == 3
    assert session.enforce_ip_match is True
    # Untouched keys keep their defaults
    assert session.max_age == timedelta(hours=24)
    assert config["backend"]["api_url"] == "http://api.internal:9000"
    assert config["backend"]["timeout"] == 10.0


def test_environment_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("SESSION_MAX_AGE_HOURS", "12")
    monkeypatch.setenv("SESSION_IDLE_TIMEOUT_MINUTES", "15")
    monkeypatch.setenv("SESSION_ENFORCE_IP_MATCH", "true")
    monkeypatch.setenv("BACKEND_API_URL", "https://api.example.com")
    monkeypatch.setenv("APP_PORT", "9001")

    config = load_config(tmp_path / "missing.yaml")
    session = session_config_from(config)

    assert session.max_age == timedelta(hours=12)
    assert session.idle_timeout == timedelta(minutes=15)
    assert session.enforce_ip_match is True
    assert config["backend"]["api_url"] == "https://api.example.com"
    assert config["server"]["port"] == 9001


def test_bad_numeric_override_is_ignored(tmp_path, monkeypatch):
    monkeypatch.setenv("SESSION_MAX_CONCURRENT", "lots")
    config = load_config(tmp_path / "missing.yaml")
    assert config["session"]["max_concurrent"] == 5


def test_production_requires_secret(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    with pytest.raises(RuntimeError):
        load_config(tmp_path / "missing.yaml")


def test_production_secure_cookies(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("SESSION_SECRET_KEY", "s3cret")

    config = load_config(tmp_path / "missing.yaml")

    assert config["secret_key"] == "s3cret"
    assert session_config_from(config).secure_only is True
