"""
Configuration Loading

Settings come from config.yaml in the project root (if present), with
environment variables (and a .env file) taking precedence.
"""

import logging
import os
from datetime import timedelta
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv

from .session_manager import SessionConfig

logger = logging.getLogger('storefront')

CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"
DEV_SECRET_KEY = "dev-secret-key-change-in-production"


def default_config() -> dict:
    return {
        "server": {"host": "127.0.0.1", "port": 8000},
        "backend": {"api_url": "http://localhost:3000", "timeout": 10.0},
        "session": {
            "max_age_hours": 24,
            "idle_timeout_minutes": 120,
            "max_concurrent": 5,
            "extend_on_activity": True,
            "same_site": "strict",
            "enforce_ip_match": False,
            "grace_window_minutes": 60,
            "refresh_max_age_days": 7,
            "cleanup_interval_seconds": 300,
        },
        "cors": {"allow_origins": ["http://localhost:3000", "http://127.0.0.1:3000"]},
    }


def _env_int(config: dict, section: str, key: str, var: str) -> None:
    raw = os.getenv(var)
    if not raw:
        return
    try:
        config[section][key] = int(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not an integer", var, raw)


def _env_bool(config: dict, section: str, key: str, var: str) -> None:
    raw = os.getenv(var)
    if raw:
        config[section][key] = raw.strip().lower() in ("1", "true", "yes", "on")


def load_config(path: Optional[Path] = None) -> dict:
    """Load configuration from YAML and apply environment overrides."""
    load_dotenv()

    config = default_config()
    config_path = Path(path) if path else CONFIG_PATH
    if config_path.exists():
        with open(config_path, 'r') as f:
            loaded = yaml.safe_load(f) or {}
        for section, values in loaded.items():
            if isinstance(values, dict) and isinstance(config.get(section), dict):
                config[section].update(values)
            else:
                config[section] = values

    _env_int(config, "session", "max_age_hours", "SESSION_MAX_AGE_HOURS")
    _env_int(config, "session", "idle_timeout_minutes", "SESSION_IDLE_TIMEOUT_MINUTES")
    _env_int(config, "session", "max_concurrent", "SESSION_MAX_CONCURRENT")
    _env_bool(config, "session", "enforce_ip_match", "SESSION_ENFORCE_IP_MATCH")

    if os.getenv("BACKEND_API_URL"):
        config["backend"]["api_url"] = os.getenv("BACKEND_API_URL")

    if os.getenv("APP_HOST"):
        config["server"]["host"] = os.getenv("APP_HOST")

    _env_int(config, "server", "port", "APP_PORT")

    config["production"] = os.getenv("APP_ENV") == "production"
    config["secret_key"] = get_secret_key(config["production"])
    return config


def get_secret_key(production: bool) -> str:
    """Cookie signing key. Mandatory in production."""
    secret_key = os.getenv("SESSION_SECRET_KEY")
    if secret_key:
        return secret_key
    if production:
        raise RuntimeError("SESSION_SECRET_KEY environment variable is required")
    logger.warning("SESSION_SECRET_KEY not set - using development key")
    return DEV_SECRET_KEY


def session_config_from(config: dict) -> SessionConfig:
    """Build the typed session policy from a loaded config dict."""
    session = config.get("session", {})
    grace_minutes = session.get("grace_window_minutes", 60)
    return SessionConfig(
        max_age=timedelta(hours=session.get("max_age_hours", 24)),
        idle_timeout=timedelta(minutes=session.get("idle_timeout_minutes", 120)),
        max_concurrent_sessions=session.get("max_concurrent", 5),
        extend_on_activity=session.get("extend_on_activity", True),
        secure_only=session.get("secure_only", config.get("production", False)),
        same_site=session.get("same_site", "strict"),
        enforce_ip_match=session.get("enforce_ip_match", False),
        grace_window=timedelta(minutes=grace_minutes) if grace_minutes is not None else None,
        refresh_max_age=timedelta(days=session.get("refresh_max_age_days", 7)),
        cleanup_interval=float(session.get("cleanup_interval_seconds", 300)),
    )
