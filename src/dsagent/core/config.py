"""Configuration management for DSAgent."""

import json
import os
from pathlib import Path
from typing import Any

from dotenv import find_dotenv, load_dotenv

# Global config directory
DSAGENT_HOME = Path.home() / ".dsagent"
GLOBAL_CONFIG_FILE = DSAGENT_HOME / "config.json"

# Project-level config
PROJECT_CONFIG_DIR = ".dsagent"
PROJECT_CONFIG_FILE = "project.json"

DEFAULT_SERVER_URL = "http://localhost:8000"
DEFAULT_MODEL = "gpt-4o"
DEFAULT_HITL_MODE = "none"

DEFAULTS: dict[str, Any] = {
    "server_url": DEFAULT_SERVER_URL,
    "model": DEFAULT_MODEL,
    "hitl_mode": DEFAULT_HITL_MODE,
    "reconnect": {
        "base_delay": 1.0,
        "max_delay": 30.0,
        "max_attempts": 5,
    },
}


def get_config_path() -> Path:
    """Get the path to the global config file."""
    return GLOBAL_CONFIG_FILE


def get_project_config_path() -> Path | None:
    """Get the path to the project-level config file, if it exists."""
    project_config = Path.cwd() / PROJECT_CONFIG_DIR / PROJECT_CONFIG_FILE
    if project_config.exists():
        return project_config
    return None


def ensure_config_dir():
    """Ensure the global config directory exists."""
    DSAGENT_HOME.mkdir(parents=True, exist_ok=True)


def load_config() -> dict[str, Any]:
    """Load configuration from defaults, global and project-level configs.

    Project-level config takes precedence over global config, and
    environment variables (including a local .env file) override both.
    """
    config: dict[str, Any] = json.loads(json.dumps(DEFAULTS))

    # Load global config
    if GLOBAL_CONFIG_FILE.exists():
        with open(GLOBAL_CONFIG_FILE) as f:
            config = _merge(config, json.load(f))

    # Merge project-level config
    project_config_path = get_project_config_path()
    if project_config_path:
        with open(project_config_path) as f:
            config = _merge(config, json.load(f))

    load_dotenv(find_dotenv(usecwd=True), override=False)

    if os.environ.get("DSAGENT_SERVER_URL"):
        config["server_url"] = os.environ["DSAGENT_SERVER_URL"]

    if os.environ.get("DSAGENT_API_KEY"):
        config["api_key"] = os.environ["DSAGENT_API_KEY"]

    return config


def read_config_file(project_level: bool = False) -> dict[str, Any]:
    """Read one config file as stored, without defaults or env overrides."""
    if project_level:
        config_path = Path.cwd() / PROJECT_CONFIG_DIR / PROJECT_CONFIG_FILE
    else:
        config_path = GLOBAL_CONFIG_FILE

    if not config_path.exists():
        return {}
    with open(config_path) as f:
        return json.load(f)


def save_config(config: dict[str, Any], project_level: bool = False):
    """Save configuration.

    Args:
        config: Configuration dictionary to save
        project_level: If True, save to project-level config; otherwise global
    """
    if project_level:
        project_dir = Path.cwd() / PROJECT_CONFIG_DIR
        project_dir.mkdir(parents=True, exist_ok=True)
        config_path = project_dir / PROJECT_CONFIG_FILE
    else:
        ensure_config_dir()
        config_path = GLOBAL_CONFIG_FILE

    with open(config_path, "w") as f:
        json.dump(config, f, indent=2)


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    # One level deep is enough for the "reconnect" block
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged
