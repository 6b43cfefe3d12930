"""App configuration: environment variables and the persisted config.json.

Environment (loaded from .env by python-dotenv):
  DATA_DIR               Storage directory (default: ./data)
  LLM_PROVIDER_URL       Base URL of the text-completion backend
  LLM_API_KEY            Bearer token, optional
  LLM_PROVIDER_FORMAT    "koboldcpp" or "openai"
  LLM_MODEL              Primary model (openai format only)
  LLM_LIGHTWEIGHT_MODEL  Model for short stages; defaults to LLM_MODEL
  LOG_LEVEL              Root log level (default: INFO)

config.json holds tunables and per-stage prompt overrides. get_config()
returns defaults merged with stored values; update_config() applies partial
updates: prompts merged key-by-key, llm_connection merged field-by-field,
scalars overwritten.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

ROOT = Path(__file__).parent.parent
DEFAULT_DATA_DIR = ROOT / "data"

CONFIG_DEFAULTS: dict[str, Any] = {
    "llm_connection": {
        "provider_url": "http://localhost:5001",
        "api_key": "",
        "provider_format": "koboldcpp",
        "model": "",
        "lightweight_model": "",
    },
    "llm_timeout": 120.0,
    "generation_timeout": 90.0,
    "recent_message_count": 12,
    "options_retry_attempts": 3,
    "options_retry_base_delay": 0.5,
    "prompts": {
        "warmup_reply": "",
        "story_beat": "",
        "character_traits": "",
        "story_ending": "",
    },
}

_SCALAR_KEYS = (
    "llm_timeout",
    "generation_timeout",
    "recent_message_count",
    "options_retry_attempts",
    "options_retry_base_delay",
)

_ENV_CONNECTION_KEYS = {
    "LLM_PROVIDER_URL": "provider_url",
    "LLM_API_KEY": "api_key",
    "LLM_PROVIDER_FORMAT": "provider_format",
    "LLM_MODEL": "model",
    "LLM_LIGHTWEIGHT_MODEL": "lightweight_model",
}


def load_env() -> None:
    load_dotenv(ROOT / ".env")


def data_dir_from_env() -> Path:
    return Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))


def configure_logging() -> None:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _config_path(data_dir: Path) -> Path:
    return data_dir / "config.json"


def _merge(config: dict[str, Any], stored: dict[str, Any]) -> None:
    if isinstance(stored.get("llm_connection"), dict):
        config["llm_connection"].update(stored["llm_connection"])
    if isinstance(stored.get("prompts"), dict):
        config["prompts"].update(stored["prompts"])
    for key in _SCALAR_KEYS:
        if key in stored:
            config[key] = stored[key]


def get_config(data_dir: Path) -> dict[str, Any]:
    """Read config, returning defaults merged with stored values.

    LLM_* environment variables win over the stored connection.
    """
    config = copy.deepcopy(CONFIG_DEFAULTS)
    path = _config_path(data_dir)
    if path.is_file():
        _merge(config, json.loads(path.read_text()))
    for env_key, field in _ENV_CONNECTION_KEYS.items():
        value = os.getenv(env_key)
        if value:
            config["llm_connection"][field] = value
    return config


def update_config(data_dir: Path, fields: dict[str, Any]) -> dict[str, Any]:
    """Merge fields into the stored config and persist. Returns full config."""
    path = _config_path(data_dir)
    stored = copy.deepcopy(CONFIG_DEFAULTS)
    if path.is_file():
        _merge(stored, json.loads(path.read_text()))
    _merge(stored, fields)
    path.write_text(json.dumps(stored, indent=2))
    return get_config(data_dir)
