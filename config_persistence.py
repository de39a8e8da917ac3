import json
import os
from dataclasses import asdict
from pathlib import Path
from typing import Mapping, Optional

from config import (
    Config,
    ProviderBackend,
    apply_dict_to_dataclass,
    migrate_config,
)
from logging_utils import log_event


def get_config_dir() -> Path:
    """Get config directory (~/.wordwheel, created on demand)."""
    config_dir = Path.home() / '.wordwheel'
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_config_file() -> Path:
    """Get config file path."""
    return get_config_dir() / 'config.json'


def _to_json_dict(config: Config) -> dict:
    data = asdict(config)
    data['provider']['backend'] = config.provider.backend.value
    return data


def save_config(config: Config) -> bool:
    """Save config to JSON file."""
    try:
        config_file = get_config_file()
        config_file.parent.mkdir(parents=True, exist_ok=True)
        with open(config_file, 'w', encoding='utf-8') as f:
            json.dump(_to_json_dict(config), f, indent=2)
        log_event("INFO", "Config", "Saved", path=config_file)
        return True
    except (OSError, TypeError) as e:
        log_event("ERROR", "Config", "Failed to save", error=e)
        return False


def apply_env_overrides(config: Config, environ: Optional[Mapping[str, str]] = None) -> Config:
    """Apply process environment overrides on top of the loaded config."""
    env = os.environ if environ is None else environ

    port = env.get('ARDUINO_PORT')
    if port:
        config.serial.port = port

    backend = env.get('LLM_PROVIDER')
    if backend:
        try:
            config.provider.backend = ProviderBackend(backend.strip().lower())
        except ValueError:
            log_event("WARN", "Config", "Unknown LLM_PROVIDER, keeping configured backend",
                      value=backend, backend=config.provider.backend.value)

    openai_key = env.get('OPENAI_API_KEY')
    if openai_key:
        config.provider.openai_api_key = openai_key
    gemini_key = env.get('GEMINI_API_KEY')
    if gemini_key:
        config.provider.gemini_api_key = gemini_key
    return config


def load_config() -> Config:
    """Load config from JSON file, returns default if not found."""
    try:
        config_file = get_config_file()
        if config_file.exists():
            with open(config_file, 'r', encoding='utf-8') as f:
                data = json.load(f)

            config = Config()
            apply_dict_to_dataclass(config, data)
            loaded_version = data.get('version') if isinstance(data, dict) else None
            migrate_config(config, loaded_version)

            log_event("INFO", "Config", "Loaded", path=config_file, version=config.version)

            if loaded_version != config.version:
                save_config(config)
            return config

        log_event("INFO", "Config", "No saved config found, using defaults")
        return Config()
    except (OSError, ValueError) as e:
        log_event("WARN", "Config", "Failed to load, using defaults", error=e)
        return Config()
