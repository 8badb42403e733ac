"""Configuration loading and defaults."""

from __future__ import annotations

import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict

import yaml

DEFAULT_SETTINGS: Dict[str, Any] = {
    "ai": {
        "provider": "gemini",
        "temperature": 0.7,
        "max_tokens": 4096,
    },
    "providers": {
        "gemini": {"model": "gemini-2.0-flash"},
        "openai": {"model": "gpt-4.1-mini"},
        "azure_openai": {"api_version": "2024-06-01"},
        "perplexity": {"model": "sonar"},
    },
    "retry": {
        "max_attempts": 3,
        "base_delay_seconds": 2.0,
        "multiplier": 2.0,
        "max_delay_seconds": 30.0,
    },
    "timeouts": {
        "base_seconds": 30.0,
        "seconds_per_1k_tokens": 15.0,
        "max_seconds": 300.0,
    },
    "json_repair": {
        "max_repair_rounds": 3,
        "repair_temperature": 0.0,
    },
    "credentials": {
        # "remote" asks the token service, "local" signs a token with RESILIENT_AI_TOKEN_SECRET.
        "issuer": "remote",
        "default_validity_hours": 24,
        "issuer_timeout_seconds": 30,
        "ip_echo_url": "https://api.ipify.org",
    },
    "proxy": {
        "url": None,
        "token_issuer_url": None,
    },
    "pricing": {
        "openai:gpt-4.1-mini": {"input_per_1k": 0.0004, "output_per_1k": 0.0016},
        "openai:gpt-4.1": {"input_per_1k": 0.002, "output_per_1k": 0.008},
        "gemini:gemini-2.0-flash": {"input_per_1k": 0.0001, "output_per_1k": 0.0004},
        "gemini:gemini-1.5-pro": {"input_per_1k": 0.00125, "output_per_1k": 0.005},
        "perplexity:sonar": {"input_per_1k": 0.001, "output_per_1k": 0.001},
    },
}

# Settings that may be supplied through the environment instead of settings.yaml.
ENV_OVERRIDES = {
    "RESILIENT_AI_PROXY_URL": ("proxy", "url"),
    "RESILIENT_AI_TOKEN_ISSUER_URL": ("proxy", "token_issuer_url"),
    "RESILIENT_AI_PROVIDER": ("ai", "provider"),
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _apply_env(settings: Dict[str, Any]) -> Dict[str, Any]:
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value and value.strip():
            settings.setdefault(section, {})[key] = value.strip()
    return settings


def load_settings(settings_path: str = "config/settings.yaml") -> Dict[str, Any]:
    """Loads settings.yaml, merges it onto defaults, then applies environment overrides."""
    merged = deepcopy(DEFAULT_SETTINGS)
    config_path = Path(settings_path)
    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as f:
            user_cfg = yaml.safe_load(f) or {}
        merged = _deep_merge(merged, user_cfg)
    return _apply_env(merged)
