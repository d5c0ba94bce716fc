"""
Configuration for slate.

Config hierarchy (highest to lowest priority):
  1. An explicit file passed to load_config()
  2. Project config (./.slate/config.yaml)
  3. User config (~/.slate/config.yaml)
  4. Environment variables (SLATE_HTTP_TIMEOUT, SLATE_HTTP_RETRIES,
     SLATE_CACHE_MAX_ENTRIES)
  5. Defaults

API keys are never read from config files, only from the environment.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


@dataclass
class HttpConfig:
    timeout: float = 5.0      # seconds per request
    retries: int = 2          # extra attempts after the first
    backoff: float = 0.2      # seconds, doubled per attempt


@dataclass
class CacheConfig:
    max_entries: int = 256    # per provider cache


@dataclass
class SuggestionConfig:
    max_sibling_distance: int = 50


@dataclass
class ProviderConfig:
    routing_url: str = "https://router.project-osrm.org"
    forecast_url: str = "https://api.open-meteo.com/v1/forecast"
    archive_url: str = "https://archive-api.open-meteo.com/v1/archive"
    flight_url: str = "https://airlabs.co/api/v9/flight"
    flight_api_key_env: str = "AIRLABS_API_KEY"

    @property
    def flight_api_key(self) -> Optional[str]:
        """API key from the environment. Never stored."""
        return os.environ.get(self.flight_api_key_env)


@dataclass
class SlateConfig:
    http: HttpConfig = field(default_factory=HttpConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    suggestions: SuggestionConfig = field(default_factory=SuggestionConfig)
    providers: ProviderConfig = field(default_factory=ProviderConfig)

    def validate(self) -> Optional[str]:
        """Returns an error message or None if valid."""
        if self.http.timeout <= 0:
            return "http.timeout must be > 0"
        if self.http.retries < 0:
            return "http.retries must be >= 0"
        if self.cache.max_entries < 1:
            return "cache.max_entries must be >= 1"
        if self.suggestions.max_sibling_distance < 1:
            return "suggestions.max_sibling_distance must be >= 1"
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "http": {
                "timeout": self.http.timeout,
                "retries": self.http.retries,
                "backoff": self.http.backoff,
            },
            "cache": {"max_entries": self.cache.max_entries},
            "suggestions": {"max_sibling_distance": self.suggestions.max_sibling_distance},
            "providers": {
                "routing_url": self.providers.routing_url,
                "forecast_url": self.providers.forecast_url,
                "archive_url": self.providers.archive_url,
                "flight_url": self.providers.flight_url,
                "flight_api_key_env": self.providers.flight_api_key_env,
            },
        }

    @classmethod
    def from_env(cls) -> 'SlateConfig':
        cfg = cls()
        cfg.http.timeout = _get_float_env("SLATE_HTTP_TIMEOUT", cfg.http.timeout)
        cfg.http.retries = _get_int_env("SLATE_HTTP_RETRIES", cfg.http.retries)
        cfg.cache.max_entries = _get_int_env("SLATE_CACHE_MAX_ENTRIES", cfg.cache.max_entries)
        return cfg

    def merge(self, data: Dict[str, Any]) -> 'SlateConfig':
        """Overlays values from a config mapping onto this config."""
        sections = {
            "http": self.http,
            "cache": self.cache,
            "suggestions": self.suggestions,
            "providers": self.providers,
        }
        for name, values in (data or {}).items():
            target = sections.get(name)
            if target is None or not isinstance(values, dict):
                continue
            for key, value in values.items():
                if hasattr(target, key) and not isinstance(getattr(type(target), key, None), property):
                    current = getattr(target, key)
                    setattr(target, key, type(current)(value) if current is not None else value)
        return self


def _get_int_env(key: str, default: int) -> int:
    value = os.environ.get(key, "")
    if value:
        try:
            return int(value)
        except ValueError:
            pass
    return default


def _get_float_env(key: str, default: float) -> float:
    value = os.environ.get(key, "")
    if value:
        try:
            return float(value)
        except ValueError:
            pass
    return default


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with open(path) as f:
        return yaml.safe_load(f) or {}


def load_config(path=None, project_dir=None) -> SlateConfig:
    cfg = SlateConfig.from_env()
    project_dir = Path(project_dir) if project_dir else Path.cwd()
    cfg.merge(_read_yaml(Path.home() / ".slate" / "config.yaml"))
    cfg.merge(_read_yaml(project_dir / ".slate" / "config.yaml"))
    if path is not None:
        cfg.merge(_read_yaml(Path(path)))
    error = cfg.validate()
    if error:
        raise ValueError(f"Invalid configuration: {error}")
    return cfg


_config: Optional[SlateConfig] = None


def get_config() -> SlateConfig:
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(cfg: Optional[SlateConfig]):
    """Replaces the process-wide config; None reloads it on next use."""
    global _config
    _config = cfg
