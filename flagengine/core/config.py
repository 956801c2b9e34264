"""Runtime settings for the flag engine."""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    log_level: str = "INFO"
    log_json: bool = True

    # Dependency chains deeper than this evaluate as dependency_not_met
    max_dependency_depth: int = 10

    metrics_enabled: bool = True

    # Injected as the ``environment`` property when a call does not name one
    default_environment: Optional[str] = None

    model_config = {
        "env_prefix": "FLAG_ENGINE_",
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore",
    }


_settings_cache: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings()
    return _settings_cache


def reset_settings() -> None:
    """Drop cached settings (for testing)."""
    global _settings_cache
    _settings_cache = None
