"""Library configuration loaded from ``TABLECALC_*`` environment variables."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TableCalcSettings(BaseSettings):
    """Tunables for inference, layout defaults and the file settings store."""

    model_config = SettingsConfigDict(
        env_prefix="TABLECALC_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    inference_sample_size: int = Field(default=10, ge=1)
    default_column_width: int = Field(default=200, ge=1)
    settings_dir: Path = Path(".tablecalc") / "settings"


@lru_cache(maxsize=1)
def get_settings() -> TableCalcSettings:
    return TableCalcSettings()


def reload_settings() -> TableCalcSettings:
    """Drop the cached settings and read the environment again."""
    get_settings.cache_clear()
    return get_settings()
