from __future__ import annotations

from functools import cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    base_currency: str = "SEK"
    # Statement layout, see importers.revolut_importer.STATEMENT_HEADERS.
    csv_year: int = 2023
    # "ALL" disables the filter.
    currency_filter: str = "ALL"
    year_filter: int | None = None
    taxpayer_id: str | None = None
    taxpayer_name: str | None = None

    model_config = SettingsConfigDict(env_prefix="GAINS_", env_file=".env", env_file_encoding="utf-8", extra="ignore")


@cache
def config() -> AppSettings:
    return AppSettings()
