from __future__ import annotations

from decimal import Decimal
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from tripsplit.db.models import CustomSplitPolicy


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    database_url: str = Field(..., alias="DATABASE_URL")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    split_tolerance: Decimal = Field(Decimal("0.01"), alias="SPLIT_TOLERANCE", ge=0)
    custom_split_policy: CustomSplitPolicy = Field(CustomSplitPolicy.REDISTRIBUTE, alias="CUSTOM_SPLIT_POLICY")
    recent_externals_limit: int = Field(50, alias="RECENT_EXTERNALS_LIMIT", ge=1)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]
