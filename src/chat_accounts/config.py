from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Runtime settings, read from `CHAT_ACCOUNTS_*` environment variables
    or a local `.env` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="CHAT_ACCOUNTS_",
        env_file=".env",
        extra="ignore",
    )

    SNAPSHOT_PATH: Path = Path("accounts.json")
    LEDGER_PATH: Path = Path("logs/account_ledger.log")

    SESSION_TTL_DAYS: int = Field(default=30, gt=0)
    LINK_CODE_TTL_MINUTES: int = Field(default=30, gt=0)
    LINK_CODE_PREFIX: str = "LINK-"
    LINK_CODE_LENGTH: int = Field(default=4, gt=0)
    RATE_LIMIT_SECONDS: float = Field(default=20, ge=0)
    PASSWORD_HASH_ITERATIONS: int = Field(default=100_000, ge=100_000)


settings = Settings()
