import os
from enum import Enum
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator


class DataSourceKind(str, Enum):
    HYPERLIQUID = "hyperliquid"
    POSTGRES = "postgres"
    MOCK = "mock"


class Settings(BaseModel):
    target_builder: Optional[str] = None
    data_source: DataSourceKind = DataSourceKind.HYPERLIQUID
    hl_testnet: bool = False
    database_url: Optional[str] = None
    redis_url: Optional[str] = None
    leaderboard_users: List[str] = []
    log_level: str = "INFO"

    @field_validator("target_builder", "database_url", "redis_url", mode="before")
    @classmethod
    def _empty_as_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def builder_filter_enabled(self) -> bool:
        return self.target_builder is not None


def _split_csv(raw: str) -> List[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def load_settings(env_file: Optional[str] = None) -> Settings:
    load_dotenv(env_file)
    return Settings(
        target_builder=os.environ.get("TARGET_BUILDER"),
        data_source=os.environ.get("DATA_SOURCE", DataSourceKind.HYPERLIQUID.value),
        hl_testnet=os.environ.get("HL_TESTNET", "false").lower() == "true",
        database_url=os.environ.get("DATABASE_URL"),
        redis_url=os.environ.get("REDIS_URL"),
        leaderboard_users=_split_csv(os.environ.get("LEADERBOARD_USERS", "")),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    )
