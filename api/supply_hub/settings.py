# supply_hub/settings.py
"""
Supply Hub settings (pydantic-settings, .env aware).
"""
from __future__ import annotations
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices


class Settings(BaseSettings):
    # =========================================================================
    # File Storage (logs)
    # =========================================================================
    DATA_ROOT: Path = Field(
        default=(Path(__file__).resolve().parents[2] / "supply-data"),
        validation_alias=AliasChoices("DATA_ROOT", "SUPPLY_DATA_ROOT"),
    )

    # =========================================================================
    # Database
    # =========================================================================
    # Full async URL wins when set (e.g. sqlite+aiosqlite:///./supply.db)
    DATABASE_URL: Optional[str] = Field(default=None, validation_alias="DATABASE_URL")

    DB_HOST: str = Field(default="localhost", validation_alias="DB_HOST")
    DB_PORT: int = Field(default=5432, validation_alias="DB_PORT")
    DB_NAME: str = Field(default="supply_hub", validation_alias="DB_NAME")
    DB_USER: str = Field(default="postgres", validation_alias="DB_USER")
    DB_PASSWORD: str = Field(default="postgres", validation_alias="DB_PASSWORD")

    # Connection pool settings
    DB_POOL_SIZE: int = Field(default=5, validation_alias="DB_POOL_SIZE")
    DB_MAX_OVERFLOW: int = Field(default=10, validation_alias="DB_MAX_OVERFLOW")
    DB_ECHO: bool = Field(default=False, validation_alias="DB_ECHO")
    DB_ISOLATION_LEVEL: str = Field(default="SERIALIZABLE", validation_alias="DB_ISOLATION_LEVEL")
    DB_CREATE_ALL: bool = Field(default=True, validation_alias="DB_CREATE_ALL")

    # =========================================================================
    # HTTP / Auth
    # =========================================================================
    API_PREFIX: str = "/api"
    CORS_ORIGINS: List[str] = Field(
        default_factory=lambda: [
            "http://localhost:5173",
            "http://localhost:3000",
        ]
    )
    JWT_SECRET: str = Field(default="supply-hub-dev-secret", validation_alias="JWT_SECRET")
    JWT_ALGORITHM: str = "HS256"
    TOKEN_TTL_DAYS: int = 7
    UPLOAD_MAX_BYTES: int = 10 * 1024 * 1024

    # =========================================================================
    # Domain rules
    # =========================================================================
    CONTINUOUS_UNITS: List[str] = Field(default_factory=lambda: ["kg"])
    DISCRETE_UNITS: List[str] = Field(
        default_factory=lambda: ["box", "bucket", "bag", "箱", "桶", "包"]
    )
    BATCH_NO_PREFIX: str = "RB"
    BATCH_NO_RETRIES: int = 3
    MATCH_QTY_EPSILON: Decimal = Decimal("0.001")
    LOG_ADMIN_ITEM_EDITS: bool = Field(
        default=False,
        description="Write item_added/item_updated/item_removed change logs for admin item edits",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
