# backend/tutorlink/core/config.py
import logging
import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    CANCELLATION_PENALTY_POINTS,
    DEFAULT_POINT_COST,
    FREE_SESSION_TUTOR_BONUS,
)

logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


class Settings(BaseSettings):
    environment: str = Field(default="development", description="development|production")
    log_level: str = Field(default="INFO", description="Root log level for the API process")
    is_testing: bool = False

    # Database
    database_url: str = Field(
        default="sqlite+pysqlite:///./tutorlink.db",
        description="SQLAlchemy URL for the primary database",
    )
    database_echo: bool = False
    create_tables_on_startup: bool = Field(
        default=True,
        description="Create missing tables when the API starts (local/dev convenience)",
    )

    # Redis slot mutex (the partial unique index remains the authoritative guard)
    redis_url: str = "redis://localhost:6379/0"
    session_lock_enabled: bool = False
    session_lock_ttl_seconds: int = Field(default=30, ge=1)
    session_lock_namespace: str = "tutorlink"

    # Points economy
    default_point_cost: int = DEFAULT_POINT_COST
    cancellation_penalty_points: int = CANCELLATION_PENALTY_POINTS
    free_session_tutor_bonus: int = FREE_SESSION_TUTOR_BONUS
    points_ledger_mode: Literal["compensating", "transactional"] = Field(
        default="compensating",
        description=(
            "compensating: debit/credit as separate writes with a reversing write on failure; "
            "transactional: both writes inside one SAVEPOINT"
        ),
    )

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator(
        "default_point_cost",
        "cancellation_penalty_points",
        "free_session_tutor_bonus",
    )
    @classmethod
    def _non_negative_points(cls, value: int) -> int:
        if value < 0:
            raise ValueError("point values must be non-negative")
        return value

    @field_validator("points_ledger_mode", mode="before")
    @classmethod
    def _normalize_ledger_mode(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper() or "INFO"
        return value

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.lower().startswith("sqlite")


settings = Settings()
