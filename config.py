# config.py
from __future__ import annotations
from pathlib import Path
from typing import Dict, List, Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices, field_validator, model_validator

BASE_DIR = Path(__file__).resolve().parent

class Settings(BaseSettings):
    # Read .env; ignore extra env vars to avoid crashes
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        env_nested_delimiter="__",
        env_prefix="",  # no automatic prefix
    )

    # --- Runtime env / debugging ---
    APP_ENV: Literal["development", "staging", "production"] = Field(
        default="development",
        validation_alias=AliasChoices("APP_ENV", "app_env"),
    )
    DEBUG: bool = Field(
        default=False,
        validation_alias=AliasChoices("DEBUG", "debug"),
    )
    PORT: int = Field(
        default=8000,
        validation_alias=AliasChoices("PORT", "port"),
    )
    HOST: str = Field(
        default="0.0.0.0",
        validation_alias=AliasChoices("HOST", "host"),
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        validation_alias=AliasChoices("LOG_LEVEL", "log_level"),
    )

    # --- External services ---
    OPENAI_API_KEY: str = Field(
        default="",
        validation_alias=AliasChoices("OPENAI_API_KEY", "openai_api_key"),
    )
    OPENAI_MODEL: str = Field(
        default="gpt-4o-mini",
        validation_alias=AliasChoices("OPENAI_MODEL", "openai_model"),
    )
    GOOGLE_MAPS_API_KEY: str = Field(
        default="",
        validation_alias=AliasChoices("GOOGLE_MAPS_API_KEY", "google_maps_api_key"),
    )
    PLACES_LANGUAGE: str = Field(
        default="zh-TW",
        validation_alias=AliasChoices("PLACES_LANGUAGE", "places_language"),
    )

    # --- Discovery tuning (business values, keep overridable) ---
    CACHE_USE_PROBABILITY: float = Field(
        default=0.25,
        validation_alias=AliasChoices("CACHE_USE_PROBABILITY", "cache_use_probability"),
    )
    COLLECTED_SKIP_PROBABILITY: float = Field(
        default=0.45,
        validation_alias=AliasChoices("COLLECTED_SKIP_PROBABILITY", "collected_skip_probability"),
    )
    VERIFY_RADIUS_KM: float = Field(
        default=5.0,
        validation_alias=AliasChoices("VERIFY_RADIUS_KM", "verify_radius_km"),
    )
    GENERATION_MAX_ATTEMPTS: int = Field(
        default=3,
        ge=1,
        validation_alias=AliasChoices("GENERATION_MAX_ATTEMPTS", "generation_max_attempts"),
    )
    RETRY_BACKOFF_S: float = Field(
        default=0.25,
        ge=0,
        validation_alias=AliasChoices("RETRY_BACKOFF_S", "retry_backoff_s"),
    )
    WORKER_REDRAW_LIMIT: int = Field(
        default=3,
        ge=0,
        validation_alias=AliasChoices("WORKER_REDRAW_LIMIT", "worker_redraw_limit"),
    )
    BACKFILL_ATTEMPT_FACTOR: int = Field(
        default=3,
        ge=1,
        validation_alias=AliasChoices("BACKFILL_ATTEMPT_FACTOR", "backfill_attempt_factor"),
    )

    # --- Rewards ---
    INVENTORY_MAX_SLOTS: int = Field(
        default=30,
        ge=1,
        validation_alias=AliasChoices("INVENTORY_MAX_SLOTS", "inventory_max_slots"),
    )
    REWARD_DEFAULT_VALID_DAYS: int = Field(
        default=30,
        ge=1,
        validation_alias=AliasChoices("REWARD_DEFAULT_VALID_DAYS", "reward_default_valid_days"),
    )
    # Percent per tier, rarest first; whatever is left up to 100 is "no drop".
    REWARD_TIER_RATES: Dict[str, float] = Field(
        default_factory=lambda: {"SP": 2.0, "SSR": 8.0, "SR": 15.0, "S": 23.0, "R": 32.0},
        validation_alias=AliasChoices("REWARD_TIER_RATES", "reward_tier_rates"),
    )

    # --- Timeouts (seconds) ---
    AI_TIMEOUT_S: float = Field(
        default=20.0,
        gt=0,
        validation_alias=AliasChoices("AI_TIMEOUT_S", "ai_timeout_s"),
    )
    PLACES_TIMEOUT_S: float = Field(
        default=8.0,
        gt=0,
        validation_alias=AliasChoices("PLACES_TIMEOUT_S", "places_timeout_s"),
    )
    REQUEST_DEADLINE_S: float = Field(
        default=90.0,
        gt=0,
        validation_alias=AliasChoices("REQUEST_DEADLINE_S", "request_deadline_s"),
    )

    # --- CORS (env-driven) ---
    CORS_ALLOW_ORIGINS: List[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://127.0.0.1:5173"],
        validation_alias=AliasChoices("CORS_ALLOW_ORIGINS", "cors_allow_origins"),
    )
    # Optional comma-separated alternative that overrides the above
    FRONTEND_ORIGINS: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("FRONTEND_ORIGINS", "frontend_origins"),
    )
    CORS_ALLOW_METHODS: List[str] = Field(
        default_factory=lambda: ["GET", "POST", "OPTIONS"],
        validation_alias=AliasChoices("CORS_ALLOW_METHODS", "cors_allow_methods"),
    )
    CORS_EXPOSE_HEADERS: List[str] = Field(
        default_factory=lambda: ["X-Request-Id"],
        validation_alias=AliasChoices("CORS_EXPOSE_HEADERS", "cors_expose_headers"),
    )

    # --- Data files ---
    TAXONOMY_PATH: str = Field(
        default=str(BASE_DIR / "data" / "taxonomy.yml"),
        validation_alias=AliasChoices("TAXONOMY_PATH", "taxonomy_path"),
    )
    SEED_PATH: str = Field(
        default=str(BASE_DIR / "data" / "seed.yml"),
        validation_alias=AliasChoices("SEED_PATH", "seed_path"),
    )

    @field_validator("CACHE_USE_PROBABILITY", "COLLECTED_SKIP_PROBABILITY")
    @classmethod
    def _probability(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("probability must be between 0 and 1")
        return v

    @field_validator("REWARD_TIER_RATES")
    @classmethod
    def _tier_rates(cls, v: Dict[str, float]) -> Dict[str, float]:
        if any(rate < 0 for rate in v.values()):
            raise ValueError("reward tier rates must be non-negative")
        if sum(v.values()) > 100.0:
            raise ValueError("reward tier rates must sum to at most 100 (percent)")
        return v

    @model_validator(mode="after")
    def _merge_frontend_origins(self) -> "Settings":
        if self.FRONTEND_ORIGINS:
            parts = [p.strip() for p in self.FRONTEND_ORIGINS.split(",") if p.strip()]
            if parts:
                self.CORS_ALLOW_ORIGINS = parts
        return self

    @model_validator(mode="after")
    def _validate_production_settings(self) -> "Settings":
        """Validate critical settings for production deployment."""
        if self.APP_ENV == "production":
            if not self.OPENAI_API_KEY or self.OPENAI_API_KEY in [
                "",
                "your-openai-api-key-here",
            ]:
                raise ValueError(
                    "OPENAI_API_KEY must be set to a valid key in production."
                )
            if not self.GOOGLE_MAPS_API_KEY:
                import logging
                logging.getLogger("config").warning(
                    "GOOGLE_MAPS_API_KEY is empty in production; generated places will not be verified."
                )
        return self

    @property
    def is_dev(self) -> bool:
        return self.APP_ENV == "development"

    @property
    def verification_enabled(self) -> bool:
        return bool(self.GOOGLE_MAPS_API_KEY)

    @property
    def log_level(self) -> str:
        return "DEBUG" if self.DEBUG else self.LOG_LEVEL.upper()

settings = Settings()
