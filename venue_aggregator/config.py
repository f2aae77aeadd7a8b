"""
Venue Aggregator - Configuration Settings
"""
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # =========================
    # Application Settings
    # =========================
    APP_NAME: str = "Venue Aggregator"
    APP_ENV: str = "development"
    DEBUG: bool = False

    # =========================
    # Data Providers - Credentials
    # =========================
    # Review directories
    YELP_API_KEY: str = ""
    YELP_ENABLED: bool = True

    # Points of interest
    FOURSQUARE_API_KEY: str = ""
    FOURSQUARE_ENABLED: bool = True

    # Municipal open data (public, no key)
    CITY_APIS_ENABLED: bool = True
    CITY_APIS_CITIES: List[str] = ["nyc", "sf", "la"]

    @field_validator("CITY_APIS_CITIES", mode="before")
    @classmethod
    def parse_cities(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [city.strip().lower() for city in v.split(",") if city.strip()]
        return v

    # =========================
    # Cache
    # =========================
    # Empty REDIS_URL selects the in-memory store
    REDIS_URL: str = ""
    CACHE_MEMORY_BUDGET_MB: int = 100
    CACHE_RAW_TTL_SECONDS: int = 1800
    CACHE_NORMALIZED_TTL_SECONDS: int = 3600
    CACHE_GEO_TTL_SECONDS: int = 900
    CACHE_DETAILS_TTL_SECONDS: int = 3600

    @field_validator(
        "CACHE_RAW_TTL_SECONDS",
        "CACHE_NORMALIZED_TTL_SECONDS",
        "CACHE_GEO_TTL_SECONDS",
        "CACHE_DETAILS_TTL_SECONDS",
        "CACHE_MEMORY_BUDGET_MB",
    )
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("cache TTLs and budget must be positive")
        return v

    # =========================
    # Query Settings
    # =========================
    QUERY_DEADLINE_SECONDS: float = 10.0
    MAX_SOURCES_PER_QUERY: int = 0  # 0 = all available

    # =========================
    # Merge Settings
    # =========================
    # {"rating": {"foursquare": 10}} reorders sources for that field only
    FIELD_PRIORITY_OVERRIDES: dict[str, dict[str, int]] = {}

    @field_validator("FIELD_PRIORITY_OVERRIDES", mode="before")
    @classmethod
    def parse_overrides(cls, v):
        if isinstance(v, str):
            return json.loads(v) if v.strip() else {}
        return v

    # =========================
    # Logging
    # =========================
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""


# Create global settings instance
settings = Settings()
