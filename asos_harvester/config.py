"""Application configuration using Pydantic settings."""

import json
import math
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_RESULTS_WANTED = 20


class Settings(BaseSettings):
    """Application settings."""

    # App Settings
    log_level: str = "INFO"
    log_dir: str = "."

    # ==========================================================================
    # Site Settings
    # ==========================================================================
    site_base_url: str = "https://www.asos.com"
    media_base_url: str = "https://images.asos-media.com/products/"
    search_path: str = "/search/"

    # ==========================================================================
    # Internal API Settings
    # ==========================================================================
    api_search_url: str = "https://www.asos.com/api/product/search/v2/categories"
    api_stockprice_url: str = "https://www.asos.com/api/product/catalogue/v4/stockprice"
    api_store: str = "US"
    api_currency: str = "USD"
    api_lang: str = "en-US"
    api_country: str = "US"
    api_page_size: int = 72
    api_key_store_version: str = "ornjx7v-35"  # May need periodic update
    api_timeout_seconds: float = 30.0
    api_max_attempts: int = 3  # 1 request + 2 retries
    stock_api_timeout_seconds: float = 20.0
    stock_api_max_attempts: int = 2
    retry_backoff_factor: float = 1.0  # Multiplier on exponential backoff sleeps

    # ==========================================================================
    # Output Settings
    # ==========================================================================
    output_batch_size: int = 20  # Records buffered before persist_batch
    output_path: str = "storage/products.jsonl"

    # ==========================================================================
    # Runner Settings
    # ==========================================================================
    max_concurrency: int = 2  # ASOS is tough, keep this low
    page_timeout_seconds: float = 60.0
    page_max_attempts: int = 4  # 1 request + 3 retries

    model_config = SettingsConfigDict(
        env_prefix="HARVESTER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()


class HarvestConfig(BaseModel):
    """Input for a single harvest run.

    Accepts both snake_case names and the camelCase keys used by actor-style
    input files (``startUrl``, ``minPrice``, ``proxyConfiguration``...).
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    keyword: str = "men"
    start_url: Optional[str] = Field(default=None, alias="startUrl")
    min_price: Optional[float] = Field(default=None, alias="minPrice")
    max_price: Optional[float] = Field(default=None, alias="maxPrice")
    sort_by: str = Field(default="pricedesc", alias="sortBy")
    results_wanted: int = Field(default=DEFAULT_RESULTS_WANTED, alias="resultsWanted")
    proxy_configuration: Optional[Any] = Field(default=None, alias="proxyConfiguration")
    detail_mode: bool = Field(default=False, alias="detailMode")

    @field_validator("results_wanted", mode="before")
    @classmethod
    def _coerce_results_wanted(cls, value: Any) -> int:
        """Non-numeric input falls back to the default; anything else is clamped to >= 1."""
        try:
            number = float(value)
        except (TypeError, ValueError):
            return DEFAULT_RESULTS_WANTED
        if not math.isfinite(number):
            return DEFAULT_RESULTS_WANTED
        return max(1, int(number))

    @field_validator("min_price", "max_price", mode="before")
    @classmethod
    def _blank_price_is_none(cls, value: Any) -> Any:
        if value == "" or value is None:
            return None
        return value

    @classmethod
    def from_file(cls, path: str | Path) -> "HarvestConfig":
        """Load run input from a JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            return cls.model_validate(json.load(f))
