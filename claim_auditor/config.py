"""
Application settings with environment variable support.

Configuration is loaded from environment variables with an optional .env
file. Rule constants live in their own model so they can be overridden per
deployment (CLAIM_AUDITOR_RULES__DRIP_EDGE_TOLERANCE=0.05) or per call in
tests, instead of being inlined as magic numbers in the rule engine.
"""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RuleConfig(BaseModel):
    """Tunable constants for the business rule engine.

    The tolerances and the ice & water safety margin are empirical, not
    normative; only the 24" inside-the-wall-line distance comes from
    IRC R905.1.2.
    """

    # Ridge cap (LF)
    ridge_cap_tolerance_lf: float = Field(default=5.0, ge=0.0)
    ridge_cap_excess_lf: float = Field(default=20.0, ge=0.0)
    ridge_cap_unit_rate: Decimal = Decimal("42.90")

    # Starter strip
    starter_strip_unit_rate: Decimal = Decimal("2.25")

    # Drip edge / gutter apron (relative tolerance against eaves + rakes and
    # against each edge on its own; one rate prices both profiles)
    drip_edge_tolerance: float = Field(default=0.10, ge=0.0, lt=1.0)
    drip_edge_unit_rate: Decimal = Decimal("2.85")

    # Ice & water barrier (inches unless noted)
    ice_water_inside_wall_in: float = Field(default=24.0, ge=0.0)
    # 0.0 keeps the 60.4" reference width; 0.05 adds the 5% field margin
    ice_water_safety_margin: float = Field(default=0.0, ge=0.0)
    ice_water_tolerance_sf: float = Field(default=0.0, ge=0.0)
    default_soffit_depth_in: float = Field(default=24.0, ge=0.0)
    default_wall_thickness_in: float = Field(default=6.0, ge=0.0)
    ice_water_unit_rate: Decimal = Decimal("1.85")


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CLAIM_AUDITOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        populate_by_name=True,
    )

    # OpenAI settings
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    extraction_model: str = "gpt-4o-mini"
    request_timeout_s: float = Field(default=120.0, gt=0.0)

    # Pricing (USD per million tokens) for cost tracking
    input_cost_per_mtok: float = Field(default=0.15, ge=0.0)
    output_cost_per_mtok: float = Field(default=0.60, ge=0.0)

    # Prompt budgets: later content is traded away for cost and latency
    max_document_chars: int = Field(default=12_000, ge=1)
    classification_chars: int = Field(default=3_000, ge=1)
    priority_chars: int = Field(default=2_000, ge=1)
    priority_pages: int = Field(default=2, ge=1, le=2)

    rules: RuleConfig = Field(default_factory=RuleConfig)

    def is_llm_configured(self) -> bool:
        return bool(self.openai_api_key)


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance for the process."""
    return Settings()
