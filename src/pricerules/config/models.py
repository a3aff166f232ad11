"""Pydantic configuration models with code-baked defaults.

Sparse TOML contract: defaults baked here, pricerules.toml only contains
overrides. A fresh catalog needs no config file at all.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from pricerules.domain.timeparse import resolve_timezone
from pricerules.domain.types import GiftPolicy, Precedence


class CatalogConfig(BaseModel):
    """[catalog] section."""

    model_config = {"frozen": True}

    name: str = "default"
    db_filename: str = "catalog.db"
    # How long a writer waits for another process holding the write lock.
    busy_timeout_ms: int = Field(default=10_000, ge=0)


class TimeConfig(BaseModel):
    """[time] section.

    ``timezone`` is the zone in which date-only and local datetime input
    is read before normalizing to UTC.
    """

    model_config = {"frozen": True}

    timezone: str = "UTC"

    @field_validator("timezone")
    @classmethod
    def _known_zone(cls, value: str) -> str:
        resolve_timezone(value)
        return value


class PromotionsConfig(BaseModel):
    """[promotions] section."""

    model_config = {"frozen": True}

    precedence: Precedence = Precedence.PRODUCT_OVER_CATEGORY
    enforce_header_window: bool = True


class EvaluationConfig(BaseModel):
    """[evaluation] section."""

    model_config = {"frozen": True}

    gift_policy: GiftPolicy = GiftPolicy.CAP
    amount_places: int = Field(default=2, ge=0, le=6)


class RulesConfig(BaseModel):
    """Root configuration composing all sections."""

    model_config = {"frozen": True}

    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    time: TimeConfig = Field(default_factory=TimeConfig)
    promotions: PromotionsConfig = Field(default_factory=PromotionsConfig)
    evaluation: EvaluationConfig = Field(default_factory=EvaluationConfig)
