from __future__ import annotations

from enum import StrEnum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from kostnadskoll.services.text_tools import to_number


class MarketProvider(StrEnum):
    SERPAPI = "serpapi"
    FALLBACK = "fallback"
    MIXED = "mixed"
    NOT_APPLICABLE = "not_applicable"


class MarketItemIn(BaseModel):
    """One service to compare. Loose on purpose: bad rows are dropped, not rejected."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    key: Optional[str] = None
    vendor_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("vendor_name", "vendorName"))
    category: Optional[str] = None
    current_price: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("current_price", "currentPrice")
    )
    currency: Optional[str] = None

    @field_validator("key", "vendor_name", "category", "currency", mode="before")
    @classmethod
    def _loose_text(cls, value):
        if value is None or isinstance(value, (dict, list)):
            return None
        return str(value)

    @field_validator("current_price", mode="before")
    @classmethod
    def _loose_price(cls, value):
        return to_number(value)


class MarketCompareRequest(BaseModel):
    items: list[MarketItemIn] = Field(default_factory=list)


class MarketComparison(BaseModel):
    key: str
    vendor_name: str
    category: str
    currency: str = "SEK"
    current_price: float
    market_low: float
    market_median: float
    market_high: float
    sample_size: int = 0
    source: str
    provider: MarketProvider
    possible_saving: float = Field(default=0.0, ge=0.0)
    saving_percent: float = 0.0
    recommendation: str
    alternative_hints: list[str] = Field(default_factory=list)
    note: str = ""


class MarketCompareResult(BaseModel):
    provider: MarketProvider
    warning: str = ""
    items: list[MarketComparison] = Field(default_factory=list)
