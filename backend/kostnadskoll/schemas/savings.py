from __future__ import annotations

from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, Field


class Urgency(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RecurringServiceEntry(BaseModel):
    key: str
    vendor_name: str
    category: str
    currency: str = "SEK"
    months_observed: int
    latest_month: str
    latest_amount: float
    previous_month: Optional[str] = None
    previous_amount: Optional[float] = None
    average_amount: float
    trend_percent: Optional[float] = None
    target_monthly: Optional[float] = None
    benchmark_gap: float = Field(default=0.0, ge=0.0)
    potential_saving: float = Field(default=0.0, ge=0.0)
    status: Urgency = Urgency.LOW
    question: str = ""
    recommendations: list[str] = Field(default_factory=list)
    alternatives: list[str] = Field(default_factory=list)


class VendorSummary(BaseModel):
    vendor_key: str
    vendor_name: str
    categories: list[str] = Field(default_factory=list)
    service_count: int
    latest_amount: float
    previous_amount: Optional[float] = None
    potential_saving: float = Field(default=0.0, ge=0.0)
    trend_percent: Optional[float] = None


class CategorySummary(BaseModel):
    category: str
    service_count: int
    total_latest_amount: float
    total_potential_saving: float = Field(default=0.0, ge=0.0)


class MonthlyTotal(BaseModel):
    month_key: str
    total: float


class SavingsSummary(BaseModel):
    recurring_count: int = 0
    opportunity_count: int = 0
    estimated_monthly_saving: float = 0.0
    latest_month: str = ""
    previous_month: str = ""
    latest_month_total: float = 0.0
    previous_month_total: float = 0.0
    month_delta: float = 0.0
    month_delta_percent: Optional[float] = None


class SavingsReport(BaseModel):
    summary: SavingsSummary = Field(default_factory=SavingsSummary)
    recurring: list[RecurringServiceEntry] = Field(default_factory=list)
    opportunities: list[RecurringServiceEntry] = Field(default_factory=list)
    vendors: list[VendorSummary] = Field(default_factory=list)
    monthly_totals: list[MonthlyTotal] = Field(default_factory=list)
    category_summary: list[CategorySummary] = Field(default_factory=list)
