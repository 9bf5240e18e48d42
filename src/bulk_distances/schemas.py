from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class CalculateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    vehicle_type: str | None = Field(default=None, min_length=1, max_length=50)


class PaymentCaptureRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    rows: int = Field(gt=0)
    order_id: str | None = Field(default=None, max_length=100)


class PaymentFailureRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str = Field(default="Payment was cancelled or failed", max_length=300)


class ValidationSummaryResponse(BaseModel):
    state: str
    total_rows: int
    duplicate_count: int
    duplicates: list[str]
    free_rows: int
    paid_rows: int
    allowed_rows: int
    billable_rows: int
    shortfall: int
    price_due: Decimal
    shortfall_price: Decimal
    currency: str


class ResultRowResponse(BaseModel):
    from_location: str
    to_location: str
    status: str
    distance: str
    distance_km: float | None
    duration_minutes: float | None
    vehicle_type: str | None
    co2_kg: float | None
    co2_saved_kg: float | None


class CalculateResponse(BaseModel):
    state: str
    total_rows: int
    failed_rows: int
    rows: list[ResultRowResponse]
    download_url: str


class PaymentResponse(BaseModel):
    amount: Decimal
    currency: str
    rows: int
    description: str
    redirect_url: str


class LedgerResponse(BaseModel):
    state: str
    paid_rows: int
    allowed_rows: int
