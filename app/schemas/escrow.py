"""Escrow schemas."""
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from app.models.escrow import EscrowStatus


class EscrowRead(BaseModel):
    id: int
    project_id: int
    buyer_id: int
    seller_id: int
    amount: Decimal
    currency: str
    commission_rate: Decimal
    commission_amount: Decimal
    seller_amount: Decimal
    status: EscrowStatus
    gateway: str
    payment_id: int | None
    dispute_reason: str | None = None
    created_at: datetime
    released_at: datetime | None = None
    disputed_at: datetime | None = None
    resolved_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class EscrowDisputeCreate(BaseModel):
    reason: str = Field(min_length=3, max_length=2000)


class EscrowRefundCreate(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class EscrowResolveCreate(BaseModel):
    resolution: Literal["release", "refund"]
    reason: str | None = Field(default=None, max_length=500)


class EscrowActionResult(BaseModel):
    """Structured outcome of an escrow action; failures carry ``error_code``."""

    success: bool
    message: str
    error_code: str | None = None
    escrow: EscrowRead | None = None
    refund_id: str | None = None
