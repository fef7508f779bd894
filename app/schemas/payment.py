"""Request/result contract shared by the payment gateway adapters."""
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, EmailStr, Field, HttpUrl, field_validator

from app.utils.money import to_decimal

GatewayName = Literal["iyzico", "paytr"]


class BuyerInfo(BaseModel):
    name: str = Field(min_length=1)
    surname: str = ""
    email: EmailStr
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    country: str | None = None
    ip: str | None = None


class CardInfo(BaseModel):
    card_holder_name: str
    card_number: str = Field(min_length=12, max_length=19, pattern=r"^\d+$")
    expire_month: str = Field(pattern=r"^(0[1-9]|1[0-2])$")
    expire_year: str = Field(pattern=r"^\d{4}$")
    cvc: str = Field(pattern=r"^\d{3,4}$")

    def __repr__(self) -> str:
        return f"CardInfo(card_number='***{self.card_number[-4:]}')"

    __str__ = __repr__


class PaymentRequest(BaseModel):
    """What the platform asks a provider to charge."""

    amount: Decimal = Field(gt=Decimal("0"))
    currency: Literal["TRY"] = "TRY"
    buyer_id: int
    seller_id: int
    project_id: int | None = None
    description: str
    buyer_info: BuyerInfo
    card_info: CardInfo | None = None
    callback_url: str

    @field_validator("amount")
    @classmethod
    def _quantize_amount(cls, value: Decimal) -> Decimal:
        return to_decimal(value)


class PaymentResult(BaseModel):
    """Uniform outcome of a provider call. Callers check ``success``; nothing is raised."""

    success: bool
    payment_id: str | None = None
    conversation_id: str | None = None
    status: str | None = None
    message: str | None = None
    redirect_url: str | None = None
    three_ds_html_content: str | None = None
    error_code: str | None = None
    error_message: str | None = None

    @classmethod
    def failure(cls, code: str, message: str, **extra) -> "PaymentResult":
        return cls(success=False, error_code=code, error_message=message, **extra)


class RefundRequest(BaseModel):
    payment_id: str
    amount: Decimal = Field(gt=Decimal("0"))
    reason: str | None = None


class RefundResult(BaseModel):
    success: bool
    refund_id: str | None = None
    message: str | None = None
    error_code: str | None = None
    error_message: str | None = None

    @classmethod
    def failure(cls, code: str, message: str) -> "RefundResult":
        return cls(success=False, error_code=code, error_message=message)


class CheckoutCreate(BaseModel):
    project_id: int = Field(gt=0)
    callback_url: HttpUrl
    card: CardInfo | None = None


class CheckoutResult(PaymentResult):
    escrow_id: int | None = None
