"""Payment gateway configuration schemas."""
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, HttpUrl

from app.schemas.payment import GatewayName


class IyzicoConfig(BaseModel):
    api_key: str
    secret_key: str
    base_url: str = "https://sandbox-api.iyzipay.com"

    @property
    def sandbox(self) -> bool:
        return "sandbox" in self.base_url


class PayTRConfig(BaseModel):
    merchant_id: str
    merchant_key: str
    merchant_salt: str
    base_url: str = "https://www.paytr.com"

    @property
    def test_mode(self) -> bool:
        return "test" in self.base_url


class PaymentGatewayConfig(BaseModel):
    """Snapshot of the persisted payment settings at the time of a call."""

    gateway: GatewayName = "iyzico"
    commission_rate: Decimal = Decimal("0.10")
    currency: str = "TRY"
    iyzico: IyzicoConfig | None = None
    paytr: PayTRConfig | None = None

    def configured(self, name: str) -> bool:
        return getattr(self, name, None) is not None


class PaymentSettingsUpdate(BaseModel):
    gateway: GatewayName | None = None
    commission_rate: Decimal | None = Field(default=None, ge=Decimal("0"), le=Decimal("0.30"))
    iyzico_api_key: str | None = None
    iyzico_secret_key: str | None = None
    iyzico_base_url: HttpUrl | Literal[""] | None = None
    paytr_merchant_id: str | None = None
    paytr_merchant_key: str | None = None
    paytr_merchant_salt: str | None = None
    paytr_base_url: HttpUrl | Literal[""] | None = None


class GatewayStatus(BaseModel):
    configured: bool
    sandbox: bool


class AvailableGatewaysRead(BaseModel):
    active_gateway: GatewayName
    commission_rate: Decimal
    currency: str
    gateways: dict[str, GatewayStatus]
