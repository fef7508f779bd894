"""Resolve payment gateway configuration from system settings and build adapters."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Mapping, Protocol

import httpx

from app.config import get_settings
from app.schemas.payment import PaymentRequest, PaymentResult, RefundRequest, RefundResult
from app.schemas.payment_settings import (
    AvailableGatewaysRead,
    GatewayStatus,
    IyzicoConfig,
    PaymentGatewayConfig,
    PaymentSettingsUpdate,
    PayTRConfig,
)
from app.services.psp_iyzico import IyzicoGateway
from app.services.psp_paytr import PayTRGateway
from app.services.settings_store import SettingsStore
from app.utils.money import to_rate

logger = logging.getLogger(__name__)

ACTIVE_GATEWAY = "payment_active_gateway"
COMMISSION_RATE = "payment_commission_rate"
IYZICO_API_KEY = "payment_iyzico_api_key"
IYZICO_SECRET_KEY = "payment_iyzico_secret_key"
IYZICO_BASE_URL = "payment_iyzico_base_url"
PAYTR_MERCHANT_ID = "payment_paytr_merchant_id"
PAYTR_MERCHANT_KEY = "payment_paytr_merchant_key"
PAYTR_MERCHANT_SALT = "payment_paytr_merchant_salt"
PAYTR_BASE_URL = "payment_paytr_base_url"

GATEWAYS = ("iyzico", "paytr")

# PaymentSettingsUpdate field -> system_settings key
_UPDATE_KEYS = {
    "gateway": ACTIVE_GATEWAY,
    "commission_rate": COMMISSION_RATE,
    "iyzico_api_key": IYZICO_API_KEY,
    "iyzico_secret_key": IYZICO_SECRET_KEY,
    "iyzico_base_url": IYZICO_BASE_URL,
    "paytr_merchant_id": PAYTR_MERCHANT_ID,
    "paytr_merchant_key": PAYTR_MERCHANT_KEY,
    "paytr_merchant_salt": PAYTR_MERCHANT_SALT,
    "paytr_base_url": PAYTR_BASE_URL,
}


class PaymentGatewayNotConfigured(RuntimeError):
    """No usable provider credentials are stored."""


class InvalidPaymentSettings(ValueError):
    """A settings update or stored setting is out of bounds."""


class PaymentGateway(Protocol):
    """Contract shared by the provider adapters."""

    name: str

    def create_payment(self, request: PaymentRequest) -> PaymentResult:
        ...

    def complete_payment(self, provider_payment_id: str) -> PaymentResult:
        ...

    def verify_callback(self, params: Mapping[str, Any]) -> PaymentResult:
        ...

    def refund(self, request: RefundRequest) -> RefundResult:
        ...


def _commission_rate(raw: str | None) -> Decimal:
    if raw is None:
        return get_settings().PAYMENT_DEFAULT_COMMISSION_RATE
    try:
        return to_rate(raw)
    except ValueError as exc:
        raise InvalidPaymentSettings(f"Stored {COMMISSION_RATE} is invalid: {exc}") from exc


def get_config(store: SettingsStore) -> PaymentGatewayConfig:
    """Read the payment settings as they are right now."""

    active = store.get(ACTIVE_GATEWAY) or "iyzico"
    if active not in GATEWAYS:
        logger.warning("Unknown active gateway in settings", extra={"gateway": active})
        active = "iyzico"

    # A provider counts as configured only with its full credential set.
    iyzico = None
    api_key = store.get(IYZICO_API_KEY)
    secret_key = store.get(IYZICO_SECRET_KEY)
    if api_key and secret_key:
        iyzico = IyzicoConfig(
            api_key=api_key,
            secret_key=secret_key,
            base_url=store.get(IYZICO_BASE_URL) or "https://sandbox-api.iyzipay.com",
        )

    paytr = None
    merchant_id = store.get(PAYTR_MERCHANT_ID)
    merchant_key = store.get(PAYTR_MERCHANT_KEY)
    merchant_salt = store.get(PAYTR_MERCHANT_SALT)
    if merchant_id and merchant_key and merchant_salt:
        paytr = PayTRConfig(
            merchant_id=merchant_id,
            merchant_key=merchant_key,
            merchant_salt=merchant_salt,
            base_url=store.get(PAYTR_BASE_URL) or "https://www.paytr.com",
        )

    return PaymentGatewayConfig(
        gateway=active,
        commission_rate=_commission_rate(store.get(COMMISSION_RATE)),
        currency="TRY",
        iyzico=iyzico,
        paytr=paytr,
    )


def build_gateway(
    config: PaymentGatewayConfig,
    name: str,
    *,
    timeout: float | None = None,
    transport: httpx.BaseTransport | None = None,
) -> PaymentGateway:
    """Instantiate the adapter ``name`` from an already-resolved config."""

    if timeout is None:
        timeout = get_settings().PAYMENT_GATEWAY_TIMEOUT_SECONDS
    if name == "paytr" and config.paytr is not None:
        return PayTRGateway(config.paytr, timeout=timeout, transport=transport)
    if name == "iyzico" and config.iyzico is not None:
        return IyzicoGateway(config.iyzico, timeout=timeout, transport=transport)
    raise PaymentGatewayNotConfigured(f"Payment gateway '{name}' is not configured.")


def create_gateway(
    store: SettingsStore,
    *,
    gateway: str | None = None,
    timeout: float | None = None,
    transport: httpx.BaseTransport | None = None,
) -> PaymentGateway:
    """Return the adapter for ``gateway`` or, when omitted, the active one.

    Without an explicit choice the active gateway wins when it has
    credentials, otherwise whichever provider is configured is used.
    """

    config = get_config(store)
    if gateway is not None:
        return build_gateway(config, gateway, timeout=timeout, transport=transport)

    candidates = [config.gateway] + [name for name in GATEWAYS if name != config.gateway]
    for name in candidates:
        if config.configured(name):
            if name != config.gateway:
                logger.warning(
                    "Active gateway is not configured; falling back",
                    extra={"active_gateway": config.gateway, "gateway": name},
                )
            return build_gateway(config, name, timeout=timeout, transport=transport)

    raise PaymentGatewayNotConfigured(
        "No payment gateway is configured. Set iyzico or PayTR credentials in the admin panel."
    )


def update_settings(
    store: SettingsStore, update: PaymentSettingsUpdate | Mapping[str, Any], *, actor_id: int | None = None
) -> list[str]:
    """Persist the provided settings and return the keys written.

    ``None`` leaves a setting untouched and an empty string clears it, which
    disables a provider once any of its credentials is cleared. Everything is
    validated before the first write.
    """

    values = update.model_dump(exclude_none=True) if isinstance(update, PaymentSettingsUpdate) else dict(update)

    pending: dict[str, str] = {}
    for field, raw in values.items():
        key = _UPDATE_KEYS.get(field)
        if key is None:
            raise InvalidPaymentSettings(f"Unknown payment setting: {field}")
        if raw is None:
            continue
        if str(raw) == "":
            pending[key] = ""
            continue
        if field == "commission_rate":
            try:
                pending[key] = str(to_rate(raw))
            except ValueError as exc:
                raise InvalidPaymentSettings(str(exc)) from exc
        elif field == "gateway":
            if raw not in GATEWAYS:
                raise InvalidPaymentSettings(f"Unknown gateway: {raw}")
            pending[key] = str(raw)
        elif field.endswith("base_url"):
            pending[key] = str(raw).rstrip("/")
        else:
            pending[key] = str(raw)

    for key, value in pending.items():
        store.set(key, value, actor_id=actor_id)

    logger.info("Payment settings updated", extra={"keys": sorted(pending), "actor_id": actor_id})
    return sorted(pending)


def get_available_gateways(store: SettingsStore) -> AvailableGatewaysRead:
    """Summarise which providers are usable, without exposing credentials."""

    config = get_config(store)
    return AvailableGatewaysRead(
        active_gateway=config.gateway,
        commission_rate=config.commission_rate,
        currency=config.currency,
        gateways={
            "iyzico": GatewayStatus(
                configured=config.iyzico is not None,
                sandbox=config.iyzico.sandbox if config.iyzico else True,
            ),
            "paytr": GatewayStatus(
                configured=config.paytr is not None,
                sandbox=config.paytr.test_mode if config.paytr else False,
            ),
        },
    )


__all__ = [
    "ACTIVE_GATEWAY",
    "COMMISSION_RATE",
    "GATEWAYS",
    "InvalidPaymentSettings",
    "PaymentGateway",
    "PaymentGatewayNotConfigured",
    "build_gateway",
    "create_gateway",
    "get_available_gateways",
    "get_config",
    "update_settings",
]
