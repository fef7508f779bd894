"""Schema package exports."""
from .escrow import (
    EscrowActionResult,
    EscrowDisputeCreate,
    EscrowRead,
    EscrowRefundCreate,
    EscrowResolveCreate,
)
from .payment import (
    BuyerInfo,
    CardInfo,
    CheckoutCreate,
    CheckoutResult,
    PaymentRequest,
    PaymentResult,
    RefundRequest,
    RefundResult,
)
from .payment_settings import (
    AvailableGatewaysRead,
    GatewayStatus,
    IyzicoConfig,
    PaymentGatewayConfig,
    PaymentSettingsUpdate,
    PayTRConfig,
)
from .project import ProjectCreate, ProjectRead
from .user import UserCreate, UserRead

__all__ = [
    "AvailableGatewaysRead",
    "BuyerInfo",
    "CardInfo",
    "CheckoutCreate",
    "CheckoutResult",
    "EscrowActionResult",
    "EscrowDisputeCreate",
    "EscrowRead",
    "EscrowRefundCreate",
    "EscrowResolveCreate",
    "GatewayStatus",
    "IyzicoConfig",
    "PaymentGatewayConfig",
    "PaymentRequest",
    "PaymentResult",
    "PaymentSettingsUpdate",
    "PayTRConfig",
    "ProjectCreate",
    "ProjectRead",
    "RefundRequest",
    "RefundResult",
    "UserCreate",
    "UserRead",
]
