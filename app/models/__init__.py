"""ORM models package."""
from .api_key import ApiKey, ApiScope
from .audit import AuditLog
from .base import Base
from .callback_event import PaymentCallbackEvent
from .escrow import ESCROW_TRANSITIONS, OPEN_ESCROW_STATUSES, EscrowStatus, EscrowTransaction
from .payment import Payment, PaymentStatus
from .project import Project
from .system_setting import SystemSetting
from .user import User

__all__ = [
    "ApiKey",
    "ApiScope",
    "AuditLog",
    "Base",
    "ESCROW_TRANSITIONS",
    "EscrowStatus",
    "EscrowTransaction",
    "OPEN_ESCROW_STATUSES",
    "Payment",
    "PaymentCallbackEvent",
    "PaymentStatus",
    "Project",
    "SystemSetting",
    "User",
]
