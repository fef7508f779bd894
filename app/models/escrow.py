"""Escrow transaction model."""
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class EscrowStatus(str, PyEnum):
    """Status of an escrow transaction."""

    PENDING = "pending"
    HELD = "held"
    RELEASED = "released"
    DISPUTED = "disputed"
    REFUNDED = "refunded"
    FAILED = "failed"


ESCROW_TRANSITIONS: dict[EscrowStatus, frozenset[EscrowStatus]] = {
    EscrowStatus.PENDING: frozenset({EscrowStatus.HELD, EscrowStatus.FAILED}),
    EscrowStatus.HELD: frozenset({EscrowStatus.RELEASED, EscrowStatus.DISPUTED, EscrowStatus.REFUNDED}),
    EscrowStatus.DISPUTED: frozenset({EscrowStatus.REFUNDED, EscrowStatus.RELEASED}),
    EscrowStatus.RELEASED: frozenset(),
    EscrowStatus.REFUNDED: frozenset(),
    EscrowStatus.FAILED: frozenset(),
}

OPEN_ESCROW_STATUSES = frozenset({EscrowStatus.PENDING, EscrowStatus.HELD, EscrowStatus.DISPUTED})

# Enum columns store member names.
_OPEN_ESCROW_WHERE = text("status IN ('PENDING', 'HELD', 'DISPUTED')")


class EscrowTransaction(Base):
    """Funds for one project purchase, held by the platform until release or refund."""

    __tablename__ = "escrow_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_escrow_amount_positive"),
        CheckConstraint("commission_amount >= 0", name="ck_escrow_commission_non_negative"),
        CheckConstraint(
            "commission_rate >= 0 AND commission_rate <= 0.30",
            name="ck_escrow_commission_rate_range",
        ),
        Index("ix_escrow_transactions_status", "status"),
        Index(
            "uq_escrow_transactions_open_purchase",
            "project_id",
            "buyer_id",
            unique=True,
            sqlite_where=_OPEN_ESCROW_WHERE,
            postgresql_where=_OPEN_ESCROW_WHERE,
        ),
    )

    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id"), nullable=False, index=True)
    buyer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    seller_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    commission_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    seller_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    status: Mapped[EscrowStatus] = mapped_column(
        SqlEnum(EscrowStatus), default=EscrowStatus.PENDING, nullable=False
    )
    gateway: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_id: Mapped[int | None] = mapped_column(ForeignKey("payments.id"), nullable=True)
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    disputed_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    released_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    disputed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    payment = relationship("Payment")
    project = relationship("Project")

    def can_transition_to(self, target: EscrowStatus) -> bool:
        return target in ESCROW_TRANSITIONS[self.status]
