"""Journal of inbound payment provider callbacks."""
from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class PaymentCallbackEvent(Base):
    """One callback delivery from a provider and how it was handled."""

    __tablename__ = "payment_callback_events"
    __table_args__ = (
        Index("ix_payment_callback_events_received", "received_at"),
        Index("ix_payment_callback_events_reference", "provider", "reference"),
    )

    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    escrow_id: Mapped[int | None] = mapped_column(ForeignKey("escrow_transactions.id"), nullable=True)
    status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    outcome: Mapped[str] = mapped_column(String(30), nullable=False)
    raw_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
