"""
Payment history entries of a bill.

Entries are append-only. A correction is a new entry with method
"adjustment", never an edit of an old one; the mapper events below reject
any UPDATE or DELETE of a flushed row.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, ForeignKey, TIMESTAMP, Numeric, Index, event
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


class PaymentHistoryImmutableError(RuntimeError):
    """Raised when code tries to modify or delete a written payment entry."""
    pass


class BillingPayment(Base):
    """One immutable payment, adjustment or instant-bill receipt."""

    __tablename__ = "billing_payments"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the entry."""

    billing_id: Mapped[int] = mapped_column(ForeignKey("billings.id", ondelete="RESTRICT"))
    """Bill the entry belongs to."""

    entry_type: Mapped[str] = mapped_column(String(20), default="payment")
    """"payment" or "adjustment"."""

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    """Always positive; the direction of an adjustment is in the note."""

    payment_method: Mapped[str] = mapped_column(String(20))
    """Payment method, or "adjustment" for corrections."""

    payment_date: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))
    """When the money was received (or the correction made)."""

    processed_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    """Staff member who recorded the entry."""

    notes: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    """Free-text note, max 200 characters."""

    receipt_number: Mapped[str] = mapped_column(String(50), unique=True)
    """Globally unique receipt number, e.g. "RCP-1710490000000-7QX2K"."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Row creation time."""

    billing = relationship("Billing", back_populates="payments")
    processed_by = relationship("User")

    __table_args__ = (
        Index("idx_billing_payments_billing", "billing_id"),
    )


@event.listens_for(BillingPayment, "before_update")
def reject_payment_update(mapper, connection, target):  # type: ignore
    raise PaymentHistoryImmutableError(
        f"Payment entry {target.receipt_number} is immutable; record an adjustment instead"
    )


@event.listens_for(BillingPayment, "before_delete")
def reject_payment_delete(mapper, connection, target):  # type: ignore
    raise PaymentHistoryImmutableError(
        f"Payment entry {target.receipt_number} cannot be deleted"
    )
