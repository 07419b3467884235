"""Service-charge line items of a bill."""

from decimal import Decimal
from typing import Optional

from sqlalchemy import String, ForeignKey, Numeric, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


class BillingServiceCharge(Base):
    """
    One service line: unit amount times quantity.

    ``total_amount`` is written by recompute_totals and is never accepted
    from callers.
    """

    __tablename__ = "billing_service_charges"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the line."""

    billing_id: Mapped[int] = mapped_column(ForeignKey("billings.id", ondelete="CASCADE"), index=True)
    """Bill this line belongs to."""

    position: Mapped[int] = mapped_column(Integer, default=0)
    """0-based display order."""

    service_name: Mapped[str] = mapped_column(String(255))
    """Name of the service."""

    service_code: Mapped[str] = mapped_column(String(50))
    """Service code, defaults to SVC{n} when not supplied."""

    patient_type: Mapped[str] = mapped_column(String(5), default="OP")
    """OP or IP."""

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    """Unit amount."""

    quantity: Mapped[int] = mapped_column(Integer, default=1)
    """Number of units, at least 1."""

    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    """amount * quantity."""

    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    """Optional line description."""

    billing = relationship("Billing", back_populates="service_charges")
