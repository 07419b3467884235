"""
Billing model: one bill for one patient encounter.

A single table covers the three kinds of bill the clinic issues (simple
service bills, comprehensive consultation bills and receptionist instant
bills). Fee components are stored as columns, service-charge lines, payment
history and the workflow stage log live in child tables.

Money columns are Numeric(10, 2) and handled as Decimal throughout.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String, Text, ForeignKey, TIMESTAMP, Boolean, Numeric, Date, Index,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


BILLING_KINDS = ("simple_service", "comprehensive_consultation", "receptionist_instant")

BILLING_STATUSES = ("draft", "preview", "generated", "sent", "paid", "partial", "cancelled", "refunded")

PAYMENT_STATUSES = ("pending", "partial", "paid", "cancelled", "refunded")

WORKFLOW_STAGES = ("billing", "preview", "payment", "consultation", "completed", "cancelled", "refunded")

CONSULTATION_STATUSES = ("pending", "viewed", "in_progress", "completed")

CONSULTATION_TYPES = ("op_general", "ip_general", "op_audio", "op_video", "op_followup")

PATIENT_TYPES = ("OP", "IP")

PAYMENT_METHODS = ("cash", "card", "upi", "netbanking", "cheque", "insurance")

REFUND_METHODS = ("cash", "card", "upi", "netbanking", "cheque")

# Receptionist instant bills record what the charge was for
INSTANT_BILLING_TYPES = ("consultation", "registration", "service", "reassignment")

# Statuses after which only cancellation/refund may touch the bill
LOCKED_STATUSES = ("paid", "cancelled", "refunded")

ZERO = Decimal("0.00")


class Billing(Base):
    """
    Billing aggregate.

    Totals are derived from the fee columns by
    services.billing_calculations.recompute_totals and must never be edited
    directly. ``paid_amount`` only moves through PaymentService.
    """

    __tablename__ = "billings"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the bill."""

    bill_number: Mapped[str] = mapped_column(String(50), unique=True)
    """Human-facing number, e.g. "BILL-20240315-0007"."""

    kind: Mapped[str] = mapped_column(String(40), default="comprehensive_consultation")
    """One of BILLING_KINDS."""

    center_id: Mapped[int] = mapped_column(ForeignKey("centers.id"))
    """Center that issued the bill."""

    patient_id: Mapped[int] = mapped_column(ForeignKey("patients.id"))
    """Patient being billed."""

    doctor_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    """Consulting doctor."""

    billing_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    """For receptionist instant bills, one of INSTANT_BILLING_TYPES."""

    # Registration fee
    registration_fee_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=ZERO)
    """Registration fee amount."""

    registration_patient_type: Mapped[str] = mapped_column(String(5), default="OP")
    """OP or IP."""

    registration_description: Mapped[str] = mapped_column(String(255), default="Registration")
    """Label printed for the registration line."""

    registration_applicable: Mapped[bool] = mapped_column(Boolean, default=False)
    """Whether the registration fee counts towards the subtotal."""

    # Consultation fee
    consultation_fee_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=ZERO)
    """Consultation fee amount."""

    consultation_type: Mapped[str] = mapped_column(String(20), default="op_general")
    """One of CONSULTATION_TYPES."""

    consultation_patient_type: Mapped[str] = mapped_column(String(5), default="OP")
    """OP or IP."""

    consultation_description: Mapped[str] = mapped_column(String(255), default="Consultation")
    """Label printed for the consultation line."""

    # Totals
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=ZERO)
    """Registration (if applicable) + consultation + all service-charge line totals."""

    discount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=ZERO)
    """Flat discount subtracted from the subtotal."""

    tax: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=ZERO)
    """Flat tax added to the subtotal."""

    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=ZERO)
    """subtotal - discount + tax."""

    paid_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=ZERO)
    """Sum of accepted payments, net of adjustments."""

    # Status
    status: Mapped[str] = mapped_column(String(20), default="draft")
    """One of BILLING_STATUSES."""

    payment_status: Mapped[str] = mapped_column(String(20), default="pending")
    """One of PAYMENT_STATUSES, derived from paid vs total."""

    payment_method: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    """Method of the most recent payment."""

    payment_date: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    """Timestamp of the most recent payment."""

    workflow_stage: Mapped[str] = mapped_column(String(20), default="billing")
    """Current coarse workflow stage, one of WORKFLOW_STAGES."""

    # Consultation progress (doctor side)
    consultation_status: Mapped[str] = mapped_column(String(20), default="pending")
    """One of CONSULTATION_STATUSES."""

    viewed_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    """When the doctor first opened the consultation."""

    viewed_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    """Doctor who opened the consultation."""

    # Preview invoice
    preview_generated_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    """When the preview invoice was generated."""

    preview_expires_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    """Preview approval deadline."""

    preview_is_approved: Mapped[bool] = mapped_column(Boolean, default=False)
    """Whether the patient approved the preview."""

    preview_approved_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    """When the preview was approved."""

    preview_approved_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    """Staff member who recorded the approval."""

    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    """Optional payment due date."""

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Free-text notes (max 500 characters)."""

    # Cancellation record
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    """When the bill was cancelled."""

    cancelled_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    """Who cancelled the bill."""

    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    """Reason given for the cancellation."""

    cancellation_refund_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=ZERO)
    """Amount promised back to the patient at cancellation."""

    # Refund record
    refunded_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    """When the refund was processed."""

    refunded_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    """Who processed the refund."""

    refund_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=ZERO)
    """Amount refunded."""

    refund_method: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    """One of REFUND_METHODS."""

    refund_reason: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    """Reason for the refund."""

    refund_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    """External reference (transaction id, cheque number)."""

    # Audit
    created_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    """Staff member who created the bill."""

    updated_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    """Staff member who last changed the bill."""

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    """Soft delete flag. Bills are never hard-deleted."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the bill was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp of the last change."""

    # Relationships
    center = relationship("Center")
    patient = relationship("Patient")
    doctor = relationship("User", foreign_keys=[doctor_id])

    service_charges = relationship(
        "BillingServiceCharge",
        back_populates="billing",
        order_by="BillingServiceCharge.position",
        cascade="all, delete-orphan",
    )
    """Service-charge line items in display order."""

    payments = relationship(
        "BillingPayment",
        back_populates="billing",
        order_by="BillingPayment.id",
    )
    """Append-only payment history."""

    workflow_stages = relationship(
        "BillingWorkflowStage",
        back_populates="billing",
        order_by="BillingWorkflowStage.id",
    )
    """Ordered stage-transition log."""

    __table_args__ = (
        Index("idx_billings_center_status", "center_id", "status"),
        Index("idx_billings_center_payment_status", "center_id", "payment_status"),
        Index("idx_billings_patient", "patient_id"),
        Index("idx_billings_doctor", "doctor_id"),
        Index("idx_billings_created_at", "created_at"),
    )

    @property
    def remaining_amount(self) -> Decimal:
        """Outstanding balance, always total - paid."""
        return (self.total_amount or ZERO) - (self.paid_amount or ZERO)

    @property
    def payment_percentage(self) -> int:
        """Share of the total already paid, rounded to a whole percent."""
        total = self.total_amount or ZERO
        if total <= 0:
            return 0
        return int(round((self.paid_amount or ZERO) / total * 100))

    @property
    def total_service_charges(self) -> Decimal:
        return sum((line.total_amount or ZERO for line in self.service_charges), ZERO)

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled_at is not None

    @property
    def is_refunded(self) -> bool:
        return self.refunded_at is not None
