"""
Patient model.

Patients are registered outside the billing core. Billing reads them to
validate references and writes back the assigned doctor and first-billing
markers when a bill is created.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, TIMESTAMP, Boolean, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


class Patient(Base):
    """A patient registered at one center."""

    __tablename__ = "patients"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the patient."""

    center_id: Mapped[int] = mapped_column(ForeignKey("centers.id"))
    """Center the patient is registered at."""

    name: Mapped[str] = mapped_column(String(255))
    """Full name of the patient."""

    uhid: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    """Unique health identifier printed on bills and reports."""

    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    """Contact number."""

    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    """Contact email, used when reports are sent by email."""

    doctor_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    """Doctor currently assigned to the patient (updated by billing)."""

    has_been_billed: Mapped[bool] = mapped_column(Boolean, default=False)
    """Whether any bill has ever been created for this patient."""

    first_billing_date: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    """When the first bill was created."""

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    """Soft delete flag."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the patient was registered."""

    center = relationship("Center")
    """Relationship to the Center."""

    doctor = relationship("User", foreign_keys=[doctor_id])
    """Relationship to the assigned doctor."""

    __table_args__ = (
        Index("idx_patients_center_name", "center_id", "name"),
        Index("idx_patients_uhid", "uhid"),
    )
