"""Workflow stage log of a bill."""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, ForeignKey, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


class BillingWorkflowStage(Base):
    """One entry per stage change, in insertion order."""

    __tablename__ = "billing_workflow_stages"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    billing_id: Mapped[int] = mapped_column(ForeignKey("billings.id", ondelete="CASCADE"), index=True)
    """Bill the entry belongs to."""

    stage: Mapped[str] = mapped_column(String(20))
    """Stage entered, one of models.billing.WORKFLOW_STAGES."""

    status: Mapped[str] = mapped_column(String(20), default="completed")
    """pending, in_progress, completed or cancelled."""

    timestamp: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))
    """When the stage was entered."""

    updated_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    """Who caused the change."""

    notes: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    """Short description, e.g. "Preview invoice generated"."""

    billing = relationship("Billing", back_populates="workflow_stages")
