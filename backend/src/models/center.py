"""
Center model representing a physical clinic location.

Every billing record, patient and test request belongs to exactly one center.
Non-superAdmin staff only ever see records of their own center.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, TIMESTAMP, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from core.database import Base


class Center(Base):
    """A physical clinic location (tenant)."""

    __tablename__ = "centers"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the center."""

    name: Mapped[str] = mapped_column(String(255))
    """Display name of the center."""

    center_code: Mapped[Optional[str]] = mapped_column(String(50), unique=True, nullable=True)
    """Short code used on printed documents."""

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    """Whether the center is operating."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the center was created."""
