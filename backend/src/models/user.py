"""
User model representing clinic staff.

Staff accounts are managed elsewhere; this module only needs enough of the
record to validate references (doctor, collector, technician, reviewer),
scope callers to a center and denormalize display names.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, TIMESTAMP, Boolean, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


class User(Base):
    """
    Staff member of the clinic chain.

    ``role`` is a single role name such as "Doctor", "Receptionist" or
    "Lab Technician"; superAdmin users have no center.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the user."""

    first_name: Mapped[str] = mapped_column(String(100))
    """Given name."""

    last_name: Mapped[str] = mapped_column(String(100), default="")
    """Family name."""

    email: Mapped[str] = mapped_column(String(255), unique=True)
    """Login email, unique across the system."""

    role: Mapped[str] = mapped_column(String(50))
    """Role name, one of core.constants.ALL_ROLES."""

    center_id: Mapped[Optional[int]] = mapped_column(ForeignKey("centers.id"), nullable=True)
    """Center the user works at. None for superAdmin."""

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    """Whether the account is enabled."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the user was created."""

    center = relationship("Center")
    """Relationship to the user's Center."""

    __table_args__ = (
        Index("idx_users_center_role", "center_id", "role"),
    )

    @property
    def full_name(self) -> str:
        """First and last name joined, falling back to the email."""
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.email
