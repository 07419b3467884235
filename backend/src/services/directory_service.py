"""
Lookups into the patient, staff and center directories.

These records are owned elsewhere; the billing and lab workflow only read
them to validate references and to scope callers to their center.
"""

from typing import Optional, Sequence

from sqlalchemy.orm import Session

from core.exceptions import NotFoundError, ValidationError
from models import Center, Patient, User


class DirectoryService:
    """Read-only access to ledger entities."""

    @staticmethod
    def find_patient_by_id(db: Session, patient_id: int) -> Optional[Patient]:
        return db.query(Patient).filter(Patient.id == patient_id).first()

    @staticmethod
    def find_user_by_id(db: Session, user_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def find_center_by_id(db: Session, center_id: int) -> Optional[Center]:
        return db.query(Center).filter(Center.id == center_id).first()

    @staticmethod
    def require_patient(db: Session, patient_id: int, lock: bool = False) -> Patient:
        """
        Load an active patient.

        Raises:
            NotFoundError: If the patient is missing (reason "missing") or
                deactivated (reason "inactive")
        """
        query = db.query(Patient).filter(Patient.id == patient_id)
        if lock:
            query = query.with_for_update()
        patient = query.first()
        if not patient:
            raise NotFoundError("Patient", patient_id)
        if not patient.is_active:
            raise NotFoundError("Patient", patient_id, reason="inactive")
        return patient

    @staticmethod
    def require_user(
        db: Session,
        user_id: Optional[int],
        label: str = "User",
        roles: Optional[Sequence[str]] = None,
    ) -> User:
        """
        Load an active staff member, optionally checking their role.

        Args:
            db: Database session
            user_id: Staff id
            label: Name used in error messages ("Doctor", "Collector", ...)
            roles: If given, the user's role must be one of these

        Raises:
            ValidationError: If no id was supplied or the role does not match
            NotFoundError: If the user is missing or deactivated
        """
        if user_id is None:
            raise ValidationError(f"{label} is required")
        user = DirectoryService.find_user_by_id(db, user_id)
        if not user:
            raise NotFoundError(label, user_id)
        if not user.is_active:
            raise NotFoundError(label, user_id, reason="inactive")
        if roles and user.role not in roles:
            raise ValidationError(f"User {user_id} is not a valid {label.lower()}")
        return user

    @staticmethod
    def require_center(db: Session, center_id: int) -> Center:
        center = DirectoryService.find_center_by_id(db, center_id)
        if not center:
            raise NotFoundError("Center", center_id)
        if not center.is_active:
            raise NotFoundError("Center", center_id, reason="inactive")
        return center

    @staticmethod
    def display_name(user: Optional[User]) -> Optional[str]:
        return user.full_name if user else None
