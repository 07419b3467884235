"""
Domain exceptions for the billing and lab workflow core.

Every rejected operation raises one of these. They derive from ValueError so
code that only knows "the input was not acceptable" can still catch them, and
each one carries a machine-checkable ``kind`` plus the HTTP status the API
layer renders it with.
"""

from typing import Any, Dict, Optional


class ClinicWorkflowError(ValueError):
    """Base class for all business-rule failures."""

    kind = "workflow_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Structured error payload returned to API callers."""
        return {
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(ClinicWorkflowError):
    """A referenced entity is absent or has been deactivated."""

    kind = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any, reason: str = "missing"):
        if reason == "inactive":
            message = f"{entity} {entity_id} is inactive"
        else:
            message = f"{entity} {entity_id} not found"
        super().__init__(message, {"entity": entity, "id": entity_id, "reason": reason})
        self.entity = entity
        self.reason = reason


class ValidationError(ClinicWorkflowError):
    """Malformed or missing input."""

    kind = "validation_error"
    status_code = 400


class OverpaymentError(ValidationError):
    """A payment would push the paid amount past the bill total."""

    kind = "overpayment"


class InvalidStateError(ClinicWorkflowError):
    """The operation is not legal for the record's current status."""

    kind = "invalid_state"
    status_code = 409


class ExpiredError(ClinicWorkflowError):
    """A time-boxed preview invoice is past its expiry."""

    kind = "expired"
    status_code = 410


class ForbiddenError(ClinicWorkflowError):
    """Role mismatch, tenant mismatch or billing-gate rejection."""

    kind = "forbidden"
    status_code = 403


class ConflictError(ClinicWorkflowError):
    """A generated identifier kept colliding after bounded retries."""

    kind = "conflict"
    status_code = 409
