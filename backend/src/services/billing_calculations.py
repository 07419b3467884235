"""
Pure billing arithmetic.

Nothing here touches the database. recompute_totals mutates a Billing (and
its service-charge lines) in memory; the rest are plain functions of their
arguments.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, List, Optional, Union

from core.constants import (
    DEFAULT_CONSULTATION_DESCRIPTION,
    DEFAULT_PATIENT_TYPE,
    DEFAULT_REGISTRATION_DESCRIPTION,
)
from core.exceptions import ValidationError
from models.billing import CONSULTATION_TYPES, PATIENT_TYPES, ZERO

CENT = Decimal("0.01")

Number = Union[int, float, str, Decimal]


def to_money(value: Optional[Number]) -> Decimal:
    """
    Convert a user-supplied amount to a 2-place Decimal.

    Raises:
        ValidationError: If the value is not numeric
    """
    if value is None:
        return ZERO
    try:
        amount = Decimal(str(value))
    except (ArithmeticError, ValueError):
        raise ValidationError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class RegistrationFeeInput:
    amount: Decimal = ZERO
    patient_type: str = DEFAULT_PATIENT_TYPE
    description: str = DEFAULT_REGISTRATION_DESCRIPTION
    is_applicable: Optional[bool] = None

    @property
    def applicable(self) -> bool:
        """Explicit flag if given, otherwise applicable whenever there is an amount."""
        if self.is_applicable is None:
            return self.amount > 0
        return self.is_applicable


@dataclass
class ConsultationFeeInput:
    amount: Decimal = ZERO
    consultation_type: str = "op_general"
    patient_type: str = DEFAULT_PATIENT_TYPE
    description: str = DEFAULT_CONSULTATION_DESCRIPTION


@dataclass
class ServiceChargeInput:
    service_name: str
    amount: Decimal
    quantity: int = 1
    service_code: Optional[str] = None
    patient_type: str = DEFAULT_PATIENT_TYPE
    description: Optional[str] = None


@dataclass
class FeeInputs:
    """Everything that determines a bill's totals."""

    registration_fee: RegistrationFeeInput = field(default_factory=RegistrationFeeInput)
    consultation_fee: ConsultationFeeInput = field(default_factory=ConsultationFeeInput)
    service_charges: List[ServiceChargeInput] = field(default_factory=list)
    discount: Decimal = ZERO
    tax: Decimal = ZERO


def normalize_registration_fee(raw: Any) -> RegistrationFeeInput:
    """
    Accept a bare number or a mapping and return a RegistrationFeeInput.

    Mappings may use either camelCase (amount, patientType, isApplicable)
    or snake_case keys.
    """
    if raw is None:
        return RegistrationFeeInput()
    if isinstance(raw, RegistrationFeeInput):
        return raw
    if isinstance(raw, dict):
        fee = RegistrationFeeInput(
            amount=to_money(raw.get("amount", 0)),
            patient_type=raw.get("patient_type") or raw.get("patientType") or DEFAULT_PATIENT_TYPE,
            description=raw.get("description") or DEFAULT_REGISTRATION_DESCRIPTION,
            is_applicable=raw.get("is_applicable", raw.get("isApplicable")),
        )
    else:
        fee = RegistrationFeeInput(amount=to_money(raw))
    _check_patient_type(fee.patient_type)
    return fee


def normalize_consultation_fee(raw: Any) -> ConsultationFeeInput:
    """Accept a bare number or a mapping and return a ConsultationFeeInput."""
    if raw is None:
        return ConsultationFeeInput()
    if isinstance(raw, ConsultationFeeInput):
        return raw
    if isinstance(raw, dict):
        fee = ConsultationFeeInput(
            amount=to_money(raw.get("amount", 0)),
            consultation_type=raw.get("consultation_type") or raw.get("consultationType") or "op_general",
            patient_type=raw.get("patient_type") or raw.get("patientType") or DEFAULT_PATIENT_TYPE,
            description=raw.get("description") or DEFAULT_CONSULTATION_DESCRIPTION,
        )
    else:
        fee = ConsultationFeeInput(amount=to_money(raw))
    _check_patient_type(fee.patient_type)
    if fee.consultation_type not in CONSULTATION_TYPES:
        raise ValidationError(f"Invalid consultation type: {fee.consultation_type}")
    return fee


def _check_patient_type(patient_type: str) -> None:
    if patient_type not in PATIENT_TYPES:
        raise ValidationError(f"Invalid patient type: {patient_type}")


def validate_fee_inputs(fees: FeeInputs) -> None:
    """
    Reject negative amounts and bad quantities before anything is written.

    Raises:
        ValidationError: On the first invalid component
    """
    if fees.registration_fee.amount < 0:
        raise ValidationError("Registration fee cannot be negative")
    if fees.consultation_fee.amount < 0:
        raise ValidationError("Consultation fee cannot be negative")
    if fees.discount < 0:
        raise ValidationError("Discount cannot be negative")
    if fees.tax < 0:
        raise ValidationError("Tax cannot be negative")
    for index, charge in enumerate(fees.service_charges):
        if not charge.service_name or not charge.service_name.strip():
            raise ValidationError(f"Service charge {index + 1}: service name is required")
        if charge.amount < 0:
            raise ValidationError(f"Service charge {index + 1}: amount cannot be negative")
        if charge.quantity < 1:
            raise ValidationError(f"Service charge {index + 1}: quantity must be at least 1")
        _check_patient_type(charge.patient_type)


def line_total(amount: Decimal, quantity: int) -> Decimal:
    return (amount * quantity).quantize(CENT)


def recompute_totals(billing: Any) -> None:
    """
    Recompute subtotal, total and every service line total from fee columns.

    Deterministic and idempotent: it reads only stored fee fields and writes
    only derived ones, so calling it twice yields the same result.
    """
    charges_total = ZERO
    for line in billing.service_charges:
        line.total_amount = line_total(line.amount or ZERO, line.quantity or 1)
        charges_total += line.total_amount

    registration = (billing.registration_fee_amount or ZERO) if billing.registration_applicable else ZERO
    consultation = billing.consultation_fee_amount or ZERO

    billing.subtotal = (registration + consultation + charges_total).quantize(CENT)
    billing.total_amount = (billing.subtotal - (billing.discount or ZERO) + (billing.tax or ZERO)).quantize(CENT)


def classify_payment_status(paid_amount: Decimal, total_amount: Decimal) -> str:
    """
    Payment status as a pure function of paid vs total.

    Cancelled/refunded overrides are applied by the caller, never here.
    """
    if paid_amount <= 0:
        return "pending"
    if paid_amount < total_amount:
        return "partial"
    return "paid"


def apply_payment_status(billing: Any) -> None:
    """
    Set payment status and bill status from paid vs total.

    Only for bills that are not cancelled or refunded. A bill whose payments
    were all adjusted away falls back to ``generated``.
    """
    payment_status = classify_payment_status(billing.paid_amount, billing.total_amount)
    billing.payment_status = payment_status
    if payment_status in ("paid", "partial"):
        billing.status = payment_status
    elif billing.status in ("paid", "partial"):
        billing.status = "generated"
