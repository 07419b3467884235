"""
Shared request models and helpers for the billing and lab API domains.

Fee payloads arrive either as a bare number or as an object; they are
normalized here, at the boundary, so services only ever see the structured
inputs from services.billing_calculations.
"""

import logging
from contextlib import contextmanager
from decimal import Decimal
from typing import Iterator, List, Optional, Union

from fastapi import HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.constants import DEFAULT_PATIENT_TYPE, MAX_PAGE_SIZE
from core.exceptions import ClinicWorkflowError, ConflictError
from services.billing_calculations import (
    ConsultationFeeInput,
    FeeInputs,
    RegistrationFeeInput,
    ServiceChargeInput,
    normalize_consultation_fee,
    normalize_registration_fee,
    to_money,
)

logger = logging.getLogger(__name__)


# ===== Request Models =====

class RegistrationFeeRequest(BaseModel):
    amount: Decimal = Decimal("0")
    patient_type: str = DEFAULT_PATIENT_TYPE
    description: Optional[str] = None
    is_applicable: Optional[bool] = None


class ConsultationFeeRequest(BaseModel):
    amount: Decimal = Decimal("0")
    consultation_type: str = "op_general"
    patient_type: str = DEFAULT_PATIENT_TYPE
    description: Optional[str] = None


class ServiceChargeRequest(BaseModel):
    service_name: str = Field(..., min_length=1)
    amount: Decimal
    quantity: int = 1
    service_code: Optional[str] = None
    patient_type: str = DEFAULT_PATIENT_TYPE
    description: Optional[str] = None


RegistrationFeeField = Optional[Union[RegistrationFeeRequest, Decimal]]
ConsultationFeeField = Optional[Union[ConsultationFeeRequest, Decimal]]


class PaginationParams(BaseModel):
    page: int = Field(1, ge=1)
    page_size: int = Field(20, ge=1, le=MAX_PAGE_SIZE)


# ===== Normalization =====

def registration_fee_input(raw: RegistrationFeeField) -> Optional[RegistrationFeeInput]:
    if raw is None:
        return None
    if isinstance(raw, RegistrationFeeRequest):
        return normalize_registration_fee(raw.model_dump(exclude_none=True))
    return normalize_registration_fee(raw)


def consultation_fee_input(raw: ConsultationFeeField) -> Optional[ConsultationFeeInput]:
    if raw is None:
        return None
    if isinstance(raw, ConsultationFeeRequest):
        return normalize_consultation_fee(raw.model_dump(exclude_none=True))
    return normalize_consultation_fee(raw)


def service_charge_inputs(charges: Optional[List[ServiceChargeRequest]]) -> Optional[List[ServiceChargeInput]]:
    if charges is None:
        return None
    return [
        ServiceChargeInput(
            service_name=charge.service_name.strip(),
            amount=to_money(charge.amount),
            quantity=charge.quantity,
            service_code=charge.service_code,
            patient_type=charge.patient_type,
            description=charge.description,
        )
        for charge in charges
    ]


def build_fee_inputs(
    registration_fee: RegistrationFeeField,
    consultation_fee: ConsultationFeeField,
    service_charges: Optional[List[ServiceChargeRequest]],
    discount: Optional[Decimal],
    tax: Optional[Decimal],
) -> FeeInputs:
    """Assemble FeeInputs for bill creation, defaulting anything omitted."""
    return FeeInputs(
        registration_fee=registration_fee_input(registration_fee) or RegistrationFeeInput(),
        consultation_fee=consultation_fee_input(consultation_fee) or ConsultationFeeInput(),
        service_charges=service_charge_inputs(service_charges) or [],
        discount=to_money(discount),
        tax=to_money(tax),
    )


# ===== Transactions =====

@contextmanager
def write_transaction(db: Session, action: str) -> Iterator[None]:
    """
    Commit the session after the block, or roll it back on failure.

    Domain errors and HTTP errors propagate unchanged so the app-level
    handlers render them. A unique-constraint race becomes a ConflictError;
    anything else is logged and reported as a 500.
    """
    try:
        yield
        db.commit()
    except (ClinicWorkflowError, HTTPException):
        db.rollback()
        raise
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Integrity error while trying to {action}: {e}")
        raise ConflictError(f"Conflicting update while trying to {action}, please retry")
    except Exception as e:
        db.rollback()
        logger.exception(f"Failed to {action}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to {action}",
        )
