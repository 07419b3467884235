# pyright: reportMissingTypeStubs=false
"""
Billing API endpoints.

Bills, preview invoices, payments, adjustments, cancellation and refunds.
All state changes go through BillingService / PaymentService; endpoints only
translate requests, commit, and shape responses.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.responses import (
    AdjustmentResponse,
    AdjustmentSummary,
    BillingListResponse,
    BillingResponse,
    PaginationResponse,
    PaymentEntryResponse,
)
from api.shared import (
    ConsultationFeeField,
    RegistrationFeeField,
    ServiceChargeRequest,
    build_fee_inputs,
    consultation_fee_input,
    registration_fee_input,
    service_charge_inputs,
    write_transaction,
)
from auth.dependencies import CallerContext, get_current_caller, require_roles
from core.config import DEFAULT_PREVIEW_EXPIRY_HOURS
from core.constants import (
    ALL_ROLES,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    ROLE_ACCOUNTANT,
    ROLE_ADMIN,
    ROLE_DOCTOR,
    ROLE_RECEPTIONIST,
)
from core.database import get_db
from services import BillingService, PaymentService
from services.billing_calculations import to_money
from utils.query_helpers import pagination_meta

logger = logging.getLogger(__name__)

router = APIRouter()

BILLING_STAFF = (ROLE_RECEPTIONIST, ROLE_ADMIN)


# ===== Request Models =====

class CreateBillingRequest(BaseModel):
    """Request model for creating a bill."""
    patient_id: int
    doctor_id: Optional[int] = None
    kind: str = "comprehensive_consultation"
    registration_fee: RegistrationFeeField = None
    consultation_fee: ConsultationFeeField = None
    service_charges: Optional[List[ServiceChargeRequest]] = None
    discount: Optional[Decimal] = None
    tax: Optional[Decimal] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None


class InstantBillingRequest(BaseModel):
    """Request model for a receptionist bill created and paid in one step."""
    patient_id: int
    billing_type: str
    amount: Decimal
    payment_method: str
    additional_charges: Optional[List[ServiceChargeRequest]] = None
    doctor_id: Optional[int] = None
    notes: Optional[str] = None


class UpdateBillingRequest(BaseModel):
    registration_fee: RegistrationFeeField = None
    consultation_fee: ConsultationFeeField = None
    service_charges: Optional[List[ServiceChargeRequest]] = None
    discount: Optional[Decimal] = None
    tax: Optional[Decimal] = None
    doctor_id: Optional[int] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None


class PreviewRequest(BaseModel):
    expires_in_hours: int = Field(DEFAULT_PREVIEW_EXPIRY_HOURS, ge=1)


class PaymentRequest(BaseModel):
    amount: Decimal
    payment_method: str
    notes: Optional[str] = None


class AdjustPaymentRequest(BaseModel):
    """
    Request model for correcting a recorded payment.

    ``amount`` is used by increase/decrease; ``corrected_amount`` by correct.
    """
    adjustment_type: str
    amount: Optional[Decimal] = None
    corrected_amount: Optional[Decimal] = None
    reason: str
    notes: Optional[str] = None


class CancelBillingRequest(BaseModel):
    reason: Optional[str] = None
    refund_amount: Optional[Decimal] = None


class RefundRequest(BaseModel):
    refund_amount: Decimal
    refund_method: str
    reason: Optional[str] = None
    reference: Optional[str] = None


class ConsultationStatusRequest(BaseModel):
    consultation_status: str


# ===== Bills =====

@router.post("", response_model=BillingResponse, status_code=status.HTTP_201_CREATED)
async def create_billing(
    request: CreateBillingRequest,
    caller: CallerContext = Depends(require_roles(*BILLING_STAFF)),
    db: Session = Depends(get_db),
):
    """Create a bill for a patient and compute its totals."""
    fees = build_fee_inputs(
        request.registration_fee,
        request.consultation_fee,
        request.service_charges,
        request.discount,
        request.tax,
    )
    with write_transaction(db, "create billing"):
        billing = BillingService.create_billing(
            db,
            caller,
            patient_id=request.patient_id,
            doctor_id=request.doctor_id,
            fees=fees,
            kind=request.kind,
            due_date=request.due_date,
            notes=request.notes,
        )
    db.refresh(billing)
    return BillingResponse.model_validate(billing)


@router.post("/instant", response_model=BillingResponse, status_code=status.HTTP_201_CREATED)
async def create_instant_billing(
    request: InstantBillingRequest,
    caller: CallerContext = Depends(require_roles(*BILLING_STAFF)),
    db: Session = Depends(get_db),
):
    with write_transaction(db, "create instant billing"):
        billing = BillingService.create_instant_billing(
            db,
            caller,
            patient_id=request.patient_id,
            billing_type=request.billing_type,
            amount=to_money(request.amount),
            payment_method=request.payment_method,
            additional_charges=service_charge_inputs(request.additional_charges),
            doctor_id=request.doctor_id,
            notes=request.notes,
        )
    db.refresh(billing)
    return BillingResponse.model_validate(billing)


@router.get("", response_model=BillingListResponse)
async def list_billings(
    center_id: Optional[int] = Query(None),
    billing_status: Optional[str] = Query(None, alias="status"),
    payment_status: Optional[str] = Query(None),
    kind: Optional[str] = Query(None),
    patient_id: Optional[int] = Query(None),
    doctor_id: Optional[int] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    search: Optional[str] = Query(None, description="Bill number, patient name, UHID or phone"),
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    caller: CallerContext = Depends(require_roles(*ALL_ROLES)),
    db: Session = Depends(get_db),
):
    billings, total = BillingService.list_billings(
        db,
        caller,
        center_id=center_id,
        status=billing_status,
        payment_status=payment_status,
        kind=kind,
        patient_id=patient_id,
        doctor_id=doctor_id,
        date_from=date_from,
        date_to=date_to,
        search=search,
        page=page,
        page_size=page_size,
    )
    return BillingListResponse(
        billings=[BillingResponse.model_validate(b) for b in billings],
        pagination=PaginationResponse(**pagination_meta(page, page_size, total)),
    )


@router.get("/patients/{patient_id}", response_model=List[BillingResponse])
async def list_patient_billings(
    patient_id: int,
    caller: CallerContext = Depends(require_roles(*ALL_ROLES)),
    db: Session = Depends(get_db),
):
    billings = BillingService.list_billings_for_patient(db, caller, patient_id)
    return [BillingResponse.model_validate(b) for b in billings]


@router.get("/{billing_id}", response_model=BillingResponse)
async def get_billing(
    billing_id: int,
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    billing = BillingService.get_billing(db, caller, billing_id)
    return BillingResponse.model_validate(billing)


@router.put("/{billing_id}", response_model=BillingResponse)
async def update_billing(
    billing_id: int,
    request: UpdateBillingRequest,
    caller: CallerContext = Depends(require_roles(*BILLING_STAFF)),
    db: Session = Depends(get_db),
):
    """Change fees, lines or metadata of an unpaid bill; totals are recomputed."""
    with write_transaction(db, "update billing"):
        billing = BillingService.update_billing(
            db,
            caller,
            billing_id,
            registration_fee=registration_fee_input(request.registration_fee),
            consultation_fee=consultation_fee_input(request.consultation_fee),
            service_charges=service_charge_inputs(request.service_charges),
            discount=to_money(request.discount) if request.discount is not None else None,
            tax=to_money(request.tax) if request.tax is not None else None,
            doctor_id=request.doctor_id,
            due_date=request.due_date,
            notes=request.notes,
        )
    db.refresh(billing)
    return BillingResponse.model_validate(billing)


@router.delete("/{billing_id}", response_model=BillingResponse)
async def delete_billing(
    billing_id: int,
    caller: CallerContext = Depends(require_roles(ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    with write_transaction(db, "delete billing"):
        billing = BillingService.delete_billing(db, caller, billing_id)
    db.refresh(billing)
    return BillingResponse.model_validate(billing)


@router.patch("/{billing_id}/consultation-status", response_model=BillingResponse)
async def update_consultation_status(
    billing_id: int,
    request: ConsultationStatusRequest,
    caller: CallerContext = Depends(require_roles(ROLE_DOCTOR, ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    with write_transaction(db, "update consultation status"):
        billing = BillingService.update_consultation_status(
            db, caller, billing_id, request.consultation_status
        )
    db.refresh(billing)
    return BillingResponse.model_validate(billing)


# ===== Preview Invoice =====

@router.post("/{billing_id}/preview", response_model=BillingResponse)
async def generate_preview_invoice(
    billing_id: int,
    request: Optional[PreviewRequest] = None,
    caller: CallerContext = Depends(require_roles(*BILLING_STAFF)),
    db: Session = Depends(get_db),
):
    expires_in_hours = request.expires_in_hours if request else DEFAULT_PREVIEW_EXPIRY_HOURS
    with write_transaction(db, "generate preview invoice"):
        billing = BillingService.generate_preview_invoice(db, caller, billing_id, expires_in_hours)
    db.refresh(billing)
    return BillingResponse.model_validate(billing)


@router.post("/{billing_id}/preview/approve", response_model=BillingResponse)
async def approve_preview_invoice(
    billing_id: int,
    caller: CallerContext = Depends(require_roles(*BILLING_STAFF)),
    db: Session = Depends(get_db),
):
    with write_transaction(db, "approve preview invoice"):
        billing = BillingService.approve_preview_invoice(db, caller, billing_id)
    db.refresh(billing)
    return BillingResponse.model_validate(billing)


@router.post("/{billing_id}/send", response_model=BillingResponse)
async def send_invoice(
    billing_id: int,
    caller: CallerContext = Depends(require_roles(*BILLING_STAFF)),
    db: Session = Depends(get_db),
):
    with write_transaction(db, "send invoice"):
        billing = BillingService.send_invoice(db, caller, billing_id)
    db.refresh(billing)
    return BillingResponse.model_validate(billing)


# ===== Payments =====

@router.post("/{billing_id}/payments", response_model=BillingResponse)
async def process_payment(
    billing_id: int,
    request: PaymentRequest,
    caller: CallerContext = Depends(require_roles(*BILLING_STAFF)),
    db: Session = Depends(get_db),
):
    """Record a payment; linked test requests move to Billing_Paid once fully paid."""
    with write_transaction(db, "process payment"):
        billing = PaymentService.process_payment(
            db, caller, billing_id, request.amount, request.payment_method, request.notes
        )
    db.refresh(billing)
    return BillingResponse.model_validate(billing)


@router.get("/{billing_id}/payments", response_model=List[PaymentEntryResponse])
async def get_payment_history(
    billing_id: int,
    caller: CallerContext = Depends(require_roles(*ALL_ROLES)),
    db: Session = Depends(get_db),
):
    entries = PaymentService.payment_history(db, caller, billing_id)
    return [PaymentEntryResponse.model_validate(entry) for entry in entries]


@router.post("/{billing_id}/adjustments", response_model=AdjustmentResponse)
async def adjust_payment(
    billing_id: int,
    request: AdjustPaymentRequest,
    caller: CallerContext = Depends(require_roles(ROLE_RECEPTIONIST, ROLE_ADMIN, ROLE_ACCOUNTANT)),
    db: Session = Depends(get_db),
):
    with write_transaction(db, "adjust payment"):
        billing, adjustment = PaymentService.adjust_payment(
            db,
            caller,
            billing_id,
            adjustment_type=request.adjustment_type,
            amount=request.amount,
            corrected_amount=request.corrected_amount,
            reason=request.reason,
            notes=request.notes,
        )
    db.refresh(billing)
    return AdjustmentResponse(
        billing=BillingResponse.model_validate(billing),
        adjustment=AdjustmentSummary(**adjustment),
    )


@router.post("/{billing_id}/cancel", response_model=BillingResponse)
async def cancel_billing(
    billing_id: int,
    request: CancelBillingRequest,
    caller: CallerContext = Depends(require_roles(*BILLING_STAFF)),
    db: Session = Depends(get_db),
):
    with write_transaction(db, "cancel billing"):
        billing = PaymentService.cancel_billing(
            db, caller, billing_id, reason=request.reason, refund_amount=request.refund_amount
        )
    db.refresh(billing)
    return BillingResponse.model_validate(billing)


@router.post("/{billing_id}/refund", response_model=BillingResponse)
async def process_refund(
    billing_id: int,
    request: RefundRequest,
    caller: CallerContext = Depends(require_roles(*BILLING_STAFF)),
    db: Session = Depends(get_db),
):
    with write_transaction(db, "process refund"):
        billing = PaymentService.process_refund(
            db,
            caller,
            billing_id,
            refund_amount=request.refund_amount,
            method=request.refund_method,
            reason=request.reason,
            reference=request.reference,
        )
    db.refresh(billing)
    return BillingResponse.model_validate(billing)
