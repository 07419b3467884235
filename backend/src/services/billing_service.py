"""
Service for the billing aggregate.

Handles bill creation (including receptionist instant bills), fee edits,
preview invoices, consultation progress, soft deletion and listing.
Money movements (payments, adjustments, cancellation, refunds) live in
PaymentService.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from auth.dependencies import CallerContext, ensure_center_access, resolve_center_scope
from core.config import DEFAULT_PREVIEW_EXPIRY_HOURS
from core.constants import (
    BILL_NUMBER_PREFIX,
    DEFAULT_PAGE_SIZE,
    INSTANT_BILL_NUMBER_PREFIX,
    MAX_BILLING_NOTES_LENGTH,
    ROLE_DOCTOR,
)
from core.exceptions import (
    ExpiredError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from models import Billing, BillingPayment, BillingServiceCharge, BillingWorkflowStage, Patient
from models.billing import (
    BILLING_KINDS,
    BILLING_STATUSES,
    CONSULTATION_STATUSES,
    INSTANT_BILLING_TYPES,
    LOCKED_STATUSES,
    PAYMENT_STATUSES,
    ZERO,
)
from services.billing_calculations import (
    ConsultationFeeInput,
    FeeInputs,
    RegistrationFeeInput,
    ServiceChargeInput,
    apply_payment_status,
    recompute_totals,
    to_money,
    validate_fee_inputs,
)
from services.directory_service import DirectoryService
from services.numbering_service import NumberingService
from services.test_request_service import TestRequestService
from utils.datetime_utils import clinic_now, end_of_day, ensure_clinic_tz, start_of_day
from utils.query_helpers import paginate

logger = logging.getLogger(__name__)


class BillingService:
    """Service for billing aggregate operations."""

    # ===== Loading and bookkeeping helpers =====

    @staticmethod
    def load_billing(
        db: Session,
        caller: CallerContext,
        billing_id: int,
        lock: bool = False,
        include_inactive: bool = False,
    ) -> Billing:
        """
        Load a bill the caller may see.

        Args:
            db: Database session
            caller: Calling staff member
            billing_id: Bill id
            lock: Take a row lock (SELECT ... FOR UPDATE) for a mutation
            include_inactive: Return soft-deleted bills too

        Raises:
            NotFoundError: Bill missing, or soft-deleted (reason "inactive")
            ForbiddenError: Bill belongs to a different center
        """
        query = db.query(Billing).filter(Billing.id == billing_id)
        if lock:
            query = query.with_for_update()
        billing = query.first()
        if not billing:
            raise NotFoundError("Billing", billing_id)
        ensure_center_access(caller, billing.center_id, "Billing")
        if not billing.is_active and not include_inactive:
            raise NotFoundError("Billing", billing_id, reason="inactive")
        return billing

    @staticmethod
    def log_stage(
        db: Session,
        billing: Billing,
        stage: str,
        caller: Optional[CallerContext],
        notes: Optional[str] = None,
        status: str = "completed",
    ) -> None:
        """Move the bill to ``stage`` and append it to the stage log."""
        billing.workflow_stage = stage
        entry = BillingWorkflowStage(
            stage=stage,
            status=status,
            timestamp=clinic_now(),
            updated_by_id=caller.user_id if caller else None,
            notes=notes,
        )
        billing.workflow_stages.append(entry)
        db.add(entry)

    @staticmethod
    def _apply_service_charges(billing: Billing, charges: List[ServiceChargeInput]) -> None:
        billing.service_charges.clear()
        for index, charge in enumerate(charges):
            billing.service_charges.append(BillingServiceCharge(
                position=index,
                service_name=charge.service_name.strip(),
                service_code=charge.service_code or f"SVC{index + 1}",
                patient_type=charge.patient_type,
                amount=charge.amount,
                quantity=charge.quantity,
                description=charge.description,
            ))

    @staticmethod
    def _apply_registration_fee(billing: Billing, fee: RegistrationFeeInput) -> None:
        billing.registration_fee_amount = fee.amount
        billing.registration_patient_type = fee.patient_type
        billing.registration_description = fee.description
        billing.registration_applicable = fee.applicable

    @staticmethod
    def _apply_consultation_fee(billing: Billing, fee: ConsultationFeeInput) -> None:
        billing.consultation_fee_amount = fee.amount
        billing.consultation_type = fee.consultation_type
        billing.consultation_patient_type = fee.patient_type
        billing.consultation_description = fee.description

    @staticmethod
    def _check_notes(notes: Optional[str]) -> None:
        if notes and len(notes) > MAX_BILLING_NOTES_LENGTH:
            raise ValidationError(f"Notes cannot exceed {MAX_BILLING_NOTES_LENGTH} characters")

    # ===== Creation =====

    @staticmethod
    def create_billing(
        db: Session,
        caller: CallerContext,
        patient_id: int,
        doctor_id: Optional[int],
        fees: FeeInputs,
        kind: str = "comprehensive_consultation",
        due_date: Optional[date] = None,
        notes: Optional[str] = None,
        billing_type: Optional[str] = None,
        bill_number_prefix: Optional[str] = None,
    ) -> Billing:
        """
        Create a bill in ``draft`` with its first workflow stage entry.

        Also assigns the doctor to the patient and marks the patient as billed
        the first time.

        Args:
            db: Database session
            caller: Calling staff member (receptionist/admin)
            patient_id: Patient to bill
            doctor_id: Consulting doctor; required for consultation bills
            fees: Normalized fee inputs
            kind: One of BILLING_KINDS
            due_date: Optional payment due date
            notes: Optional notes (max 500 characters)
            billing_type: For receptionist instant bills, what the charge is for
            bill_number_prefix: Override for the bill number prefix

        Returns:
            The new bill, flushed (has an id)

        Raises:
            NotFoundError: Patient or doctor missing/inactive
            ForbiddenError: Patient belongs to another center
            ValidationError: Invalid fees or kind
        """
        if kind not in BILLING_KINDS:
            raise ValidationError(f"Invalid billing kind: {kind}")
        BillingService._check_notes(notes)
        validate_fee_inputs(fees)

        patient = DirectoryService.require_patient(db, patient_id, lock=True)
        ensure_center_access(caller, patient.center_id, "Patient")

        if kind == "comprehensive_consultation" or doctor_id is not None:
            doctor = DirectoryService.require_user(db, doctor_id, label="Doctor", roles=(ROLE_DOCTOR,))
            if doctor.center_id is not None and doctor.center_id != patient.center_id:
                raise ValidationError("Doctor does not work at the patient's center")

        if kind == "simple_service":
            if not fees.service_charges:
                raise ValidationError("A service bill needs at least one service charge")
            if fees.registration_fee.amount > 0 or fees.consultation_fee.amount > 0:
                raise ValidationError("A service bill cannot carry registration or consultation fees")

        billing = Billing(
            kind=kind,
            center_id=patient.center_id,
            patient_id=patient.id,
            doctor_id=doctor_id,
            billing_type=billing_type,
            discount=fees.discount,
            tax=fees.tax,
            paid_amount=ZERO,
            status="draft",
            payment_status="pending",
            workflow_stage="billing",
            consultation_status="pending",
            due_date=due_date,
            notes=notes,
            created_by_id=caller.user_id,
            updated_by_id=caller.user_id,
            is_active=True,
        )
        BillingService._apply_registration_fee(billing, fees.registration_fee)
        BillingService._apply_consultation_fee(billing, fees.consultation_fee)
        BillingService._apply_service_charges(billing, fees.service_charges)
        recompute_totals(billing)

        if billing.total_amount < 0:
            raise ValidationError("Discount cannot exceed the bill subtotal plus tax")

        billing.bill_number = NumberingService.generate_bill_number(
            db, prefix=bill_number_prefix or BILL_NUMBER_PREFIX
        )

        db.add(billing)
        BillingService.log_stage(db, billing, "billing", caller, notes="Billing created")

        if doctor_id is not None:
            patient.doctor_id = doctor_id
        if not patient.has_been_billed:
            patient.has_been_billed = True
            patient.first_billing_date = clinic_now()

        db.flush()
        logger.info(
            f"Created billing {billing.bill_number} ({kind}) for patient {patient.id}, "
            f"total {billing.total_amount}"
        )
        return billing

    @staticmethod
    def create_instant_billing(
        db: Session,
        caller: CallerContext,
        patient_id: int,
        billing_type: str,
        amount: Decimal,
        payment_method: str,
        additional_charges: Optional[List[ServiceChargeInput]] = None,
        doctor_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Billing:
        """
        Create a receptionist instant bill that is paid upfront in full.

        The base amount becomes the registration fee, the consultation fee or
        a service line depending on ``billing_type``; additional charges are
        appended as service lines. A single payment for the whole total is
        then recorded.

        Raises:
            ValidationError: Unknown billing type or a zero total
        """
        # Import here to avoid circular import
        from services.payment_service import PaymentService

        if billing_type not in INSTANT_BILLING_TYPES:
            raise ValidationError(f"Invalid billing type: {billing_type}")
        amount = to_money(amount)

        fees = FeeInputs(service_charges=list(additional_charges or []))
        if billing_type == "registration":
            fees.registration_fee = RegistrationFeeInput(amount=amount, is_applicable=True)
        elif billing_type == "consultation":
            fees.consultation_fee = ConsultationFeeInput(amount=amount)
        else:
            fees.service_charges.insert(0, ServiceChargeInput(
                service_name=billing_type.capitalize(),
                amount=amount,
            ))

        billing = BillingService.create_billing(
            db,
            caller,
            patient_id=patient_id,
            doctor_id=doctor_id,
            fees=fees,
            kind="receptionist_instant",
            notes=notes,
            billing_type=billing_type,
            bill_number_prefix=INSTANT_BILL_NUMBER_PREFIX,
        )
        if billing.total_amount <= 0:
            raise ValidationError("Instant bill total must be greater than zero")

        BillingService.log_stage(db, billing, "payment", caller, notes="Instant billing", status="in_progress")
        PaymentService.process_payment(
            db,
            caller,
            billing.id,
            amount=billing.total_amount,
            method=payment_method,
            notes="Paid at reception",
        )
        return billing

    # ===== Edits =====

    @staticmethod
    def update_billing(
        db: Session,
        caller: CallerContext,
        billing_id: int,
        registration_fee: Optional[RegistrationFeeInput] = None,
        consultation_fee: Optional[ConsultationFeeInput] = None,
        service_charges: Optional[List[ServiceChargeInput]] = None,
        discount: Optional[Decimal] = None,
        tax: Optional[Decimal] = None,
        doctor_id: Optional[int] = None,
        due_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> Billing:
        """
        Edit fee inputs or metadata of a bill that is not yet settled.

        Only supplied arguments are changed. Totals are recomputed and must
        stay non-negative and at least the amount already paid. Payment status
        follows the new total, so a total lowered to the paid amount settles
        the bill.

        Raises:
            InvalidStateError: Bill is paid, cancelled or refunded
            ValidationError: Invalid fees, or the new total is below what was paid
        """
        billing = BillingService.load_billing(db, caller, billing_id, lock=True)
        if billing.status in LOCKED_STATUSES:
            raise InvalidStateError(
                f"Cannot update a {billing.status} bill",
                {"status": billing.status},
            )

        fees = FeeInputs(
            registration_fee=registration_fee or RegistrationFeeInput(),
            consultation_fee=consultation_fee or ConsultationFeeInput(),
            service_charges=service_charges or [],
            discount=discount if discount is not None else ZERO,
            tax=tax if tax is not None else ZERO,
        )
        validate_fee_inputs(fees)
        BillingService._check_notes(notes)

        if doctor_id is not None:
            DirectoryService.require_user(db, doctor_id, label="Doctor", roles=(ROLE_DOCTOR,))
            billing.doctor_id = doctor_id
        if registration_fee is not None:
            BillingService._apply_registration_fee(billing, registration_fee)
        if consultation_fee is not None:
            BillingService._apply_consultation_fee(billing, consultation_fee)
        if service_charges is not None:
            BillingService._apply_service_charges(billing, service_charges)
        if discount is not None:
            billing.discount = discount
        if tax is not None:
            billing.tax = tax
        if due_date is not None:
            billing.due_date = due_date
        if notes is not None:
            billing.notes = notes

        recompute_totals(billing)
        if billing.total_amount < 0:
            raise ValidationError("Discount cannot exceed the bill subtotal plus tax")
        if billing.total_amount < billing.paid_amount:
            raise ValidationError(
                f"New total {billing.total_amount} is less than the amount already paid {billing.paid_amount}"
            )

        previous_payment_status = billing.payment_status
        apply_payment_status(billing)
        if billing.payment_status == "paid" and previous_payment_status != "paid":
            BillingService.log_stage(db, billing, "consultation", caller, notes="Paid after fee update")

        billing.updated_by_id = caller.user_id
        db.flush()
        TestRequestService.sync_with_billing(db, caller, billing)
        logger.info(f"Updated billing {billing.bill_number}, new total {billing.total_amount}")
        return billing

    @staticmethod
    def delete_billing(db: Session, caller: CallerContext, billing_id: int) -> Billing:
        """
        Soft-delete a bill.

        Raises:
            InvalidStateError: Bill is settled or already has payments
        """
        billing = BillingService.load_billing(db, caller, billing_id, lock=True)
        if billing.status in LOCKED_STATUSES:
            raise InvalidStateError(f"Cannot delete a {billing.status} bill", {"status": billing.status})
        has_payments = db.query(BillingPayment.id).filter(BillingPayment.billing_id == billing.id).first()
        if has_payments:
            raise InvalidStateError("Cannot delete a bill that has recorded payments")

        billing.is_active = False
        billing.updated_by_id = caller.user_id
        db.flush()
        logger.info(f"Soft-deleted billing {billing.bill_number}")
        return billing

    # ===== Preview invoice =====

    @staticmethod
    def generate_preview_invoice(
        db: Session,
        caller: CallerContext,
        billing_id: int,
        expires_in_hours: int = DEFAULT_PREVIEW_EXPIRY_HOURS,
    ) -> Billing:
        """
        Promote a draft bill to a time-boxed preview.

        Raises:
            InvalidStateError: Bill is not in draft
            ValidationError: Non-positive expiry
        """
        if expires_in_hours <= 0:
            raise ValidationError("expires_in_hours must be positive")
        billing = BillingService.load_billing(db, caller, billing_id, lock=True)
        if billing.status != "draft":
            raise InvalidStateError(
                f"Preview can only be generated for a draft bill (current status: {billing.status})",
                {"status": billing.status},
            )

        now = clinic_now()
        billing.preview_generated_at = now
        billing.preview_expires_at = now + timedelta(hours=expires_in_hours)
        billing.preview_is_approved = False
        billing.status = "preview"
        billing.updated_by_id = caller.user_id
        BillingService.log_stage(db, billing, "preview", caller, notes="Preview invoice generated")
        db.flush()
        return billing

    @staticmethod
    def approve_preview_invoice(db: Session, caller: CallerContext, billing_id: int) -> Billing:
        """
        Record the patient's approval of a preview invoice.

        Expiry is checked against the wall clock here; nothing sweeps
        expired previews in the background.

        Raises:
            InvalidStateError: Bill is not in preview
            ExpiredError: The preview expired (bill is left untouched)
        """
        billing = BillingService.load_billing(db, caller, billing_id, lock=True)
        if billing.status != "preview":
            raise InvalidStateError(
                f"Only a preview invoice can be approved (current status: {billing.status})",
                {"status": billing.status},
            )

        now = clinic_now()
        expires_at = ensure_clinic_tz(billing.preview_expires_at)
        if expires_at is None or now >= expires_at:
            raise ExpiredError(
                "Preview invoice has expired",
                {"expires_at": expires_at.isoformat() if expires_at else None},
            )

        billing.preview_is_approved = True
        billing.preview_approved_at = now
        billing.preview_approved_by_id = caller.user_id
        billing.status = "generated"
        billing.updated_by_id = caller.user_id
        BillingService.log_stage(
            db, billing, "payment", caller,
            notes="Preview invoice approved by patient", status="in_progress",
        )
        db.flush()
        return billing

    @staticmethod
    def send_invoice(db: Session, caller: CallerContext, billing_id: int) -> Billing:
        """Mark a generated invoice as sent to the patient."""
        billing = BillingService.load_billing(db, caller, billing_id, lock=True)
        if billing.status != "generated":
            raise InvalidStateError(
                f"Only a generated invoice can be sent (current status: {billing.status})",
                {"status": billing.status},
            )
        billing.status = "sent"
        billing.updated_by_id = caller.user_id
        db.flush()
        return billing

    # ===== Consultation progress =====

    @staticmethod
    def update_consultation_status(
        db: Session,
        caller: CallerContext,
        billing_id: int,
        consultation_status: str,
    ) -> Billing:
        """
        Record the doctor's progress on the consultation this bill covers.

        The first non-pending status stamps viewed_at/viewed_by. Completing
        the consultation of a fully paid bill completes its workflow.
        """
        if consultation_status not in CONSULTATION_STATUSES:
            raise ValidationError(f"Invalid consultation status: {consultation_status}")
        billing = BillingService.load_billing(db, caller, billing_id, lock=True)
        if billing.status in ("cancelled", "refunded"):
            raise InvalidStateError(f"Bill is {billing.status}", {"status": billing.status})

        if consultation_status != "pending" and billing.viewed_at is None:
            billing.viewed_at = clinic_now()
            billing.viewed_by_id = caller.user_id
        billing.consultation_status = consultation_status

        if consultation_status == "completed" and billing.payment_status == "paid" \
                and billing.workflow_stage != "completed":
            BillingService.log_stage(db, billing, "completed", caller, notes="Consultation completed")

        db.flush()
        return billing

    # ===== Reads =====

    @staticmethod
    def get_billing(db: Session, caller: CallerContext, billing_id: int) -> Billing:
        return BillingService.load_billing(db, caller, billing_id)

    @staticmethod
    def list_billings(
        db: Session,
        caller: CallerContext,
        center_id: Optional[int] = None,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        kind: Optional[str] = None,
        patient_id: Optional[int] = None,
        doctor_id: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Tuple[List[Billing], int]:
        """
        List active bills visible to the caller, newest first.

        Non-superAdmin callers are always limited to their own center;
        ``center_id`` is honoured only for superAdmin.

        Returns:
            Tuple of (bills on the requested page, total matching)
        """
        if status and status not in BILLING_STATUSES:
            raise ValidationError(f"Invalid status filter: {status}")
        if payment_status and payment_status not in PAYMENT_STATUSES:
            raise ValidationError(f"Invalid payment status filter: {payment_status}")

        query = db.query(Billing).filter(Billing.is_active == True)

        scope = resolve_center_scope(caller, center_id)
        if scope is not None:
            query = query.filter(Billing.center_id == scope)
        if status:
            query = query.filter(Billing.status == status)
        if payment_status:
            query = query.filter(Billing.payment_status == payment_status)
        if kind:
            query = query.filter(Billing.kind == kind)
        if patient_id:
            query = query.filter(Billing.patient_id == patient_id)
        if doctor_id:
            query = query.filter(Billing.doctor_id == doctor_id)
        if date_from:
            query = query.filter(Billing.created_at >= start_of_day(date_from))
        if date_to:
            query = query.filter(Billing.created_at <= end_of_day(date_to))
        if search:
            pattern = f"%{search.strip()}%"
            query = query.join(Patient, Patient.id == Billing.patient_id).filter(or_(
                Billing.bill_number.ilike(pattern),
                Patient.name.ilike(pattern),
                Patient.uhid.ilike(pattern),
            ))

        query = query.order_by(Billing.created_at.desc(), Billing.id.desc())
        return paginate(query, page, page_size)

    @staticmethod
    def list_billings_for_patient(db: Session, caller: CallerContext, patient_id: int) -> List[Billing]:
        patient = DirectoryService.require_patient(db, patient_id)
        ensure_center_access(caller, patient.center_id, "Patient")
        return db.query(Billing).filter(
            Billing.patient_id == patient_id,
            Billing.is_active == True,
        ).order_by(Billing.created_at.desc(), Billing.id.desc()).all()

    @staticmethod
    def summarize(billing: Billing) -> Dict[str, Any]:
        """Derived amounts shown next to a bill."""
        return {
            "total_amount": billing.total_amount,
            "paid_amount": billing.paid_amount,
            "remaining_amount": billing.remaining_amount,
            "payment_percentage": billing.payment_percentage,
            "total_service_charges": billing.total_service_charges,
        }
