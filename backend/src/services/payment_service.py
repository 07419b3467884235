"""
Service for money movements on a bill.

Applies payments, adjustments, cancellations and refunds. Every operation
locks the bill row first, validates against the freshly read amounts and
only then writes, so two concurrent payments on one bill serialize and the
second sees the first's paid amount.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from auth.dependencies import CallerContext
from core.constants import (
    DEFAULT_CANCELLATION_REASON,
    DEFAULT_REFUND_REASON,
    MAX_PAYMENT_NOTE_LENGTH,
    MAX_REASON_LENGTH,
)
from core.exceptions import InvalidStateError, OverpaymentError, ValidationError
from models import Billing, BillingPayment
from models.billing import PAYMENT_METHODS, REFUND_METHODS, ZERO
from services.billing_calculations import apply_payment_status, to_money
from services.billing_service import BillingService
from services.numbering_service import NumberingService
from services.test_request_service import TestRequestService
from utils.datetime_utils import clinic_now

logger = logging.getLogger(__name__)

ADJUSTMENT_TYPES = ("increase", "decrease", "correct")


def _truncate(text: str, limit: int = MAX_PAYMENT_NOTE_LENGTH) -> str:
    return text if len(text) <= limit else text[:limit]


class PaymentService:
    """Service for payments, adjustments, cancellations and refunds."""

    @staticmethod
    def process_payment(
        db: Session,
        caller: CallerContext,
        billing_id: int,
        amount: Any,
        method: str,
        notes: Optional[str] = None,
    ) -> Billing:
        """
        Apply a payment to a bill.

        Args:
            db: Database session
            caller: Staff member receiving the money
            billing_id: Bill to pay
            amount: Positive amount received
            method: One of PAYMENT_METHODS
            notes: Optional note (max 200 characters)

        Returns:
            The updated bill

        Raises:
            ValidationError: Non-positive amount, unknown method or overlong note
            InvalidStateError: Bill is cancelled or refunded
            OverpaymentError: paid + amount would exceed the total
            ConflictError: No unique receipt number could be allocated
        """
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError("Payment amount must be greater than zero")
        if method not in PAYMENT_METHODS:
            raise ValidationError(f"Invalid payment method: {method}")
        if notes and len(notes) > MAX_PAYMENT_NOTE_LENGTH:
            raise ValidationError(f"Payment notes cannot exceed {MAX_PAYMENT_NOTE_LENGTH} characters")

        billing = BillingService.load_billing(db, caller, billing_id, lock=True)
        if billing.status in ("cancelled", "refunded"):
            raise InvalidStateError(
                f"Cannot accept payment on a {billing.status} bill",
                {"status": billing.status},
            )

        new_paid = billing.paid_amount + amount
        if new_paid > billing.total_amount:
            raise OverpaymentError(
                f"Payment of {amount} exceeds the remaining balance of {billing.remaining_amount}",
                {
                    "total_amount": str(billing.total_amount),
                    "paid_amount": str(billing.paid_amount),
                    "remaining_amount": str(billing.remaining_amount),
                },
            )

        now = clinic_now()
        receipt_number = NumberingService.generate_receipt_number(db)
        entry = BillingPayment(
            entry_type="payment",
            amount=amount,
            payment_method=method,
            payment_date=now,
            processed_by_id=caller.user_id,
            notes=notes,
            receipt_number=receipt_number,
        )
        billing.payments.append(entry)
        db.add(entry)

        billing.paid_amount = new_paid
        billing.payment_method = method
        billing.payment_date = now
        billing.updated_by_id = caller.user_id
        apply_payment_status(billing)

        if billing.payment_status == "paid":
            BillingService.log_stage(db, billing, "consultation", caller, notes="Payment completed")
        elif billing.workflow_stage != "payment":
            BillingService.log_stage(
                db, billing, "payment", caller, notes="Partial payment received", status="in_progress"
            )

        db.flush()
        TestRequestService.sync_with_billing(db, caller, billing)

        logger.info(
            f"Processed payment {receipt_number} of {amount} on billing {billing.bill_number} "
            f"({billing.payment_status})"
        )
        return billing

    @staticmethod
    def adjust_payment(
        db: Session,
        caller: CallerContext,
        billing_id: int,
        adjustment_type: str,
        amount: Optional[Any] = None,
        corrected_amount: Optional[Any] = None,
        reason: str = "",
        notes: Optional[str] = None,
    ) -> Tuple[Billing, Dict[str, Any]]:
        """
        Correct the paid amount of a bill.

        ``increase``/``decrease`` move the paid amount by ``amount``;
        ``correct`` sets it to ``corrected_amount``. An audit entry with method
        "adjustment" and the absolute difference is appended.

        Returns:
            Tuple of (updated bill, adjustment summary with original, new,
            difference, previous_status and new_status)

        Raises:
            ValidationError: Bad type/amount, missing reason, or a result
                outside [0, total]
            InvalidStateError: Bill is cancelled or refunded
        """
        if adjustment_type not in ADJUSTMENT_TYPES:
            raise ValidationError(f"Invalid adjustment type: {adjustment_type}")
        if not reason or not reason.strip():
            raise ValidationError("Adjustment reason is required")

        if adjustment_type == "correct":
            if corrected_amount is None:
                raise ValidationError("corrected_amount is required for a correction")
            target = to_money(corrected_amount)
        else:
            if amount is None:
                raise ValidationError("amount is required for an increase or decrease")
            delta = to_money(amount)
            if delta <= 0:
                raise ValidationError("Adjustment amount must be greater than zero")

        billing = BillingService.load_billing(db, caller, billing_id, lock=True)
        if billing.status in ("cancelled", "refunded"):
            raise InvalidStateError(
                f"Cannot adjust payments on a {billing.status} bill",
                {"status": billing.status},
            )

        original = billing.paid_amount
        if adjustment_type == "increase":
            new_paid = original + delta
        elif adjustment_type == "decrease":
            new_paid = original - delta
        else:
            new_paid = target

        if new_paid < 0:
            raise ValidationError("Adjusted paid amount cannot be negative")
        if new_paid > billing.total_amount:
            raise ValidationError(
                f"Adjusted paid amount {new_paid} exceeds the bill total {billing.total_amount}"
            )

        difference = new_paid - original
        if difference == 0:
            raise ValidationError("Adjustment does not change the paid amount")
        previous_status = billing.payment_status

        note = f"Adjustment: {reason.strip()}. Orig: {original}, New: {new_paid}."
        if notes:
            note = f"{note} {notes[:50]}"

        entry = BillingPayment(
            entry_type="adjustment",
            amount=abs(difference),
            payment_method="adjustment",
            payment_date=clinic_now(),
            processed_by_id=caller.user_id,
            notes=_truncate(note),
            receipt_number=NumberingService.generate_adjustment_number(db),
        )
        billing.payments.append(entry)
        db.add(entry)

        billing.paid_amount = new_paid
        billing.updated_by_id = caller.user_id
        apply_payment_status(billing)

        if billing.payment_status == "paid" and billing.workflow_stage in ("billing", "preview", "payment"):
            BillingService.log_stage(db, billing, "consultation", caller, notes="Paid after adjustment")
        elif billing.payment_status != "paid" and billing.workflow_stage in ("consultation", "completed"):
            BillingService.log_stage(
                db, billing, "payment", caller, notes="Reopened by adjustment", status="in_progress"
            )

        db.flush()
        TestRequestService.sync_with_billing(db, caller, billing)

        adjustment = {
            "original": original,
            "new": new_paid,
            "difference": difference,
            "previous_status": previous_status,
            "new_status": billing.payment_status,
            "receipt_number": entry.receipt_number,
        }
        logger.info(
            f"Adjusted billing {billing.bill_number} paid amount {original} -> {new_paid} "
            f"({adjustment_type}): {reason}"
        )
        return billing, adjustment

    @staticmethod
    def cancel_billing(
        db: Session,
        caller: CallerContext,
        billing_id: int,
        reason: Optional[str] = None,
        refund_amount: Optional[Any] = None,
    ) -> Billing:
        """
        Cancel a bill.

        Raises:
            InvalidStateError: Already cancelled or refunded
            ValidationError: refund_amount outside [0, paid_amount]
        """
        refund = to_money(refund_amount) if refund_amount is not None else ZERO
        reason = (reason or DEFAULT_CANCELLATION_REASON).strip()
        if len(reason) > MAX_REASON_LENGTH:
            raise ValidationError(f"Cancellation reason cannot exceed {MAX_REASON_LENGTH} characters")

        billing = BillingService.load_billing(db, caller, billing_id, lock=True)
        if billing.status in ("cancelled", "refunded"):
            raise InvalidStateError(f"Bill is already {billing.status}", {"status": billing.status})
        if refund < 0 or refund > billing.paid_amount:
            raise ValidationError(
                f"Refund amount must be between 0 and the paid amount {billing.paid_amount}"
            )

        billing.status = "cancelled"
        billing.payment_status = "cancelled"
        billing.cancelled_at = clinic_now()
        billing.cancelled_by_id = caller.user_id
        billing.cancellation_reason = reason
        billing.cancellation_refund_amount = refund
        billing.updated_by_id = caller.user_id
        BillingService.log_stage(db, billing, "cancelled", caller, notes=_truncate(reason, 255))

        db.flush()
        logger.info(f"Cancelled billing {billing.bill_number}: {reason}")
        return billing

    @staticmethod
    def process_refund(
        db: Session,
        caller: CallerContext,
        billing_id: int,
        refund_amount: Any,
        method: str,
        reason: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> Billing:
        """
        Refund money paid on a bill. Cancelled bills may still be refunded.

        Raises:
            InvalidStateError: Already refunded, or nothing was paid
            ValidationError: refund_amount outside (0, paid_amount] or bad method
        """
        refund = to_money(refund_amount)
        if method not in REFUND_METHODS:
            raise ValidationError(f"Invalid refund method: {method}")
        reason = (reason or DEFAULT_REFUND_REASON).strip()
        if len(reason) > MAX_REASON_LENGTH:
            raise ValidationError(f"Refund reason cannot exceed {MAX_REASON_LENGTH} characters")

        billing = BillingService.load_billing(db, caller, billing_id, lock=True)
        if billing.status == "refunded":
            raise InvalidStateError("Bill is already refunded", {"status": billing.status})
        if billing.paid_amount <= 0:
            raise InvalidStateError("Nothing has been paid on this bill")
        if refund <= 0 or refund > billing.paid_amount:
            raise ValidationError(
                f"Refund amount must be greater than 0 and at most the paid amount {billing.paid_amount}"
            )

        billing.status = "refunded"
        billing.payment_status = "refunded"
        billing.refunded_at = clinic_now()
        billing.refunded_by_id = caller.user_id
        billing.refund_amount = refund
        billing.refund_method = method
        billing.refund_reason = reason
        billing.refund_reference = reference
        billing.updated_by_id = caller.user_id
        BillingService.log_stage(db, billing, "refunded", caller, notes=_truncate(reason, 255))

        db.flush()
        logger.info(f"Refunded {refund} on billing {billing.bill_number} via {method}")
        return billing

    @staticmethod
    def payment_history(db: Session, caller: CallerContext, billing_id: int) -> list[BillingPayment]:
        billing = BillingService.load_billing(db, caller, billing_id)
        return list(billing.payments)
