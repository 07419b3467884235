"""
Billing gate for lab operations.

Lab staff may only work on a test request once its bill has money on it.
The gate inspects the request's status and linked bill; neither the bill nor
the request knows anything about it.
"""

import logging

from sqlalchemy.orm import Session

from auth.dependencies import CallerContext
from core.constants import BILLING_GATE_BYPASS_ROLES
from core.exceptions import ForbiddenError
from models import Billing, TestRequest
from services.test_request_workflow import LAB_STATUSES

logger = logging.getLogger(__name__)

# Statuses from which lab work may proceed. Billing_Generated additionally
# needs a payment on the linked bill.
GATE_ALLOWED_STATUSES = frozenset({
    "Billing_Paid",
    "Billing_Generated",
    "Superadmin_Approved",
    "Assigned",
    "Completed",
}) | LAB_STATUSES


class BillingGate:
    """Guards lab-stage transitions on test requests."""

    @staticmethod
    def check_billing_completed(db: Session, test_request: TestRequest) -> None:
        """
        Reject lab work on a request whose billing is not settled enough.

        A Billing_Generated request passes once its bill has any payment;
        full payment is not required there. A Billing_Paid request needs its
        bill fully paid, and a cancelled or refunded bill blocks lab work in
        every status.

        Raises:
            ForbiddenError: Status outside the allow-list, a linked bill that
                is cancelled or refunded, or a bill without enough payment
        """
        status = test_request.status
        if status not in GATE_ALLOWED_STATUSES:
            logger.warning(f"Billing gate blocked test request {test_request.id} in status {status}")
            raise ForbiddenError(
                "Billing must be completed before lab operations can be performed",
                {"current_status": status, "required_status": "Billing_Paid or Billing_Generated (with payment)"},
            )

        if status == "Billing_Generated" and not test_request.billing_id:
            raise ForbiddenError(
                "No billing record found for this test request",
                {"current_status": status},
            )
        if not test_request.billing_id:
            return

        billing = db.query(Billing).filter(Billing.id == test_request.billing_id).first()
        if status == "Billing_Generated" and (not billing or not billing.is_active):
            raise ForbiddenError(
                "Billing record not found",
                {"current_status": status, "billing_id": test_request.billing_id},
            )
        if billing is None:
            return

        if billing.status in ("cancelled", "refunded"):
            logger.warning(f"Billing gate blocked test request {test_request.id}: {billing.bill_number} is {billing.status}")
            raise ForbiddenError(
                f"Linked bill is {billing.status}",
                {"current_status": status, "billing_status": billing.status},
            )
        if status == "Billing_Paid" and billing.payment_status != "paid":
            logger.warning(f"Billing gate blocked test request {test_request.id}: {billing.bill_number} not fully paid")
            raise ForbiddenError(
                "Bill must be fully paid before lab operations can be performed",
                {
                    "current_status": status,
                    "payment_status": billing.payment_status,
                    "remaining_amount": str(billing.remaining_amount),
                },
            )
        if status == "Billing_Generated" and (billing.payment_status == "pending" or billing.paid_amount <= 0):
            logger.warning(f"Billing gate blocked test request {test_request.id}: no payment on {billing.bill_number}")
            raise ForbiddenError(
                "Payment must be made before lab operations can be performed",
                {
                    "current_status": status,
                    "payment_status": billing.payment_status,
                    "paid_amount": str(billing.paid_amount),
                },
            )

    @staticmethod
    def check_billing_completed_or_admin(
        db: Session,
        caller: CallerContext,
        test_request: TestRequest,
    ) -> None:
        """Same as check_billing_completed, but superAdmin, Admin and Super Consultant pass."""
        if caller.role in BILLING_GATE_BYPASS_ROLES:
            return
        BillingGate.check_billing_completed(db, test_request)
