"""
Service for generating document numbers.

Bill numbers are sequential per day, drawn from a row-locked counter.
Receipt numbers are timestamp + random suffix and are checked against
existing entries before use. Both retry a bounded number of times before
giving up with ConflictError.
"""

import logging
import secrets
import string
from typing import Callable, Optional

from sqlalchemy.orm import Session

from core.config import RECEIPT_NUMBER_MAX_ATTEMPTS
from core.constants import (
    ADJUSTMENT_RECEIPT_PREFIX,
    BILL_NUMBER_PREFIX,
    BILL_SEQUENCE_WIDTH,
    RECEIPT_NUMBER_PREFIX,
    RECEIPT_SUFFIX_LENGTH,
)
from core.exceptions import ConflictError
from models import Billing, BillingPayment, Counter
from utils.datetime_utils import clinic_now, compact_date, epoch_millis

logger = logging.getLogger(__name__)

_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def random_suffix(length: int = RECEIPT_SUFFIX_LENGTH) -> str:
    """Uppercase alphanumeric suffix for receipt numbers."""
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))


class NumberingService:
    """Service for bill and receipt numbers."""

    @staticmethod
    def next_counter_value(db: Session, name: str) -> int:
        """
        Increment and return a named counter.

        The counter row is locked for the rest of the transaction, so
        concurrent callers receive distinct values.

        Args:
            db: Database session
            name: Counter key

        Returns:
            The new counter value (1 for a fresh counter)
        """
        counter = db.query(Counter).filter(Counter.name == name).with_for_update().first()
        if not counter:
            counter = Counter(name=name, value=0)
            db.add(counter)
        counter.value += 1
        db.flush()
        return counter.value

    @staticmethod
    def generate_bill_number(db: Session, prefix: str = BILL_NUMBER_PREFIX) -> str:
        """
        Generate the next bill number for today.

        Format: {prefix}-{YYYYMMDD}-{NNNN}, e.g. "BILL-20240315-0007".

        Raises:
            ConflictError: If every attempt collided with an existing bill
        """
        day = compact_date(clinic_now().date())
        counter_name = f"{prefix.lower()}:{day}"

        for _ in range(RECEIPT_NUMBER_MAX_ATTEMPTS):
            sequence = NumberingService.next_counter_value(db, counter_name)
            bill_number = f"{prefix}-{day}-{sequence:0{BILL_SEQUENCE_WIDTH}d}"
            exists = db.query(Billing.id).filter(Billing.bill_number == bill_number).first()
            if not exists:
                return bill_number
            logger.warning(f"Bill number {bill_number} already taken, retrying")

        raise ConflictError(
            "Could not allocate a unique bill number",
            {"attempts": RECEIPT_NUMBER_MAX_ATTEMPTS},
        )

    @staticmethod
    def generate_receipt_number(
        db: Session,
        prefix: str = RECEIPT_NUMBER_PREFIX,
        suffix_factory: Optional[Callable[[], str]] = None,
    ) -> str:
        """
        Generate a unique receipt number for a payment history entry.

        Format: {prefix}-{epoch millis}-{5 uppercase alphanumerics}.
        Adjustments use the "ADJ" prefix.

        Args:
            db: Database session
            prefix: "RCP" for payments, "ADJ" for adjustments
            suffix_factory: Override for the random part

        Raises:
            ConflictError: If every attempt collided with an existing receipt
        """
        make_suffix = suffix_factory or random_suffix

        for _ in range(RECEIPT_NUMBER_MAX_ATTEMPTS):
            receipt_number = f"{prefix}-{epoch_millis()}-{make_suffix()}"
            exists = db.query(BillingPayment.id).filter(
                BillingPayment.receipt_number == receipt_number
            ).first()
            if not exists:
                return receipt_number
            logger.warning(f"Receipt number {receipt_number} collided, retrying")

        raise ConflictError(
            "Could not allocate a unique receipt number",
            {"attempts": RECEIPT_NUMBER_MAX_ATTEMPTS},
        )

    @staticmethod
    def generate_adjustment_number(db: Session) -> str:
        return NumberingService.generate_receipt_number(db, prefix=ADJUSTMENT_RECEIPT_PREFIX)
