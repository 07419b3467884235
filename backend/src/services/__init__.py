"""
Services package for shared business logic.

This package contains service classes that encapsulate the billing and lab
workflow rules used by the API endpoints.
"""

from .directory_service import DirectoryService
from .numbering_service import NumberingService
from .billing_gate import BillingGate
from .test_request_service import TestRequestService
from .billing_service import BillingService
from .payment_service import PaymentService
from .review_service import ReviewService

__all__ = [
    "DirectoryService",
    "NumberingService",
    "BillingGate",
    "TestRequestService",
    "BillingService",
    "PaymentService",
    "ReviewService",
]
