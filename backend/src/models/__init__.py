# Package initialization
# Import all models to ensure relationships are properly established
from .center import Center
from .user import User
from .patient import Patient
from .counter import Counter
from .billing import Billing
from .billing_service_charge import BillingServiceCharge
from .billing_payment import BillingPayment
from .billing_workflow_stage import BillingWorkflowStage
from .test_request import TestRequest
from .lab_report import LabReport
from .test_request_review import TestRequestReview
from .test_request_status_change import TestRequestStatusChange
from .test_request_communication import TestRequestCommunication

__all__ = [
    "Center",
    "User",
    "Patient",
    "Counter",
    "Billing",
    "BillingServiceCharge",
    "BillingPayment",
    "BillingWorkflowStage",
    "TestRequest",
    "LabReport",
    "TestRequestReview",
    "TestRequestStatusChange",
    "TestRequestCommunication",
]
