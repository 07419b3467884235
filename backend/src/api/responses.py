"""
Shared response models for API endpoints.

Models read straight from ORM objects (from_attributes), including the
derived properties such as ``remaining_amount`` and ``has_report``.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class OrmModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class PaginationResponse(BaseModel):
    """Pagination block for list endpoints."""
    current_page: int
    total_pages: int
    total_records: int
    has_next: bool
    has_prev: bool


class ServiceChargeResponse(OrmModel):
    id: int
    position: int
    service_name: str
    service_code: str
    patient_type: str
    amount: Decimal
    quantity: int
    total_amount: Decimal
    description: Optional[str] = None


class PaymentEntryResponse(OrmModel):
    """One payment history entry."""
    id: int
    entry_type: str
    amount: Decimal
    payment_method: str
    payment_date: datetime
    processed_by_id: Optional[int] = None
    notes: Optional[str] = None
    receipt_number: str


class WorkflowStageResponse(OrmModel):
    stage: str
    status: str
    timestamp: datetime
    updated_by_id: Optional[int] = None
    notes: Optional[str] = None


class BillingResponse(OrmModel):
    """Response model for a bill with its lines, payments and stage log."""
    id: int
    bill_number: str
    kind: str
    center_id: int
    patient_id: int
    doctor_id: Optional[int] = None
    billing_type: Optional[str] = None

    registration_fee_amount: Decimal
    registration_patient_type: str
    registration_description: str
    registration_applicable: bool
    consultation_fee_amount: Decimal
    consultation_type: str
    consultation_patient_type: str
    consultation_description: str
    service_charges: List[ServiceChargeResponse]

    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    payment_percentage: int
    total_service_charges: Decimal

    status: str
    payment_status: str
    payment_method: Optional[str] = None
    payment_date: Optional[datetime] = None
    workflow_stage: str
    consultation_status: str
    viewed_at: Optional[datetime] = None
    viewed_by_id: Optional[int] = None

    preview_generated_at: Optional[datetime] = None
    preview_expires_at: Optional[datetime] = None
    preview_is_approved: bool
    preview_approved_at: Optional[datetime] = None

    due_date: Optional[date] = None
    notes: Optional[str] = None

    is_cancelled: bool
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancellation_refund_amount: Decimal
    is_refunded: bool
    refunded_at: Optional[datetime] = None
    refund_amount: Decimal
    refund_method: Optional[str] = None
    refund_reason: Optional[str] = None
    refund_reference: Optional[str] = None

    payments: List[PaymentEntryResponse]
    workflow_stages: List[WorkflowStageResponse]

    created_by_id: Optional[int] = None
    updated_by_id: Optional[int] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class BillingListResponse(BaseModel):
    billings: List[BillingResponse]
    pagination: PaginationResponse


class AdjustmentSummary(BaseModel):
    """Before/after view of a payment adjustment."""
    original: Decimal
    new: Decimal
    difference: Decimal
    previous_status: str
    new_status: str
    receipt_number: str


class AdjustmentResponse(BaseModel):
    billing: BillingResponse
    adjustment: AdjustmentSummary


class LabReportResponse(OrmModel):
    id: int
    version: int
    file_name: str
    file_path: str
    download_url: Optional[str] = None
    test_results: Optional[str] = None
    notes: Optional[str] = None
    generated_at: datetime
    generated_by_id: Optional[int] = None


class ReviewResponse(OrmModel):
    id: int
    test_request_id: int
    lab_report_id: Optional[int] = None
    report_version: Optional[int] = None
    reviewed_by_id: int
    review_date: datetime
    status: str
    feedback: str
    additional_tests_required: List[Any]
    recommendations: Optional[str] = None
    resulting_status: str


class StatusChangeResponse(OrmModel):
    from_status: Optional[str] = None
    to_status: str
    changed_by_id: Optional[int] = None
    changed_at: datetime
    is_override: bool
    notes: Optional[str] = None


class CommunicationResponse(OrmModel):
    id: int
    send_method: str
    recipient: Optional[str] = None
    email_subject: str
    email_message: str
    notification_message: str
    report_version: Optional[int] = None
    sent_at: datetime
    sent_by_id: Optional[int] = None


class TestRequestResponse(OrmModel):
    """Response model for a test request."""
    __test__ = False  # not a pytest test class

    id: int
    center_id: int
    doctor_id: int
    patient_id: int
    test_types: List[Any]
    priority: str
    status: str
    billing_id: Optional[int] = None
    notes: Optional[str] = None
    assigned_to_id: Optional[int] = None

    scheduled_collection_date: Optional[date] = None
    scheduled_collection_time: Optional[str] = None
    assigned_collector_id: Optional[int] = None
    assigned_collector_name: Optional[str] = None
    collection_notes: Optional[str] = None
    sample_collected_date: Optional[date] = None
    sample_collected_time: Optional[str] = None

    testing_started_at: Optional[datetime] = None
    testing_completed_at: Optional[datetime] = None
    tested_by_id: Optional[int] = None
    test_results: Optional[str] = None
    lab_notes: Optional[str] = None

    has_report: bool
    report_file_name: Optional[str] = None
    report_file_path: Optional[str] = None
    report_download_url: Optional[str] = None
    report_generated_at: Optional[datetime] = None
    report_generated_by_id: Optional[int] = None

    review_status: str
    is_reviewed: bool
    current_review: Optional[ReviewResponse] = None

    created_at: datetime
    updated_at: datetime


class TestRequestDetailResponse(TestRequestResponse):
    """Test request with its report versions, status log and deliveries."""
    lab_reports: List[LabReportResponse]
    status_history: List[StatusChangeResponse]
    communications: List[CommunicationResponse]


class TestRequestListResponse(BaseModel):
    __test__ = False  # not a pytest test class

    test_requests: List[TestRequestResponse]
    pagination: Optional[PaginationResponse] = None


class ReportDownloadResponse(BaseModel):
    test_request_id: int
    version: int
    file_name: str
    download_url: str


class ErrorResponse(BaseModel):
    """Body returned for every rejected business operation."""
    success: bool = False
    error: Dict[str, Any]
