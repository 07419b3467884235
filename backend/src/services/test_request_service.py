"""
Service for test requests.

Drives a lab order through its lifecycle: creation by a doctor, billing
linkage, sample collection, lab testing and report upload/delivery. Every
status change goes through ``_transition`` which checks the transition
graph, runs the billing gate for lab stages and appends to the status log.
"""

import logging
from datetime import date, datetime
from typing import Any, List, Optional, Sequence, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from auth.dependencies import CallerContext, ensure_center_access, resolve_center_scope
from core.constants import (
    DEFAULT_PAGE_SIZE,
    DEFAULT_REPORT_EMAIL_MESSAGE,
    DEFAULT_REPORT_EMAIL_SUBJECT,
    DEFAULT_REPORT_NOTIFICATION_MESSAGE,
    LAB_ROLES,
    ROLE_ADMIN,
    ROLE_DOCTOR,
    ROLE_SUPER_ADMIN,
)
from core.exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from models import (
    Billing,
    LabReport,
    TestRequest,
    TestRequestCommunication,
    TestRequestStatusChange,
)
from models.test_request import PRIORITIES, REVIEW_STATUSES, TEST_REQUEST_STATUSES
from services.billing_gate import GATE_ALLOWED_STATUSES, BillingGate
from services.directory_service import DirectoryService
from services.test_request_workflow import (
    LAB_STATUSES,
    TERMINAL_STATUSES,
    ensure_transition,
)
from utils.datetime_utils import clinic_now
from utils.query_helpers import paginate

logger = logging.getLogger(__name__)

OVERRIDE_ROLES = (ROLE_SUPER_ADMIN, ROLE_ADMIN)

# Only the review workflow may set these
REVIEW_ONLY_STATUSES = ("Needs_Additional_Tests", "Review_Rejected")


class TestRequestService:
    """Service for test request lifecycle operations."""

    __test__ = False  # not a pytest test class

    # ===== Loading and bookkeeping =====

    @staticmethod
    def load_request(
        db: Session,
        caller: CallerContext,
        test_request_id: int,
        lock: bool = False,
    ) -> TestRequest:
        """
        Load a test request the caller may see.

        Raises:
            NotFoundError: Missing, or deactivated (reason "inactive")
            ForbiddenError: Belongs to a different center
        """
        query = db.query(TestRequest).filter(TestRequest.id == test_request_id)
        if lock:
            query = query.with_for_update()
        test_request = query.first()
        if not test_request:
            raise NotFoundError("Test request", test_request_id)
        ensure_center_access(caller, test_request.center_id, "Test request")
        if not test_request.is_active:
            raise NotFoundError("Test request", test_request_id, reason="inactive")
        return test_request

    @staticmethod
    def record_status(
        db: Session,
        test_request: TestRequest,
        new_status: str,
        caller: Optional[CallerContext],
        notes: Optional[str] = None,
        is_override: bool = False,
    ) -> None:
        """Set the status and append the change to the status log."""
        entry = TestRequestStatusChange(
            from_status=test_request.status,
            to_status=new_status,
            changed_by_id=caller.user_id if caller else None,
            changed_at=clinic_now(),
            is_override=is_override,
            notes=notes,
        )
        test_request.status_history.append(entry)
        db.add(entry)
        test_request.status = new_status

    @staticmethod
    def _transition(
        db: Session,
        caller: CallerContext,
        test_request: TestRequest,
        target: str,
        notes: Optional[str] = None,
    ) -> None:
        # The gate looks at the current status, so it runs before the graph check
        if target in LAB_STATUSES:
            BillingGate.check_billing_completed(db, test_request)
        ensure_transition(test_request.status, target)
        previous = test_request.status
        TestRequestService.record_status(db, test_request, target, caller, notes)
        logger.info(f"Test request {test_request.id}: {previous} -> {target}")

    @staticmethod
    def _ensure_not_terminal(test_request: TestRequest) -> None:
        if test_request.status in TERMINAL_STATUSES:
            raise InvalidStateError(
                f"Test request is {test_request.status}",
                {"current_status": test_request.status},
            )

    @staticmethod
    def _clean_test_types(test_types: Sequence[Any]) -> List[Any]:
        cleaned = [t.strip() if isinstance(t, str) else t for t in (test_types or [])]
        cleaned = [t for t in cleaned if t not in (None, "")]
        if not cleaned:
            raise ValidationError("At least one test type is required")
        return cleaned

    # ===== Creation and edits =====

    @staticmethod
    def create_test_request(
        db: Session,
        caller: CallerContext,
        patient_id: int,
        test_types: Sequence[Any],
        priority: str = "Normal",
        notes: Optional[str] = None,
        doctor_id: Optional[int] = None,
    ) -> TestRequest:
        """
        Create a lab order in ``Billing_Pending``.

        A doctor always orders under their own id; superAdmin must name the
        doctor.

        Raises:
            ValidationError: No test types, bad priority or no doctor
            NotFoundError: Patient or doctor missing
            ForbiddenError: Patient belongs to another center
        """
        types = TestRequestService._clean_test_types(test_types)
        if priority not in PRIORITIES:
            raise ValidationError(f"Invalid priority: {priority}")

        patient = DirectoryService.require_patient(db, patient_id)
        ensure_center_access(caller, patient.center_id, "Patient")

        if caller.role == ROLE_DOCTOR:
            doctor_id = caller.user_id
        DirectoryService.require_user(db, doctor_id, label="Doctor", roles=(ROLE_DOCTOR,))

        test_request = TestRequest(
            center_id=patient.center_id,
            doctor_id=doctor_id,
            patient_id=patient.id,
            test_types=types,
            priority=priority,
            status="Billing_Pending",
            notes=notes,
            review_status="Pending",
            is_reviewed=False,
            is_active=True,
        )
        db.add(test_request)
        db.add(TestRequestStatusChange(
            test_request=test_request,
            from_status=None,
            to_status="Billing_Pending",
            changed_by_id=caller.user_id,
            changed_at=clinic_now(),
            notes="Test request created",
        ))
        db.flush()
        logger.info(f"Created test request {test_request.id} for patient {patient.id} ({len(types)} tests)")
        return test_request

    @staticmethod
    def update_test_request(
        db: Session,
        caller: CallerContext,
        test_request_id: int,
        priority: Optional[str] = None,
        test_types: Optional[Sequence[Any]] = None,
        notes: Optional[str] = None,
        assigned_to_id: Optional[int] = None,
    ) -> TestRequest:
        """Edit non-status fields of a request that is not finished."""
        test_request = TestRequestService.load_request(db, caller, test_request_id, lock=True)
        TestRequestService._ensure_not_terminal(test_request)

        if priority is not None:
            if priority not in PRIORITIES:
                raise ValidationError(f"Invalid priority: {priority}")
            test_request.priority = priority
        if test_types is not None:
            test_request.test_types = TestRequestService._clean_test_types(test_types)
        if notes is not None:
            test_request.notes = notes
        if assigned_to_id is not None:
            DirectoryService.require_user(db, assigned_to_id, label="Assignee", roles=LAB_ROLES)
            test_request.assigned_to_id = assigned_to_id

        db.flush()
        return test_request

    # ===== Billing linkage =====

    @staticmethod
    def link_billing(db: Session, caller: CallerContext, test_request_id: int, billing_id: int) -> TestRequest:
        """
        Attach a bill to a request and move it to Billing_Generated or Billing_Paid.

        The bill is read (and must be valid) before the request is written.

        Raises:
            InvalidStateError: Request already past billing, or the bill is
                cancelled/refunded
            NotFoundError: Bill missing or deactivated
            ValidationError: Bill is for another patient or center
        """
        test_request = TestRequestService.load_request(db, caller, test_request_id, lock=True)
        if test_request.status not in ("Pending", "Billing_Pending", "Billing_Generated"):
            raise InvalidStateError(
                f"Cannot link billing to a request in {test_request.status}",
                {"current_status": test_request.status},
            )

        billing = db.query(Billing).filter(Billing.id == billing_id).first()
        if not billing:
            raise NotFoundError("Billing", billing_id)
        if not billing.is_active:
            raise NotFoundError("Billing", billing_id, reason="inactive")
        if billing.patient_id != test_request.patient_id or billing.center_id != test_request.center_id:
            raise ValidationError("Billing does not belong to this test request's patient")
        if billing.status in ("cancelled", "refunded"):
            raise InvalidStateError(f"Cannot link a {billing.status} bill", {"billing_status": billing.status})

        test_request.billing_id = billing.id
        target = "Billing_Paid" if billing.payment_status == "paid" else "Billing_Generated"
        if target != test_request.status:
            TestRequestService._transition(
                db, caller, test_request, target, notes=f"Linked to {billing.bill_number}"
            )
        db.flush()
        return test_request

    @staticmethod
    def sync_with_billing(db: Session, caller: Optional[CallerContext], billing: Billing) -> List[TestRequest]:
        """
        Promote requests waiting on a bill that has just become fully paid.

        Called by PaymentService after the bill itself has been written.

        Returns:
            The requests that were moved to Billing_Paid
        """
        if billing.payment_status != "paid":
            return []
        waiting = db.query(TestRequest).filter(
            TestRequest.billing_id == billing.id,
            TestRequest.status == "Billing_Generated",
            TestRequest.is_active == True,
        ).with_for_update().all()
        for test_request in waiting:
            TestRequestService.record_status(
                db, test_request, "Billing_Paid", caller, notes=f"{billing.bill_number} fully paid"
            )
            logger.info(f"Test request {test_request.id} moved to Billing_Paid after payment")
        if waiting:
            db.flush()
        return waiting

    # ===== Administrative moves =====

    @staticmethod
    def approve_request(db: Session, caller: CallerContext, test_request_id: int, notes: Optional[str] = None) -> TestRequest:
        """superAdmin sign-off before lab assignment."""
        if not caller.is_super_admin():
            raise ForbiddenError("Only superAdmin can approve test requests")
        test_request = TestRequestService.load_request(db, caller, test_request_id, lock=True)
        BillingGate.check_billing_completed(db, test_request)
        TestRequestService._transition(db, caller, test_request, "Superadmin_Approved", notes)
        db.flush()
        return test_request

    @staticmethod
    def assign(db: Session, caller: CallerContext, test_request_id: int, user_id: int, notes: Optional[str] = None) -> TestRequest:
        """Assign a lab staff member and move the request to Assigned."""
        test_request = TestRequestService.load_request(db, caller, test_request_id, lock=True)
        BillingGate.check_billing_completed(db, test_request)
        assignee = DirectoryService.require_user(db, user_id, label="Assignee", roles=LAB_ROLES)
        test_request.assigned_to_id = assignee.id
        TestRequestService._transition(
            db, caller, test_request, "Assigned", notes or f"Assigned to {assignee.full_name}"
        )
        db.flush()
        return test_request

    @staticmethod
    def update_status(
        db: Session,
        caller: CallerContext,
        test_request_id: int,
        status: str,
        notes: Optional[str] = None,
        override: bool = False,
    ) -> TestRequest:
        """
        Generic status change.

        Without ``override`` the move must be an edge of the graph, lab
        stages pass the billing gate, and review outcomes are refused.
        With ``override`` (superAdmin/Admin only) any status may be set; the
        change is flagged in the status log.

        Raises:
            ValidationError: Unknown status
            ForbiddenError: Override by a non-admin, or billing gate rejection
            InvalidStateError: Not an edge of the graph
        """
        if status not in TEST_REQUEST_STATUSES:
            raise ValidationError(f"Invalid test request status: {status}")
        test_request = TestRequestService.load_request(db, caller, test_request_id, lock=True)

        if override:
            if not caller.has_role(*OVERRIDE_ROLES):
                raise ForbiddenError("Only superAdmin or Admin can override test request status")
            logger.warning(
                f"Status override on test request {test_request.id}: {test_request.status} -> {status} "
                f"by user {caller.user_id}"
            )
            TestRequestService.record_status(db, test_request, status, caller, notes, is_override=True)
            db.flush()
            return test_request

        if status in REVIEW_ONLY_STATUSES:
            raise InvalidStateError(f"{status} can only be set by a super consultant review")
        TestRequestService._transition(db, caller, test_request, status, notes)
        db.flush()
        return test_request

    @staticmethod
    def cancel(db: Session, caller: CallerContext, test_request_id: int, reason: Optional[str] = None) -> TestRequest:
        test_request = TestRequestService.load_request(db, caller, test_request_id, lock=True)
        TestRequestService._ensure_not_terminal(test_request)
        TestRequestService._transition(db, caller, test_request, "Cancelled", reason or "Cancelled")
        db.flush()
        return test_request

    @staticmethod
    def hold(db: Session, caller: CallerContext, test_request_id: int, reason: Optional[str] = None) -> TestRequest:
        test_request = TestRequestService.load_request(db, caller, test_request_id, lock=True)
        TestRequestService._ensure_not_terminal(test_request)
        TestRequestService._transition(db, caller, test_request, "On_Hold", reason or "Put on hold")
        db.flush()
        return test_request

    # ===== Sample collection =====

    @staticmethod
    def schedule_sample_collection(
        db: Session,
        caller: CallerContext,
        test_request_id: int,
        scheduled_date: date,
        scheduled_time: Optional[str],
        collector_id: int,
        notes: Optional[str] = None,
    ) -> TestRequest:
        """
        Book the sample collection.

        The collector's current name is copied onto the request as a
        snapshot; the collector id stays the reference.

        Raises:
            ForbiddenError: Billing gate rejection
            NotFoundError/ValidationError: Collector missing or not lab staff
        """
        test_request = TestRequestService.load_request(db, caller, test_request_id, lock=True)
        BillingGate.check_billing_completed(db, test_request)
        collector = DirectoryService.require_user(db, collector_id, label="Collector", roles=LAB_ROLES)

        test_request.scheduled_collection_date = scheduled_date
        test_request.scheduled_collection_time = scheduled_time
        test_request.assigned_collector_id = collector.id
        test_request.assigned_collector_name = collector.full_name
        if notes is not None:
            test_request.collection_notes = notes
        TestRequestService._transition(db, caller, test_request, "Sample_Collection_Scheduled", notes)
        db.flush()
        return test_request

    @staticmethod
    def reschedule_sample_collection(
        db: Session,
        caller: CallerContext,
        test_request_id: int,
        scheduled_date: date,
        scheduled_time: Optional[str],
        reason: Optional[str] = None,
        collector_id: Optional[int] = None,
    ) -> TestRequest:
        test_request = TestRequestService.load_request(db, caller, test_request_id, lock=True)
        BillingGate.check_billing_completed(db, test_request)
        if collector_id is not None:
            collector = DirectoryService.require_user(db, collector_id, label="Collector", roles=LAB_ROLES)
            test_request.assigned_collector_id = collector.id
            test_request.assigned_collector_name = collector.full_name

        test_request.scheduled_collection_date = scheduled_date
        test_request.scheduled_collection_time = scheduled_time
        if reason:
            test_request.collection_notes = reason
        TestRequestService._transition(db, caller, test_request, "Sample_Collection_Rescheduled", reason)
        db.flush()
        return test_request

    @staticmethod
    def mark_sample_collected(
        db: Session,
        caller: CallerContext,
        test_request_id: int,
        collected_date: Optional[date] = None,
        collected_time: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> TestRequest:
        test_request = TestRequestService.load_request(db, caller, test_request_id, lock=True)
        now = clinic_now()
        TestRequestService._transition(db, caller, test_request, "Sample_Collected", notes)
        test_request.sample_collected_date = collected_date or now.date()
        test_request.sample_collected_time = collected_time or now.strftime("%H:%M")
        if notes:
            test_request.collection_notes = notes
        db.flush()
        return test_request

    # ===== Lab testing =====

    @staticmethod
    def start_testing(
        db: Session,
        caller: CallerContext,
        test_request_id: int,
        technician_id: Optional[int],
        notes: Optional[str] = None,
    ) -> TestRequest:
        """
        Start lab testing.

        Raises:
            ValidationError: No technician given
            NotFoundError: Technician missing
        """
        if technician_id is None:
            raise ValidationError("Technician is required to start testing")
        test_request = TestRequestService.load_request(db, caller, test_request_id, lock=True)
        BillingGate.check_billing_completed(db, test_request)
        technician = DirectoryService.require_user(db, technician_id, label="Technician", roles=LAB_ROLES)

        TestRequestService._transition(db, caller, test_request, "In_Lab_Testing", notes)
        test_request.tested_by_id = technician.id
        test_request.testing_started_at = clinic_now()
        if notes:
            test_request.lab_notes = notes
        db.flush()
        return test_request

    @staticmethod
    def complete_testing(
        db: Session,
        caller: CallerContext,
        test_request_id: int,
        results: Optional[str],
        notes: Optional[str] = None,
        completion_date: Optional[datetime] = None,
    ) -> TestRequest:
        """
        Finish lab testing.

        Raises:
            ValidationError: Empty results
        """
        if not results or not results.strip():
            raise ValidationError("Test results are required to complete testing")
        test_request = TestRequestService.load_request(db, caller, test_request_id, lock=True)
        TestRequestService._transition(db, caller, test_request, "Testing_Completed", notes)
        test_request.test_results = results.strip()
        test_request.testing_completed_at = completion_date or clinic_now()
        if notes:
            test_request.lab_notes = notes
        db.flush()
        return test_request

    # ===== Reports =====

    @staticmethod
    def upload_lab_report(
        db: Session,
        caller: CallerContext,
        test_request_id: int,
        file_path: Optional[str],
        file_name: Optional[str] = None,
        download_url: Optional[str] = None,
        test_results: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> LabReport:
        """
        Store a new report version and make it the request's current report.

        Earlier versions are kept; uploading again never overwrites them.

        Args:
            file_path: Blob-store key returned by the file storage
            file_name: Original file name
            download_url: URL returned by the file storage

        Returns:
            The new LabReport row

        Raises:
            ValidationError: No file reference
        """
        if not file_path:
            raise ValidationError("A report file is required")
        test_request = TestRequestService.load_request(db, caller, test_request_id, lock=True)
        TestRequestService._transition(db, caller, test_request, "Report_Generated", notes)

        now = clinic_now()
        version = len(test_request.lab_reports) + 1
        report = LabReport(
            version=version,
            file_name=file_name or file_path,
            file_path=file_path,
            download_url=download_url,
            test_results=test_results,
            notes=notes,
            generated_at=now,
            generated_by_id=caller.user_id,
        )
        test_request.lab_reports.append(report)
        db.add(report)

        test_request.report_file_name = report.file_name
        test_request.report_file_path = file_path
        test_request.report_download_url = download_url
        test_request.report_generated_at = now
        test_request.report_generated_by_id = caller.user_id
        if test_results:
            test_request.test_results = test_results

        db.flush()
        logger.info(f"Uploaded lab report v{version} for test request {test_request.id}")
        return report

    @staticmethod
    def send_lab_report(
        db: Session,
        caller: CallerContext,
        test_request_id: int,
        send_method: Optional[str],
        email_subject: Optional[str] = None,
        email_message: Optional[str] = None,
        notification_message: Optional[str] = None,
        recipient: Optional[str] = None,
    ) -> TestRequestCommunication:
        """
        Record delivery of the current report and move to Report_Sent.

        The report itself is not regenerated. Each send is a row in the
        communication log.

        Raises:
            ValidationError: No send method, or no report to send
        """
        if not send_method:
            raise ValidationError("Send method is required")
        test_request = TestRequestService.load_request(db, caller, test_request_id, lock=True)
        if not test_request.report_file_path:
            raise ValidationError("No lab report found to send")

        TestRequestService._transition(db, caller, test_request, "Report_Sent", f"Report sent via {send_method}")

        if recipient is None and test_request.patient is not None:
            recipient = test_request.patient.email if send_method == "email" else test_request.patient.phone

        communication = TestRequestCommunication(
            send_method=send_method,
            recipient=recipient,
            email_subject=email_subject or DEFAULT_REPORT_EMAIL_SUBJECT,
            email_message=email_message or DEFAULT_REPORT_EMAIL_MESSAGE,
            notification_message=notification_message or DEFAULT_REPORT_NOTIFICATION_MESSAGE,
            report_version=len(test_request.lab_reports) or None,
            sent_at=clinic_now(),
            sent_by_id=caller.user_id,
        )
        test_request.communications.append(communication)
        db.add(communication)
        db.flush()
        logger.info(f"Sent lab report for test request {test_request.id} via {send_method}")
        return communication

    @staticmethod
    def get_report_for_download(db: Session, caller: CallerContext, test_request_id: int) -> LabReport:
        """
        Current report of a request, for download.

        Raises:
            ForbiddenError: Billing gate rejection (admins and super consultants pass)
            NotFoundError: No report uploaded yet
        """
        test_request = TestRequestService.load_request(db, caller, test_request_id)
        BillingGate.check_billing_completed_or_admin(db, caller, test_request)
        if not test_request.lab_reports:
            raise NotFoundError("Lab report", test_request_id)
        return test_request.lab_reports[-1]

    # ===== Reads =====

    @staticmethod
    def get_test_request(db: Session, caller: CallerContext, test_request_id: int) -> TestRequest:
        return TestRequestService.load_request(db, caller, test_request_id)

    @staticmethod
    def list_test_requests(
        db: Session,
        caller: CallerContext,
        center_id: Optional[int] = None,
        status: Optional[str] = None,
        doctor_id: Optional[int] = None,
        patient_id: Optional[int] = None,
        priority: Optional[str] = None,
        has_report: Optional[bool] = None,
        review_status: Optional[str] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Tuple[List[TestRequest], int]:
        """List active requests visible to the caller, newest first."""
        if status and status not in TEST_REQUEST_STATUSES:
            raise ValidationError(f"Invalid status filter: {status}")
        if review_status and review_status not in REVIEW_STATUSES:
            raise ValidationError(f"Invalid review status filter: {review_status}")

        query = db.query(TestRequest).filter(TestRequest.is_active == True)
        scope = resolve_center_scope(caller, center_id)
        if scope is not None:
            query = query.filter(TestRequest.center_id == scope)
        if caller.role == ROLE_DOCTOR:
            query = query.filter(TestRequest.doctor_id == caller.user_id)
        elif doctor_id:
            query = query.filter(TestRequest.doctor_id == doctor_id)
        if status:
            query = query.filter(TestRequest.status == status)
        if patient_id:
            query = query.filter(TestRequest.patient_id == patient_id)
        if priority:
            query = query.filter(TestRequest.priority == priority)
        if has_report is True:
            query = query.filter(TestRequest.report_file_path.isnot(None))
        elif has_report is False:
            query = query.filter(TestRequest.report_file_path.is_(None))
        if review_status:
            query = query.filter(TestRequest.review_status == review_status)

        query = query.order_by(TestRequest.created_at.desc(), TestRequest.id.desc())
        return paginate(query, page, page_size)

    @staticmethod
    def list_pending_billing(db: Session, caller: CallerContext, center_id: Optional[int] = None) -> List[TestRequest]:
        """Requests waiting for reception to create and link a bill."""
        query = db.query(TestRequest).filter(
            TestRequest.is_active == True,
            TestRequest.status.in_(("Pending", "Billing_Pending")),
        )
        scope = resolve_center_scope(caller, center_id)
        if scope is not None:
            query = query.filter(TestRequest.center_id == scope)
        return query.order_by(TestRequest.created_at.asc(), TestRequest.id.asc()).all()

    @staticmethod
    def list_for_lab_staff(
        db: Session,
        caller: CallerContext,
        status: Optional[str] = None,
        center_id: Optional[int] = None,
    ) -> List[TestRequest]:
        """
        Requests lab staff can work on.

        Billing_Generated requests are only shown once their bill has a payment.
        """
        query = db.query(TestRequest).outerjoin(Billing, Billing.id == TestRequest.billing_id).filter(
            TestRequest.is_active == True,
            TestRequest.status.in_(sorted(GATE_ALLOWED_STATUSES)),
            or_(
                TestRequest.status != "Billing_Generated",
                and_(Billing.paid_amount > 0, Billing.status.notin_(("cancelled", "refunded"))),
            ),
        )
        if status:
            query = query.filter(TestRequest.status == status)
        scope = resolve_center_scope(caller, center_id)
        if scope is not None:
            query = query.filter(TestRequest.center_id == scope)
        return query.order_by(TestRequest.created_at.desc(), TestRequest.id.desc()).all()
