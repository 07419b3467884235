"""
Service for super consultant reviews of lab reports.

Reviews are append-only: a new review never overwrites an earlier one, and
the request mirrors the latest review's status.
"""

import logging
from typing import Any, List, Optional, Sequence

from sqlalchemy.orm import Session

from auth.dependencies import CallerContext, resolve_center_scope
from core.exceptions import InvalidStateError, ValidationError
from models import TestRequest, TestRequestReview
from services.test_request_service import TestRequestService
from services.test_request_workflow import REVIEWABLE_STATUSES
from utils.datetime_utils import clinic_now

logger = logging.getLogger(__name__)

# Review decision -> resulting test request status
REVIEW_OUTCOMES = {
    "Approved": "Completed",
    "Needs_Additional_Tests": "Needs_Additional_Tests",
    "Rejected": "Review_Rejected",
}


class ReviewService:
    """Service for super consultant review operations."""

    @staticmethod
    def submit_review(
        db: Session,
        caller: CallerContext,
        test_request_id: int,
        feedback: Optional[str],
        status: Optional[str],
        additional_tests_required: Optional[Sequence[Any]] = None,
        recommendations: Optional[str] = None,
    ) -> TestRequestReview:
        """
        Review the current lab report of a request.

        Args:
            db: Database session
            caller: Reviewing super consultant
            test_request_id: Request under review
            feedback: Clinical feedback (required)
            status: Approved, Needs_Additional_Tests or Rejected
            additional_tests_required: Tests the consultant asks for
            recommendations: Free-text recommendations

        Returns:
            The new review record

        Raises:
            ValidationError: Missing feedback/status, or the request has no report
            InvalidStateError: The request is not awaiting review
        """
        if not feedback or not feedback.strip():
            raise ValidationError("Review feedback is required")
        if status not in REVIEW_OUTCOMES:
            raise ValidationError(f"Invalid review status: {status}")

        test_request = TestRequestService.load_request(db, caller, test_request_id, lock=True)
        if not test_request.report_file_path:
            raise ValidationError("Lab report must be uploaded before review")
        if test_request.status not in REVIEWABLE_STATUSES:
            raise InvalidStateError(
                f"Test request in {test_request.status} is not awaiting review",
                {"current_status": test_request.status},
            )

        resulting_status = REVIEW_OUTCOMES[status]
        current_report = test_request.lab_reports[-1] if test_request.lab_reports else None
        review = TestRequestReview(
            lab_report_id=current_report.id if current_report else None,
            report_version=current_report.version if current_report else None,
            reviewed_by_id=caller.user_id,
            review_date=clinic_now(),
            status=status,
            feedback=feedback.strip(),
            additional_tests_required=list(additional_tests_required or []),
            recommendations=recommendations,
            resulting_status=resulting_status,
        )
        test_request.reviews.append(review)
        db.add(review)

        test_request.review_status = status
        test_request.is_reviewed = True
        TestRequestService.record_status(
            db, test_request, resulting_status, caller, notes=f"Super consultant review: {status}"
        )

        db.flush()
        logger.info(f"Review {status} recorded for test request {test_request.id} -> {resulting_status}")
        return review

    @staticmethod
    def list_for_review(
        db: Session,
        caller: CallerContext,
        review_status: Optional[str] = None,
        center_id: Optional[int] = None,
    ) -> List[TestRequest]:
        """Requests with a lab report, optionally filtered by review status."""
        query = db.query(TestRequest).filter(
            TestRequest.is_active == True,
            TestRequest.report_file_path.isnot(None),
        )
        if review_status:
            if review_status != "Pending" and review_status not in REVIEW_OUTCOMES:
                raise ValidationError(f"Invalid review status filter: {review_status}")
            query = query.filter(TestRequest.review_status == review_status)
        scope = resolve_center_scope(caller, center_id)
        if scope is not None:
            query = query.filter(TestRequest.center_id == scope)
        return query.order_by(TestRequest.report_generated_at.desc(), TestRequest.id.desc()).all()

    @staticmethod
    def review_history(db: Session, caller: CallerContext, test_request_id: int) -> List[TestRequestReview]:
        test_request = TestRequestService.load_request(db, caller, test_request_id)
        return list(test_request.reviews)
