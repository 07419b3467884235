# pyright: reportMissingTypeStubs=false
"""
Super consultant API endpoints: reviewing uploaded lab reports.
"""

import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.responses import ReviewResponse, TestRequestListResponse, TestRequestResponse
from api.shared import write_transaction
from auth.dependencies import CallerContext, require_roles
from core.constants import ROLE_SUPER_CONSULTANT
from core.database import get_db
from services import ReviewService

logger = logging.getLogger(__name__)

router = APIRouter()


class SubmitReviewRequest(BaseModel):
    """Request model for a review decision on the current lab report."""
    status: str
    feedback: str
    additional_tests_required: List[Any] = Field(default_factory=list)
    recommendations: Optional[str] = None


@router.get("/test-requests", response_model=TestRequestListResponse)
async def list_for_review(
    review_status: Optional[str] = Query(None, description="Pending, Approved, Needs_Additional_Tests or Rejected"),
    center_id: Optional[int] = Query(None),
    caller: CallerContext = Depends(require_roles(ROLE_SUPER_CONSULTANT)),
    db: Session = Depends(get_db),
):
    test_requests = ReviewService.list_for_review(db, caller, review_status, center_id)
    return TestRequestListResponse(
        test_requests=[TestRequestResponse.model_validate(tr) for tr in test_requests]
    )


@router.post(
    "/test-requests/{test_request_id}/review",
    response_model=ReviewResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_review(
    test_request_id: int,
    request: SubmitReviewRequest,
    caller: CallerContext = Depends(require_roles(ROLE_SUPER_CONSULTANT)),
    db: Session = Depends(get_db),
):
    """Approve, reject or ask for more tests; the request status follows the decision."""
    with write_transaction(db, "submit review"):
        review = ReviewService.submit_review(
            db,
            caller,
            test_request_id,
            feedback=request.feedback,
            status=request.status,
            additional_tests_required=request.additional_tests_required,
            recommendations=request.recommendations,
        )
    db.refresh(review)
    return ReviewResponse.model_validate(review)


@router.get("/test-requests/{test_request_id}/reviews", response_model=List[ReviewResponse])
async def review_history(
    test_request_id: int,
    caller: CallerContext = Depends(require_roles(ROLE_SUPER_CONSULTANT)),
    db: Session = Depends(get_db),
):
    reviews = ReviewService.review_history(db, caller, test_request_id)
    return [ReviewResponse.model_validate(review) for review in reviews]
