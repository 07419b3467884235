# pyright: reportMissingTypeStubs=false
"""
Clinic Core Backend API

A FastAPI application providing the billing and lab workflow core of a
multi-center clinic management system.

Features:
- Billing with preview invoices, payments, adjustments, cancellation and refunds
- Lab test requests gated on billing, with versioned reports
- Super consultant review of lab reports
- PostgreSQL database with SQLAlchemy ORM
"""

import logging
import os

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from api import billing, super_consultant, test_requests
from core.config import LAB_REPORT_UPLOAD_DIR
from core.constants import CORS_ORIGINS
from core.exceptions import ClinicWorkflowError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)

logger = logging.getLogger(__name__)
logger.info("🏥 Clinic Core API starting...")


# Create FastAPI application
app = FastAPI(
    title="Clinic Core Backend",
    description="Billing, lab workflow and report review for multi-center clinics",
    version="1.0.0",
    docs_url="/docs",  # Swagger UI
    redoc_url="/redoc",  # ReDoc
)

# CORS middleware for frontend integration
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(
    billing.router,
    prefix="/api/billing",
    tags=["billing"],
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Forbidden"},
        404: {"description": "Resource not found"},
        409: {"description": "Conflict"},
        410: {"description": "Preview expired"},
        500: {"description": "Internal server error"},
    },
)
app.include_router(
    test_requests.router,
    prefix="/api/test-requests",
    tags=["test-requests"],
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Forbidden"},
        404: {"description": "Resource not found"},
        409: {"description": "Conflict"},
        500: {"description": "Internal server error"},
    },
)
app.include_router(
    super_consultant.router,
    prefix="/api/super-consultant",
    tags=["super-consultant"],
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Forbidden"},
        404: {"description": "Resource not found"},
        500: {"description": "Internal server error"},
    },
)

# Locally stored lab reports (used when S3 is not configured)
if os.path.isdir(LAB_REPORT_UPLOAD_DIR):
    app.mount(
        f"/static/{LAB_REPORT_UPLOAD_DIR}",
        StaticFiles(directory=LAB_REPORT_UPLOAD_DIR),
        name="lab-reports",
    )
    logger.info(f"✅ Lab report files mounted from {LAB_REPORT_UPLOAD_DIR}")


@app.get(
    "/",
    summary="Root endpoint",
    description="Returns basic API information",
)
async def root() -> dict[str, str]:
    """Get API information."""
    return {
        "message": "Clinic Core Backend API",
        "version": "1.0.0",
        "status": "running"
    }


@app.get(
    "/health",
    summary="Health check",
    description="Returns the health status of the API",
)
async def health_check() -> dict[str, str]:
    """Check if the API is healthy and responding."""
    return {"status": "healthy"}


# Global exception handlers
@app.exception_handler(ClinicWorkflowError)
async def workflow_error_handler(request: Request, exc: ClinicWorkflowError):
    """Render rejected business operations with their error kind."""
    logger.warning(f"{exc.kind} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder({"success": False, "error": exc.to_dict()}),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions globally."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": "internal_error"},
    )
