"""
Application configuration using python-dotenv.

This module loads environment variables from .env file into os.environ
for use throughout the application.
"""

import os
import pathlib
from dotenv import load_dotenv


# Determine if we're running in a test environment
# Don't load .env file during testing to ensure predictable test behavior
is_testing = os.getenv("PYTEST_VERSION") is not None

# Load .env file into os.environ (only outside of testing)
if not is_testing:
    possible_paths = [
        pathlib.Path(__file__).parent.parent.parent / ".env",  # backend/.env (when run from backend/src)
        pathlib.Path(__file__).parent.parent.parent.parent / ".env",  # repository root
        pathlib.Path.cwd() / ".env",
    ]

    for env_path in possible_paths:
        if env_path.exists():
            load_dotenv(env_path)
            break


def get_database_url():
    """Get the database URL from environment."""
    return os.getenv(
        "DATABASE_URL",
        "postgresql://localhost/clinic_core_dev"
    )

DATABASE_URL = get_database_url()
API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

# Authentication (tokens are issued elsewhere; this service only verifies them)
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Business timezone offset from UTC in minutes (default IST, UTC+5:30)
CLINIC_UTC_OFFSET_MINUTES = int(os.getenv("CLINIC_UTC_OFFSET_MINUTES", "330"))

# Billing
DEFAULT_PREVIEW_EXPIRY_HOURS = int(os.getenv("DEFAULT_PREVIEW_EXPIRY_HOURS", "24"))
RECEIPT_NUMBER_MAX_ATTEMPTS = int(os.getenv("RECEIPT_NUMBER_MAX_ATTEMPTS", "5"))

# Lab report storage
LAB_REPORT_UPLOAD_DIR = os.getenv("LAB_REPORT_UPLOAD_DIR", "uploads/lab_reports")
MAX_UPLOAD_SIZE_MB = int(os.getenv("MAX_UPLOAD_SIZE_MB", "10"))
S3_BUCKET = os.getenv("S3_BUCKET", "")
S3_REGION = os.getenv("S3_REGION", "ap-south-1")
S3_ACCESS_KEY = os.getenv("S3_ACCESS_KEY", "")
S3_SECRET_KEY = os.getenv("S3_SECRET_KEY", "")
S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL", "")
