"""Application constants and configuration values."""

from core.config import FRONTEND_URL

# Database field lengths
MAX_STRING_LENGTH = 255
MAX_PAYMENT_NOTE_LENGTH = 200
MAX_BILLING_NOTES_LENGTH = 500
MAX_REASON_LENGTH = 200

# Database connection settings
DB_POOL_RECYCLE_SECONDS = 300  # 5 minutes

_CORS_ORIGINS_RAW = [
    "http://localhost:5173",
    "http://localhost:3000",
    FRONTEND_URL,
]

# Filter out None values and empty strings to avoid CORS errors
CORS_ORIGINS = [origin for origin in _CORS_ORIGINS_RAW if origin and origin.strip()]

# Document numbering
BILL_NUMBER_PREFIX = "BILL"
INSTANT_BILL_NUMBER_PREFIX = "REC-BILL"
RECEIPT_NUMBER_PREFIX = "RCP"
ADJUSTMENT_RECEIPT_PREFIX = "ADJ"
RECEIPT_SUFFIX_LENGTH = 5
BILL_SEQUENCE_WIDTH = 4

# Default labels
DEFAULT_REGISTRATION_DESCRIPTION = "Registration"
DEFAULT_CONSULTATION_DESCRIPTION = "Consultation"
DEFAULT_PATIENT_TYPE = "OP"
DEFAULT_CANCELLATION_REASON = "Bill cancelled"
DEFAULT_REFUND_REASON = "Refund processed"

# Lab report delivery
DEFAULT_REPORT_EMAIL_SUBJECT = "Lab Test Report"
DEFAULT_REPORT_EMAIL_MESSAGE = "Please find your lab test report attached."
DEFAULT_REPORT_NOTIFICATION_MESSAGE = "Your lab test report has been sent."

# Pagination
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

# Staff roles
ROLE_SUPER_ADMIN = "superAdmin"
ROLE_ADMIN = "Admin"
ROLE_DOCTOR = "Doctor"
ROLE_RECEPTIONIST = "Receptionist"
ROLE_ACCOUNTANT = "Accountant"
ROLE_SUPER_CONSULTANT = "Super Consultant"
LAB_ROLES = (
    "Lab Manager",
    "Lab Technician",
    "Lab Assistant",
    "Lab Director",
    "Quality Control",
)
ALL_ROLES = (
    ROLE_SUPER_ADMIN,
    ROLE_ADMIN,
    ROLE_DOCTOR,
    ROLE_RECEPTIONIST,
    ROLE_ACCOUNTANT,
    ROLE_SUPER_CONSULTANT,
) + LAB_ROLES

# Roles that skip the billing gate on read/administrative paths
BILLING_GATE_BYPASS_ROLES = (ROLE_SUPER_ADMIN, ROLE_ADMIN, ROLE_SUPER_CONSULTANT)
