"""
Test configuration and shared fixtures for the clinic core test suite.

Each test gets a fresh in-memory SQLite database built from the model
metadata. Helper functions below create the directory records (centers,
staff, patients) and walk bills and test requests into the states that
tests start from.
"""

import uuid
from decimal import Decimal
from typing import Generator, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from auth.dependencies import CallerContext, get_current_caller
from core.constants import (
    ROLE_ADMIN,
    ROLE_DOCTOR,
    ROLE_RECEPTIONIST,
    ROLE_SUPER_ADMIN,
    ROLE_SUPER_CONSULTANT,
)
from core.database import Base, get_db
from models import Billing, Center, Patient, TestRequest, User
from services import BillingService, PaymentService, TestRequestService
from services.billing_calculations import (
    ConsultationFeeInput,
    FeeInputs,
    RegistrationFeeInput,
    ServiceChargeInput,
)



@pytest.fixture(scope="function")
def db_engine():
    """
    In-memory SQLite engine shared by every connection of one test.

    StaticPool keeps the single connection alive so the API test client
    (which runs on another thread) sees the same database.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Session configured like SessionLocal, bound to the test engine."""
    TestingSession = sessionmaker(
        bind=db_engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    session = TestingSession()

    yield session

    session.close()


# ===== Directory helpers =====

def create_center(db_session: Session, name: str = "Main Center") -> Center:
    center = Center(name=name, center_code=f"C-{uuid.uuid4().hex[:8]}", is_active=True)
    db_session.add(center)
    db_session.flush()
    return center


def create_user(
    db_session: Session,
    center: Optional[Center],
    role: str,
    first_name: str = "Staff",
    last_name: str = "Member",
    is_active: bool = True,
) -> User:
    """
    Create a staff user.

    Args:
        db_session: Database session
        center: Center the user works at (None for superAdmin)
        role: One of the staff roles
        first_name: First name
        last_name: Last name
        is_active: Whether the account is active

    Returns:
        The flushed User
    """
    user = User(
        first_name=first_name,
        last_name=last_name,
        email=f"user-{uuid.uuid4().hex[:12]}@clinic.test",
        role=role,
        center_id=center.id if center else None,
        is_active=is_active,
    )
    db_session.add(user)
    db_session.flush()
    return user


def create_patient(
    db_session: Session,
    center: Center,
    name: str = "Asha Verma",
    phone: Optional[str] = "9800000000",
    email: Optional[str] = "asha@example.com",
) -> Patient:
    patient = Patient(
        center_id=center.id,
        name=name,
        uhid=f"UHID{uuid.uuid4().hex[:8].upper()}",
        phone=phone,
        email=email,
        is_active=True,
    )
    db_session.add(patient)
    db_session.flush()
    return patient


def caller_for(user: User) -> CallerContext:
    """CallerContext for a staff user, as get_current_caller would build it."""
    return CallerContext(
        user_id=user.id,
        role=user.role,
        center_id=user.center_id,
        name=user.full_name,
    )


# ===== Workflow helpers =====

def create_consultation_bill(
    db_session: Session,
    caller: CallerContext,
    patient: Patient,
    doctor: User,
    registration: str = "500",
    consultation: str = "300",
    service_charges: Optional[list] = None,
    discount: str = "0",
    tax: str = "0",
) -> Billing:
    """Create a comprehensive consultation bill in draft."""
    fees = FeeInputs(
        registration_fee=RegistrationFeeInput(amount=Decimal(registration)),
        consultation_fee=ConsultationFeeInput(amount=Decimal(consultation)),
        service_charges=service_charges or [],
        discount=Decimal(discount),
        tax=Decimal(tax),
    )
    return BillingService.create_billing(
        db_session, caller, patient_id=patient.id, doctor_id=doctor.id, fees=fees
    )


def create_service_bill(
    db_session: Session,
    caller: CallerContext,
    patient: Patient,
    amount: str = "1000",
) -> Billing:
    """Create a simple service bill with one lab service line."""
    fees = FeeInputs(service_charges=[ServiceChargeInput(service_name="Lab tests", amount=Decimal(amount))])
    return BillingService.create_billing(
        db_session, caller, patient_id=patient.id, doctor_id=None, fees=fees, kind="simple_service"
    )


def create_billed_test_request(
    db_session: Session,
    doctor_caller: CallerContext,
    reception_caller: CallerContext,
    patient: Patient,
    amount: str = "1000",
) -> tuple[TestRequest, Billing]:
    """
    Create a test request and link it to a new unpaid service bill.

    Returns:
        Tuple of (test request in Billing_Generated, its bill)
    """
    test_request = TestRequestService.create_test_request(
        db_session, doctor_caller, patient_id=patient.id, test_types=["CBC", "Lipid Profile"]
    )
    billing = create_service_bill(db_session, reception_caller, patient, amount=amount)
    TestRequestService.link_billing(db_session, reception_caller, test_request.id, billing.id)
    return test_request, billing


def advance_to_testing_completed(
    db_session: Session,
    lab_caller: CallerContext,
    test_request: TestRequest,
    collector: User,
) -> TestRequest:
    """Walk a billed request through collection and testing."""
    from datetime import date

    TestRequestService.schedule_sample_collection(
        db_session, lab_caller, test_request.id, date(2026, 10, 20), "09:30", collector.id
    )
    TestRequestService.mark_sample_collected(db_session, lab_caller, test_request.id)
    TestRequestService.start_testing(db_session, lab_caller, test_request.id, collector.id)
    return TestRequestService.complete_testing(
        db_session, lab_caller, test_request.id, results="All values within range"
    )


def pay_in_full(db_session: Session, caller: CallerContext, billing: Billing) -> Billing:
    return PaymentService.process_payment(db_session, caller, billing.id, billing.remaining_amount, "cash")


# ===== Fixtures =====

@pytest.fixture
def center(db_session):
    return create_center(db_session)


@pytest.fixture
def other_center(db_session):
    return create_center(db_session, name="Second Center")


@pytest.fixture
def doctor(db_session, center):
    return create_user(db_session, center, ROLE_DOCTOR, first_name="Meera", last_name="Rao")


@pytest.fixture
def receptionist(db_session, center):
    return create_user(db_session, center, ROLE_RECEPTIONIST, first_name="Ravi", last_name="Kumar")


@pytest.fixture
def admin(db_session, center):
    return create_user(db_session, center, ROLE_ADMIN, first_name="Anil", last_name="Shah")


@pytest.fixture
def lab_technician(db_session, center):
    return create_user(db_session, center, "Lab Technician", first_name="Sunita", last_name="Das")


@pytest.fixture
def super_consultant(db_session, center):
    return create_user(db_session, center, ROLE_SUPER_CONSULTANT, first_name="Vikram", last_name="Iyer")


@pytest.fixture
def super_admin(db_session):
    return create_user(db_session, None, ROLE_SUPER_ADMIN, first_name="Root", last_name="Admin")


@pytest.fixture
def patient(db_session, center):
    return create_patient(db_session, center)


@pytest.fixture
def doctor_caller(doctor):
    return caller_for(doctor)


@pytest.fixture
def reception_caller(receptionist):
    return caller_for(receptionist)


@pytest.fixture
def admin_caller(admin):
    return caller_for(admin)


@pytest.fixture
def lab_caller(lab_technician):
    return caller_for(lab_technician)


@pytest.fixture
def consultant_caller(super_consultant):
    return caller_for(super_consultant)


@pytest.fixture
def super_admin_caller(super_admin):
    return caller_for(super_admin)


@pytest.fixture
def client(db_session):
    """
    API test client bound to the test session.

    Tests pick the acting staff member with ``act_as(client, caller)``.
    """
    from main import app

    app.dependency_overrides[get_db] = lambda: db_session
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def act_as(test_client: TestClient, caller: CallerContext) -> None:
    """Make subsequent requests of ``test_client`` authenticate as ``caller``."""
    test_client.app.dependency_overrides[get_current_caller] = lambda: caller
