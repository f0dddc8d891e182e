"""
Test fixtures and shared setup.

Runs against an in-memory SQLite database by default (set TEST_DATABASE_URL to
point at Postgres instead). Every test runs inside a transaction that is
rolled back afterwards; the service's own commits become SAVEPOINT releases,
so the DB is always clean without truncating tables.

Pure rule/engine tests use the snapshot builders only and never touch the DB.
"""

import os
from datetime import date, timedelta
from decimal import Decimal

import pytest

# ── Override settings BEFORE importing app modules ────────────────────────────
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("ENVIRONMENT", "test")

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.database import build_engine, get_db
from app.main import app
from app.models import *  # noqa; ensures all models registered
from app.models.base import Base
from app.routers.auth import create_access_token
from app.services.audit.logger import NullAuditSink
from app.services.claims.identity import Identity, UserRole
from app.services.claims.service import ClaimsService
from app.services.scrubbing.engine import ClaimScrubber
from app.services.scrubbing.rules import RuleContext

# Fixed "today" for service-level tests so timely-filing maths is stable
TODAY = date(2025, 3, 15)

PATIENT_ID = "pat-1001"
PROVIDER_ID = "prov-2001"


# ── Test engine ───────────────────────────────────────────────────────────────
# A separate engine from app.database.engine: the in-memory DB is private to
# this StaticPool connection, so the app's own health checks cannot reset it.
test_engine = build_engine(os.environ.get("TEST_DATABASE_URL", "sqlite://"))


@pytest.fixture(scope="session")
def create_test_tables():
    """
    Create all tables once per test session.
    NOT autouse; only runs for tests that need DB fixtures.
    """
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def connection(create_test_tables):
    conn = test_engine.connect()
    transaction = conn.begin()
    yield conn
    transaction.rollback()
    conn.close()


@pytest.fixture
def db(connection) -> Session:
    """
    Provide a DB session that is rolled back after each test.
    Service commits release a SAVEPOINT instead of the outer transaction.
    """
    session = Session(bind=connection, join_transaction_mode="create_savepoint")
    yield session
    session.close()


@pytest.fixture
def client(db: Session) -> TestClient:
    """
    FastAPI test client with DB dependency overridden to use the test session.
    """

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ── Identities ────────────────────────────────────────────────────────────────


@pytest.fixture
def billing() -> Identity:
    return Identity(user_id="billing-1", role=UserRole.BILLING)


@pytest.fixture
def admin() -> Identity:
    return Identity(user_id="admin-1", role=UserRole.ADMIN)


@pytest.fixture
def patient() -> Identity:
    return Identity(user_id=PATIENT_ID, role=UserRole.PATIENT)


@pytest.fixture
def practitioner() -> Identity:
    return Identity(user_id=PROVIDER_ID, role=UserRole.PRACTITIONER)


def auth_header(identity: Identity) -> dict:
    """Build Authorization header with a fresh JWT for the given identity."""
    token = create_access_token({"user_id": identity.user_id, "role": identity.role})
    return {"Authorization": f"Bearer {token}"}


# ── Rule context & service ────────────────────────────────────────────────────


@pytest.fixture
def ctx() -> RuleContext:
    return RuleContext(
        today=TODAY,
        timely_filing_limit_days=90,
        timely_filing_warning_days=14,
        max_diagnosis_codes=12,
        payers_requiring_group_number=frozenset({"BCBS", "AETNA"}),
    )


@pytest.fixture
def scrubber() -> ClaimScrubber:
    # Sequential and unbounded: deterministic in tests
    return ClaimScrubber(max_workers=1, time_budget_ms=0)


@pytest.fixture
def service(db: Session, ctx: RuleContext) -> ClaimsService:
    """Service with the fixed rule context and the real DB audit sink."""
    return ClaimsService(
        db,
        scrubber=ClaimScrubber(max_workers=1, time_budget_ms=0),
        rule_context_factory=lambda: ctx,
    )


@pytest.fixture
def quiet_service(db: Session, ctx: RuleContext) -> ClaimsService:
    return ClaimsService(db, audit=NullAuditSink(), rule_context_factory=lambda: ctx)


# ── Data builders ─────────────────────────────────────────────────────────────


def claim_data(service_date: date, **overrides) -> dict:
    """
    A claim that passes every rule as of `service_date + 10 days`.
    Two lines: 99213 x1 @ 150.00 and 87880 x2 @ 50.00 → 250.00.
    """
    data = {
        "patient_id": PATIENT_ID,
        "provider_id": PROVIDER_ID,
        "patient": {
            "first_name": "Maria",
            "last_name": "Lopez",
            "date_of_birth": "1980-05-01",
            "gender": "F",
            "address": {
                "street": "12 Elm Street",
                "city": "Springfield",
                "state": "IL",
                "zip_code": "62704",
            },
        },
        "provider": {
            "first_name": "Alan",
            "last_name": "Grant",
            "npi": "1234567890",
            "tax_id": "12-3456789",
        },
        "insurance": {
            "payer_id": "AETNA",
            "payer_name": "Aetna",
            "policy_number": "POL-55512",
            "group_number": "GRP-001",
            "plan_type": "individual",
        },
        "service_date": service_date,
        "place_of_service": "11",
        "diagnosis_codes": ["J06.9", "R05.9"],
        "procedures": [
            {"code": "99213", "charge": "150.00", "units": 1, "diagnosis_pointers": [1]},
            {"code": "87880", "charge": "50.00", "units": 2, "diagnosis_pointers": [1, 2]},
        ],
        "total_charges": Decimal("250.00"),
    }
    data.update(overrides)
    return data


@pytest.fixture
def valid_snapshot() -> dict:
    """Engine input: a clean claim relative to TODAY."""
    snapshot = claim_data(TODAY - timedelta(days=10))
    snapshot["claim_number"] = "CLM-20250315-000001"
    return snapshot


@pytest.fixture
def make_claim(service, billing):
    """Create a persisted draft claim through the service (defaults to a clean one)."""

    def _make(identity=None, service_date=TODAY - timedelta(days=10), **overrides):
        data = claim_data(service_date, **overrides)
        return service.create_claim(data, identity or billing)

    return _make
