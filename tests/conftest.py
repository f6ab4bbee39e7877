"""Pytest fixtures for testing"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, Generator
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from peerlend_gateway.api.main import create_app
from peerlend_gateway.api.dependencies import get_notification_client
from peerlend_gateway.infrastructure.database.models import Base
from peerlend_gateway.infrastructure.database.session import get_db
from peerlend_gateway.domain.models import (
    InterestType,
    Loan,
    LoanTerms,
    RepaymentFrequency,
    RepaymentType,
    TenureUnit,
)
from peerlend_gateway.services.loans import LoanService


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

LENDER = "lender-1"
BORROWER = "borrower-1"


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db: Session) -> Callable[[], Session]:
    """Independent sessions against the same test database"""
    return TestingSessionLocal


@pytest.fixture
def notifier() -> AsyncMock:
    """Event sink standing in for the notification webhook"""
    return AsyncMock()


@pytest.fixture
def client(db: Session, notifier: AsyncMock) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_client] = lambda: notifier
    return TestClient(app)


@pytest.fixture
def make_terms() -> Callable[..., LoanTerms]:
    """
    Terms factory; defaults to the reference EMI loan:
    100,000 at 12% reducing, 12 months, monthly, starting 2025-01-01
    """

    def factory(**overrides) -> LoanTerms:
        values = dict(
            principal=Decimal("100000"),
            interest_rate=Decimal("12"),
            interest_type=InterestType.REDUCING,
            tenure_value=12,
            tenure_unit=TenureUnit.MONTHS,
            repayment_type=RepaymentType.EMI,
            repayment_frequency=RepaymentFrequency.MONTHLY,
            start_date=date(2025, 1, 1),
        )
        values.update(overrides)
        return LoanTerms(**values)

    return factory


@pytest.fixture
def make_loan(db: Session) -> Callable[..., Loan]:
    """Persist an offer and have the borrower accept it"""

    def factory(terms: LoanTerms) -> Loan:
        service = LoanService(db)
        loan, _ = service.create_offer(LENDER, BORROWER, terms)
        return service.accept(loan.id, BORROWER)

    return factory


def at(year: int, month: int, day: int, hour: int = 12) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


@pytest.fixture
def when() -> Callable[..., datetime]:
    """UTC timestamp helper: when(2025, 1, 28)"""
    return at
