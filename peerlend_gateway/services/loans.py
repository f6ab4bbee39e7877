"""Loan offer orchestration: creation, lifecycle and read models"""

import logging
import uuid
from datetime import date
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from peerlend_gateway.config import settings
from peerlend_gateway.domain.exceptions import (
    ConcurrentUpdateError,
    InvalidTermsError,
    LoanNotFoundError,
    NotAuthorizedError,
)
from peerlend_gateway.domain.loans import accept_loan, cancel_loan, decline_loan
from peerlend_gateway.domain.models import Loan, LoanTerms, OutstandingSummary, Payment, Schedule
from peerlend_gateway.domain.schedule import compute_schedule
from peerlend_gateway.domain.tracker import compute_outstanding
from peerlend_gateway.infrastructure.database.repositories import LoanRepository, PaymentRepository
from peerlend_gateway.infrastructure.observability.metrics import schedule_counter

logger = logging.getLogger(__name__)


def require_party(loan: Loan, user_id: str, role: str | None = None) -> None:
    """
    Authorization seam: lenders decide on payments, borrowers submit them.

    role is "lender", "borrower", or None for either party.
    """
    allowed = {
        "lender": {loan.lender_id},
        "borrower": {loan.borrower_id},
        None: {loan.lender_id, loan.borrower_id},
    }[role]
    if user_id not in allowed:
        raise NotAuthorizedError(f"User {user_id} is not allowed to act on loan {loan.id}")


def schedule_for(loan: Loan) -> Schedule:
    schedule = compute_schedule(loan.terms)
    schedule_counter.labels(repayment_type=loan.terms.repayment_type.value).inc()
    return schedule


class LoanService:
    """Lender offers and borrower decisions on them"""

    def __init__(self, db: Session):
        self.db = db
        self.loans = LoanRepository(db)
        self.payments = PaymentRepository(db)

    def create_offer(self, lender_id: str, borrower_id: str, terms: LoanTerms) -> Tuple[Loan, Schedule]:
        """
        Persist a new offer after checking the terms produce a schedule.

        Raises:
            InvalidTermsError: Terms out of range or lender == borrower
        """
        if lender_id == borrower_id:
            raise InvalidTermsError("Lender and borrower must be different users")
        if terms.grace_period_days > settings.max_grace_period_days:
            raise InvalidTermsError(f"Grace period cannot exceed {settings.max_grace_period_days} days")
        if terms.late_payment_penalty > settings.max_late_payment_penalty:
            raise InvalidTermsError(f"Late payment penalty cannot exceed {settings.max_late_payment_penalty}%")

        schedule = schedule_for(Loan(id=uuid.uuid4(), lender_id=lender_id, borrower_id=borrower_id, terms=terms))
        loan = self.loans.create_loan(lender_id, borrower_id, terms)
        self.db.commit()
        return loan, schedule

    def get_loan(self, loan_id: uuid.UUID, user_id: str) -> Loan:
        loan = self.loans.get_loan(loan_id)
        if loan is None:
            raise LoanNotFoundError(f"Loan {loan_id} not found")
        require_party(loan, user_id)
        return loan

    def list_loans(self, user_id: str) -> List[Loan]:
        return self.loans.get_loans_for_user(user_id)

    def accept(self, loan_id: uuid.UUID, borrower_id: str) -> Loan:
        return self._change_status(loan_id, borrower_id, "borrower", accept_loan)

    def decline(self, loan_id: uuid.UUID, borrower_id: str) -> Loan:
        return self._change_status(loan_id, borrower_id, "borrower", decline_loan)

    def cancel(self, loan_id: uuid.UUID, lender_id: str) -> Loan:
        return self._change_status(loan_id, lender_id, "lender", cancel_loan)

    def _change_status(self, loan_id: uuid.UUID, user_id: str, role: str, transition) -> Loan:
        loan = self.get_loan(loan_id, user_id)
        require_party(loan, user_id, role)

        updated = transition(loan)
        if not self.loans.update_status(updated, expected_version=loan.version):
            self.db.rollback()
            raise ConcurrentUpdateError(f"Loan {loan_id} was modified concurrently")
        self.db.commit()

        logger.info(
            "Loan status changed",
            extra={"loan_id": str(loan_id), "from_status": loan.status.value, "to_status": updated.status.value},
        )
        return self.loans.get_loan(loan_id)

    def schedule(self, loan_id: uuid.UUID, user_id: str) -> Tuple[Loan, Schedule]:
        loan = self.get_loan(loan_id, user_id)
        return loan, schedule_for(loan)

    def outstanding(
        self, loan_id: uuid.UUID, user_id: str, as_of: Optional[date] = None
    ) -> Tuple[Loan, Schedule, OutstandingSummary]:
        """Due/overdue figures, always derived from the schedule"""
        loan = self.get_loan(loan_id, user_id)
        schedule = schedule_for(loan)
        history = self.payments.get_loan_payments(loan.id)
        return loan, schedule, compute_outstanding(loan, history, schedule, as_of=as_of)

    def payments_for(self, loan_id: uuid.UUID, user_id: str) -> List[Payment]:
        loan = self.get_loan(loan_id, user_id)
        return self.payments.get_loan_payments(loan.id)
