"""Payment submission and lender decisions, each as one database transaction"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from peerlend_gateway.config import settings
from peerlend_gateway.domain.exceptions import (
    ConcurrentUpdateError,
    DuplicatePendingPayment,
    InvalidPaymentTransition,
    LoanNotActive,
    LoanNotFoundError,
    PaymentNotFoundError,
)
from peerlend_gateway.domain.models import Loan, LoanStatus, Payment
from peerlend_gateway.domain.payments import approve_payment, reject_payment
from peerlend_gateway.domain.validation import validate_payment
from peerlend_gateway.infrastructure.database.repositories import LoanRepository, PaymentRepository
from peerlend_gateway.services.loans import require_party, schedule_for
from peerlend_gateway.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

# One automatic retry after losing the submission race
SUBMIT_ATTEMPTS = 2


class PaymentService:
    """Runs the repayment engine against the loan and payment stores"""

    def __init__(
        self,
        db: Session,
        tolerance: Decimal | None = None,
        early_window_days: int | None = None,
    ):
        self.db = db
        self.loans = LoanRepository(db)
        self.payments = PaymentRepository(db)
        self.tolerance = tolerance if tolerance is not None else settings.amount_tolerance
        self.early_window_days = (
            early_window_days if early_window_days is not None else settings.early_payment_window_days
        )

    def _load_loan(self, loan_id: uuid.UUID) -> Loan:
        loan = self.loans.get_loan(loan_id)
        if loan is None:
            raise LoanNotFoundError(f"Loan {loan_id} not found")
        return loan

    def _load_payment(self, payment_id: uuid.UUID) -> Payment:
        payment = self.payments.get_payment(payment_id)
        if payment is None:
            raise PaymentNotFoundError(f"Payment {payment_id} not found")
        return payment

    def submit(
        self,
        loan_id: uuid.UUID,
        borrower_id: str,
        amount: Decimal,
        submitted_at: Optional[datetime] = None,
        mode: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> Tuple[Payment, Loan]:
        """
        Validate and record a borrower payment as `pending`.

        The pending check and the insert commit together with a
        compare-and-swap on the loan version. The loser of a concurrent
        submission rolls back and retries once; the retry sees the winner's
        pending payment.

        Raises:
            PaymentRejected subclasses, LoanNotFoundError, NotAuthorizedError
        """
        submitted_at = submitted_at or utcnow()

        for attempt in range(1, SUBMIT_ATTEMPTS + 1):
            loan = self._load_loan(loan_id)
            require_party(loan, borrower_id, "borrower")
            if loan.status != LoanStatus.ACCEPTED:
                raise LoanNotActive(f"Payments can only be made for accepted loans (loan is {loan.status.value})")

            history = self.payments.get_loan_payments(loan.id)
            payment = validate_payment(
                loan,
                history,
                amount,
                submitted_at,
                schedule=schedule_for(loan),
                tolerance=self.tolerance,
                early_window_days=self.early_window_days,
                mode=mode,
                reference=reference,
            )

            if self.loans.claim(loan.id, expected_version=loan.version):
                created = self.payments.create_payment(payment)
                self.db.commit()
                return created, loan

            self.db.rollback()
            logger.warning(
                "Payment submission lost a concurrent update",
                extra={"loan_id": str(loan_id), "attempt": attempt},
            )

        if not loan.allow_partial_payment:
            raise DuplicatePendingPayment("Another payment for this loan was submitted at the same time")
        raise ConcurrentUpdateError(f"Loan {loan_id} is being updated concurrently, please retry")

    def approve(self, payment_id: uuid.UUID, lender_id: str, now: Optional[datetime] = None) -> Tuple[Payment, Loan]:
        """
        Mark a pending payment paid, advance the installment cursor and
        complete the loan once the schedule total is paid.

        Both writes are conditional (payment still pending, cursor still at
        the approved installment) and commit together or not at all.
        """
        payment = self._load_payment(payment_id)
        loan = self._load_loan(payment.loan_id)
        require_party(loan, lender_id, "lender")

        history = self.payments.get_loan_payments(loan.id)
        paid, advanced = approve_payment(
            payment, loan, history=history, schedule=schedule_for(loan), now=now, tolerance=self.tolerance
        )

        if not self.payments.resolve(paid):
            self.db.rollback()
            raise InvalidPaymentTransition(f"Payment {payment_id} was already resolved")

        if advanced.current_installment_number != loan.current_installment_number:
            status = advanced.status if advanced.status != loan.status else None
            if not self.loans.advance_installment(loan.id, loan.current_installment_number, status=status):
                self.db.rollback()
                raise ConcurrentUpdateError(f"Installment cursor for loan {loan.id} moved concurrently")

        self.db.commit()
        return paid, advanced

    def reject(
        self,
        payment_id: uuid.UUID,
        lender_id: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[Payment, Loan]:
        payment = self._load_payment(payment_id)
        loan = self._load_loan(payment.loan_id)
        require_party(loan, lender_id, "lender")

        rejected = reject_payment(payment, reason, now=now)
        if not self.payments.resolve(rejected):
            self.db.rollback()
            raise InvalidPaymentTransition(f"Payment {payment_id} was already resolved")

        self.db.commit()
        return rejected, loan
