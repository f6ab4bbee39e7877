"""Loan offer lifecycle"""

from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from peerlend_gateway.domain.exceptions import InvalidLoanTransition
from peerlend_gateway.domain.models import Loan, LoanStatus, Payment, Schedule
from peerlend_gateway.domain.tracker import ZERO, total_paid
from peerlend_gateway.utils.date_utils import utcnow


def _require_status(loan: Loan, expected: LoanStatus, action: str) -> None:
    if loan.status != expected:
        raise InvalidLoanTransition(f"Cannot {action} loan {loan.id} in status {loan.status.value}")


def accept_loan(loan: Loan, now: Optional[datetime] = None) -> Loan:
    """Borrower accepts the offer; terms are frozen from here on"""
    _require_status(loan, LoanStatus.PENDING, "accept")
    now = now or utcnow()
    return replace(loan, status=LoanStatus.ACCEPTED, current_installment_number=1, accepted_at=now, updated_at=now)


def decline_loan(loan: Loan, now: Optional[datetime] = None) -> Loan:
    _require_status(loan, LoanStatus.PENDING, "decline")
    return replace(loan, status=LoanStatus.DECLINED, updated_at=now or utcnow())


def cancel_loan(loan: Loan, now: Optional[datetime] = None) -> Loan:
    _require_status(loan, LoanStatus.PENDING, "cancel")
    return replace(loan, status=LoanStatus.CANCELLED, updated_at=now or utcnow())


def complete_if_settled(
    loan: Loan,
    schedule: Schedule,
    payments: Iterable[Payment] = (),
    tolerance: Decimal = ZERO,
) -> Loan:
    """
    Accepted loans complete once approved payments cover the schedule total.

    The cursor position alone never completes a loan; `tolerance` allows the
    same per-payment slack the amount match accepts.
    """
    if loan.status != LoanStatus.ACCEPTED:
        return loan
    if total_paid(payments) < schedule.total_amount - tolerance:
        return loan
    return replace(loan, status=LoanStatus.COMPLETED)
