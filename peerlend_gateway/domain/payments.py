"""Payment lifecycle: pending -> paid | rejected | expired"""

from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional, Tuple

from peerlend_gateway.domain.exceptions import ExceedsBalance, InvalidPaymentTransition
from peerlend_gateway.domain.loans import complete_if_settled
from peerlend_gateway.domain.models import Loan, Payment, PaymentStatus, Schedule
from peerlend_gateway.domain.schedule import compute_schedule
from peerlend_gateway.domain.tracker import ZERO, advance_installment, installment_settled, total_paid
from peerlend_gateway.domain.validation import DEFAULT_AMOUNT_TOLERANCE
from peerlend_gateway.utils.date_utils import utcnow

PAYMENT_EXPIRY = timedelta(hours=24)

TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.PAID, PaymentStatus.REJECTED, PaymentStatus.EXPIRED},
    PaymentStatus.PAID: set(),
    PaymentStatus.REJECTED: set(),
    PaymentStatus.EXPIRED: set(),
}


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in TRANSITIONS[current]


def _transition(payment: Payment, target: PaymentStatus) -> None:
    if not can_transition(payment.status, target):
        raise InvalidPaymentTransition(
            f"Payment {payment.id} is {payment.status.value} and cannot become {target.value}"
        )


def approve_payment(
    payment: Payment,
    loan: Loan,
    history: Iterable[Payment] = (),
    schedule: Optional[Schedule] = None,
    now: Optional[datetime] = None,
    tolerance: Decimal = DEFAULT_AMOUNT_TOLERANCE,
) -> Tuple[Payment, Loan]:
    """
    Lender approval: mark the payment paid and advance the loan's cursor.

    The cursor moves one step once approved payments cover the installment
    it points at, so a short payment leaves it in place. Without partial
    payments an installment counts as covered within `tolerance`; with
    partial payments it must be covered exactly. The loan completes once
    the schedule total is paid, wherever the cursor stands.

    Raises:
        InvalidPaymentTransition: payment is no longer pending
        ExceedsBalance: approval would take the total paid past the schedule total

    Returns:
        (paid payment, loan with advanced cursor and, once the schedule
        total is paid, completed status)
    """
    _transition(payment, PaymentStatus.PAID)
    now = now or utcnow()
    if schedule is None:
        schedule = compute_schedule(loan.terms)

    paid = replace(payment, status=PaymentStatus.PAID, paid_at=now, resolved_at=now)
    settled_history = [p for p in history if p.id != payment.id] + [paid]

    paid_total = total_paid(settled_history)
    if paid_total > schedule.total_amount:
        raise ExceedsBalance(
            f"Approving payment {payment.id} would bring total paid to {paid_total}, "
            f"above the schedule total {schedule.total_amount}"
        )

    if loan.allow_partial_payment:
        tolerance = ZERO

    cursor = loan.current_installment_number
    advanced = loan
    if schedule.entry(cursor) is not None and installment_settled(schedule, settled_history, cursor, tolerance):
        advanced = advance_installment(loan, cursor)
    return paid, complete_if_settled(advanced, schedule, settled_history, tolerance)


def reject_payment(payment: Payment, reason: Optional[str] = None, now: Optional[datetime] = None) -> Payment:
    """Lender rejection with an optional free-text reason"""
    _transition(payment, PaymentStatus.REJECTED)
    return replace(payment, status=PaymentStatus.REJECTED, rejection_reason=reason, resolved_at=now or utcnow())


def expire_payment(payment: Payment, now: Optional[datetime] = None) -> Payment:
    _transition(payment, PaymentStatus.EXPIRED)
    return replace(
        payment,
        status=PaymentStatus.EXPIRED,
        rejection_reason="Expired after 24 hours without a lender decision",
        resolved_at=now or utcnow(),
    )


def is_expired(payment: Payment, now: datetime, expiry: timedelta = PAYMENT_EXPIRY) -> bool:
    """Pending payments older than the expiry window are due for the sweep"""
    return payment.status == PaymentStatus.PENDING and payment.created_at < now - expiry
