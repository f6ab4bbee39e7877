"""Payment submission checks against the schedule and payment history"""

import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from peerlend_gateway.domain.exceptions import (
    AmountMismatch,
    DuplicatePendingPayment,
    ExceedsBalance,
    InvalidAmount,
    NoInstallmentsRemaining,
    TooEarly,
)
from peerlend_gateway.domain.models import Loan, Payment, PaymentStatus, PaymentTiming, Schedule, ScheduleEntry
from peerlend_gateway.domain.schedule import compute_schedule
from peerlend_gateway.domain.tracker import ZERO, total_paid

DEFAULT_AMOUNT_TOLERANCE = Decimal("1.00")
EARLY_PAYMENT_WINDOW_DAYS = 7


def classify_timing(entry: ScheduleEntry, submitted_at: datetime) -> PaymentTiming:
    """Lateness is a classification, never a reason to reject"""
    submitted_on = submitted_at.date()
    if submitted_on <= entry.due_date:
        return PaymentTiming.ON_TIME
    if submitted_on <= entry.grace_period_end_date:
        return PaymentTiming.WITHIN_GRACE
    return PaymentTiming.OVERDUE


def validate_payment(
    loan: Loan,
    history: Iterable[Payment],
    amount: Decimal,
    submitted_at: datetime,
    schedule: Optional[Schedule] = None,
    tolerance: Decimal = DEFAULT_AMOUNT_TOLERANCE,
    early_window_days: int = EARLY_PAYMENT_WINDOW_DAYS,
    mode: Optional[str] = None,
    reference: Optional[str] = None,
) -> Payment:
    """
    Check a proposed payment and build the pending Payment record.

    Checks run in order and the first failure wins:
    1. amount must be positive                       -> InvalidAmount
    2. no other pending payment unless partials allowed -> DuplicatePendingPayment
    3. amount within the outstanding total, net of paid and pending
                                                     -> ExceedsBalance
    4. an installment exists at the cursor and, with partials disabled,
       amount matches what is still owed up to it within tolerance
                                                     -> NoInstallmentsRemaining / AmountMismatch
    5. not earlier than `early_window_days` before the due date -> TooEarly

    Returns:
        New Payment in `pending` against the loan's current installment
    """
    history = list(history)
    if schedule is None:
        schedule = compute_schedule(loan.terms)

    if amount <= 0:
        raise InvalidAmount("Payment amount must be greater than zero")

    if not loan.allow_partial_payment and any(p.status == PaymentStatus.PENDING for p in history):
        raise DuplicatePendingPayment(
            "There is already a pending payment awaiting approval. "
            "Only one payment at a time is allowed unless partial payments are enabled."
        )

    pending_total = sum((p.amount for p in history if p.status == PaymentStatus.PENDING), ZERO)
    outstanding = schedule.total_amount - total_paid(history) - pending_total
    if amount > outstanding:
        raise ExceedsBalance(
            f"Payment amount {amount} exceeds outstanding balance {outstanding} after payments awaiting approval"
        )

    entry = schedule.entry(loan.current_installment_number)
    if entry is None:
        raise NoInstallmentsRemaining("All installments have already been settled")

    if not loan.allow_partial_payment:
        # Owed through the cursor entry; earlier shortfalls carry forward
        expected = entry.cumulative_principal + entry.cumulative_interest - total_paid(history)
        if abs(amount - expected) > tolerance:
            raise AmountMismatch(
                f"Payment amount {amount} does not match expected installment {expected}. "
                "Partial payments are not allowed for this loan."
            )

    earliest = entry.due_date - timedelta(days=early_window_days)
    if submitted_at.date() < earliest:
        raise TooEarly(f"Payment for installment {entry.installment_number} can only be made from {earliest.isoformat()}")

    return Payment(
        id=uuid.uuid4(),
        loan_id=loan.id,
        installment_number=entry.installment_number,
        amount=amount,
        status=PaymentStatus.PENDING,
        created_at=submitted_at,
        timing=classify_timing(entry, submitted_at),
        mode=mode,
        reference=reference,
    )
