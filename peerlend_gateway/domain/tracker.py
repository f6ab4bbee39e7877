"""Outstanding/due/overdue figures and installment cursor advancement"""

from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from peerlend_gateway.domain.models import Loan, OutstandingSummary, Payment, PaymentStatus, Schedule

ZERO = Decimal("0")
CENT = Decimal("0.01")


def total_paid(payments: Iterable[Payment]) -> Decimal:
    """Sum of approved payment amounts"""
    return sum((p.amount for p in payments if p.status == PaymentStatus.PAID), ZERO)


def installment_settled(
    schedule: Schedule,
    payments: Iterable[Payment],
    installment_number: int,
    tolerance: Decimal = ZERO,
) -> bool:
    """True when approved payments cover every entry up to and including this one, less `tolerance`"""
    entry = schedule.entry(installment_number)
    if entry is None:
        return True
    return total_paid(payments) >= entry.cumulative_principal + entry.cumulative_interest - tolerance


def compute_outstanding(
    loan: Loan,
    payments: Iterable[Payment],
    schedule: Schedule,
    as_of: Optional[date] = None,
) -> OutstandingSummary:
    """
    Recompute repayment figures from the schedule and the payment history.

    Approved payments are pooled and allocated oldest entry first; within an
    entry interest is covered before principal. An entry with zero principal
    (interest-only periods) never recognizes principal.

    - outstanding_principal: principal minus recognized principal
    - outstanding_total: schedule total minus everything paid
    - due_amount: uncovered part of the next entry, once its due date arrives
    - overdue_amount: uncovered parts of entries whose due date has passed
    """
    if as_of is None:
        as_of = date.today()

    paid = total_paid(payments)
    remaining = paid
    principal_paid = ZERO
    interest_paid = ZERO
    due_amount = ZERO
    overdue_amount = ZERO
    next_entry = None
    overdue_installments = []

    for entry in schedule.entries:
        allocation = min(remaining, entry.total_amount)
        remaining -= allocation

        interest_part = min(allocation, entry.interest_amount)
        interest_paid += interest_part
        principal_paid += allocation - interest_part

        uncovered = entry.total_amount - allocation
        if uncovered <= 0:
            continue

        if next_entry is None:
            next_entry = entry
            if entry.due_date <= as_of:
                due_amount = uncovered

        if entry.due_date < as_of:
            overdue_amount += uncovered
            overdue_installments.append(entry.installment_number)

    outstanding_total = max(schedule.total_amount - paid, ZERO)
    completion = min(paid / schedule.total_amount * 100, Decimal("100")).quantize(CENT)

    return OutstandingSummary(
        outstanding_principal=loan.terms.principal - principal_paid,
        outstanding_total=outstanding_total,
        due_amount=due_amount,
        overdue_amount=overdue_amount,
        total_paid=paid,
        principal_paid=principal_paid,
        interest_paid=interest_paid,
        completion_percentage=completion,
        is_complete=outstanding_total == 0,
        next_installment=next_entry,
        overdue_installments=overdue_installments,
    )


def advance_installment(loan: Loan, just_approved_installment: int) -> Loan:
    """
    Move the cursor past the installment that was just approved.

    Only moves when the cursor still points at that installment, so a
    retried approval never advances twice.
    """
    if loan.current_installment_number != just_approved_installment:
        return loan
    return replace(loan, current_installment_number=just_approved_installment + 1)
