"""Amortization schedule generation for loan repayment"""

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple

from peerlend_gateway.domain.exceptions import InvalidTermsError
from peerlend_gateway.domain.models import (
    InterestType,
    LoanTerms,
    RepaymentFrequency,
    RepaymentType,
    Schedule,
    ScheduleEntry,
    TenureUnit,
)
from peerlend_gateway.utils.date_utils import add_days, add_months

CENT = Decimal("0.01")
ZERO = Decimal("0")

PERIODS_PER_YEAR = {
    RepaymentFrequency.WEEKLY: 52,
    RepaymentFrequency.BI_WEEKLY: 26,
    RepaymentFrequency.MONTHLY: 12,
    RepaymentFrequency.QUARTERLY: 4,
    RepaymentFrequency.SEMI_ANNUAL: 2,
    RepaymentFrequency.YEARLY: 1,
}

# Length of one repayment period: (days, months), exactly one of them non-zero
PERIOD_LENGTH = {
    RepaymentFrequency.WEEKLY: (7, 0),
    RepaymentFrequency.BI_WEEKLY: (14, 0),
    RepaymentFrequency.MONTHLY: (0, 1),
    RepaymentFrequency.QUARTERLY: (0, 3),
    RepaymentFrequency.SEMI_ANNUAL: (0, 6),
    RepaymentFrequency.YEARLY: (0, 12),
}

# Day-count conventions used only for the APR figure
DAYS_PER_MONTH = Decimal("30.44")
DAYS_PER_YEAR = Decimal("365.25")


def to_money(value: Decimal) -> Decimal:
    """Round to the currency's minor unit (half-up)"""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def tenure_in_months(terms: LoanTerms) -> int:
    if terms.tenure_unit == TenureUnit.YEARS:
        return terms.tenure_value * 12
    return terms.tenure_value


def installment_count(terms: LoanTerms) -> int:
    """
    Number of installments for the tenure at the repayment frequency.

    tenure_months * periods_per_year / 12, rounded half-up, never below 1:
        12 months -> weekly 52, bi_weekly 26, monthly 12,
                     quarterly 4, semi_annual 2, yearly 1
        1 month weekly -> 4, 18 months yearly -> 2
    """
    if terms.repayment_type == RepaymentType.FULL_PAYMENT:
        return 1
    periods = Decimal(tenure_in_months(terms)) * PERIODS_PER_YEAR[terms.repayment_frequency] / 12
    return max(int(periods.quantize(Decimal("1"), rounding=ROUND_HALF_UP)), 1)


def periodic_rate(terms: LoanTerms) -> Decimal:
    return terms.interest_rate / 100 / PERIODS_PER_YEAR[terms.repayment_frequency]


def due_date_for(start_date: date, frequency: RepaymentFrequency, period: int) -> date:
    """Due date of the k-th period, always offset from the start date"""
    days, months = PERIOD_LENGTH[frequency]
    if days:
        return add_days(start_date, days * period)
    return add_months(start_date, months * period)


def validate_terms(terms: LoanTerms) -> None:
    """Raise InvalidTermsError when terms cannot produce a schedule"""
    if terms.principal <= 0:
        raise InvalidTermsError("Principal amount must be positive")
    if to_money(terms.principal) != terms.principal:
        raise InvalidTermsError("Principal amount must be expressed in whole minor units")
    if terms.interest_rate < 0:
        raise InvalidTermsError("Interest rate cannot be negative")
    if terms.tenure_value <= 0:
        raise InvalidTermsError("Tenure must be positive")
    if terms.grace_period_days < 0:
        raise InvalidTermsError("Grace period cannot be negative")
    if terms.processing_fee < 0 or terms.other_charges < 0:
        raise InvalidTermsError("Fees and charges cannot be negative")
    if terms.late_payment_penalty < 0:
        raise InvalidTermsError("Late payment penalty cannot be negative")


def _amortize(principal: Decimal, count: int, per_period) -> List[Tuple[Decimal, Decimal]]:
    """
    Walk the balance down period by period.

    per_period(balance) returns the (principal, interest) the period would
    like to charge. Principal is capped at the remaining balance and the
    final period always takes whatever is left, so portions sum to the
    principal exactly.
    """
    rows = []
    balance = principal
    for period in range(1, count + 1):
        principal_part, interest = per_period(balance)
        if period == count:
            principal_part = balance
        else:
            principal_part = min(max(principal_part, ZERO), balance)
        balance -= principal_part
        rows.append((principal_part, interest))
    return rows


def _emi_reducing(terms: LoanTerms, count: int) -> Tuple[List[Tuple[Decimal, Decimal]], Decimal]:
    principal = terms.principal
    rate = periodic_rate(terms)

    if rate == 0:
        # No interest: equal division of principal
        installment = to_money(principal / count)
    else:
        # EMI = P * r * (1+r)^N / ((1+r)^N - 1)
        growth = (1 + rate) ** count
        installment = to_money(principal * rate * growth / (growth - 1))

    def per_period(balance: Decimal) -> Tuple[Decimal, Decimal]:
        interest = to_money(balance * rate)
        return installment - interest, interest

    return _amortize(principal, count, per_period), installment


def _emi_fixed(terms: LoanTerms, count: int) -> Tuple[List[Tuple[Decimal, Decimal]], Decimal]:
    principal = terms.principal
    # Flat interest on the original principal, constant every period
    interest = to_money(principal * periodic_rate(terms))
    principal_part = to_money(principal / count)

    rows = _amortize(principal, count, lambda balance: (principal_part, interest))
    return rows, principal_part + interest


def _interest_only(terms: LoanTerms, count: int) -> List[Tuple[Decimal, Decimal]]:
    interest = to_money(terms.principal * periodic_rate(terms))
    return _amortize(terms.principal, count, lambda balance: (ZERO, interest))


def _full_payment_interest(terms: LoanTerms) -> Decimal:
    """Interest accrued over the whole tenure under the selected interest type"""
    years = Decimal(tenure_in_months(terms)) / 12
    annual_rate = terms.interest_rate / 100

    if terms.interest_type == InterestType.FIXED:
        return to_money(terms.principal * annual_rate * years)

    # Reducing: compounded at the repayment frequency
    periods_per_year = PERIODS_PER_YEAR[terms.repayment_frequency]
    growth = (1 + annual_rate / periods_per_year) ** (periods_per_year * years)
    return to_money(terms.principal * (growth - 1))


def annual_percentage_rate(terms: LoanTerms, total_interest: Decimal) -> Decimal:
    """
    APR = (interest + charges) / principal / tenure_days * 365 * 100

    Tenure days use 30.44 days per month and 365.25 days per year.
    """
    if terms.tenure_unit == TenureUnit.YEARS:
        tenure_days = terms.tenure_value * DAYS_PER_YEAR
    else:
        tenure_days = terms.tenure_value * DAYS_PER_MONTH
    total_cost = total_interest + terms.processing_fee + terms.other_charges
    return to_money(total_cost / terms.principal / tenure_days * 365 * 100)


def effective_interest_rate(terms: LoanTerms) -> Decimal:
    """Effective annual rate (percent) compounded at the repayment frequency"""
    periods_per_year = PERIODS_PER_YEAR[terms.repayment_frequency]
    growth = (1 + terms.interest_rate / 100 / periods_per_year) ** periods_per_year
    return to_money((growth - 1) * 100)


def compute_schedule(terms: LoanTerms) -> Schedule:
    """
    Turn loan terms into an ordered amortization schedule.

    Pure: the same terms always produce the same schedule, so the schedule
    is recomputed on demand rather than stored.

    installment_amount is set for every EMI schedule even though the final
    entry carries the rounding residue and can differ by a few cents.

    Raises:
        InvalidTermsError: principal <= 0, tenure <= 0, rate < 0, or other
            out-of-range terms

    Example:
        100,000 at 12% reducing, 12 months, monthly EMI
        -> 11 installments of 8,884.88 and a final 8,884.85,
           total interest 6,618.53
    """
    validate_terms(terms)

    count = installment_count(terms)
    installment: Optional[Decimal] = None

    if terms.repayment_type == RepaymentType.EMI:
        if terms.interest_type == InterestType.FIXED:
            rows, installment = _emi_fixed(terms, count)
        else:
            rows, installment = _emi_reducing(terms, count)
        due_dates = [due_date_for(terms.start_date, terms.repayment_frequency, k) for k in range(1, count + 1)]
    elif terms.repayment_type == RepaymentType.INTEREST_ONLY:
        rows = _interest_only(terms, count)
        due_dates = [due_date_for(terms.start_date, terms.repayment_frequency, k) for k in range(1, count + 1)]
    elif terms.repayment_type == RepaymentType.FULL_PAYMENT:
        rows = [(terms.principal, _full_payment_interest(terms))]
        due_dates = [add_months(terms.start_date, tenure_in_months(terms))]
    else:
        raise InvalidTermsError(f"Unsupported repayment type: {terms.repayment_type}")

    entries = []
    balance = terms.principal
    cumulative_principal = ZERO
    cumulative_interest = ZERO
    for number, ((principal_part, interest), due_date) in enumerate(zip(rows, due_dates), start=1):
        total = principal_part + interest
        balance -= principal_part
        cumulative_principal += principal_part
        cumulative_interest += interest
        entries.append(
            ScheduleEntry(
                installment_number=number,
                due_date=due_date,
                principal_amount=principal_part,
                interest_amount=interest,
                total_amount=total,
                remaining_balance=balance,
                cumulative_principal=cumulative_principal,
                cumulative_interest=cumulative_interest,
                grace_period_end_date=add_days(due_date, terms.grace_period_days),
                late_payment_fee=to_money(total * terms.late_payment_penalty / 100),
            )
        )

    total_interest = cumulative_interest
    total_amount = terms.principal + total_interest
    total_charges = terms.processing_fee + terms.other_charges

    return Schedule(
        entries=entries,
        total_interest=total_interest,
        total_amount=total_amount,
        installment_amount=installment,
        installment_count=len(entries),
        total_charges=total_charges,
        total_cost_of_credit=total_amount + total_charges,
        annual_percentage_rate=annual_percentage_rate(terms, total_interest),
        effective_interest_rate=effective_interest_rate(terms),
    )


def next_installment(schedule: Schedule, cursor: int) -> Optional[ScheduleEntry]:
    """Schedule entry the loan's cursor points at, or None once all are settled"""
    return schedule.entry(cursor)
