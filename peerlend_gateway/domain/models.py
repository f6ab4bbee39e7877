"""Domain models - pure Python dataclasses representing lending entities"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional


class InterestType(str, Enum):
    FIXED = "fixed"
    REDUCING = "reducing"


class TenureUnit(str, Enum):
    MONTHS = "months"
    YEARS = "years"


class RepaymentType(str, Enum):
    EMI = "emi"
    INTEREST_ONLY = "interest_only"
    FULL_PAYMENT = "full_payment"


class RepaymentFrequency(str, Enum):
    WEEKLY = "weekly"
    BI_WEEKLY = "bi_weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUAL = "semi_annual"
    YEARLY = "yearly"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REJECTED = "rejected"
    EXPIRED = "expired"


class PaymentTiming(str, Enum):
    """Where a submission landed relative to its installment's due date"""

    ON_TIME = "on_time"
    WITHIN_GRACE = "within_grace"
    OVERDUE = "overdue"


class LoanStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class RejectionReason(str, Enum):
    INVALID_AMOUNT = "invalid_amount"
    DUPLICATE_PENDING_PAYMENT = "duplicate_pending_payment"
    EXCEEDS_BALANCE = "exceeds_balance"
    AMOUNT_MISMATCH = "amount_mismatch"
    NO_INSTALLMENTS_REMAINING = "no_installments_remaining"
    TOO_EARLY = "too_early"
    LOAN_NOT_ACTIVE = "loan_not_active"


@dataclass(frozen=True)
class LoanTerms:
    """Agreed loan terms, immutable once the offer is accepted"""

    principal: Decimal
    interest_rate: Decimal  # annual, percent
    interest_type: InterestType
    tenure_value: int
    tenure_unit: TenureUnit
    repayment_type: RepaymentType
    start_date: date
    repayment_frequency: RepaymentFrequency = RepaymentFrequency.MONTHLY
    grace_period_days: int = 0
    allow_partial_payment: bool = False
    processing_fee: Decimal = Decimal("0")
    other_charges: Decimal = Decimal("0")
    late_payment_penalty: Decimal = Decimal("0")  # percent of the installment


@dataclass(frozen=True)
class ScheduleEntry:
    """Single installment in an amortization schedule"""

    installment_number: int
    due_date: date
    principal_amount: Decimal
    interest_amount: Decimal
    total_amount: Decimal
    remaining_balance: Decimal
    cumulative_principal: Decimal
    cumulative_interest: Decimal
    grace_period_end_date: date
    late_payment_fee: Decimal


@dataclass(frozen=True)
class Schedule:
    """Amortization schedule derived from LoanTerms, never persisted"""

    entries: List[ScheduleEntry]
    total_interest: Decimal
    total_amount: Decimal
    installment_amount: Optional[Decimal]
    installment_count: int
    total_charges: Decimal
    total_cost_of_credit: Decimal
    annual_percentage_rate: Decimal
    effective_interest_rate: Decimal

    def entry(self, installment_number: int) -> Optional[ScheduleEntry]:
        """Look up an entry by its 1-based installment number"""
        if 1 <= installment_number <= len(self.entries):
            return self.entries[installment_number - 1]
        return None


@dataclass(frozen=True)
class Loan:
    """An offer between a lender and a borrower, with its repayment cursor"""

    id: uuid.UUID
    lender_id: str
    borrower_id: str
    terms: LoanTerms
    status: LoanStatus = LoanStatus.PENDING
    current_installment_number: int = 1
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None

    @property
    def allow_partial_payment(self) -> bool:
        return self.terms.allow_partial_payment


@dataclass(frozen=True)
class Payment:
    """Borrower payment awaiting or having received a lender decision"""

    id: uuid.UUID
    loan_id: uuid.UUID
    installment_number: int
    amount: Decimal
    status: PaymentStatus
    created_at: datetime
    timing: PaymentTiming = PaymentTiming.ON_TIME
    mode: Optional[str] = None
    reference: Optional[str] = None
    rejection_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


@dataclass(frozen=True)
class OutstandingSummary:
    """Aggregate repayment figures recomputed from schedule and history"""

    outstanding_principal: Decimal
    outstanding_total: Decimal
    due_amount: Decimal
    overdue_amount: Decimal
    total_paid: Decimal
    principal_paid: Decimal
    interest_paid: Decimal
    completion_percentage: Decimal
    is_complete: bool
    next_installment: Optional[ScheduleEntry] = None
    overdue_installments: List[int] = field(default_factory=list)
