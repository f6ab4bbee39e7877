"""Pydantic schemas for API request/response validation"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from peerlend_gateway.domain.models import (
    InterestType,
    Loan,
    LoanStatus,
    LoanTerms,
    OutstandingSummary,
    Payment,
    PaymentStatus,
    PaymentTiming,
    RepaymentFrequency,
    RepaymentType,
    Schedule,
    ScheduleEntry,
    TenureUnit,
)


class LoanTermsSchema(BaseModel):
    """Loan terms as offered by the lender"""

    principal: Decimal = Field(..., description="Principal amount in currency units")
    interest_rate: Decimal = Field(..., description="Annual interest rate in percent")
    interest_type: InterestType
    tenure_value: int
    tenure_unit: TenureUnit
    repayment_type: RepaymentType
    repayment_frequency: RepaymentFrequency = RepaymentFrequency.MONTHLY
    start_date: date
    grace_period_days: int = 0
    allow_partial_payment: bool = False
    processing_fee: Decimal = Decimal("0")
    other_charges: Decimal = Decimal("0")
    late_payment_penalty: Decimal = Field(Decimal("0"), description="Late fee as percent of the installment")

    def to_domain(self) -> LoanTerms:
        return LoanTerms(**self.model_dump())

    @classmethod
    def from_domain(cls, terms: LoanTerms) -> "LoanTermsSchema":
        return cls(**terms.__dict__)


class ScheduleEntrySchema(BaseModel):
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

    @classmethod
    def from_domain(cls, entry: ScheduleEntry) -> "ScheduleEntrySchema":
        return cls(**entry.__dict__)


class ScheduleResponse(BaseModel):
    """Response for schedule preview and GET /v1/loans/{loan_id}/schedule"""

    installment_count: int
    installment_amount: Optional[Decimal] = None
    total_interest: Decimal
    total_amount: Decimal
    total_charges: Decimal
    total_cost_of_credit: Decimal
    annual_percentage_rate: Decimal
    effective_interest_rate: Decimal
    entries: List[ScheduleEntrySchema]

    @classmethod
    def from_domain(cls, schedule: Schedule) -> "ScheduleResponse":
        return cls(
            installment_count=schedule.installment_count,
            installment_amount=schedule.installment_amount,
            total_interest=schedule.total_interest,
            total_amount=schedule.total_amount,
            total_charges=schedule.total_charges,
            total_cost_of_credit=schedule.total_cost_of_credit,
            annual_percentage_rate=schedule.annual_percentage_rate,
            effective_interest_rate=schedule.effective_interest_rate,
            entries=[ScheduleEntrySchema.from_domain(e) for e in schedule.entries],
        )


class CreateLoanRequest(BaseModel):
    """Request body for POST /v1/loans"""

    borrower_id: str = Field(..., min_length=1, description="Borrower user identifier")
    terms: LoanTermsSchema


class LoanResponse(BaseModel):
    """Loan offer with its repayment cursor"""

    loan_id: str
    lender_id: str
    borrower_id: str
    status: LoanStatus
    current_installment_number: int
    terms: LoanTermsSchema
    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, loan: Loan) -> "LoanResponse":
        return cls(
            loan_id=str(loan.id),
            lender_id=loan.lender_id,
            borrower_id=loan.borrower_id,
            status=loan.status,
            current_installment_number=loan.current_installment_number,
            terms=LoanTermsSchema.from_domain(loan.terms),
            created_at=loan.created_at,
            accepted_at=loan.accepted_at,
        )


class LoanListResponse(BaseModel):
    user_id: str
    loans: List[LoanResponse]


class SubmitPaymentRequest(BaseModel):
    """Request body for POST /v1/loans/{loan_id}/payments"""

    amount: Decimal
    mode: Optional[str] = Field(None, max_length=50, description="e.g. upi, bank_transfer, cash")
    reference: Optional[str] = Field(None, max_length=200)


class RejectPaymentRequest(BaseModel):
    """Request body for POST /v1/payments/{payment_id}/reject"""

    reason: Optional[str] = Field(None, max_length=500)


class PaymentResponse(BaseModel):
    """Payment record"""

    payment_id: str
    loan_id: str
    installment_number: int
    amount: Decimal
    status: PaymentStatus
    timing: PaymentTiming
    mode: Optional[str] = None
    reference: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_at: datetime
    paid_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, payment: Payment) -> "PaymentResponse":
        return cls(
            payment_id=str(payment.id),
            loan_id=str(payment.loan_id),
            installment_number=payment.installment_number,
            amount=payment.amount,
            status=payment.status,
            timing=payment.timing,
            mode=payment.mode,
            reference=payment.reference,
            rejection_reason=payment.rejection_reason,
            created_at=payment.created_at,
            paid_at=payment.paid_at,
        )


class PaymentListResponse(BaseModel):
    loan_id: str
    payments: List[PaymentResponse]


class PaymentDecisionResponse(BaseModel):
    """Response for approve/reject: the payment and where the loan now stands"""

    payment: PaymentResponse
    loan_status: LoanStatus
    current_installment_number: int


class OutstandingResponse(BaseModel):
    """Response for GET /v1/loans/{loan_id}/outstanding"""

    loan_id: str
    as_of: date
    outstanding_principal: Decimal
    outstanding_total: Decimal
    due_amount: Decimal
    overdue_amount: Decimal
    total_paid: Decimal
    principal_paid: Decimal
    interest_paid: Decimal
    total_amount: Decimal
    completion_percentage: Decimal
    is_complete: bool
    current_installment_number: int
    next_installment: Optional[ScheduleEntrySchema] = None
    overdue_installments: List[int]

    @classmethod
    def from_domain(
        cls, loan: Loan, schedule: Schedule, summary: OutstandingSummary, as_of: date
    ) -> "OutstandingResponse":
        return cls(
            loan_id=str(loan.id),
            as_of=as_of,
            outstanding_principal=summary.outstanding_principal,
            outstanding_total=summary.outstanding_total,
            due_amount=summary.due_amount,
            overdue_amount=summary.overdue_amount,
            total_paid=summary.total_paid,
            principal_paid=summary.principal_paid,
            interest_paid=summary.interest_paid,
            total_amount=schedule.total_amount,
            completion_percentage=summary.completion_percentage,
            is_complete=summary.is_complete,
            current_installment_number=loan.current_installment_number,
            next_installment=(
                ScheduleEntrySchema.from_domain(summary.next_installment) if summary.next_installment else None
            ),
            overdue_installments=summary.overdue_installments,
        )
