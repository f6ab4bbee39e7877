"""Data access layer for loans and payments"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional
from sqlalchemy.orm import Session
from peerlend_gateway.infrastructure.database.models import LoanRecord, PaymentRecord
from peerlend_gateway.domain.models import (
    InterestType,
    Loan,
    LoanStatus,
    LoanTerms,
    Payment,
    PaymentStatus,
    PaymentTiming,
    RepaymentFrequency,
    RepaymentType,
    TenureUnit,
)
from peerlend_gateway.utils.date_utils import normalize_timestamp, utcnow


def _money(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _timestamp(value: Any) -> Optional[datetime]:
    """Storage hands back naive, aware, or string timestamps depending on the driver"""
    return normalize_timestamp(value) if value is not None else None


def loan_from_record(record: LoanRecord) -> Loan:
    terms = LoanTerms(
        principal=_money(record.principal),
        interest_rate=_money(record.interest_rate),
        interest_type=InterestType(record.interest_type),
        tenure_value=record.tenure_value,
        tenure_unit=TenureUnit(record.tenure_unit),
        repayment_type=RepaymentType(record.repayment_type),
        repayment_frequency=RepaymentFrequency(record.repayment_frequency),
        start_date=record.start_date,
        grace_period_days=record.grace_period_days,
        allow_partial_payment=record.allow_partial_payment,
        processing_fee=_money(record.processing_fee),
        other_charges=_money(record.other_charges),
        late_payment_penalty=_money(record.late_payment_penalty),
    )
    return Loan(
        id=record.id,
        lender_id=record.lender_id,
        borrower_id=record.borrower_id,
        terms=terms,
        status=LoanStatus(record.status),
        current_installment_number=record.current_installment_number,
        version=record.version,
        created_at=_timestamp(record.created_at),
        updated_at=_timestamp(record.updated_at),
        accepted_at=_timestamp(record.accepted_at),
    )


def payment_from_record(record: PaymentRecord) -> Payment:
    return Payment(
        id=record.id,
        loan_id=record.loan_id,
        installment_number=record.installment_number,
        amount=_money(record.amount),
        status=PaymentStatus(record.status),
        created_at=_timestamp(record.created_at),
        timing=PaymentTiming(record.timing),
        mode=record.mode,
        reference=record.reference,
        rejection_reason=record.rejection_reason,
        paid_at=_timestamp(record.paid_at),
        resolved_at=_timestamp(record.resolved_at),
    )


class LoanRepository:
    """Repository for loans. The only writer of the installment cursor."""

    def __init__(self, db: Session):
        self.db = db

    def create_loan(self, lender_id: str, borrower_id: str, terms: LoanTerms) -> Loan:
        """Persist a new loan offer in `pending`"""
        now = utcnow()
        db_loan = LoanRecord(
            lender_id=lender_id,
            borrower_id=borrower_id,
            principal=terms.principal,
            interest_rate=terms.interest_rate,
            interest_type=terms.interest_type.value,
            tenure_value=terms.tenure_value,
            tenure_unit=terms.tenure_unit.value,
            repayment_type=terms.repayment_type.value,
            repayment_frequency=terms.repayment_frequency.value,
            start_date=terms.start_date,
            grace_period_days=terms.grace_period_days,
            allow_partial_payment=terms.allow_partial_payment,
            processing_fee=terms.processing_fee,
            other_charges=terms.other_charges,
            late_payment_penalty=terms.late_payment_penalty,
            status=LoanStatus.PENDING.value,
            current_installment_number=1,
            version=0,
            created_at=now,
            updated_at=now,
        )
        self.db.add(db_loan)
        self.db.flush()  # Get ID without committing
        return loan_from_record(db_loan)

    def get_loan(self, loan_id: uuid.UUID) -> Optional[Loan]:
        record = self.db.query(LoanRecord).filter(LoanRecord.id == loan_id).first()
        return loan_from_record(record) if record else None

    def get_loans_for_user(self, user_id: str, limit: int = 50) -> List[Loan]:
        """Loans where the user is either lender or borrower, newest first"""
        records = (
            self.db.query(LoanRecord)
            .filter((LoanRecord.lender_id == user_id) | (LoanRecord.borrower_id == user_id))
            .order_by(LoanRecord.created_at.desc())
            .limit(limit)
            .all()
        )
        return [loan_from_record(r) for r in records]

    def claim(self, loan_id: uuid.UUID, expected_version: int) -> bool:
        """
        Compare-and-swap on the loan version.

        Submissions bump the version in the same transaction as the payment
        insert, so two writers that read the same version cannot both commit.
        """
        updated = (
            self.db.query(LoanRecord)
            .filter(LoanRecord.id == loan_id, LoanRecord.version == expected_version)
            .update({LoanRecord.version: LoanRecord.version + 1, LoanRecord.updated_at: utcnow()})
        )
        return updated == 1

    def update_status(self, loan: Loan, expected_version: int) -> bool:
        """Write a lifecycle status change if nobody else touched the loan"""
        updated = (
            self.db.query(LoanRecord)
            .filter(LoanRecord.id == loan.id, LoanRecord.version == expected_version)
            .update(
                {
                    LoanRecord.status: loan.status.value,
                    LoanRecord.current_installment_number: loan.current_installment_number,
                    LoanRecord.accepted_at: loan.accepted_at,
                    LoanRecord.updated_at: loan.updated_at or utcnow(),
                    LoanRecord.version: LoanRecord.version + 1,
                }
            )
        )
        return updated == 1

    def advance_installment(self, loan_id: uuid.UUID, just_approved: int, status: Optional[LoanStatus] = None) -> bool:
        """
        Move the cursor from `just_approved` to `just_approved + 1`.

        Conditional on the stored cursor still being `just_approved`;
        returns False (and writes nothing) otherwise.
        """
        values = {
            LoanRecord.current_installment_number: just_approved + 1,
            LoanRecord.version: LoanRecord.version + 1,
            LoanRecord.updated_at: utcnow(),
        }
        if status is not None:
            values[LoanRecord.status] = status.value

        updated = (
            self.db.query(LoanRecord)
            .filter(LoanRecord.id == loan_id, LoanRecord.current_installment_number == just_approved)
            .update(values)
        )
        return updated == 1


class PaymentRepository:
    """Repository for payments"""

    def __init__(self, db: Session):
        self.db = db

    def create_payment(self, payment: Payment) -> Payment:
        db_payment = PaymentRecord(
            id=payment.id,
            loan_id=payment.loan_id,
            installment_number=payment.installment_number,
            amount=payment.amount,
            mode=payment.mode,
            reference=payment.reference,
            status=payment.status.value,
            timing=payment.timing.value,
            created_at=payment.created_at,
        )
        self.db.add(db_payment)
        self.db.flush()
        return payment_from_record(db_payment)

    def get_payment(self, payment_id: uuid.UUID) -> Optional[Payment]:
        record = self.db.query(PaymentRecord).filter(PaymentRecord.id == payment_id).first()
        return payment_from_record(record) if record else None

    def get_loan_payments(self, loan_id: uuid.UUID) -> List[Payment]:
        """Full payment history for a loan, oldest first"""
        records = (
            self.db.query(PaymentRecord)
            .filter(PaymentRecord.loan_id == loan_id)
            .order_by(PaymentRecord.created_at.asc())
            .all()
        )
        return [payment_from_record(r) for r in records]

    def get_stale_pending(self, cutoff: datetime, limit: int = 500) -> List[Payment]:
        """Pending payments created before the cutoff"""
        records = (
            self.db.query(PaymentRecord)
            .filter(PaymentRecord.status == PaymentStatus.PENDING.value, PaymentRecord.created_at < cutoff)
            .order_by(PaymentRecord.created_at.asc())
            .limit(limit)
            .all()
        )
        return [payment_from_record(r) for r in records]

    def resolve(self, payment: Payment) -> bool:
        """
        Persist a terminal transition.

        Conditional on the stored status still being `pending`, so a payment
        can be resolved at most once.
        """
        updated = (
            self.db.query(PaymentRecord)
            .filter(PaymentRecord.id == payment.id, PaymentRecord.status == PaymentStatus.PENDING.value)
            .update(
                {
                    PaymentRecord.status: payment.status.value,
                    PaymentRecord.paid_at: payment.paid_at,
                    PaymentRecord.resolved_at: payment.resolved_at,
                    PaymentRecord.rejection_reason: payment.rejection_reason,
                }
            )
        )
        return updated == 1
