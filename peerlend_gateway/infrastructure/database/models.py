"""SQLAlchemy ORM models for loans and payments"""

import uuid
from sqlalchemy import Column, String, Boolean, DateTime, Date, Integer, ForeignKey, Text, Numeric
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

MONEY = Numeric(14, 2)


class LoanRecord(Base):
    """Accepted (or offered) loan with its agreed terms and installment cursor"""

    __tablename__ = "loan"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lender_id = Column(Text, nullable=False, index=True)
    borrower_id = Column(Text, nullable=False, index=True)

    # Terms
    principal = Column(MONEY, nullable=False)
    interest_rate = Column(Numeric(7, 4), nullable=False)
    interest_type = Column(String(16), nullable=False)
    tenure_value = Column(Integer, nullable=False)
    tenure_unit = Column(String(16), nullable=False)
    repayment_type = Column(String(16), nullable=False)
    repayment_frequency = Column(String(16), nullable=False, default="monthly")
    start_date = Column(Date, nullable=False)
    grace_period_days = Column(Integer, nullable=False, default=0)
    allow_partial_payment = Column(Boolean, nullable=False, default=False)
    processing_fee = Column(MONEY, nullable=False, default=0)
    other_charges = Column(MONEY, nullable=False, default=0)
    late_payment_penalty = Column(Numeric(5, 2), nullable=False, default=0)

    # State
    status = Column(String(16), nullable=False, default="pending", index=True)
    current_installment_number = Column(Integer, nullable=False, default=1)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)

    payments = relationship("PaymentRecord", back_populates="loan", cascade="all, delete-orphan")


class PaymentRecord(Base):
    """Borrower payment submitted against one installment"""

    __tablename__ = "payment"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loan.id", ondelete="CASCADE"), nullable=False, index=True)
    installment_number = Column(Integer, nullable=False)
    amount = Column(MONEY, nullable=False)
    mode = Column(String(50), nullable=True)
    reference = Column(Text, nullable=True)
    status = Column(String(16), nullable=False, default="pending", index=True)
    timing = Column(String(16), nullable=False, default="on_time")
    rejection_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    paid_at = Column(DateTime(timezone=True), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    loan = relationship("LoanRecord", back_populates="payments")
