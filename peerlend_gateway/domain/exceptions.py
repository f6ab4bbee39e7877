"""Domain-specific exceptions"""

from peerlend_gateway.domain.models import RejectionReason


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class InvalidTermsError(DomainException):
    """Loan terms cannot produce a repayment schedule"""

    pass


class PaymentRejected(DomainException):
    """Proposed payment failed validation; carries a machine-readable reason"""

    reason: RejectionReason

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidAmount(PaymentRejected):
    reason = RejectionReason.INVALID_AMOUNT


class DuplicatePendingPayment(PaymentRejected):
    reason = RejectionReason.DUPLICATE_PENDING_PAYMENT


class ExceedsBalance(PaymentRejected):
    reason = RejectionReason.EXCEEDS_BALANCE


class AmountMismatch(PaymentRejected):
    reason = RejectionReason.AMOUNT_MISMATCH


class NoInstallmentsRemaining(PaymentRejected):
    reason = RejectionReason.NO_INSTALLMENTS_REMAINING


class TooEarly(PaymentRejected):
    reason = RejectionReason.TOO_EARLY


class LoanNotActive(PaymentRejected):
    """Payments are only taken against accepted loans"""

    reason = RejectionReason.LOAN_NOT_ACTIVE


class InvalidPaymentTransition(DomainException):
    """Payment is already in a terminal state"""

    pass


class InvalidLoanTransition(DomainException):
    """Loan status change not allowed from its current status"""

    pass


class ConcurrentUpdateError(DomainException):
    """A compare-and-swap write lost against a concurrent writer"""

    pass


class LoanNotFoundError(DomainException):
    pass


class PaymentNotFoundError(DomainException):
    pass


class NotAuthorizedError(DomainException):
    """Caller is not the party allowed to perform this action"""

    pass


class NotificationError(DomainException):
    """Notification webhook unavailable or returned an error"""

    pass
