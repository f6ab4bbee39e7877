"""Repayment events published after a state transition commits"""

import logging
from typing import Any, Dict, Protocol

from peerlend_gateway.domain.models import Loan, Payment

logger = logging.getLogger(__name__)

PAYMENT_SUBMITTED = "payment_submitted"
PAYMENT_APPROVED = "payment_approved"
PAYMENT_REJECTED = "payment_rejected"
PAYMENT_EXPIRED = "payment_expired"
LOAN_OFFERED = "loan_offered"
LOAN_ACCEPTED = "loan_accepted"
LOAN_DECLINED = "loan_declined"
LOAN_CANCELLED = "loan_cancelled"
LOAN_COMPLETED = "loan_completed"


class EventSink(Protocol):
    """Anything that can deliver an event payload, e.g. a webhook client"""

    async def send_event(self, payload: Dict[str, Any]) -> None: ...


def payment_event(event: str, payment: Payment, loan: Loan) -> Dict[str, Any]:
    return {
        "event": event,
        "payment_id": str(payment.id),
        "loan_id": str(loan.id),
        "lender_id": loan.lender_id,
        "borrower_id": loan.borrower_id,
        "installment_number": payment.installment_number,
        "amount": str(payment.amount),
        "status": payment.status.value,
        "reason": payment.rejection_reason,
    }


def loan_event(event: str, loan: Loan) -> Dict[str, Any]:
    return {
        "event": event,
        "loan_id": str(loan.id),
        "lender_id": loan.lender_id,
        "borrower_id": loan.borrower_id,
        "status": loan.status.value,
        "current_installment_number": loan.current_installment_number,
    }


async def publish_safely(sink: EventSink, payload: Dict[str, Any]) -> None:
    """Fire-and-forget delivery: failures are logged, never raised"""
    try:
        await sink.send_event(payload)
    except Exception as e:
        logger.error(
            f"Event delivery failed: {e}",
            extra={"step": "notify", "event": payload.get("event"), "loan_id": payload.get("loan_id")},
        )
