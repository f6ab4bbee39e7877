"""Payment endpoints: borrower submission, lender approval and rejection"""

import time
import logging
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from peerlend_gateway.api.dependencies import (
    get_current_user_id,
    get_notification_client,
    get_request_id,
    http_error,
    parse_uuid,
)
from peerlend_gateway.api.v1.schemas import (
    PaymentDecisionResponse,
    PaymentListResponse,
    PaymentResponse,
    RejectPaymentRequest,
    SubmitPaymentRequest,
)
from peerlend_gateway.domain.events import (
    LOAN_COMPLETED,
    PAYMENT_APPROVED,
    PAYMENT_REJECTED,
    PAYMENT_SUBMITTED,
    loan_event,
    payment_event,
    publish_safely,
)
from peerlend_gateway.domain.exceptions import DomainException, PaymentRejected
from peerlend_gateway.domain.models import LoanStatus
from peerlend_gateway.infrastructure.clients.notifications import NotificationClient
from peerlend_gateway.infrastructure.database.session import get_db
from peerlend_gateway.infrastructure.observability.logging import log_payment_event
from peerlend_gateway.infrastructure.observability.metrics import record_submission, record_transition
from peerlend_gateway.services.loans import LoanService
from peerlend_gateway.services.payments import PaymentService

router = APIRouter()


@router.post("/loans/{loan_id}/payments", response_model=PaymentResponse, status_code=201)
def submit_payment(
    loan_id: str,
    request_body: SubmitPaymentRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """
    Borrower submits a payment against the loan's current installment.

    Flow:
    1. Load loan and payment history
    2. Validate amount, pending payments, balance, installment and timing
    3. Persist the pending payment (guarded against concurrent submissions)
    4. Notify the lender asynchronously
    """
    start_time = time.time()
    request_id = get_request_id(request)
    loan_uuid = parse_uuid(loan_id, "loan")

    try:
        payment, loan = PaymentService(db).submit(
            loan_uuid,
            user_id,
            request_body.amount,
            mode=request_body.mode,
            reference=request_body.reference,
        )

    except PaymentRejected as e:
        db.rollback()
        record_submission(False, reason=e.reason.value)
        logging.warning(f"Payment rejected: {e}", extra={"request_id": request_id, "loan_id": loan_id, "reason": e.reason.value})
        raise http_error(e)

    except DomainException as e:
        db.rollback()
        raise http_error(e)

    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    record_submission(True, timing=payment.timing.value)
    log_payment_event(
        request_id,
        "payment_submitted",
        loan_id,
        payment_id=str(payment.id),
        outcome=payment.timing.value,
        duration_ms=(time.time() - start_time) * 1000,
        installment_number=payment.installment_number,
    )
    background_tasks.add_task(publish_safely, notifier, payment_event(PAYMENT_SUBMITTED, payment, loan))

    return PaymentResponse.from_domain(payment)


@router.get("/loans/{loan_id}/payments", response_model=PaymentListResponse)
def list_payments(loan_id: str, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    """Full payment history for a loan, oldest first"""
    try:
        payments = LoanService(db).payments_for(parse_uuid(loan_id, "loan"), user_id)
    except DomainException as e:
        raise http_error(e)
    return PaymentListResponse(loan_id=loan_id, payments=[PaymentResponse.from_domain(p) for p in payments])


@router.post("/payments/{payment_id}/approve", response_model=PaymentDecisionResponse)
def approve_payment(
    payment_id: str,
    background_tasks: BackgroundTasks,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """
    Lender approves a pending payment.

    The payment becomes `paid` and the installment cursor advances in the
    same transaction; notifications go out only after commit.
    """
    start_time = time.time()
    request_id = get_request_id(request)
    payment_uuid = parse_uuid(payment_id, "payment")

    try:
        payment, loan = PaymentService(db).approve(payment_uuid, user_id)

    except DomainException as e:
        db.rollback()
        logging.warning(f"Payment approval failed: {e}", extra={"request_id": request_id, "payment_id": payment_id})
        raise http_error(e)

    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    record_transition("paid")
    log_payment_event(
        request_id,
        "payment_approved",
        str(loan.id),
        payment_id=payment_id,
        outcome=loan.status.value,
        duration_ms=(time.time() - start_time) * 1000,
        current_installment_number=loan.current_installment_number,
    )
    background_tasks.add_task(publish_safely, notifier, payment_event(PAYMENT_APPROVED, payment, loan))
    if loan.status == LoanStatus.COMPLETED:
        background_tasks.add_task(publish_safely, notifier, loan_event(LOAN_COMPLETED, loan))

    return PaymentDecisionResponse(
        payment=PaymentResponse.from_domain(payment),
        loan_status=loan.status,
        current_installment_number=loan.current_installment_number,
    )


@router.post("/payments/{payment_id}/reject", response_model=PaymentDecisionResponse)
def reject_payment(
    payment_id: str,
    background_tasks: BackgroundTasks,
    request: Request,
    request_body: RejectPaymentRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """Lender rejects a pending payment with an optional reason"""
    request_id = get_request_id(request)
    payment_uuid = parse_uuid(payment_id, "payment")
    reason = request_body.reason if request_body else None

    try:
        payment, loan = PaymentService(db).reject(payment_uuid, user_id, reason=reason)

    except DomainException as e:
        db.rollback()
        logging.warning(f"Payment rejection failed: {e}", extra={"request_id": request_id, "payment_id": payment_id})
        raise http_error(e)

    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    record_transition("rejected")
    log_payment_event(request_id, "payment_rejected", str(loan.id), payment_id=payment_id, outcome=reason)
    background_tasks.add_task(publish_safely, notifier, payment_event(PAYMENT_REJECTED, payment, loan))

    return PaymentDecisionResponse(
        payment=PaymentResponse.from_domain(payment),
        loan_status=loan.status,
        current_installment_number=loan.current_installment_number,
    )
