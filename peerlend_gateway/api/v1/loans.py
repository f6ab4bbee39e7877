"""Loan offer endpoints: create, accept/decline/cancel, schedule and outstanding figures"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.orm import Session

from peerlend_gateway.api.dependencies import (
    get_current_user_id,
    get_notification_client,
    get_request_id,
    http_error,
    parse_uuid,
)
from peerlend_gateway.api.v1.schemas import (
    CreateLoanRequest,
    LoanListResponse,
    LoanResponse,
    OutstandingResponse,
    ScheduleResponse,
)
from peerlend_gateway.domain.events import (
    LOAN_ACCEPTED,
    LOAN_CANCELLED,
    LOAN_DECLINED,
    LOAN_OFFERED,
    loan_event,
    publish_safely,
)
from peerlend_gateway.domain.exceptions import DomainException
from peerlend_gateway.infrastructure.clients.notifications import NotificationClient
from peerlend_gateway.infrastructure.database.session import get_db
from peerlend_gateway.services.loans import LoanService

router = APIRouter()


@router.post("/loans", response_model=LoanResponse, status_code=201)
def create_loan(
    request_body: CreateLoanRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """
    Lender creates a loan offer for a borrower.

    Terms are checked by computing their schedule before anything is stored.
    """
    request_id = get_request_id(request)
    try:
        loan, schedule = LoanService(db).create_offer(user_id, request_body.borrower_id, request_body.terms.to_domain())
    except DomainException as e:
        db.rollback()
        logging.warning(f"Loan offer rejected: {e}", extra={"request_id": request_id})
        raise http_error(e)

    logging.info(
        "Loan offered",
        extra={"request_id": request_id, "loan_id": str(loan.id), "installment_count": schedule.installment_count},
    )
    background_tasks.add_task(publish_safely, notifier, loan_event(LOAN_OFFERED, loan))
    return LoanResponse.from_domain(loan)


@router.get("/loans", response_model=LoanListResponse)
def list_loans(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    """Loans where the caller is lender or borrower"""
    loans = LoanService(db).list_loans(user_id)
    return LoanListResponse(user_id=user_id, loans=[LoanResponse.from_domain(loan) for loan in loans])


@router.get("/loans/{loan_id}", response_model=LoanResponse)
def get_loan(loan_id: str, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    try:
        loan = LoanService(db).get_loan(parse_uuid(loan_id, "loan"), user_id)
    except DomainException as e:
        raise http_error(e)
    return LoanResponse.from_domain(loan)


def _apply_status_change(
    action: str,
    event: str,
    loan_id: str,
    user_id: str,
    db: Session,
    background_tasks: BackgroundTasks,
    notifier: NotificationClient,
    request_id: str,
) -> LoanResponse:
    loan_uuid = parse_uuid(loan_id, "loan")
    service = LoanService(db)
    try:
        loan = getattr(service, action)(loan_uuid, user_id)
    except DomainException as e:
        db.rollback()
        logging.warning(f"Loan {action} failed: {e}", extra={"request_id": request_id, "loan_id": loan_id})
        raise http_error(e)

    background_tasks.add_task(publish_safely, notifier, loan_event(event, loan))
    return LoanResponse.from_domain(loan)


@router.post("/loans/{loan_id}/accept", response_model=LoanResponse)
def accept_loan(
    loan_id: str,
    background_tasks: BackgroundTasks,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """Borrower accepts the offer; repayment starts from installment 1"""
    return _apply_status_change(
        "accept", LOAN_ACCEPTED, loan_id, user_id, db, background_tasks, notifier, get_request_id(request)
    )


@router.post("/loans/{loan_id}/decline", response_model=LoanResponse)
def decline_loan(
    loan_id: str,
    background_tasks: BackgroundTasks,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    notifier: NotificationClient = Depends(get_notification_client),
):
    return _apply_status_change(
        "decline", LOAN_DECLINED, loan_id, user_id, db, background_tasks, notifier, get_request_id(request)
    )


@router.post("/loans/{loan_id}/cancel", response_model=LoanResponse)
def cancel_loan(
    loan_id: str,
    background_tasks: BackgroundTasks,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """Lender withdraws an offer the borrower has not answered yet"""
    return _apply_status_change(
        "cancel", LOAN_CANCELLED, loan_id, user_id, db, background_tasks, notifier, get_request_id(request)
    )


@router.get("/loans/{loan_id}/schedule", response_model=ScheduleResponse)
def get_schedule(loan_id: str, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    """Amortization schedule, recomputed from the loan's terms on every read"""
    try:
        _, schedule = LoanService(db).schedule(parse_uuid(loan_id, "loan"), user_id)
    except DomainException as e:
        raise http_error(e)
    return ScheduleResponse.from_domain(schedule)


@router.get("/loans/{loan_id}/outstanding", response_model=OutstandingResponse)
def get_outstanding(
    loan_id: str,
    as_of: Optional[date] = Query(None, description="Evaluation date, defaults to today"),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Outstanding principal/total and due/overdue amounts.

    Returns:
        Figures allocated from approved payments against the schedule
    """
    as_of = as_of or date.today()
    try:
        loan, schedule, summary = LoanService(db).outstanding(parse_uuid(loan_id, "loan"), user_id, as_of=as_of)
    except DomainException as e:
        raise http_error(e)
    return OutstandingResponse.from_domain(loan, schedule, summary, as_of)
