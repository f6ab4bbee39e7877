"""Dependency injection for FastAPI endpoints"""

import uuid
from fastapi import Header, HTTPException, Request
from peerlend_gateway.domain.exceptions import (
    ConcurrentUpdateError,
    DomainException,
    InvalidLoanTransition,
    InvalidPaymentTransition,
    InvalidTermsError,
    LoanNotFoundError,
    NotAuthorizedError,
    PaymentNotFoundError,
    PaymentRejected,
)
from peerlend_gateway.infrastructure.clients.notifications import NotificationClient


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_current_user_id(x_user_id: str = Header(..., min_length=1, description="Authenticated caller")) -> str:
    """Caller identity as established by the upstream auth layer"""
    return x_user_id


def get_notification_client() -> NotificationClient:
    """Provide notification webhook client instance"""
    return NotificationClient()


def parse_uuid(value: str, label: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {label} ID format")


def http_error(e: DomainException) -> HTTPException:
    """Map a domain failure to its HTTP response"""
    if isinstance(e, PaymentRejected):
        return HTTPException(status_code=422, detail={"message": e.message, "reason": e.reason.value})
    if isinstance(e, InvalidTermsError):
        return HTTPException(status_code=422, detail={"message": str(e), "reason": "invalid_terms"})
    if isinstance(e, (LoanNotFoundError, PaymentNotFoundError)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, NotAuthorizedError):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, (InvalidPaymentTransition, InvalidLoanTransition, ConcurrentUpdateError)):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=500, detail="Internal server error")
