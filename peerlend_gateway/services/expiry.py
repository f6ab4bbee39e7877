"""Background sweep moving stale pending payments to `expired`"""

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from peerlend_gateway.config import settings
from peerlend_gateway.domain.events import PAYMENT_EXPIRED, EventSink, payment_event, publish_safely
from peerlend_gateway.domain.models import Loan, Payment
from peerlend_gateway.domain.payments import expire_payment
from peerlend_gateway.infrastructure.database.repositories import LoanRepository, PaymentRepository
from peerlend_gateway.infrastructure.observability.logging import log_sweep
from peerlend_gateway.infrastructure.observability.metrics import expiry_sweep_histogram, record_transition
from peerlend_gateway.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


def expire_stale_payments(
    db: Session,
    now: Optional[datetime] = None,
    expiry: Optional[timedelta] = None,
    batch_size: int = 500,
) -> List[Tuple[Payment, Loan]]:
    """
    Expire every payment still pending past the cutoff.

    Works through the backlog in batches of `batch_size`, committing each
    batch, until a batch comes back short. Safe to re-run: each write is
    conditional on the payment still being pending, so payments approved
    or rejected meanwhile are left alone.

    Returns:
        (expired payment, owning loan) pairs for event publication
    """
    now = now or utcnow()
    expiry = expiry or timedelta(hours=settings.payment_expiry_hours)
    cutoff = now - expiry
    payments = PaymentRepository(db)
    loans = LoanRepository(db)

    expired = []
    while True:
        batch = payments.get_stale_pending(cutoff, limit=batch_size)
        for payment in batch:
            candidate = expire_payment(payment, now=now)
            if payments.resolve(candidate):
                expired.append(candidate)
        db.commit()
        if len(batch) < batch_size:
            break

    if expired:
        record_transition("expired", len(expired))

    return [(payment, loans.get_loan(payment.loan_id)) for payment in expired]


def sweep_once(session_factory: Callable[[], Session]) -> List[Tuple[Payment, Loan]]:
    """One sweep in its own session, timed and logged"""
    start_time = time.time()
    db = session_factory()
    try:
        with expiry_sweep_histogram.time():
            expired = expire_stale_payments(db)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

    log_sweep(len(expired), (time.time() - start_time) * 1000)
    return expired


async def run_expiry_sweeper(
    session_factory: Callable[[], Session],
    sink: EventSink,
    stop_event: asyncio.Event,
    interval_seconds: Optional[float] = None,
) -> None:
    """
    Periodic sweep loop for the application lifespan.

    Database work runs in a worker thread so request handling is never
    blocked. A failed sweep is logged and retried on the next tick.
    """
    interval = interval_seconds if interval_seconds is not None else settings.expiry_sweep_interval_seconds

    while not stop_event.is_set():
        try:
            expired = await asyncio.to_thread(sweep_once, session_factory)
            for payment, loan in expired:
                await publish_safely(sink, payment_event(PAYMENT_EXPIRED, payment, loan))
        except Exception as e:
            logger.error(f"Expiry sweep failed: {e}", extra={"step": "expiry_sweep"})

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass
