"""Service tests against the test database: races, atomic approval and the expiry sweep"""

import asyncio
import uuid
import pytest
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
import httpx
from peerlend_gateway.domain.exceptions import (
    AmountMismatch,
    ConcurrentUpdateError,
    DuplicatePendingPayment,
    ExceedsBalance,
    InvalidPaymentTransition,
    NotAuthorizedError,
    NotificationError,
    TooEarly,
)
from peerlend_gateway.domain.models import LoanStatus, Payment, PaymentStatus, PaymentTiming, RepaymentType
from peerlend_gateway.infrastructure.clients.notifications import NotificationClient
from peerlend_gateway.infrastructure.database.repositories import LoanRepository, PaymentRepository
from peerlend_gateway.services.expiry import expire_stale_payments, run_expiry_sweeper, sweep_once
from peerlend_gateway.services.loans import LoanService
from peerlend_gateway.services.payments import PaymentService
from peerlend_gateway.utils.date_utils import utcnow

pytestmark = pytest.mark.integration

EMI = Decimal("8884.88")


@pytest.fixture
def loan(make_loan, make_terms):
    return make_loan(make_terms())


def test_submit_persists_pending_payment(db, loan, when):
    payment, _ = PaymentService(db).submit(loan.id, "borrower-1", EMI, submitted_at=when(2025, 1, 28), mode="cash")

    stored = PaymentRepository(db).get_payment(payment.id)
    assert stored.status == PaymentStatus.PENDING
    assert stored.amount == EMI
    assert stored.mode == "cash"
    assert stored.created_at == when(2025, 1, 28)
    assert LoanRepository(db).get_loan(loan.id).version == loan.version + 1


def test_submit_requires_borrower(db, loan, when):
    with pytest.raises(NotAuthorizedError):
        PaymentService(db).submit(loan.id, "lender-1", EMI, submitted_at=when(2025, 1, 28))


def test_submit_uses_configured_window(db, loan, when):
    with pytest.raises(TooEarly):
        PaymentService(db).submit(loan.id, "borrower-1", EMI, submitted_at=when(2025, 1, 10))

    payment, _ = PaymentService(db, early_window_days=30).submit(
        loan.id, "borrower-1", EMI, submitted_at=when(2025, 1, 10)
    )
    assert payment.status == PaymentStatus.PENDING


def test_losing_submission_race_sees_winner(db, session_factory, loan, when):
    """A concurrent submission commits between our read and our write"""
    service = PaymentService(db)
    real_claim = service.loans.claim
    raced = []

    def racing_claim(loan_id, expected_version):
        if not raced:
            raced.append(True)
            other = session_factory()
            try:
                PaymentService(other).submit(loan_id, "borrower-1", EMI, submitted_at=when(2025, 1, 27))
            finally:
                other.close()
        return real_claim(loan_id, expected_version)

    service.loans.claim = racing_claim

    with pytest.raises(DuplicatePendingPayment):
        service.submit(loan.id, "borrower-1", EMI, submitted_at=when(2025, 1, 28))

    pending = [p for p in PaymentRepository(db).get_loan_payments(loan.id) if p.status == PaymentStatus.PENDING]
    assert len(pending) == 1


def test_persistent_contention_with_partials(db, make_loan, make_terms, when):
    loan = make_loan(make_terms(allow_partial_payment=True))
    service = PaymentService(db)
    service.loans.claim = lambda loan_id, expected_version: False

    with pytest.raises(ConcurrentUpdateError):
        service.submit(loan.id, "borrower-1", Decimal("100"), submitted_at=when(2025, 1, 28))

    assert PaymentRepository(db).get_loan_payments(loan.id) == []


def test_approve_advances_cursor_atomically(db, loan, when):
    service = PaymentService(db)
    payment, _ = service.submit(loan.id, "borrower-1", EMI, submitted_at=when(2025, 1, 28))

    paid, updated = service.approve(payment.id, "lender-1", now=when(2025, 1, 29))

    assert paid.status == PaymentStatus.PAID
    assert updated.current_installment_number == 2
    stored_loan = LoanRepository(db).get_loan(loan.id)
    assert stored_loan.current_installment_number == 2
    assert PaymentRepository(db).get_payment(payment.id).paid_at == when(2025, 1, 29)


def test_lost_cursor_update_rolls_back_approval(db, loan, when):
    service = PaymentService(db)
    payment, _ = service.submit(loan.id, "borrower-1", EMI, submitted_at=when(2025, 1, 28))
    service.loans.advance_installment = lambda loan_id, just_approved, status=None: False

    with pytest.raises(ConcurrentUpdateError):
        service.approve(payment.id, "lender-1")

    assert PaymentRepository(db).get_payment(payment.id).status == PaymentStatus.PENDING
    assert LoanRepository(db).get_loan(loan.id).current_installment_number == 1


def test_cursor_advance_is_conditional(db, loan):
    loans = LoanRepository(db)

    assert loans.advance_installment(loan.id, 1)
    db.commit()
    # Second approval of installment 1 finds the cursor already at 2
    assert not loans.advance_installment(loan.id, 1)
    db.commit()

    assert loans.get_loan(loan.id).current_installment_number == 2


def test_reject_is_final(db, loan, when):
    service = PaymentService(db)
    payment, _ = service.submit(loan.id, "borrower-1", EMI, submitted_at=when(2025, 1, 28))

    rejected, _ = service.reject(payment.id, "lender-1", reason="Bounced")

    assert rejected.rejection_reason == "Bounced"
    with pytest.raises(InvalidPaymentTransition):
        service.approve(payment.id, "lender-1")
    assert LoanRepository(db).get_loan(loan.id).current_installment_number == 1


def test_partial_payments_advance_once_covered(db, make_loan, make_terms, when):
    loan = make_loan(make_terms(allow_partial_payment=True))
    service = PaymentService(db)

    first, _ = service.submit(loan.id, "borrower-1", Decimal("5000"), submitted_at=when(2025, 1, 27))
    second, _ = service.submit(loan.id, "borrower-1", Decimal("3884.88"), submitted_at=when(2025, 1, 28))

    _, after_first = service.approve(first.id, "lender-1")
    assert after_first.current_installment_number == 1

    _, after_second = service.approve(second.id, "lender-1")
    assert after_second.current_installment_number == 2


def test_lump_sum_prepayment_completes_loan(db, make_loan, make_terms, when):
    """The cursor steps once; the paid total completes the loan"""
    loan = make_loan(make_terms(allow_partial_payment=True))
    service = PaymentService(db)

    payment, _ = service.submit(loan.id, "borrower-1", Decimal("106618.53"), submitted_at=when(2025, 1, 28))
    _, updated = service.approve(payment.id, "lender-1")

    assert updated.status == LoanStatus.COMPLETED
    stored = LoanRepository(db).get_loan(loan.id)
    assert stored.status == LoanStatus.COMPLETED
    assert stored.current_installment_number == 2


def test_pending_payments_cannot_overpay(db, make_loan, make_terms, when):
    """A second 100,000 is refused while the first still awaits approval"""
    loan = make_loan(make_terms(allow_partial_payment=True))
    service = PaymentService(db)

    first, _ = service.submit(loan.id, "borrower-1", Decimal("100000"), submitted_at=when(2025, 1, 27))

    with pytest.raises(ExceedsBalance):
        service.submit(loan.id, "borrower-1", Decimal("100000"), submitted_at=when(2025, 1, 28))

    service.approve(first.id, "lender-1")
    pending = [p for p in PaymentRepository(db).get_loan_payments(loan.id) if p.status == PaymentStatus.PENDING]
    assert pending == []
    assert LoanRepository(db).get_loan(loan.id).status == LoanStatus.ACCEPTED


def test_token_payment_rejected_for_bullet_loan(db, make_loan, make_terms, when):
    loan = make_loan(make_terms(repayment_type=RepaymentType.FULL_PAYMENT))

    with pytest.raises(AmountMismatch):
        PaymentService(db).submit(loan.id, "borrower-1", Decimal("1.00"), submitted_at=when(2025, 12, 28))

    assert LoanRepository(db).get_loan(loan.id).status == LoanStatus.ACCEPTED


def test_late_submission_is_classified(db, make_loan, make_terms, when):
    loan = make_loan(make_terms(grace_period_days=3))

    payment, _ = PaymentService(db).submit(loan.id, "borrower-1", EMI, submitted_at=when(2025, 2, 3))
    assert payment.timing == PaymentTiming.WITHIN_GRACE


def test_expiry_sweep(db, loan, when):
    service = PaymentService(db)
    stale, _ = service.submit(loan.id, "borrower-1", EMI, submitted_at=when(2025, 1, 27))

    expired = expire_stale_payments(db, now=when(2025, 1, 28, hour=13))

    assert [(p.id, l.id) for p, l in expired] == [(stale.id, loan.id)]
    stored = PaymentRepository(db).get_payment(stale.id)
    assert stored.status == PaymentStatus.EXPIRED
    assert "24 hours" in stored.rejection_reason

    # Re-running finds nothing left to expire
    assert expire_stale_payments(db, now=when(2025, 1, 28, hour=13)) == []


def test_expiry_sweep_works_through_batches(db, make_loan, make_terms, when):
    loan = make_loan(make_terms(allow_partial_payment=True))
    service = PaymentService(db)
    stale = [
        service.submit(loan.id, "borrower-1", Decimal("100"), submitted_at=when(2025, 1, day))[0]
        for day in (25, 26, 27)
    ]

    expired = expire_stale_payments(db, now=when(2025, 1, 29), batch_size=1)

    assert sorted(p.id for p, _ in expired) == sorted(p.id for p in stale)
    assert all(PaymentRepository(db).get_payment(p.id).status == PaymentStatus.EXPIRED for p in stale)


def test_expiry_sweep_leaves_fresh_and_resolved_payments(db, make_loan, make_terms, when):
    service = PaymentService(db)
    approved_loan = make_loan(make_terms())
    fresh_loan = make_loan(make_terms())

    approved, _ = service.submit(approved_loan.id, "borrower-1", EMI, submitted_at=when(2025, 1, 26))
    service.approve(approved.id, "lender-1")
    fresh, _ = service.submit(fresh_loan.id, "borrower-1", EMI, submitted_at=when(2025, 1, 28))

    assert expire_stale_payments(db, now=when(2025, 1, 28, hour=18)) == []
    assert PaymentRepository(db).get_payment(approved.id).status == PaymentStatus.PAID
    assert PaymentRepository(db).get_payment(fresh.id).status == PaymentStatus.PENDING


def test_sweep_once_uses_own_session(db, session_factory, loan):
    service = PaymentService(db)
    stale, _ = service.submit(loan.id, "borrower-1", EMI, submitted_at=utcnow() - timedelta(days=2))

    expired = sweep_once(session_factory)

    assert [p.id for p, _ in expired] == [stale.id]


def test_expiry_sweeper_publishes_and_stops(db, session_factory, loan, when):
    sink = AsyncMock()
    stop_event = asyncio.Event()
    expired_payment = Payment(
        id=uuid.uuid4(),
        loan_id=loan.id,
        installment_number=1,
        amount=EMI,
        status=PaymentStatus.EXPIRED,
        created_at=when(2025, 1, 27),
    )

    def fake_sweep(factory):
        stop_event.set()
        return [(expired_payment, loan)]

    with patch("peerlend_gateway.services.expiry.sweep_once", side_effect=fake_sweep):
        asyncio.run(run_expiry_sweeper(session_factory, sink, stop_event, interval_seconds=0.01))

    payload = sink.send_event.await_args.args[0]
    assert payload["event"] == "payment_expired"
    assert payload["loan_id"] == str(loan.id)


def test_loan_status_change_is_conditional(db, make_terms):
    service = LoanService(db)
    loan, _ = service.create_offer("lender-1", "borrower-1", make_terms())
    service.loans.update_status = lambda updated, expected_version: False

    with pytest.raises(ConcurrentUpdateError):
        service.accept(loan.id, "borrower-1")

    assert LoanRepository(db).get_loan(loan.id).status == LoanStatus.PENDING


def test_outstanding_via_service(db, loan, when):
    service = PaymentService(db)
    payment, _ = service.submit(loan.id, "borrower-1", EMI, submitted_at=when(2025, 1, 28))
    service.approve(payment.id, "lender-1")

    _, _, summary = LoanService(db).outstanding(loan.id, "lender-1", as_of=date(2025, 3, 2))

    assert summary.total_paid == EMI
    assert summary.due_amount == EMI
    assert summary.overdue_installments == [2]


def test_notification_client_retries_then_fails():
    client = NotificationClient(webhook_url="http://notifications.test/events")
    client.max_retries = 3

    with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post, patch(
        "peerlend_gateway.infrastructure.clients.notifications.asyncio.sleep", new_callable=AsyncMock
    ) as mock_sleep:
        mock_post.side_effect = httpx.ConnectError("connection refused")

        with pytest.raises(NotificationError):
            asyncio.run(client.send_event({"event": "payment_approved"}))

    assert mock_post.await_count == 3
    assert [call.args[0] for call in mock_sleep.await_args_list] == [1.0, 2.0]


def test_notification_client_delivers():
    client = NotificationClient(webhook_url="http://notifications.test/events")

    with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
        mock_post.return_value = MagicMock()
        asyncio.run(client.send_event({"event": "payment_submitted"}))

    mock_post.assert_awaited_once()
    assert mock_post.await_args.kwargs["json"] == {"event": "payment_submitted"}
