"""POST /v1/schedule/preview - Amortization schedule for proposed terms"""

from fastapi import APIRouter

from peerlend_gateway.api.dependencies import http_error
from peerlend_gateway.api.v1.schemas import LoanTermsSchema, ScheduleResponse
from peerlend_gateway.domain.exceptions import InvalidTermsError
from peerlend_gateway.domain.schedule import compute_schedule
from peerlend_gateway.infrastructure.observability.metrics import schedule_counter

router = APIRouter()


@router.post("/schedule/preview", response_model=ScheduleResponse)
def preview_schedule(terms: LoanTermsSchema):
    """
    Compute the repayment schedule for terms without persisting anything.

    Used by lenders while drafting an offer.
    """
    try:
        schedule = compute_schedule(terms.to_domain())
    except InvalidTermsError as e:
        raise http_error(e)

    schedule_counter.labels(repayment_type=terms.repayment_type.value).inc()
    return ScheduleResponse.from_domain(schedule)
