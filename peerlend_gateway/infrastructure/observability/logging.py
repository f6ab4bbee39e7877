"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from peerlend_gateway.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Send every log record, uvicorn's included, through one JSON handler on stdout"""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s"))

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [handler]

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        server_logger = logging.getLogger(name)
        server_logger.handlers = []
        server_logger.propagate = True

    # Statement logging stays off unless asked for explicitly
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def log_payment_event(
    request_id: str,
    step: str,
    loan_id: str,
    payment_id: str | None = None,
    outcome: str | None = None,
    duration_ms: float | None = None,
    **fields: Any,
) -> None:
    """Log structured payment transition outcome for analysis"""
    logging.info(
        "Payment step completed",
        extra={
            "request_id": request_id,
            "step": step,
            "loan_id": loan_id,
            "payment_id": payment_id,
            "outcome": outcome,
            "duration_ms": duration_ms,
            **fields,
        },
    )


def log_sweep(expired_count: int, duration_ms: float) -> None:
    logging.info(
        "Expiry sweep completed",
        extra={"step": "expiry_sweep", "expired_count": expired_count, "duration_ms": duration_ms},
    )
