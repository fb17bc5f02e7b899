"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List
from pythonjsonlogger.json import JsonFormatter

from proofport_gateway.config import settings


class CustomJsonFormatter(JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_order_outcome(
    request_id: str,
    owner: str,
    outcome: str,
    risk_level: str,
    risk_score: float,
    failed_kinds: List[str],
    duration_ms: float,
    order_id: str | None = None,
) -> None:
    """Log structured submission outcome for analysis"""
    logging.info(
        "Order submission completed",
        extra={
            "request_id": request_id,
            "owner": owner,
            "order_id": order_id,
            "step": "submission_complete",
            "outcome": outcome,
            "risk_level": risk_level,
            "risk_score": risk_score,
            "failed_kinds": failed_kinds,
            "duration_ms": duration_ms,
        },
    )
