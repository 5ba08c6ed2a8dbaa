"""
Structured JSON logging for CloudWatch Logs Insights.

Every line carries the API Gateway request id (via a ContextVar) and the
Lambda function name, plus any `extra=` fields, so webhook deliveries can be
traced by event id and user id.
"""

import json
import logging
import os
import uuid
from contextvars import ContextVar
from typing import Optional

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# LogRecord attributes that are never copied into the JSON line
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime", "taskName"}


class StructuredFormatter(logging.Formatter):
    """Render each record as one JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": request_id_var.get(""),
            "function_name": os.environ.get("AWS_LAMBDA_FUNCTION_NAME", ""),
        }
        entry.update({k: v for k, v in vars(record).items() if k not in _RESERVED_ATTRS})
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_structured_logging(level: int = logging.INFO) -> logging.Logger:
    """Route the root logger through a single StructuredFormatter handler.

    Lambda's runtime installs its own handler; it is replaced so lines are
    not emitted twice. Call at the start of each handler.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)

    stream = logging.StreamHandler()
    stream.setFormatter(StructuredFormatter())
    root_logger.addHandler(stream)
    return root_logger


def set_request_id(event: dict) -> str:
    """Bind the request id for this invocation and return it.

    Prefers API Gateway's requestContext.requestId, then an X-Request-Id
    header, then a fresh UUID.
    """
    headers = event.get("headers") or {}
    request_id = (
        (event.get("requestContext") or {}).get("requestId")
        or headers.get("x-request-id")
        or headers.get("X-Request-Id")
        or str(uuid.uuid4())
    )
    request_id_var.set(request_id)
    return request_id


def mask_email(email: Optional[str]) -> str:
    """Mask an email address for logging (keeps the first 3 characters)."""
    if not email:
        return ""
    return f"{email[:3]}***"


def log_api_request(
    logger: logging.Logger,
    method: str,
    path: str,
    status_code: int,
    latency_ms: float,
    user_id: Optional[str] = None,
) -> None:
    """One access line per handled request."""
    logger.info(
        f"{method} {path} -> {status_code}",
        extra={
            "http_method": method,
            "path": path,
            "status_code": status_code,
            "latency_ms": latency_ms,
            "user_id": user_id or "anonymous",
        },
    )


def log_external_call(
    logger: logging.Logger,
    service: str,
    operation: str,
    success: bool,
    latency_ms: float,
    error: Optional[str] = None,
) -> None:
    """Log a call to Stripe or another external service. Failures log at WARNING."""
    outcome = "success" if success else "failed"
    logger.log(
        logging.INFO if success else logging.WARNING,
        f"External call to {service}: {operation} -> {outcome}",
        extra={
            "service": service,
            "operation": operation,
            "success": success,
            "latency_ms": latency_ms,
            "error": error,
        },
    )


def log_webhook_outcome(
    logger: logging.Logger,
    event_id: str,
    event_type: str,
    outcome: str,
    reason: Optional[str] = None,
    user_id: Optional[str] = None,
) -> None:
    """Log the final disposition of a webhook delivery."""
    suffix = f" ({reason})" if reason else ""
    logger.log(
        logging.ERROR if outcome == "failed" else logging.INFO,
        f"Webhook {event_type} {event_id} -> {outcome}{suffix}",
        extra={
            "event_id": event_id,
            "event_type": event_type,
            "outcome": outcome,
            "reason": reason,
            "user_id": user_id or "anonymous",
        },
    )
