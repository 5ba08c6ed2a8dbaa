"""
API Gateway proxy responses.

JSON bodies go through `decimal_default` so DynamoDB numbers serialize as
plain ints and floats.
"""

import json
from decimal import Decimal
from typing import Any, Dict, Optional


def decimal_default(obj: Any) -> Any:
    """JSON serializer for Decimal types from DynamoDB."""
    if isinstance(obj, Decimal):
        return int(obj) if obj % 1 == 0 else float(obj)
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def _response(status_code: int, body: str, content_type: str, headers: Optional[Dict[str, str]] = None) -> dict:
    response_headers = {"Content-Type": content_type}
    response_headers.update(headers or {})
    return {"statusCode": status_code, "headers": response_headers, "body": body}


def error_response(
    status_code: int,
    code: str,
    message: str,
    headers: Optional[Dict[str, str]] = None,
    details: Optional[Dict[str, Any]] = None,
) -> dict:
    """
    Build an error response of the form {"error": {"code", "message"[, "details"]}}.

    Args:
        status_code: HTTP status code
        code: Machine-readable error code (snake_case)
        message: Human-readable error message
        headers: Additional response headers
        details: Optional structured details (e.g. the missing field names)
    """
    error: Dict[str, Any] = {"code": code, "message": message}
    if details:
        error["details"] = details
    return _response(status_code, json.dumps({"error": error}, default=decimal_default), "application/json", headers)


def success_response(data: Any, status_code: int = 200, headers: Optional[Dict[str, str]] = None) -> dict:
    """Build a JSON success response."""
    return _response(status_code, json.dumps(data, default=decimal_default), "application/json", headers)


def text_response(body: str, status_code: int = 200) -> dict:
    """Build a plain-text response (used by the liveness probe)."""
    return _response(status_code, body, "text/plain", {"Cache-Control": "no-cache"})
