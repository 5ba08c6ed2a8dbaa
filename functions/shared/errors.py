"""
Error taxonomy for the entitlement service.

Boundary errors (signature, payload, request validation) subclass APIError and
know how to render themselves as an API Gateway response. Store errors are
raised by the persistence layer and classified by the reconciler.
"""

import json
from typing import Optional


class APIError(Exception):
    """Base class for API errors."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        details: Optional[dict] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> dict:
        """Convert to API Gateway response format."""
        body = {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }
        if self.details:
            body["error"]["details"] = self.details

        return {
            "statusCode": self.status_code,
            "headers": {"Content-Type": "application/json"},
            "body": json.dumps(body),
        }


class SignatureInvalidError(APIError):
    """Raised when a webhook signature is missing, malformed or does not match."""

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(
            code="invalid_signature",
            message=message,
            status_code=400,
        )


class MalformedEventError(APIError):
    """Raised when a verified payload is not a usable provider event."""

    def __init__(self, message: str = "Invalid webhook payload"):
        super().__init__(
            code="invalid_webhook_payload",
            message=message,
            status_code=400,
        )


class InvalidRequestError(APIError):
    """Raised for general invalid request errors."""

    def __init__(self, message: str, code: str = "invalid_request", details: Optional[dict] = None):
        super().__init__(
            code=code,
            message=message,
            status_code=400,
            details=details,
        )


class ConfigurationError(Exception):
    """Raised when required configuration is absent. Fatal."""

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__(f"Missing required configuration: {', '.join(self.missing)}")


class TransientStoreError(Exception):
    """Store or network failure worth a provider redelivery."""


class WriteConflictError(Exception):
    """A compare-and-swap write lost to a concurrent writer."""
