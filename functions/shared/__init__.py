# Shared utilities package
from .errors import APIError, ConfigurationError, MalformedEventError, SignatureInvalidError
from .response_utils import error_response, success_response

__all__ = [
    "APIError",
    "ConfigurationError",
    "MalformedEventError",
    "SignatureInvalidError",
    "error_response",
    "success_response",
]
