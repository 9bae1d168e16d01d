"""
HTTP Client Module

requests-backed HTTP client used by the event sources.
"""

from .client import HttpClient, HttpError, HttpResponse, RETRYABLE_STATUS_CODES

__all__ = [
    "HttpClient",
    "HttpError",
    "HttpResponse",
    "RETRYABLE_STATUS_CODES",
]
