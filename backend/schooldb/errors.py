# backend/schooldb/errors.py
"""
Domain errors shared by the services.

Services raise these; `schooldb.main` maps them to HTTP responses of the
form {"success": false, "code": ..., "message": ..., **details}.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional


class SchoolDBError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"
    headers: Dict[str, str] = {}

    def __init__(self, message: str, *, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "code": self.code, "message": self.message}
        for key, value in self.details.items():
            body[key] = value.isoformat() if isinstance(value, datetime) else value
        return body


class AuthenticationError(SchoolDBError):
    """Missing, malformed, unknown or expired credential."""

    status_code = 401
    code = "UNAUTHENTICATED"


class AuthorizationError(SchoolDBError):
    """Role, feature, plan or limit mismatch. Always carries a machine-readable code."""

    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(SchoolDBError):
    status_code = 404
    code = "NOT_FOUND"


class ValidationError(SchoolDBError):
    status_code = 400
    code = "VALIDATION_ERROR"


class GatewayError(SchoolDBError):
    """Transport, auth or protocol failure while talking to the payment gateway."""

    status_code = 502
    code = "PAYMENT_GATEWAY_ERROR"


class RateLimitError(SchoolDBError):
    status_code = 429
    code = "RATE_LIMITED"

    def __init__(self, *, limit: int, reset_at: datetime, headers: Optional[Dict[str, str]] = None):
        super().__init__(
            f"Rate limit exceeded. Max {limit} requests per minute. "
            f"Try again after {reset_at.isoformat()}.",
            details={"limit": limit, "reset_at": reset_at},
        )
        self.limit = limit
        self.reset_at = reset_at
        self.headers = headers or {}
