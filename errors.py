"""
Error taxonomy shared by the engine modules and the HTTP layer.

Every failure the API reports is a MarketError subclass. Messages coming from
the backend libraries are cleaned with format_error_message() before they
reach a user.
"""

import re
from typing import Dict, Optional


class MarketError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "logout": False}


class ValidationError(MarketError):
    status_code = 400
    code = "invalid-argument"


class EmptyCartError(ValidationError):
    code = "empty-cart"


class AuthError(MarketError):
    status_code = 401
    code = "unauthenticated"

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None,
                 logout: bool = False):
        super().__init__(message, code)
        if status_code:
            self.status_code = status_code
        self.logout = logout

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["logout"] = self.logout
        return data


class NotFoundError(MarketError):
    status_code = 404
    code = "not-found"


class PolicyError(MarketError):
    status_code = 422
    code = "failed-precondition"


class ConflictError(MarketError):
    status_code = 409
    code = "aborted"


class StoreError(MarketError):
    status_code = 503
    code = "unavailable"


ERROR_MESSAGES: Dict[str, str] = {
    "invalid-credentials": "Incorrect email or password",
    "unauthenticated": "Please sign in to continue",
    "token-expired": "Session expired. Please sign in again",
    "email-not-verified": "Please verify your email address first",
    "permission-denied": "Access denied. Please check your permissions",
    "unavailable": "Service temporarily unavailable. Please try again",
    "not-found": "Requested data not found",
    "already-exists": "Data already exists",
    "deadline-exceeded": "Request timeout. Please try again",
    "resource-exhausted": "Service limit exceeded. Please try again later",
}

# vendor names never shown to users
_VENDOR_TERMS = [
    (re.compile(r"pymongo", re.IGNORECASE), "Database"),
    (re.compile(r"mongodb", re.IGNORECASE), "Database"),
    (re.compile(r"mongo", re.IGNORECASE), "Database"),
    (re.compile(r"bson", re.IGNORECASE), "Data"),
    (re.compile(r"jose", re.IGNORECASE), "Session"),
    (re.compile(r"jwt", re.IGNORECASE), "Session"),
]


def sanitize_message(message: str) -> str:
    cleaned = message or ""
    for pattern, replacement in _VENDOR_TERMS:
        cleaned = pattern.sub(replacement, cleaned)
    return cleaned.strip()


def format_error_message(error: Optional[BaseException]) -> str:
    """Turn any exception into a message fit for a notification banner.

    Well-known codes map to fixed wording; anything else falls back to the
    exception's own message with vendor terminology stripped.
    """
    if error is None:
        return "An unknown error occurred"

    code = getattr(error, "code", None)
    if isinstance(code, str) and code in ERROR_MESSAGES:
        return ERROR_MESSAGES[code]

    raw = getattr(error, "message", None) or str(error)
    return sanitize_message(raw) or "An error occurred. Please try again"
