"""
TaxScope - Errors
=================
Application error type and the user-facing messages shown for each code.
"""

import logging
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    AUTH_ERROR = "AUTH_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    NETWORK_ERROR = "NETWORK_ERROR"
    FILE_ERROR = "FILE_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    AI_SERVICE_ERROR = "AI_SERVICE_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


USER_MESSAGES = {
    ErrorCode.AUTH_ERROR: "Please sign in again to continue.",
    ErrorCode.VALIDATION_ERROR: "Please check your input and try again.",
    ErrorCode.NOT_FOUND: "The requested information could not be found.",
    ErrorCode.NETWORK_ERROR: "Network error. Please check your connection and try again.",
    ErrorCode.FILE_ERROR: "There was a problem processing your file. Please try a different file.",
    ErrorCode.DATABASE_ERROR: "Failed to save financial data. Please try again.",
    ErrorCode.AI_SERVICE_ERROR: "AI analysis is temporarily unavailable. Please try again later.",
    ErrorCode.UNKNOWN_ERROR: "An unexpected error occurred. Please try again.",
}

HTTP_STATUS_FOR_CODE = {
    ErrorCode.AUTH_ERROR: 401,
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.NETWORK_ERROR: 503,
    ErrorCode.FILE_ERROR: 400,
    ErrorCode.DATABASE_ERROR: 500,
    ErrorCode.AI_SERVICE_ERROR: 502,
    ErrorCode.UNKNOWN_ERROR: 500,
}


class AppError(Exception):
    """
    Error carrying a code and a message safe to show to the user.

    `detail` holds the technical cause and is only returned when DEBUG is on.
    """

    def __init__(self, code: ErrorCode, message: Optional[str] = None, detail: Optional[str] = None):
        self.code = code
        self.message = message or USER_MESSAGES[code]
        self.detail = detail
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return HTTP_STATUS_FOR_CODE[self.code]

    def to_dict(self, include_detail: bool = False) -> dict:
        body = {"error": self.message, "code": self.code.value}
        if include_detail and self.detail:
            body["detail"] = self.detail
        return body


def code_for_status(status: int) -> ErrorCode:
    """Map an HTTP status from an upstream service to an error code."""
    if status in (401, 403):
        return ErrorCode.AUTH_ERROR
    if status == 404:
        return ErrorCode.NOT_FOUND
    if status == 422:
        return ErrorCode.VALIDATION_ERROR
    if status == 429 or status >= 500:
        return ErrorCode.NETWORK_ERROR
    return ErrorCode.UNKNOWN_ERROR


def to_app_error(exc: Exception, default: ErrorCode = ErrorCode.UNKNOWN_ERROR) -> AppError:
    """Wrap any exception as an AppError, keeping the original as detail."""
    if isinstance(exc, AppError):
        return exc

    status = getattr(exc, "status_code", None)
    code = code_for_status(status) if isinstance(status, int) else default
    if code == ErrorCode.UNKNOWN_ERROR:
        code = default
    logger.error(f"{code.value}: {exc}")
    return AppError(code, detail=str(exc))
