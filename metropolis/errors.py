"""
metropolis/errors.py

Operational errors for the city core. These never cross the store's public
API: the advisor raises them internally and turns them into "no result".
"""

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    AI_SERVICE_ERROR = "AI_SERVICE_ERROR"
    AI_PARSING_ERROR = "AI_PARSING_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    GAME_LOGIC_ERROR = "GAME_LOGIC_ERROR"


class AppError(Exception):
    """Trusted, expected failure. Carries a code and optional context for the logs."""

    is_operational = True

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.context = context or {}

    def to_dict(self) -> dict:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code.value,
            "context": self.context,
        }


class ValidationError(AppError):
    """An external response did not match its schema."""

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message, ErrorCode.VALIDATION_ERROR, 400, context)


class AIServiceError(AppError):
    """The text-generation service could not be reached or returned nothing."""

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message, ErrorCode.AI_SERVICE_ERROR, 503, context)
