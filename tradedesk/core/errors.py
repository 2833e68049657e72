"""Error taxonomy for TradeDesk.

Every expected failure in the service layer is expressed as an ``AppError``
carrying a machine-readable ``ErrorCode`` and a ``Severity``. Services that
return ``OrderResult`` objects convert these into ``success=False`` results;
everything else raises them.
"""

from enum import Enum
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class ErrorCode(str, Enum):
    """Error categories."""
    NETWORK_ERROR = "NETWORK_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    EXTERNAL_API_ERROR = "EXTERNAL_API_ERROR"
    TRADING_ERROR = "TRADING_ERROR"
    PERMISSION_ERROR = "PERMISSION_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class Severity(str, Enum):
    """How bad an error is."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


ERROR_TITLES = {
    ErrorCode.NETWORK_ERROR: "Connection Problem",
    ErrorCode.VALIDATION_ERROR: "Invalid Input",
    ErrorCode.AUTH_ERROR: "Authentication Required",
    ErrorCode.DATABASE_ERROR: "Data Access Error",
    ErrorCode.EXTERNAL_API_ERROR: "Service Unavailable",
    ErrorCode.TRADING_ERROR: "Trading Error",
    ErrorCode.PERMISSION_ERROR: "Access Denied",
    ErrorCode.UNKNOWN_ERROR: "Unexpected Error",
}


class AppError(Exception):
    """Application error with code, severity and context."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        context: Optional[Dict[str, Any]] = None,
        is_user_facing: bool = True,
        severity: Severity = Severity.MEDIUM,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.context = context or {}
        self.is_user_facing = is_user_facing
        self.severity = severity

    @property
    def title(self) -> str:
        return error_title(self.code)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code.value,
            "severity": self.severity.value,
            "context": self.context,
        }

    def __repr__(self) -> str:
        return f"AppError({self.code.value}: {self.message!r})"


# Factory helpers


def network_error(message: str, **context) -> AppError:
    return AppError(message, ErrorCode.NETWORK_ERROR, context, True, Severity.MEDIUM)


def validation_error(message: str, **context) -> AppError:
    return AppError(message, ErrorCode.VALIDATION_ERROR, context, True, Severity.LOW)


def auth_error(message: str, **context) -> AppError:
    return AppError(message, ErrorCode.AUTH_ERROR, context, True, Severity.HIGH)


def database_error(message: str, **context) -> AppError:
    return AppError(message, ErrorCode.DATABASE_ERROR, context, False, Severity.HIGH)


def external_error(message: str, **context) -> AppError:
    return AppError(message, ErrorCode.EXTERNAL_API_ERROR, context, True, Severity.MEDIUM)


def trading_error(message: str, **context) -> AppError:
    return AppError(message, ErrorCode.TRADING_ERROR, context, True, Severity.HIGH)


def permission_error(message: str, **context) -> AppError:
    return AppError(message, ErrorCode.PERMISSION_ERROR, context, True, Severity.MEDIUM)


def error_title(code: ErrorCode) -> str:
    """Human readable title for an error code."""
    return ERROR_TITLES.get(code, "Error")


def handle_error(error: BaseException, **context) -> AppError:
    """Normalise any exception into an AppError and log it.

    Args:
        error: The exception that was caught
        **context: Extra context (component, action, user_id, ...)

    Returns:
        The AppError that was logged
    """
    if isinstance(error, AppError):
        app_error = error
        if context:
            app_error.context = {**context, **app_error.context}
    else:
        app_error = AppError(str(error) or "An unknown error occurred", context=context)

    log_kwargs = dict(
        message=app_error.message,
        code=app_error.code.value,
        severity=app_error.severity.value,
        context=app_error.context,
    )
    if app_error.severity == Severity.CRITICAL:
        logger.critical("app.error", **log_kwargs, exc_info=error)
    elif app_error.severity == Severity.HIGH:
        logger.error("app.error", **log_kwargs)
    else:
        logger.warning("app.error", **log_kwargs)

    return app_error
