"""Classify exceptions into typed, severity-ranked errors with a recovery strategy."""

import logging
from typing import Any

from pydantic import ValidationError

from fleetcache.models.enums import ErrorSeverity, ErrorType, RecoveryStrategy
from fleetcache.models.errors import ClassifiedError

logger = logging.getLogger(__name__)

SERVER_ERROR_STATUS_CODES = {500, 502, 503, 504}

_NETWORK_HINTS = ("network", "connection refused", "failed to fetch")
_TIMEOUT_HINTS = ("timeout", "timed out")
_VALIDATION_HINTS = ("validation", "invalid")
_AUTH_HINTS = ("auth", "unauthorized", "token")


def _technical_details(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


def extract_status_code(exc: BaseException) -> int | None:
    """Return an HTTP status carried by *exc* (``status``, ``status_code`` or ``response.status_code``)."""
    for candidate in (
        getattr(exc, "status", None),
        getattr(exc, "status_code", None),
        getattr(getattr(exc, "response", None), "status_code", None),
    ):
        if isinstance(candidate, int) and not isinstance(candidate, bool):
            return candidate
    return None


def classify_status(
    status: int,
    *,
    context: dict[str, Any] | None = None,
    technical_details: str | None = None,
) -> ClassifiedError:
    """Classify an HTTP error status.

    400 is a validation problem, 401 needs re-authentication, 403 goes to
    support, 404 falls back, 429 and 5xx are retried automatically.
    """
    common: dict[str, Any] = {
        "context": context,
        "technical_details": technical_details,
        "status_code": status,
    }

    if status == 400:
        return ClassifiedError(
            type=ErrorType.VALIDATION,
            severity=ErrorSeverity.LOW,
            message="Bad request",
            user_message="Please check your input and try again.",
            recovery_strategy=RecoveryStrategy.MANUAL_RETRY,
            **common,
        )
    if status == 401:
        return ClassifiedError(
            type=ErrorType.AUTH,
            severity=ErrorSeverity.HIGH,
            message="Unauthorized",
            user_message="Please sign in again to continue.",
            recovery_strategy=RecoveryStrategy.LOGOUT,
            **common,
        )
    if status == 403:
        return ClassifiedError(
            type=ErrorType.PERMISSION,
            severity=ErrorSeverity.HIGH,
            message="Access forbidden",
            user_message="You don't have permission to access this resource.",
            recovery_strategy=RecoveryStrategy.CONTACT_SUPPORT,
            **common,
        )
    if status == 404:
        return ClassifiedError(
            type=ErrorType.API,
            severity=ErrorSeverity.MEDIUM,
            message="Resource not found",
            user_message="The requested information could not be found.",
            recovery_strategy=RecoveryStrategy.FALLBACK,
            **common,
        )
    if status == 429:
        return ClassifiedError(
            type=ErrorType.RATE_LIMIT,
            severity=ErrorSeverity.MEDIUM,
            message="Rate limit exceeded",
            user_message="Too many requests. Please wait a moment and try again.",
            recovery_strategy=RecoveryStrategy.RETRY,
            max_retries=1,
            **common,
        )
    if status in SERVER_ERROR_STATUS_CODES:
        return ClassifiedError(
            type=ErrorType.API,
            severity=ErrorSeverity.HIGH,
            message="Server error",
            user_message="The server is experiencing issues. Please try again later.",
            recovery_strategy=RecoveryStrategy.RETRY,
            max_retries=2,
            **common,
        )
    return ClassifiedError(
        type=ErrorType.API,
        severity=ErrorSeverity.MEDIUM,
        message=f"API error ({status})",
        user_message="A server error occurred. Please try again.",
        recovery_strategy=RecoveryStrategy.RETRY,
        max_retries=1,
        **common,
    )


def _mentions(exc: BaseException, hints: tuple[str, ...]) -> bool:
    text = str(exc).lower()
    return any(hint in text for hint in hints)


def classify(exc: BaseException, context: dict[str, Any] | None = None) -> ClassifiedError:
    """Classify *exc* into a :class:`ClassifiedError`.

    Checks run in order: network, timeout, HTTP status, validation,
    authentication, programming errors, then a generic fallback.
    """
    details = _technical_details(exc)

    if isinstance(exc, ConnectionError) or _mentions(exc, _NETWORK_HINTS):
        return ClassifiedError(
            type=ErrorType.NETWORK,
            severity=ErrorSeverity.MEDIUM,
            message="Network connection failed",
            user_message="Unable to connect to the server. Please check your internet connection.",
            recovery_strategy=RecoveryStrategy.RETRY,
            max_retries=3,
            technical_details=details,
            context=context,
        )

    if isinstance(exc, TimeoutError) or _mentions(exc, _TIMEOUT_HINTS):
        return ClassifiedError(
            type=ErrorType.TIMEOUT,
            severity=ErrorSeverity.MEDIUM,
            message="Request timeout",
            user_message="The request is taking longer than expected. Please try again.",
            recovery_strategy=RecoveryStrategy.RETRY,
            max_retries=2,
            technical_details=details,
            context=context,
        )

    status = extract_status_code(exc)
    if status is not None:
        return classify_status(status, context=context, technical_details=details)

    if isinstance(exc, ValidationError) or _mentions(exc, _VALIDATION_HINTS):
        return ClassifiedError(
            type=ErrorType.VALIDATION,
            severity=ErrorSeverity.LOW,
            message="Data validation failed",
            user_message="Please check your input and try again.",
            recovery_strategy=RecoveryStrategy.MANUAL_RETRY,
            technical_details=details,
            context=context,
        )

    if "Auth" in type(exc).__name__ or _mentions(exc, _AUTH_HINTS):
        return ClassifiedError(
            type=ErrorType.AUTH,
            severity=ErrorSeverity.HIGH,
            message="Authentication failed",
            user_message="Please sign in again to continue.",
            recovery_strategy=RecoveryStrategy.LOGOUT,
            technical_details=details,
            context=context,
        )

    if isinstance(exc, (TypeError, AttributeError, NameError, LookupError)):
        return ClassifiedError(
            type=ErrorType.RUNTIME,
            severity=ErrorSeverity.HIGH,
            message="Application runtime error",
            user_message="Something went wrong. Please refresh the page and try again.",
            recovery_strategy=RecoveryStrategy.REFRESH,
            technical_details=details,
            context=context,
        )

    logger.debug("Unclassified error: %s", details)
    return ClassifiedError(
        type=ErrorType.UNKNOWN,
        severity=ErrorSeverity.MEDIUM,
        message=str(exc) or type(exc).__name__,
        user_message="An unexpected error occurred. Please try again.",
        recovery_strategy=RecoveryStrategy.MANUAL_RETRY,
        technical_details=details,
        context=context,
    )
