"""Recovery planning for classified errors: retry rules, backoff, user-facing actions."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from tenacity import AsyncRetrying, RetryCallState, RetryError, stop_after_attempt

from fleetcache.models.enums import ErrorSeverity, RecoveryStrategy
from fleetcache.models.errors import ClassifiedError

logger = logging.getLogger(__name__)

RETRY_DELAYS = (1.0, 2.0, 4.0, 8.0)

_RETRYABLE = {RecoveryStrategy.RETRY, RecoveryStrategy.MANUAL_RETRY}


@dataclass(frozen=True)
class RecoveryAction:
    label: str
    action: Callable[[], object]
    primary: bool = False


@dataclass
class RecoveryHandlers:
    """Callbacks the caller can offer for each recovery strategy."""

    on_retry: Callable[[], object] | None = None
    on_refresh: Callable[[], object] | None = None
    on_logout: Callable[[], object] | None = None
    on_contact_support: Callable[[], object] | None = None
    on_fallback: Callable[[], object] | None = None
    on_redirect: Callable[[], object] | None = None


@dataclass(frozen=True)
class DisplayConfig:
    show_technical_details: bool
    show_retry_button: bool
    show_contact_support: bool
    auto_retry: bool
    retry_delay: float
    max_retries: int


def retry_delay(retry_count: int) -> float:
    """Backoff delay in seconds before retry number ``retry_count + 1``."""
    return RETRY_DELAYS[min(retry_count, len(RETRY_DELAYS) - 1)]


def can_retry(error: ClassifiedError) -> bool:
    return error.retry_count < error.max_retries and error.recovery_strategy in _RETRYABLE


def retry_message(error: ClassifiedError) -> str:
    remaining = error.max_retries - error.retry_count
    if remaining > 1:
        return f"Retrying... ({remaining} attempts remaining)"
    if remaining == 1:
        return "Retrying... (last attempt)"
    return "Maximum retry attempts reached"


def should_show_to_user(error: ClassifiedError) -> bool:
    return (
        error.recovery_strategy != RecoveryStrategy.IGNORE
        and error.severity != ErrorSeverity.LOW
    )


def display_config(error: ClassifiedError, *, show_technical_details: bool = False) -> DisplayConfig:
    return DisplayConfig(
        show_technical_details=show_technical_details,
        show_retry_button=can_retry(error),
        show_contact_support=error.recovery_strategy == RecoveryStrategy.CONTACT_SUPPORT,
        auto_retry=error.recovery_strategy == RecoveryStrategy.RETRY,
        retry_delay=retry_delay(error.retry_count),
        max_retries=error.max_retries,
    )


def recovery_actions(error: ClassifiedError, handlers: RecoveryHandlers) -> list[RecoveryAction]:
    """Return the actions to offer for *error*, primary action first.

    Strategies whose handler was not supplied are skipped. Non-critical
    errors always get a secondary "Dismiss" action.
    """
    actions: list[RecoveryAction] = []
    strategy = error.recovery_strategy

    if strategy == RecoveryStrategy.RETRY:
        if handlers.on_retry and can_retry(error):
            actions.append(RecoveryAction("Try Again", handlers.on_retry, primary=True))
    elif strategy == RecoveryStrategy.MANUAL_RETRY:
        if handlers.on_retry:
            actions.append(RecoveryAction("Retry", handlers.on_retry, primary=True))
    elif strategy == RecoveryStrategy.REFRESH:
        if handlers.on_refresh:
            actions.append(RecoveryAction("Refresh Page", handlers.on_refresh, primary=True))
    elif strategy == RecoveryStrategy.LOGOUT:
        if handlers.on_logout:
            actions.append(RecoveryAction("Sign In Again", handlers.on_logout, primary=True))
    elif strategy == RecoveryStrategy.CONTACT_SUPPORT:
        if handlers.on_contact_support:
            actions.append(
                RecoveryAction("Contact Support", handlers.on_contact_support, primary=True)
            )
    elif strategy == RecoveryStrategy.FALLBACK:
        if handlers.on_fallback:
            actions.append(RecoveryAction("Continue", handlers.on_fallback, primary=True))
    elif strategy == RecoveryStrategy.REDIRECT:
        if handlers.on_redirect:
            actions.append(RecoveryAction("Go Back", handlers.on_redirect, primary=True))

    if error.severity != ErrorSeverity.CRITICAL:
        actions.append(RecoveryAction("Dismiss", lambda: None))

    return actions


def log_retry_attempt(retry_state: RetryCallState) -> None:
    """Tenacity ``before_sleep`` callback that logs each retry."""
    attempt = retry_state.attempt_number
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning("Retry attempt %d after error: %s", attempt, exc)


async def execute_auto_retry(
    error: ClassifiedError,
    retry_fn: Callable[[], Awaitable[object]],
    on_retry_update: Callable[[int, int], None] | None = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> bool:
    """Retry *retry_fn* with backoff until it succeeds or *error* runs out of retries.

    Waits before every attempt (1, 2, 4, then 8 seconds) and bumps
    ``error.retry_count`` after each failure.

    Returns:
        True if an attempt succeeded, False if retrying is not allowed or
        every attempt failed.
    """
    if not can_retry(error):
        return False

    def _before(retry_state: RetryCallState) -> None:
        if on_retry_update is not None:
            on_retry_update(error.retry_count + 1, error.max_retries)

    def _after(retry_state: RetryCallState) -> None:
        error.retry_count += 1

    retrying = AsyncRetrying(
        stop=stop_after_attempt(error.max_retries - error.retry_count),
        wait=lambda retry_state: retry_delay(error.retry_count),
        before=_before,
        after=_after,
        before_sleep=log_retry_attempt,
        sleep=sleep,
    )

    await sleep(retry_delay(error.retry_count))
    try:
        async for attempt in retrying:
            with attempt:
                await retry_fn()
    except RetryError:
        logger.warning(
            "Giving up on %s error after %d attempts", error.type, error.retry_count,
        )
        return False
    return True
