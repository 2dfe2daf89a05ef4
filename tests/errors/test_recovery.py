"""Tests for fleetcache.errors.recovery: retry rules, backoff and recovery actions."""

from unittest.mock import AsyncMock, MagicMock

from fleetcache.errors.classifier import classify_status
from fleetcache.errors.recovery import (
    RETRY_DELAYS,
    RecoveryHandlers,
    can_retry,
    display_config,
    execute_auto_retry,
    recovery_actions,
    retry_delay,
    retry_message,
    should_show_to_user,
)
from fleetcache.models.enums import ErrorSeverity, ErrorType, RecoveryStrategy
from fleetcache.models.errors import ClassifiedError


def _error(**overrides) -> ClassifiedError:
    defaults: dict = {
        "type": ErrorType.API,
        "message": "Server error",
        "user_message": "Try again later.",
        "recovery_strategy": RecoveryStrategy.RETRY,
        "max_retries": 3,
    }
    defaults.update(overrides)
    return ClassifiedError(**defaults)


class TestRetryRules:
    def test_retry_delay_backoff(self):
        assert [retry_delay(i) for i in range(6)] == [1.0, 2.0, 4.0, 8.0, 8.0, 8.0]
        assert RETRY_DELAYS == (1.0, 2.0, 4.0, 8.0)

    def test_can_retry_with_attempts_left(self):
        assert can_retry(_error()) is True

    def test_cannot_retry_when_exhausted(self):
        assert can_retry(_error(retry_count=3)) is False

    def test_manual_retry_is_retryable(self):
        assert can_retry(_error(recovery_strategy=RecoveryStrategy.MANUAL_RETRY)) is True

    def test_other_strategies_not_retryable(self):
        assert can_retry(_error(recovery_strategy=RecoveryStrategy.LOGOUT)) is False

    def test_retry_messages(self):
        assert retry_message(_error()) == "Retrying... (3 attempts remaining)"
        assert retry_message(_error(retry_count=2)) == "Retrying... (last attempt)"
        assert retry_message(_error(retry_count=3)) == "Maximum retry attempts reached"


class TestVisibility:
    def test_low_severity_hidden(self):
        assert should_show_to_user(_error(severity=ErrorSeverity.LOW)) is False

    def test_ignore_strategy_hidden(self):
        assert should_show_to_user(_error(recovery_strategy=RecoveryStrategy.IGNORE)) is False

    def test_medium_severity_shown(self):
        assert should_show_to_user(_error()) is True

    def test_display_config(self):
        config = display_config(classify_status(403))
        assert config.show_contact_support is True
        assert config.show_retry_button is False
        assert config.auto_retry is False
        assert config.show_technical_details is False

    def test_display_config_for_retryable(self):
        config = display_config(_error(retry_count=1), show_technical_details=True)
        assert config.auto_retry is True
        assert config.retry_delay == 2.0
        assert config.max_retries == 3
        assert config.show_technical_details is True


class TestRecoveryActions:
    def test_retry_action_when_handler_given(self):
        on_retry = MagicMock()
        actions = recovery_actions(_error(), RecoveryHandlers(on_retry=on_retry))
        assert [a.label for a in actions] == ["Try Again", "Dismiss"]
        assert actions[0].primary is True
        assert actions[0].action is on_retry

    def test_retry_action_omitted_when_exhausted(self):
        actions = recovery_actions(_error(retry_count=3), RecoveryHandlers(on_retry=MagicMock()))
        assert [a.label for a in actions] == ["Dismiss"]

    def test_logout_action(self):
        actions = recovery_actions(classify_status(401), RecoveryHandlers(on_logout=MagicMock()))
        assert actions[0].label == "Sign In Again"

    def test_missing_handler_leaves_only_dismiss(self):
        actions = recovery_actions(classify_status(404), RecoveryHandlers())
        assert [a.label for a in actions] == ["Dismiss"]
        assert actions[0].primary is False

    def test_critical_errors_cannot_be_dismissed(self):
        error = _error(
            severity=ErrorSeverity.CRITICAL, recovery_strategy=RecoveryStrategy.REFRESH,
        )
        actions = recovery_actions(error, RecoveryHandlers(on_refresh=MagicMock()))
        assert [a.label for a in actions] == ["Refresh Page"]


class TestExecuteAutoRetry:
    async def test_succeeds_on_first_retry(self):
        sleep = AsyncMock()
        retry_fn = AsyncMock()
        error = _error()
        assert await execute_auto_retry(error, retry_fn, sleep=sleep) is True
        retry_fn.assert_awaited_once()
        sleep.assert_awaited_once_with(1.0)
        assert error.retry_count == 0

    async def test_retries_until_success(self):
        sleep = AsyncMock()
        retry_fn = AsyncMock(side_effect=[ConnectionError("down"), ConnectionError("down"), None])
        updates = []
        error = _error()
        ok = await execute_auto_retry(
            error, retry_fn, lambda count, total: updates.append((count, total)), sleep=sleep,
        )
        assert ok is True
        assert retry_fn.await_count == 3
        assert error.retry_count == 2
        assert updates == [(1, 3), (2, 3), (3, 3)]
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 4.0]

    async def test_gives_up_after_max_retries(self):
        sleep = AsyncMock()
        retry_fn = AsyncMock(side_effect=ConnectionError("down"))
        error = _error(max_retries=2)
        assert await execute_auto_retry(error, retry_fn, sleep=sleep) is False
        assert retry_fn.await_count == 2
        assert error.retry_count == 2
        assert can_retry(error) is False

    async def test_not_retryable_does_nothing(self):
        sleep = AsyncMock()
        retry_fn = AsyncMock()
        error = classify_status(401)
        assert await execute_auto_retry(error, retry_fn, sleep=sleep) is False
        retry_fn.assert_not_awaited()
        sleep.assert_not_awaited()
