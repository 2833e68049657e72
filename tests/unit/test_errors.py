"""Unit tests for the error taxonomy."""
import pytest

from tradedesk.core.errors import (
    AppError, ErrorCode, Severity, auth_error, database_error, error_title,
    handle_error, network_error, trading_error, validation_error
)


class TestAppError:
    """Test AppError and the factory helpers."""

    def test_defaults(self):
        error = AppError("boom")

        assert error.code == ErrorCode.UNKNOWN_ERROR
        assert error.severity == Severity.MEDIUM
        assert error.context == {}
        assert error.is_user_facing is True
        assert str(error) == "boom"

    @pytest.mark.parametrize("factory,code,severity", [
        (network_error, ErrorCode.NETWORK_ERROR, Severity.MEDIUM),
        (validation_error, ErrorCode.VALIDATION_ERROR, Severity.LOW),
        (auth_error, ErrorCode.AUTH_ERROR, Severity.HIGH),
        (database_error, ErrorCode.DATABASE_ERROR, Severity.HIGH),
        (trading_error, ErrorCode.TRADING_ERROR, Severity.HIGH),
    ])
    def test_factories(self, factory, code, severity):
        error = factory("failed", order_id="o-1")

        assert error.code == code
        assert error.severity == severity
        assert error.context == {"order_id": "o-1"}

    def test_database_errors_are_not_user_facing(self):
        assert database_error("connection lost").is_user_facing is False

    def test_to_dict(self):
        error = trading_error("Order not found", order_id="o-1")

        assert error.to_dict() == {
            "message": "Order not found",
            "code": "TRADING_ERROR",
            "severity": "high",
            "context": {"order_id": "o-1"},
        }

    def test_titles(self):
        assert error_title(ErrorCode.AUTH_ERROR) == "Authentication Required"
        assert validation_error("bad").title == "Invalid Input"


class TestHandleError:
    """Test handle_error normalisation."""

    def test_passes_app_error_through(self):
        error = trading_error("Agent not found", agent_id="a-1")

        handled = handle_error(error, component="order_service")

        assert handled is error
        assert handled.context == {"component": "order_service", "agent_id": "a-1"}

    def test_wraps_plain_exception(self):
        handled = handle_error(RuntimeError("disk full"), component="database")

        assert isinstance(handled, AppError)
        assert handled.code == ErrorCode.UNKNOWN_ERROR
        assert handled.message == "disk full"
        assert handled.context == {"component": "database"}

    def test_empty_message_gets_default(self):
        handled = handle_error(RuntimeError())

        assert handled.message == "An unknown error occurred"
