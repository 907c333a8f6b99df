"""Tests for authflow.exceptions module.

These tests verify the exception hierarchy, message formatting,
context storage and failure reasons. No mocks needed.
"""

from __future__ import annotations

import pytest

from authflow.exceptions import (
    AuthFlowError,
    Cancelled,
    FailureReason,
    FlowStateError,
    IncompleteFlowError,
    MalformedResponse,
    RedirectTimeout,
    TokenExchangeError,
    TransportError,
    UnsupportedAuthenticator,
    UserInfoError,
)


class TestAuthFlowError:
    """Test base exception class behavior."""

    def test_message_only(self) -> None:
        """Exception with just a message stores it correctly."""
        exc = AuthFlowError("Something went wrong")
        assert exc.message == "Something went wrong"
        assert not exc.context
        assert str(exc) == "Something went wrong"

    def test_with_context(self) -> None:
        """Context appears in the string representation."""
        exc = AuthFlowError("Failed", flow_id="f1", status_code=400)
        assert exc.context == {"flow_id": "f1", "status_code": 400}
        exc_str = str(exc)
        assert exc_str.startswith("Failed (")
        assert "flow_id='f1'" in exc_str
        assert "status_code=400" in exc_str

    def test_none_context_dropped(self) -> None:
        """Context entries that are None are not rendered."""
        exc = AuthFlowError("Failed", flow_id=None)
        assert exc.context == {}
        assert str(exc) == "Failed"

    def test_args_preserved(self) -> None:
        exc = AuthFlowError("message")
        assert exc.args == ("message",)

    def test_base_has_no_reason(self) -> None:
        assert AuthFlowError("x").reason is None
        assert FlowStateError("x").reason is None


class TestTaxonomy:
    """Each taxonomy entry maps to one failure reason."""

    @pytest.mark.parametrize(
        ("exc_type", "reason"),
        [
            (TransportError, FailureReason.TRANSPORT),
            (MalformedResponse, FailureReason.MALFORMED_RESPONSE),
            (IncompleteFlowError, FailureReason.INCOMPLETE_FLOW),
            (UnsupportedAuthenticator, FailureReason.UNSUPPORTED_AUTHENTICATOR),
            (Cancelled, FailureReason.CANCELLED),
            (TokenExchangeError, FailureReason.TOKEN_EXCHANGE),
            (UserInfoError, FailureReason.USER_INFO),
        ],
    )
    def test_reason(self, exc_type: type[AuthFlowError], reason: FailureReason) -> None:
        exc = exc_type("boom")
        assert exc.reason is reason
        assert isinstance(exc, AuthFlowError)

    def test_only_transport_is_retryable(self) -> None:
        retryable = [reason for reason in FailureReason if reason.retryable]
        assert retryable == [FailureReason.TRANSPORT]

    def test_reason_is_string_enum(self) -> None:
        assert FailureReason.CANCELLED == "cancelled"


class TestSpecificErrors:
    """Attributes carried by the specialized exceptions."""

    def test_redirect_timeout_is_cancellation(self) -> None:
        exc = RedirectTimeout("No callback", timeout=30.0, authenticator_id="g")
        assert isinstance(exc, Cancelled)
        assert exc.reason is FailureReason.CANCELLED
        assert exc.timeout == 30.0
        assert "timeout=30.0" in str(exc)

    def test_token_exchange_error_fields(self) -> None:
        exc = TokenExchangeError(
            "Rejected", error="invalid_grant", error_description="Code expired"
        )
        assert exc.error == "invalid_grant"
        assert exc.error_description == "Code expired"
        assert "invalid_grant" in str(exc)

    def test_unsupported_authenticator_fields(self) -> None:
        exc = UnsupportedAuthenticator("No strategy", prompt_type="X", authenticator_id="a1")
        assert exc.prompt_type == "X"
        assert exc.authenticator_id == "a1"
        assert exc.context == {"prompt_type": "X", "authenticator_id": "a1"}

    def test_user_info_error_status(self) -> None:
        exc = UserInfoError("Rejected", status_code=401)
        assert exc.status_code == 401

    def test_catch_all(self) -> None:
        with pytest.raises(AuthFlowError):
            raise IncompleteFlowError("gone", flow_id="f1")
