"""authflow exception hierarchy.

All authflow exceptions inherit from AuthFlowError, enabling catch-all
handling while supporting the specific failure kinds of the login
protocol. Every protocol-level failure carries a ``reason`` drawn from
:class:`FailureReason` so callers can decide retry and UI behavior
without string matching.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class FailureReason(str, Enum):
    """Failure kinds an authentication attempt can end with."""

    TRANSPORT = "transport_error"
    MALFORMED_RESPONSE = "malformed_response"
    INCOMPLETE_FLOW = "incomplete_flow"
    UNSUPPORTED_AUTHENTICATOR = "unsupported_authenticator"
    CANCELLED = "cancelled"
    TOKEN_EXCHANGE = "token_exchange_error"
    USER_INFO = "user_info_error"

    @property
    def retryable(self) -> bool:
        """Whether a caller policy may retry the same call."""
        return self is FailureReason.TRANSPORT


class AuthFlowError(Exception):
    """Base exception for all authflow errors."""

    reason: FailureReason | None = None

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize authflow exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (flow_id, authenticator_id, status_code, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message


class TransportError(AuthFlowError):
    """No response, a garbled response, or a timeout.

    The only failure kind a caller policy may retry with backoff.
    """

    reason = FailureReason.TRANSPORT


class MalformedResponse(AuthFlowError):
    """A response was received but does not match the expected schema."""

    reason = FailureReason.MALFORMED_RESPONSE


class IncompleteFlowError(AuthFlowError):
    """The flow signaled non-success with no actionable next step.

    The attempt must be abandoned; a new attempt starts a new flow.
    """

    reason = FailureReason.INCOMPLETE_FLOW


class UnsupportedAuthenticator(AuthFlowError):
    """No strategy is registered for an authenticator's prompt type."""

    reason = FailureReason.UNSUPPORTED_AUTHENTICATOR

    def __init__(
        self,
        message: str,
        prompt_type: str | None = None,
        authenticator_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize unsupported authenticator error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        prompt_type : str, optional
            The prompt type that has no registered strategy.
        authenticator_id : str, optional
            The authenticator that declared the prompt type.
        **context : Any
            Additional context.
        """
        super().__init__(
            message, prompt_type=prompt_type, authenticator_id=authenticator_id, **context
        )
        self.prompt_type = prompt_type
        self.authenticator_id = authenticator_id


class Cancelled(AuthFlowError):
    """The user or the caller aborted an interactive step.

    Distinct from a failure: the caller may offer a different
    authenticator or start a new attempt.
    """

    reason = FailureReason.CANCELLED


class RedirectTimeout(Cancelled):
    """No redirect callback arrived within the configured timeout."""

    def __init__(self, message: str, timeout: float, **context: Any) -> None:
        """Initialize redirect timeout.

        Parameters
        ----------
        message : str
            Human-readable error message.
        timeout : float
            The timeout value in seconds.
        **context : Any
            Additional context.
        """
        super().__init__(message, timeout=timeout, **context)
        self.timeout = timeout


class TokenExchangeError(AuthFlowError):
    """The token endpoint rejected an exchange or refresh.

    The artifact or refresh token is presumed consumed or invalid, so the
    same call must not be retried; a fresh login attempt is required.
    """

    reason = FailureReason.TOKEN_EXCHANGE

    def __init__(
        self,
        message: str,
        error: str | None = None,
        error_description: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize token exchange error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        error : str, optional
            The OAuth2 error code reported by the server (e.g. ``invalid_grant``).
        error_description : str, optional
            The server's human-readable description.
        **context : Any
            Additional context.
        """
        super().__init__(message, error=error, error_description=error_description, **context)
        self.error = error
        self.error_description = error_description


class UserInfoError(AuthFlowError):
    """The user-info endpoint returned a well-formed error response."""

    reason = FailureReason.USER_INFO

    def __init__(self, message: str, status_code: int | None = None, **context: Any) -> None:
        """Initialize user info error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        status_code : int, optional
            The HTTP status of the error response.
        **context : Any
            Additional context.
        """
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code


class FlowStateError(AuthFlowError):
    """An operation was called in a state that does not allow it.

    Raised for API misuse, such as advancing a flow that is not in
    progress or advancing the same flow from two callers at once. Never
    converted into a failed state.
    """
