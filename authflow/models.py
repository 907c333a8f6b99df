"""Data model for server-driven authentication flows.

Immutable descriptions of what the identity provider asks for
(:class:`AuthenticatorDescriptor`, :class:`FlowStep`), the result of
interpreting one provider response (:data:`FlowOutcome`), the normalized
token record, and the consumer-facing :class:`AuthenticationState`.
"""

from __future__ import annotations

import asyncio
import json

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Union

from .exceptions import AuthFlowError, FailureReason, MalformedResponse


if TYPE_CHECKING:
    from .pkce import PKCEPair


class PromptType(str, Enum):
    """Interaction categories declared by ``metadata.promptType``.

    Descriptors keep the raw string so that prompt types unknown to this
    enum still reach the strategy registry and can be registered later.
    """

    USER_PROMPT = "USER_PROMPT"
    INTERNAL_PROMPT = "INTERNAL_PROMPT"
    REDIRECTION_PROMPT = "REDIRECTION_PROMPT"

    def __str__(self) -> str:
        return self.value


def _freeze(mapping: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class AuthenticatorDescriptor:
    """One authenticator offered by a flow step.

    Attributes
    ----------
    id : str
        The ``authenticatorId`` used when advancing the flow.
    name : str or None
        Display name (``authenticator``), e.g. ``"Username & Password"``.
    identity_provider_id : str or None
        The owning identity provider (``idp``), e.g. ``"LOCAL"`` or ``"Google"``.
    metadata : Mapping[str, Any]
        Opaque provider metadata, read-only.
    required_params : tuple[str, ...]
        Parameter names that must be supplied to advance the step.
    prompt_type : str
        The interaction category, ``""`` when the provider did not declare one.
    """

    id: str
    name: str | None = None
    identity_provider_id: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    required_params: tuple[str, ...] = ()
    prompt_type: str = ""

    def __post_init__(self) -> None:
        """Freeze the metadata mapping and parameter sequence."""
        object.__setattr__(self, "metadata", _freeze(self.metadata))
        object.__setattr__(self, "required_params", tuple(self.required_params))

    @classmethod
    def from_json(cls, data: Any) -> AuthenticatorDescriptor:
        """Build a descriptor from one ``authenticators[]`` entry.

        Parameters
        ----------
        data : Any
            The decoded JSON entry.

        Returns
        -------
        AuthenticatorDescriptor
            The parsed descriptor.

        Raises
        ------
        MalformedResponse
            If the entry is not an object, has no ``authenticatorId``, or
            declares ``requiredParams`` that are not a list of strings.
        """
        if not isinstance(data, Mapping):
            msg = "Authenticator entry is not an object"
            raise MalformedResponse(msg)

        authenticator_id = data.get("authenticatorId")
        if not isinstance(authenticator_id, str) or not authenticator_id:
            msg = "Authenticator entry has no authenticatorId"
            raise MalformedResponse(msg)

        required = data.get("requiredParams") or []
        if not isinstance(required, list) or not all(isinstance(p, str) for p in required):
            msg = "requiredParams must be a list of strings"
            raise MalformedResponse(msg, authenticator_id=authenticator_id)

        metadata = data.get("metadata") or {}
        if not isinstance(metadata, Mapping):
            msg = "Authenticator metadata is not an object"
            raise MalformedResponse(msg, authenticator_id=authenticator_id)

        prompt_type = metadata.get("promptType") or ""
        return cls(
            id=authenticator_id,
            name=data.get("authenticator"),
            identity_provider_id=data.get("idp"),
            metadata=metadata,
            required_params=tuple(required),
            prompt_type=str(prompt_type),
        )

    @property
    def is_detailed(self) -> bool:
        """Whether this descriptor carries enough detail to drive a strategy."""
        return bool(self.required_params) and bool(self.prompt_type)

    @property
    def additional_data(self) -> Mapping[str, Any]:
        """``metadata.additionalData`` (redirect URL, nonce, challenge data...)."""
        data = self.metadata.get("additionalData")
        return data if isinstance(data, Mapping) else {}

    @property
    def redirect_url(self) -> str | None:
        """The URL a redirection prompt opens, if declared."""
        url = self.additional_data.get("redirectUrl")
        return url if isinstance(url, str) and url else None

    @property
    def param_specs(self) -> list[Mapping[str, Any]]:
        """``metadata.params`` sorted by their ``order`` field."""
        params = self.metadata.get("params")
        if not isinstance(params, list):
            return []
        specs = [p for p in params if isinstance(p, Mapping)]
        return sorted(specs, key=lambda p: p.get("order", 0))


@dataclass(frozen=True)
class FlowStep:
    """One pending decision point of a flow.

    Attributes
    ----------
    flow_id : str
        The provider-assigned flow identifier.
    authenticator_options : tuple[AuthenticatorDescriptor, ...]
        The authenticators the caller may choose from; never empty.
    step_type : str or None
        ``nextStep.stepType`` (``"AUTHENTICATOR_PROMPT"`` or
        ``"MULTI_OPTIONS_PROMPT"``), informational only.
    """

    flow_id: str
    authenticator_options: tuple[AuthenticatorDescriptor, ...]
    step_type: str | None = None

    def __post_init__(self) -> None:
        """Reject steps the caller could never act on."""
        object.__setattr__(self, "authenticator_options", tuple(self.authenticator_options))
        if not self.authenticator_options:
            msg = "A flow step needs at least one authenticator option"
            raise ValueError(msg)

    def find(self, authenticator_id: str) -> AuthenticatorDescriptor | None:
        """Return the option with the given ``authenticatorId``."""
        for option in self.authenticator_options:
            if option.id == authenticator_id:
                return option
        return None

    def by_name(self, name: str) -> list[AuthenticatorDescriptor]:
        """Return every option whose display name matches ``name``."""
        return [option for option in self.authenticator_options if option.name == name]

    @property
    def has_duplicate_names(self) -> bool:
        """Whether two options share a display name (same method, different IdPs)."""
        names = [option.name for option in self.authenticator_options if option.name]
        return len(names) != len(set(names))

    def with_options(self, options: tuple[AuthenticatorDescriptor, ...]) -> FlowStep:
        """Copy of this step with enriched authenticator options."""
        return FlowStep(flow_id=self.flow_id, authenticator_options=options, step_type=self.step_type)


@dataclass(frozen=True)
class FlowIncomplete:
    """More steps are required."""

    step: FlowStep


@dataclass(frozen=True)
class FlowComplete:
    """The flow succeeded and yielded an authorization artifact."""

    artifact: str
    session_state: str | None = None


@dataclass(frozen=True)
class FlowFailed:
    """The flow cannot continue."""

    error: AuthFlowError

    @property
    def reason(self) -> FailureReason | None:
        """The taxonomy entry of the originating error."""
        return self.error.reason


FlowOutcome = Union[FlowIncomplete, FlowComplete, FlowFailed]


@dataclass(frozen=True)
class TokenRecord:
    """Normalized result of a token exchange or refresh.

    Attributes
    ----------
    access_token : str
        The access token for API requests.
    refresh_token : str or None
        Refresh token, if the provider issued one.
    id_token : str or None
        OIDC ID token (JWT), needed as ``id_token_hint`` on logout.
    token_type : str
        Token type, typically ``"Bearer"``.
    scope : str
        Space-separated granted scopes.
    expires_at : int
        Unix time (seconds) at which the access token stops being valid.
    """

    access_token: str
    refresh_token: str | None = None
    id_token: str | None = None
    token_type: str = "Bearer"  # noqa: S105
    scope: str = ""
    expires_at: int = 0

    def is_expired(self, now: float) -> bool:
        """Expired at and after ``expires_at``."""
        return now >= self.expires_at

    def to_bytes(self) -> bytes:
        """Serialize for a byte-level token store."""
        return json.dumps(
            {
                "access_token": self.access_token,
                "refresh_token": self.refresh_token,
                "id_token": self.id_token,
                "token_type": self.token_type,
                "scope": self.scope,
                "expires_at": self.expires_at,
            }
        ).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> TokenRecord:
        """Deserialize bytes written by :meth:`to_bytes`.

        Raises
        ------
        MalformedResponse
            If the stored bytes are not a serialized token record.
        """
        try:
            obj = json.loads(data.decode("utf-8"))
            return cls(
                access_token=obj["access_token"],
                refresh_token=obj.get("refresh_token"),
                id_token=obj.get("id_token"),
                token_type=obj.get("token_type", "Bearer"),
                scope=obj.get("scope", ""),
                expires_at=int(obj["expires_at"]),
            )
        except (UnicodeDecodeError, ValueError, KeyError, TypeError) as exc:
            msg = "Stored token record is corrupt"
            raise MalformedResponse(msg) from exc


class AuthStatus(str, Enum):
    """What an external caller can observe about authentication."""

    UNAUTHENTICATED = "unauthenticated"
    IN_PROGRESS = "in_progress"
    AUTHORIZED = "authorized"
    ERROR = "error"


@dataclass(frozen=True)
class AuthenticationState:
    """Consumer-facing projection of the flow and token state.

    Exactly one of ``step``, ``tokens`` or ``error`` is set, matching
    ``status`` (none for ``UNAUTHENTICATED``).
    """

    status: AuthStatus
    step: FlowStep | None = None
    tokens: TokenRecord | None = None
    error: AuthFlowError | None = None

    @classmethod
    def unauthenticated(cls) -> AuthenticationState:
        return cls(AuthStatus.UNAUTHENTICATED)

    @classmethod
    def in_progress(cls, step: FlowStep) -> AuthenticationState:
        return cls(AuthStatus.IN_PROGRESS, step=step)

    @classmethod
    def authorized(cls, tokens: TokenRecord) -> AuthenticationState:
        return cls(AuthStatus.AUTHORIZED, tokens=tokens)

    @classmethod
    def failed(cls, error: AuthFlowError) -> AuthenticationState:
        return cls(AuthStatus.ERROR, error=error)

    @property
    def reason(self) -> FailureReason | None:
        """Failure kind when ``status`` is ``ERROR``."""
        return self.error.reason if self.error is not None else None


class SessionState(str, Enum):
    """Lifecycle of one login attempt."""

    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    AUTHORIZED = "authorized"
    FAILED = "failed"


@dataclass
class FlowSession:
    """Mutable state of a single login attempt.

    Owned by one :class:`~authflow.core.AuthenticationCore` attempt and
    discarded when the attempt ends; a new attempt gets a new session.
    """

    pkce: PKCEPair | None = None
    flow_id: str | None = None
    outcome: FlowOutcome | None = None
    collected_params: dict[str, dict[str, str]] = field(default_factory=dict)
    state: SessionState = SessionState.IDLE
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    busy: bool = False

    @property
    def current_step(self) -> FlowStep | None:
        """The pending step while the attempt is in progress."""
        if self.state is SessionState.IN_PROGRESS and isinstance(self.outcome, FlowIncomplete):
            return self.outcome.step
        return None

    @property
    def is_terminal(self) -> bool:
        return self.state in (SessionState.AUTHORIZED, SessionState.FAILED)

    def record(self, outcome: FlowOutcome) -> None:
        """Apply an interpreted provider response."""
        self.outcome = outcome
        if isinstance(outcome, FlowIncomplete):
            self.flow_id = outcome.step.flow_id
            self.state = SessionState.IN_PROGRESS
        elif isinstance(outcome, FlowFailed):
            self.state = SessionState.FAILED

    def fail(self, error: AuthFlowError) -> None:
        """End the attempt with a failure."""
        self.outcome = FlowFailed(error)
        self.state = SessionState.FAILED
