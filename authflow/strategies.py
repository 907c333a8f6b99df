"""Authenticator strategies keyed by prompt type.

Each strategy knows how to collect the parameters for one interaction
category. The registry picks the strategy from the descriptor's
``promptType`` and guarantees that a successful dispatch covers exactly
the authenticator's ``requiredParams``. Supporting a new prompt type
means registering one more strategy; dispatch itself never changes.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Iterable, Mapping
from typing import TYPE_CHECKING, TypeVar
from urllib.parse import parse_qsl, urlparse

from .capabilities import CredentialRequest
from .exceptions import Cancelled, MalformedResponse, RedirectTimeout, UnsupportedAuthenticator
from .models import PromptType


if TYPE_CHECKING:
    from .capabilities import InteractionCapabilities
    from .models import AuthenticatorDescriptor


logger = logging.getLogger("authflow.strategies")

T = TypeVar("T")


async def _interact(
    interaction: Awaitable[T],
    cancel_event: asyncio.Event | None,
    timeout: float | None,
    authenticator_id: str,
) -> T:
    """Await an external capability while honoring cancellation and a timeout.

    Raises
    ------
    Cancelled
        If ``cancel_event`` is set first.
    RedirectTimeout
        If ``timeout`` elapses first.
    """
    task = asyncio.ensure_future(interaction)
    waiters: set[asyncio.Future[object]] = {task}
    cancel_waiter = None
    if cancel_event is not None:
        cancel_waiter = asyncio.ensure_future(cancel_event.wait())
        waiters.add(cancel_waiter)

    try:
        done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for waiter in waiters:
            if not waiter.done():
                waiter.cancel()

    if task in done:
        return task.result()
    if cancel_waiter is not None and cancel_waiter in done:
        msg = "Interaction was cancelled"
        raise Cancelled(msg, authenticator_id=authenticator_id)
    msg = f"No callback received within {timeout}s"
    raise RedirectTimeout(msg, timeout=timeout or 0.0, authenticator_id=authenticator_id)


class AuthenticatorStrategy(ABC):
    """Collects the parameters of one prompt type."""

    prompt_type: str = ""

    @abstractmethod
    async def collect(
        self,
        descriptor: AuthenticatorDescriptor,
        capabilities: InteractionCapabilities,
        cancel_event: asyncio.Event | None = None,
    ) -> Mapping[str, str]:
        """Run the interaction and return the collected parameters.

        Parameters
        ----------
        descriptor : AuthenticatorDescriptor
            The resolved authenticator.
        capabilities : InteractionCapabilities
            External capabilities to drive.
        cancel_event : asyncio.Event, optional
            Set by the caller to abandon the interaction.

        Returns
        -------
        Mapping[str, str]
            Parameters keyed by name; may include extras, which dispatch drops.
        """


class CredentialPromptStrategy(AuthenticatorStrategy):
    """In-app credential form (username and password, OTP, TOTP...)."""

    prompt_type = PromptType.USER_PROMPT.value

    async def collect(
        self,
        descriptor: AuthenticatorDescriptor,
        capabilities: InteractionCapabilities,
        cancel_event: asyncio.Event | None = None,
    ) -> Mapping[str, str]:
        """Ask the credential capability and map its answer to parameter names."""
        if capabilities.credential is None:
            msg = "No credential capability available"
            raise UnsupportedAuthenticator(
                msg, prompt_type=self.prompt_type, authenticator_id=descriptor.id
            )

        request = CredentialRequest(authenticator=descriptor, prompt_type=self.prompt_type)
        result = await _interact(
            capabilities.credential.obtain_credential(request), cancel_event, None, descriptor.id
        )
        if result is None:
            msg = "No credential was provided"
            raise Cancelled(msg, authenticator_id=descriptor.id)

        if isinstance(result, str):
            if len(descriptor.required_params) != 1:
                msg = "A single credential cannot cover several required parameters"
                raise MalformedResponse(
                    msg,
                    authenticator_id=descriptor.id,
                    required_params=list(descriptor.required_params),
                )
            return {descriptor.required_params[0]: result}
        return result


class PlatformCredentialStrategy(CredentialPromptStrategy):
    """Platform credential with no in-app form (passkey, native IdP SDK)."""

    prompt_type = PromptType.INTERNAL_PROMPT.value


class RedirectionPromptStrategy(AuthenticatorStrategy):
    """Federated login through an external redirect and callback."""

    prompt_type = PromptType.REDIRECTION_PROMPT.value

    async def collect(
        self,
        descriptor: AuthenticatorDescriptor,
        capabilities: InteractionCapabilities,
        cancel_event: asyncio.Event | None = None,
    ) -> Mapping[str, str]:
        """Open ``additionalData.redirectUrl`` and read the callback's query."""
        url = descriptor.redirect_url
        if url is None:
            msg = "Redirection authenticator has no redirectUrl"
            raise MalformedResponse(msg, authenticator_id=descriptor.id)
        if capabilities.redirect is None:
            msg = "No redirect capability available"
            raise UnsupportedAuthenticator(
                msg, prompt_type=self.prompt_type, authenticator_id=descriptor.id
            )

        logger.debug("Redirecting for authenticator %s", descriptor.id)
        result = await _interact(
            capabilities.redirect.redirect(url),
            cancel_event,
            capabilities.redirect_timeout,
            descriptor.id,
        )
        if result is None:
            msg = "Redirect was abandoned"
            raise Cancelled(msg, authenticator_id=descriptor.id)

        params = dict(parse_qsl(urlparse(result).query)) if isinstance(result, str) else dict(result)

        if params.get("error"):
            msg = "Redirect returned an error"
            raise Cancelled(
                msg,
                authenticator_id=descriptor.id,
                error=params["error"],
                error_description=params.get("error_description"),
            )

        expected_state = descriptor.additional_data.get("state")
        if expected_state and "state" in params and params["state"] != expected_state:
            msg = "Callback state does not match the redirect request"
            raise MalformedResponse(msg, authenticator_id=descriptor.id)
        return params


def _prompt_key(prompt_type: object) -> str:
    """Registry key for a prompt type given as a string or enum member."""
    return str(getattr(prompt_type, "value", prompt_type))


class StrategyRegistry:
    """Maps prompt types to strategies.

    Parameters
    ----------
    strategies : iterable of AuthenticatorStrategy, optional
        Strategies registered at construction.
    """

    def __init__(self, strategies: Iterable[AuthenticatorStrategy] = ()) -> None:
        """Initialize the registry."""
        self._strategies: dict[str, AuthenticatorStrategy] = {}
        for strategy in strategies:
            self.register(strategy)

    def register(self, strategy: AuthenticatorStrategy, *, replace: bool = False) -> None:
        """Register ``strategy`` for its ``prompt_type``.

        Raises
        ------
        ValueError
            If the prompt type is empty, or already registered and
            ``replace`` is false.
        """
        key = _prompt_key(strategy.prompt_type)
        if not key:
            msg = f"{type(strategy).__name__} declares no prompt_type"
            raise ValueError(msg)
        if key in self._strategies and not replace:
            msg = f"A strategy for {key} is already registered"
            raise ValueError(msg)
        self._strategies[key] = strategy

    def unregister(self, prompt_type: str) -> None:
        """Remove the strategy for ``prompt_type`` if present."""
        self._strategies.pop(_prompt_key(prompt_type), None)

    def __contains__(self, prompt_type: object) -> bool:
        return _prompt_key(prompt_type) in self._strategies

    @property
    def prompt_types(self) -> list[str]:
        """Registered prompt types."""
        return list(self._strategies)

    def get(self, prompt_type: str, authenticator_id: str | None = None) -> AuthenticatorStrategy:
        """Return the strategy for ``prompt_type``.

        Raises
        ------
        UnsupportedAuthenticator
            If nothing is registered for it.
        """
        strategy = self._strategies.get(_prompt_key(prompt_type))
        if strategy is None:
            msg = f"No strategy registered for prompt type {prompt_type!r}"
            raise UnsupportedAuthenticator(
                msg, prompt_type=prompt_type, authenticator_id=authenticator_id
            )
        return strategy

    async def dispatch(
        self,
        descriptor: AuthenticatorDescriptor,
        capabilities: InteractionCapabilities,
        cancel_event: asyncio.Event | None = None,
    ) -> dict[str, str]:
        """Collect exactly the descriptor's required parameters.

        Raises
        ------
        UnsupportedAuthenticator
            If the prompt type has no strategy or capability.
        Cancelled
            If the interaction was dismissed, cancelled or timed out.
        MalformedResponse
            If the collected parameters miss a required name.
        """
        strategy = self.get(descriptor.prompt_type, descriptor.id)
        collected = await strategy.collect(descriptor, capabilities, cancel_event)

        missing = [p for p in descriptor.required_params if collected.get(p) is None]
        if missing:
            msg = "Collected parameters do not cover the authenticator's requiredParams"
            raise MalformedResponse(msg, authenticator_id=descriptor.id, missing=missing)
        return {p: str(collected[p]) for p in descriptor.required_params}


def default_registry() -> StrategyRegistry:
    """Registry with the in-app, platform and redirection strategies."""
    return StrategyRegistry(
        [CredentialPromptStrategy(), PlatformCredentialStrategy(), RedirectionPromptStrategy()]
    )
