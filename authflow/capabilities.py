"""External interaction capabilities consumed by authenticator strategies.

The engine never renders UI or talks to platform credential APIs itself.
Applications pass implementations of these protocols, and the strategies
call them at the suspension points of a step.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging
import webbrowser

from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, Union, runtime_checkable

from .callback_server import CallbackServer


if TYPE_CHECKING:
    from .models import AuthenticatorDescriptor


logger = logging.getLogger("authflow.capabilities")

# A credential capability answers with a parameter mapping, a single
# credential string for single-parameter authenticators, or None when the
# user dismissed the prompt or no credential is available.
CredentialResult = Union[Mapping[str, str], str, None]

# A redirect capability answers with the callback URL, its parsed query,
# or None when the redirect was abandoned.
RedirectResult = Union[Mapping[str, str], str, None]


@dataclass(frozen=True)
class CredentialRequest:
    """What a credential capability is asked to obtain.

    Attributes
    ----------
    authenticator : AuthenticatorDescriptor
        The resolved authenticator, with display metadata.
    prompt_type : str
        ``USER_PROMPT`` for an in-app form, ``INTERNAL_PROMPT`` for a
        platform credential (passkey, native IdP SDK).
    """

    authenticator: AuthenticatorDescriptor
    prompt_type: str

    @property
    def required_params(self) -> tuple[str, ...]:
        return self.authenticator.required_params

    @property
    def fields(self) -> list[Mapping[str, Any]]:
        """Form fields in display order (``param``, ``displayName``, ``confidential``...)."""
        return self.authenticator.param_specs

    @property
    def options(self) -> Mapping[str, Any]:
        """Provider-specific options such as ``clientId``, ``nonce`` or ``challengeData``."""
        return self.authenticator.additional_data


@runtime_checkable
class CredentialCapability(Protocol):
    """Obtains credentials from the user or the platform."""

    async def obtain_credential(self, request: CredentialRequest) -> CredentialResult:
        """Return the credential, or ``None`` if cancelled or unavailable."""


@runtime_checkable
class RedirectCapability(Protocol):
    """Drives an external redirect (browser, custom tab) to completion."""

    async def redirect(self, url: str) -> RedirectResult:
        """Open ``url`` and return the callback, or ``None`` if abandoned."""


@dataclass
class InteractionCapabilities:
    """Capabilities available to strategies for one dispatch.

    Attributes
    ----------
    credential : CredentialCapability or None
        Used by in-app and platform credential prompts.
    redirect : RedirectCapability or None
        Used by redirection prompts.
    redirect_timeout : float or None
        Seconds a redirection prompt waits for its callback. Left as None,
        the core applies its configured redirect timeout.
    """

    credential: CredentialCapability | None = None
    redirect: RedirectCapability | None = None
    redirect_timeout: float | None = None


class BrowserRedirectCapability:
    """Opens the system browser and waits on a loopback callback server.

    Parameters
    ----------
    host : str
        Loopback bind address.
    port : int
        Port of the redirect URI registered with the federated IdP.
    path : str
        Callback path of the registered redirect URI.
    open_browser : callable, optional
        ``open_browser(url) -> bool``; defaults to :func:`webbrowser.open`.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 0,
        path: str = "/callback",
        open_browser: Any | None = None,
    ) -> None:
        """Initialize the capability."""
        self.host = host
        self.port = port
        self.path = path
        self._open_browser = open_browser or webbrowser.open

    async def redirect(self, url: str) -> RedirectResult:
        """Open ``url`` and return the first callback's query parameters."""
        server = CallbackServer(self.host, self.port, self.path)
        redirect_uri = server.start()
        loop = asyncio.get_running_loop()
        try:
            logger.info("Opening browser for sign-in; callback expected on %s", redirect_uri)
            opened = await loop.run_in_executor(None, self._open_browser, url)
            if not opened:
                logger.warning("Could not open a browser, navigate to %s manually", url)
            return await server.wait_for_callback()
        finally:
            # shutdown() waits out the serve_forever poll interval
            await loop.run_in_executor(None, server.stop)
