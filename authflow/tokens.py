"""OAuth2 token endpoint client.

Performs the ``authorization_code`` and ``refresh_token`` grants, the
user-info request and the end-session call, normalizing every successful
token response into a :class:`~authflow.models.TokenRecord`.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import time

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .exceptions import MalformedResponse, TokenExchangeError, TransportError, UserInfoError
from .models import TokenRecord
from .transport import decode_json


if TYPE_CHECKING:
    import httpx

    from .config import OAuthSettings
    from .transport import HttpTransport


logger = logging.getLogger("authflow.tokens")


@dataclass(frozen=True)
class TokenRequestContext:
    """Client parameters sent with a token grant.

    Attributes
    ----------
    client_id : str
        The OAuth2 client ID.
    redirect_uri : str
        Redirect URI of the authorize request (code grant only).
    client_secret : str
        Secret of confidential clients, empty for public ones.
    code_verifier : str or None
        PKCE verifier of the attempt (code grant only).
    """

    client_id: str
    redirect_uri: str = ""
    client_secret: str = ""
    code_verifier: str | None = None

    @classmethod
    def from_settings(cls, oauth: OAuthSettings, code_verifier: str | None = None) -> TokenRequestContext:
        return cls(
            client_id=oauth.client_id,
            redirect_uri=oauth.redirect_uri,
            client_secret=oauth.client_secret,
            code_verifier=code_verifier,
        )


class TokenExchangeManager:
    """Talks to the token, user-info and end-session endpoints.

    Parameters
    ----------
    transport : HttpTransport
        Shared HTTP transport.
    token_url : str
        Token endpoint.
    userinfo_url : str
        User-info endpoint.
    logout_url : str
        End-session endpoint.
    timeout : float
        Timeout for token grants; exceeding it is a :class:`TransportError`.
    userinfo_timeout : float
        Timeout for the user-info request.
    default_lifetime : int
        Seconds of validity assumed when a response omits ``expires_in``.
    clock : callable
        Returns the current Unix time; injected for deterministic tests.
    """

    def __init__(
        self,
        transport: HttpTransport,
        token_url: str,
        userinfo_url: str = "",
        logout_url: str = "",
        *,
        timeout: float = 30.0,
        userinfo_timeout: float = 10.0,
        default_lifetime: int = 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the token exchange manager."""
        self.transport = transport
        self.token_url = token_url
        self.userinfo_url = userinfo_url
        self.logout_url = logout_url
        self.timeout = timeout
        self.userinfo_timeout = userinfo_timeout
        self.default_lifetime = default_lifetime
        self.clock = clock

    async def exchange_authorization_artifact(
        self, artifact: str, context: TokenRequestContext
    ) -> TokenRecord:
        """Exchange an authorization code for tokens.

        Parameters
        ----------
        artifact : str
            The ``authData.code`` of a completed flow.
        context : TokenRequestContext
            Client parameters, including the PKCE verifier.

        Returns
        -------
        TokenRecord
            The validated token record.

        Raises
        ------
        TransportError
            If no usable response arrived (including a timeout).
        TokenExchangeError
            If the endpoint rejected the code.
        MalformedResponse
            If a success response carries no access token.
        """
        data = {
            "grant_type": "authorization_code",
            "code": artifact,
            "redirect_uri": context.redirect_uri,
            "client_id": context.client_id,
        }
        if context.client_secret:
            data["client_secret"] = context.client_secret
        if context.code_verifier:
            data["code_verifier"] = context.code_verifier

        raw = await self._grant(data)
        record = self._record(raw)
        logger.info("Authorization code exchanged for tokens")
        return record

    async def refresh(self, refresh_token: str, context: TokenRequestContext) -> TokenRecord:
        """Obtain a new token record with a refresh token.

        The new record comes entirely from the response, except that a
        response without ``refresh_token`` keeps the one used here.

        Raises
        ------
        TransportError
            If no usable response arrived (including a timeout).
        TokenExchangeError
            If the endpoint rejected the refresh token.
        MalformedResponse
            If a success response carries no access token.
        """
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": context.client_id,
        }
        if context.client_secret:
            data["client_secret"] = context.client_secret

        raw = await self._grant(data)
        record = self._record(raw, fallback_refresh_token=refresh_token)
        logger.info("Tokens refreshed")
        return record

    async def fetch_user_info(self, access_token: str) -> dict[str, Any]:
        """Fetch the user's claims with a bearer token.

        Raises
        ------
        TransportError
            If no usable response arrived.
        UserInfoError
            If the endpoint answered with an error status.
        MalformedResponse
            If a success response is not a JSON object.
        """
        response = await self.transport.send(
            "GET",
            self.userinfo_url,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=self.userinfo_timeout,
        )
        if response.status_code >= 500:
            msg = f"User-info endpoint returned server error {response.status_code}"
            raise TransportError(msg, status_code=response.status_code)
        if response.is_error:
            msg = f"User-info request rejected with status {response.status_code}"
            raise UserInfoError(msg, status_code=response.status_code, **_oauth_error(response))

        claims = decode_json(response)
        if not isinstance(claims, dict):
            msg = "User-info response is not a JSON object"
            raise MalformedResponse(msg)
        return claims

    async def end_session(self, id_token: str | None, client_id: str) -> bool:
        """Ask the provider to end the session.

        Returns
        -------
        bool
            Whether the provider acknowledged the logout.

        Raises
        ------
        TransportError
            If no response arrived.
        """
        data = {"client_id": client_id, "response_mode": "direct"}
        if id_token:
            data["id_token_hint"] = id_token
        response = await self.transport.send(
            "POST", self.logout_url, data=data, timeout=self.timeout
        )
        if response.is_error:
            logger.warning("End-session request returned status %d", response.status_code)
            return False
        return True

    async def _grant(self, data: dict[str, str]) -> Mapping[str, Any]:
        """POST a grant and return the decoded success body."""
        response = await self.transport.send("POST", self.token_url, data=data, timeout=self.timeout)
        try:
            raw = response.json()
        except ValueError:
            raw = None

        if response.is_error:
            details = _oauth_error(response, raw)
            if "error" not in details:
                msg = f"Token endpoint returned an unreadable error (status {response.status_code})"
                raise TransportError(msg, status_code=response.status_code)
            msg = f"Token endpoint rejected the {data['grant_type']} grant"
            raise TokenExchangeError(msg, status_code=response.status_code, **details)

        if raw is None:
            msg = "Token response body is not valid JSON"
            raise TransportError(msg, status_code=response.status_code)
        if not isinstance(raw, Mapping):
            msg = "Token response is not a JSON object"
            raise MalformedResponse(msg)
        return raw

    def _record(
        self, raw: Mapping[str, Any], fallback_refresh_token: str | None = None
    ) -> TokenRecord:
        """Validate a success body and normalize it into a token record."""
        access_token = raw.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            msg = "Token response has no access_token"
            raise MalformedResponse(msg)

        expires_in = raw.get("expires_in")
        if expires_in is None:
            lifetime = self.default_lifetime
        else:
            try:
                lifetime = int(expires_in)
            except (TypeError, ValueError) as exc:
                msg = "Token response has a non-numeric expires_in"
                raise MalformedResponse(msg, expires_in=expires_in) from exc

        return TokenRecord(
            access_token=access_token,
            refresh_token=raw.get("refresh_token") or fallback_refresh_token,
            id_token=raw.get("id_token"),
            token_type=raw.get("token_type") or "Bearer",
            scope=raw.get("scope") or "",
            expires_at=int(self.clock()) + lifetime,
        )


def _oauth_error(response: httpx.Response, raw: Any = None) -> dict[str, str]:
    """Extract ``error`` and ``error_description`` from an error body."""
    if raw is None:
        try:
            raw = response.json()
        except ValueError:
            return {}
    if not isinstance(raw, Mapping) or not isinstance(raw.get("error"), str):
        return {}
    details = {"error": raw["error"]}
    if isinstance(raw.get("error_description"), str):
        details["error_description"] = raw["error_description"]
    return details
