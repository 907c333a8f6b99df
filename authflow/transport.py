"""HTTP transport shared by the flow, resolver and token components.

Wraps a lazily created ``httpx.AsyncClient`` and turns every failure to
obtain a usable response into :class:`~authflow.exceptions.TransportError`.
Status codes are left to the callers, which know what an error body means
for their endpoint.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import Any

import httpx

from .exceptions import TransportError


logger = logging.getLogger("authflow.transport")


class HttpTransport:
    """Send HTTP requests to the identity provider.

    Parameters
    ----------
    timeout : float
        Default per-request timeout in seconds.
    client : httpx.AsyncClient, optional
        A preconfigured client (TLS trust, proxies, pinning). Not closed
        by :meth:`close` since the caller owns it.
    transport : httpx.AsyncBaseTransport, optional
        Low-level transport for a client created here, e.g.
        ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the transport."""
        self.timeout = timeout
        self._transport = transport
        self._http_client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._owns_client and self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    async def send(
        self,
        method: str,
        url: str,
        *,
        data: dict[str, str] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        """Send one request and return the response, whatever its status.

        Raises
        ------
        TransportError
            If no response was received (connection error, timeout).
        """
        if not url:
            msg = "Endpoint URL is not configured"
            raise TransportError(msg, method=method)

        client = await self._get_client()
        try:
            response = await client.request(
                method,
                url,
                data=data,
                json=json,
                headers={"Accept": "application/json", **(headers or {})},
                timeout=timeout if timeout is not None else self.timeout,
            )
        except httpx.TimeoutException as exc:
            msg = f"Request timed out: {exc}"
            raise TransportError(msg, method=method, url=url) from exc
        except httpx.HTTPError as exc:
            msg = f"Request failed: {exc}"
            raise TransportError(msg, method=method, url=url) from exc

        logger.debug("%s %s -> %d", method, url, response.status_code)
        return response


def decode_json(response: httpx.Response) -> Any:
    """Decode a JSON body.

    Raises
    ------
    TransportError
        If the body is not JSON, i.e. the response is garbled.
    """
    try:
        return response.json()
    except ValueError as exc:
        msg = "Response body is not valid JSON"
        raise TransportError(
            msg, url=str(response.request.url), status_code=response.status_code
        ) from exc


def read_json(response: httpx.Response) -> Any:
    """Decode the body of a flow endpoint response.

    Server errors (5xx) count as a failed round trip; 4xx bodies are
    returned for interpretation.

    Raises
    ------
    TransportError
        On a 5xx status or a body that is not JSON.
    """
    if response.status_code >= 500:
        msg = f"Provider returned server error {response.status_code}"
        raise TransportError(
            msg, url=str(response.request.url), status_code=response.status_code
        )
    return decode_json(response)
