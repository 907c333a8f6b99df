"""Ephemeral loopback HTTP server receiving redirect callbacks.

A federated authenticator (Google, GitHub, an enterprise OIDC IdP...)
finishes on the provider's page and redirects the browser back to a
registered loopback URI. This server captures the first request to that
path and hands every query parameter to an awaiting coroutine.
"""

# pylint: disable=logging-too-many-args

# pylint: disable=C0103,W0212

from __future__ import annotations

import asyncio
import html
import logging
import threading

from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any
from urllib.parse import parse_qsl, urlparse


logger = logging.getLogger("authflow.callback")

_PAGE = """<!DOCTYPE html>
<html>
<head><title>{title}</title>
<style>
  body {{ font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
         display: flex; align-items: center; justify-content: center;
         height: 100vh; margin: 0; background: #f4f5f7; color: #1f2330; }}
  .card {{ text-align: center; padding: 2rem 3rem; background: white;
          border-radius: 10px; box-shadow: 0 2px 10px rgba(0,0,0,.08); }}
  p {{ color: #5f6372; }}
</style></head>
<body><div class="card">
  <h1>{title}</h1>
  <p>{detail}</p>
</div></body></html>"""


def _page(title: str, detail: str) -> str:
    return _PAGE.format(title=html.escape(title), detail=html.escape(detail))


class CallbackServer:
    """Loopback server that resolves a future with the first callback's query.

    Parameters
    ----------
    host : str
        Bind address (default ``"127.0.0.1"``).
    port : int
        Port number, ``0`` for an ephemeral port. Providers that only
        accept a pre-registered redirect URI need the registered port.
    path : str
        Callback path (default ``"/callback"``).
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 0, path: str = "/callback") -> None:
        """Initialize the callback server."""
        self._host = host
        self._port = port
        self._path = path
        self._server: HTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._future: asyncio.Future[dict[str, str]] | None = None
        self._actual_port = 0

    @property
    def redirect_uri(self) -> str:
        """The loopback URI callbacks are expected on."""
        return f"http://{self._host}:{self._actual_port}{self._path}"

    def start(self) -> str:
        """Start serving on a daemon thread.

        Must be called from a running event loop.

        Returns
        -------
        str
            The redirect URI.
        """
        self._loop = asyncio.get_running_loop()
        self._future = self._loop.create_future()
        server_ref = self

        class _CallbackHandler(BaseHTTPRequestHandler):
            """Request handler capturing the callback query."""

            def do_GET(self) -> None:
                """Handle GET requests."""
                parsed = urlparse(self.path)
                if parsed.path != server_ref._path:
                    self.send_error(404)
                    return

                params = dict(parse_qsl(parsed.query, keep_blank_values=True))
                if params.get("error"):
                    detail = params.get("error_description") or params["error"]
                    self._send_html(_page("Sign-in failed", detail))
                else:
                    self._send_html(_page("Sign-in complete", "You can close this window."))
                server_ref._deliver(params)

            def _send_html(self, content: str) -> None:
                encoded = content.encode("utf-8")
                self.send_response(200)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Content-Length", str(len(encoded)))
                self.send_header("Cache-Control", "no-store")
                self.send_header(
                    "Content-Security-Policy",
                    "default-src 'none'; style-src 'unsafe-inline'",
                )
                self.send_header("X-Content-Type-Options", "nosniff")
                self.end_headers()
                self.wfile.write(encoded)

            def log_message(self, *args: Any) -> None:
                """Route request logs to the authflow logger."""
                if args:
                    logger.debug("Callback server: %s", args[0] % args[1:])

        self._server = HTTPServer((self._host, self._port), _CallbackHandler)
        self._actual_port = self._server.server_address[1]
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

        logger.debug("Callback server listening on %s", self.redirect_uri)
        return self.redirect_uri

    def _deliver(self, params: dict[str, str]) -> None:
        """Hand the first callback to the event loop (runs on the server thread)."""
        if self._loop is None or self._future is None:
            return

        def _set() -> None:
            if self._future is not None and not self._future.done():
                self._future.set_result(params)

        self._loop.call_soon_threadsafe(_set)

    async def wait_for_callback(self) -> dict[str, str]:
        """Wait until a callback arrives and return its query parameters.

        Timeouts and cancellation are applied by the caller.
        """
        if self._future is None:
            msg = "Callback server is not started"
            raise RuntimeError(msg)
        return await asyncio.shield(self._future)

    def stop(self) -> None:
        """Shut the server down."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None
