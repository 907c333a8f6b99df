"""Authentication orchestrator.

:class:`AuthenticationCore` drives one login attempt at a time through
the provider's server-driven steps, then hands the authorization code to
the token exchange and keeps the resulting record through its lifecycle.
Instances are constructed and owned by the caller; nothing is global.
"""

# pylint: disable=logging-too-many-args,too-many-instance-attributes

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time

from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any

from .config import AuthFlowSettings
from .exceptions import AuthFlowError, Cancelled, FlowStateError, TokenExchangeError, TransportError
from .interpreter import FlowInterpreter
from .lifecycle import TokenLifecycleManager
from .log import configure_logging, redact_sensitive_data
from .models import (
    AuthenticationState,
    FlowComplete,
    FlowFailed,
    FlowIncomplete,
    FlowOutcome,
    FlowSession,
    SessionState,
)
from .pkce import PKCEPair
from .resolver import AuthenticatorResolver, build_authn_request
from .strategies import default_registry
from .token_store import storage_from_settings
from .tokens import TokenExchangeManager, TokenRequestContext
from .transport import HttpTransport, read_json


if TYPE_CHECKING:
    from .capabilities import InteractionCapabilities
    from .models import AuthenticatorDescriptor, FlowStep, TokenRecord
    from .strategies import StrategyRegistry
    from .token_store import TokenStorage


logger = logging.getLogger("authflow.flow")

StateListener = Callable[[AuthenticationState], None]


class AuthenticationCore:
    """Stateful client for the app-native authentication protocol.

    One instance represents one device session: a single token record and
    at most one login attempt in flight. Each attempt must be advanced by
    one caller at a time; overlapping calls raise :class:`FlowStateError`.

    Parameters
    ----------
    settings : AuthFlowSettings, optional
        Endpoints, client registration, timeouts and storage selection.
        Loaded from config files and the environment when omitted.
        Its ``log`` section is applied to the ``authflow`` logger.
    transport : HttpTransport, optional
        HTTP transport; built from ``settings.timeout`` when omitted.
    registry : StrategyRegistry, optional
        Prompt-type strategies; :func:`default_registry` when omitted.
    storage : TokenStorage, optional
        Token store; built from ``settings.token`` when omitted.
    clock : callable
        Returns the current Unix time.
    """

    def __init__(
        self,
        settings: AuthFlowSettings | None = None,
        *,
        transport: HttpTransport | None = None,
        registry: StrategyRegistry | None = None,
        storage: TokenStorage | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the core and its components."""
        self.settings = settings or AuthFlowSettings()
        oauth = self.settings.oauth
        timeouts = self.settings.timeout

        self.transport = transport or HttpTransport(timeout=timeouts.request)
        self.interpreter = FlowInterpreter()
        self.resolver = AuthenticatorResolver(
            self.transport,
            oauth.resolved_authn_url,
            encoding=oauth.authn_encoding,
            timeout=timeouts.request,
            retries=self.settings.token.resolve_retries,
            interpreter=self.interpreter,
        )
        self.registry = registry or default_registry()
        self.token_exchange = TokenExchangeManager(
            self.transport,
            oauth.resolved_token_url,
            oauth.resolved_userinfo_url,
            oauth.resolved_logout_url,
            timeout=timeouts.token,
            userinfo_timeout=timeouts.userinfo,
            default_lifetime=self.settings.token.default_lifetime_seconds,
            clock=clock,
        )
        self.lifecycle = TokenLifecycleManager(
            storage if storage is not None else storage_from_settings(self.settings.token)
        )
        self.clock = clock

        self._session: FlowSession | None = None
        self._state = AuthenticationState.unauthenticated()
        self._listeners: list[StateListener] = []
        self._refresh_task: asyncio.Future[TokenRecord] | None = None

        configure_logging(self.settings.log)

    async def __aenter__(self) -> AuthenticationCore:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Release the HTTP client."""
        await self.transport.close()

    # ── Observation ──────────────────────────────────────────────────

    @property
    def state(self) -> AuthenticationState:
        """The current consumer-facing state."""
        return self._state

    @property
    def session(self) -> FlowSession | None:
        """The current or most recent login attempt."""
        return self._session

    @property
    def current_step(self) -> FlowStep | None:
        """The step awaiting the caller, if an attempt is in progress."""
        return self._session.current_step if self._session else None

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Call ``listener`` with every new state, in order.

        Returns
        -------
        callable
            Removes the listener when called.
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self, state: AuthenticationState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("State listener %r failed", listener)

    # ── Login attempt ────────────────────────────────────────────────

    async def start(self, extra_params: Mapping[str, str] | None = None) -> AuthenticationState:
        """Begin a new login attempt with the initial authorize request.

        Any previous attempt is discarded, and so is the stored token
        record: the attempt ends either authorized with new tokens or
        failed with none.

        Parameters
        ----------
        extra_params : Mapping[str, str], optional
            Additional authorize parameters (``login_hint``, ``prompt``...).

        Returns
        -------
        AuthenticationState
            ``IN_PROGRESS`` with the first step, ``AUTHORIZED``, or ``ERROR``.

        Raises
        ------
        FlowStateError
            If the current attempt is being advanced.
        """
        if self._session is not None and self._session.busy:
            msg = "Cannot start a new attempt while the current one is being advanced"
            raise FlowStateError(msg, flow_id=self._session.flow_id)

        oauth = self.settings.oauth
        session = FlowSession(pkce=PKCEPair.generate() if oauth.use_pkce else None)
        self._session = session

        data = {
            "client_id": oauth.client_id,
            "redirect_uri": oauth.redirect_uri,
            "scope": oauth.scope,
            "response_type": "code",
            "response_mode": "direct",
        }
        if session.pkce is not None:
            data.update(session.pkce.authorize_params())
        data.update(extra_params or {})

        headers = {}
        if oauth.integrity_token:
            headers["x-client-attestation"] = oauth.integrity_token

        async def _authorize() -> FlowOutcome:
            await self.lifecycle.clear()
            logger.info("Starting authentication attempt")
            return await self._flow_request(
                oauth.resolved_authorize_url, {"data": data, "headers": headers}
            )

        return await self._attempt(session, _authorize)

    async def advance(
        self, authenticator_id: str, params: Mapping[str, str]
    ) -> AuthenticationState:
        """Submit parameters for one authenticator of the pending step.

        Raises
        ------
        FlowStateError
            If no attempt is in progress, it is already being advanced, or
            the authenticator is not offered by the pending step.
        """
        session, step, _ = self._pending(authenticator_id)

        async def _advance() -> FlowOutcome:
            return await self._submit(session, step, authenticator_id, params)

        return await self._attempt(session, _advance)

    async def authenticate(
        self, authenticator_id: str, capabilities: InteractionCapabilities
    ) -> AuthenticationState:
        """Resolve, collect and submit one authenticator of the pending step.

        Choosing among the step's options is up to the caller; this runs
        the strategy registered for the chosen authenticator's prompt type.

        Raises
        ------
        FlowStateError
            If no attempt is in progress, it is already being advanced, or
            the authenticator is not offered by the pending step.
        """
        session, step, descriptor = self._pending(authenticator_id)
        if capabilities.redirect_timeout is None:
            capabilities = dataclasses.replace(
                capabilities, redirect_timeout=self.settings.timeout.redirect
            )

        async def _authenticate() -> FlowOutcome:
            resolved = descriptor
            if len(step.authenticator_options) > 1:
                resolved = await self.resolver.resolve(step.flow_id, resolved)
            params = await self.registry.dispatch(resolved, capabilities, session.cancel_event)
            return await self._submit(session, step, authenticator_id, params)

        return await self._attempt(session, _authenticate)

    def cancel(self) -> None:
        """Abandon the current attempt.

        A pending interaction (redirect wait, credential prompt) fails with
        :class:`Cancelled`; an idle attempt fails immediately.
        """
        session = self._session
        if session is None or session.is_terminal:
            return
        session.cancel_event.set()
        if not session.busy:
            self._fail(session, Cancelled("Attempt was cancelled", flow_id=session.flow_id))

    def _pending(
        self, authenticator_id: str
    ) -> tuple[FlowSession, FlowStep, AuthenticatorDescriptor]:
        session = self._session
        if session is None or session.state is not SessionState.IN_PROGRESS:
            msg = "No authentication attempt is in progress"
            raise FlowStateError(msg)
        if session.busy:
            msg = "The attempt is already being advanced"
            raise FlowStateError(msg, flow_id=session.flow_id)
        step = session.current_step
        descriptor = step.find(authenticator_id) if step is not None else None
        if step is None or descriptor is None:
            msg = "Authenticator is not offered by the pending step"
            raise FlowStateError(msg, flow_id=session.flow_id, authenticator_id=authenticator_id)
        return session, step, descriptor

    async def _submit(
        self,
        session: FlowSession,
        step: FlowStep,
        authenticator_id: str,
        params: Mapping[str, str],
    ) -> FlowOutcome:
        if session.cancel_event.is_set():
            raise Cancelled("Attempt was cancelled", flow_id=step.flow_id)
        logger.debug(
            "Advancing flow %s with %s: %s",
            step.flow_id,
            authenticator_id,
            redact_sensitive_data(dict(params)),
        )
        session.collected_params[authenticator_id] = dict(params)
        return await self._flow_request(
            self.settings.oauth.resolved_authn_url,
            build_authn_request(
                step.flow_id, authenticator_id, dict(params), self.settings.oauth.authn_encoding
            ),
        )

    async def _flow_request(self, url: str, request: dict[str, Any]) -> FlowOutcome:
        response = await self.transport.send(
            "POST", url, timeout=self.settings.timeout.request, **request
        )
        return self.interpreter.interpret_response(response.status_code, read_json(response))

    async def _attempt(
        self, session: FlowSession, work: Callable[[], Awaitable[FlowOutcome]]
    ) -> AuthenticationState:
        """Run one step of ``session`` and apply its outcome."""
        session.busy = True
        try:
            outcome = await work()
            if session.cancel_event.is_set():
                raise Cancelled("Attempt was cancelled", flow_id=session.flow_id)
            await self._apply(session, outcome)
        except FlowStateError:
            raise
        except AuthFlowError as exc:
            self._fail(session, exc)
        except asyncio.CancelledError:
            self._fail(session, Cancelled("Attempt was cancelled", flow_id=session.flow_id))
            raise
        finally:
            session.busy = False
        return self._state

    async def _apply(self, session: FlowSession, outcome: FlowOutcome) -> None:
        if isinstance(outcome, FlowFailed):
            raise outcome.error

        session.record(outcome)
        if isinstance(outcome, FlowIncomplete):
            logger.info("Flow %s awaits the next authenticator", outcome.step.flow_id)
            self._publish(AuthenticationState.in_progress(outcome.step))
            return

        if isinstance(outcome, FlowComplete):
            context = TokenRequestContext.from_settings(
                self.settings.oauth, session.pkce.verifier if session.pkce else None
            )
            record = await self.token_exchange.exchange_authorization_artifact(
                outcome.artifact, context
            )
            await self.lifecycle.save(record)
            session.state = SessionState.AUTHORIZED
            logger.info("Authentication attempt authorized")
            self._publish(AuthenticationState.authorized(record))

    def _fail(self, session: FlowSession, error: AuthFlowError) -> None:
        session.fail(error)
        if isinstance(error, Cancelled):
            logger.info("Authentication attempt cancelled: %s", error)
        else:
            logger.warning("Authentication attempt failed: %s", error)
        self._publish(AuthenticationState.failed(error))

    # ── Tokens ───────────────────────────────────────────────────────

    async def restore(self) -> AuthenticationState:
        """Adopt a token record persisted by an earlier process.

        An unreadable stored record is discarded.
        """
        try:
            record = await self.lifecycle.get()
        except AuthFlowError as exc:
            logger.warning("Discarding stored token record: %s", exc)
            await self.lifecycle.clear()
            record = None

        if record is None:
            self._publish(AuthenticationState.unauthenticated())
        else:
            logger.info("Restored stored token record")
            self._publish(AuthenticationState.authorized(record))
        return self._state

    async def refresh(self) -> TokenRecord:
        """Replace the token record using its refresh token.

        Overlapping calls share one token request. A rejected refresh
        clears the record, since only a new login can recover, unless the
        stored record has meanwhile moved on to another refresh token; a
        transport failure leaves it in place.

        Raises
        ------
        FlowStateError
            If there is no token record.
        TokenExchangeError
            If there is no refresh token or the provider rejected it.
        TransportError
            If the token endpoint could not be reached.
        """
        record = await self.lifecycle.get()
        if record is None:
            msg = "Not authorized"
            raise FlowStateError(msg)
        return await self._refresh_from(record)

    async def get_valid_access_token(self, now: float | None = None) -> str:
        """Return an access token that is valid at ``now``, refreshing if needed.

        Raises
        ------
        FlowStateError
            If there is no token record.
        """
        now = self.clock() if now is None else now
        record = await self.lifecycle.get()
        if record is None:
            msg = "Not authorized"
            raise FlowStateError(msg)
        if record.is_expired(now):
            logger.debug("Access token expired at %d, refreshing", record.expires_at)
            record = await self._refresh_from(record)
        return record.access_token

    async def _refresh_from(self, seen: TokenRecord) -> TokenRecord:
        """Refresh ``seen`` unless another refresh already replaced it.

        Only one refresh request is in flight per core; later callers
        await the same task instead of spending the refresh token twice.
        """
        task = self._refresh_task
        if task is not None and task.done():
            task = None
        if task is None:
            current = await self.lifecycle.get()
            if current is None:
                msg = "Not authorized"
                raise FlowStateError(msg)
            if current != seen:
                logger.debug("Token record already replaced, skipping refresh")
                return current
            task = self._refresh_task
            if task is None or task.done():
                task = asyncio.ensure_future(self._exchange_refresh_token(current))
                task.add_done_callback(self._refresh_finished)
                self._refresh_task = task
        return await asyncio.shield(task)

    def _refresh_finished(self, task: asyncio.Future[TokenRecord]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        if not task.cancelled():
            # Retrieved here so an exception nobody awaits is not reported
            task.exception()

    async def _exchange_refresh_token(self, record: TokenRecord) -> TokenRecord:
        if not record.refresh_token:
            msg = "No refresh token available, a new login is required"
            raise TokenExchangeError(msg)

        try:
            new_record = await self.token_exchange.refresh(
                record.refresh_token, TokenRequestContext.from_settings(self.settings.oauth)
            )
        except TransportError:
            raise
        except AuthFlowError as exc:
            latest = await self.lifecycle.get()
            if latest is not None and latest.refresh_token != record.refresh_token:
                logger.info("Refresh token was rotated by another session, keeping its record")
                self._publish(AuthenticationState.authorized(latest))
                return latest
            await self.lifecycle.clear()
            logger.warning("Token refresh rejected: %s", exc)
            self._publish(AuthenticationState.failed(exc))
            raise

        await self.lifecycle.save(new_record)
        self._publish(AuthenticationState.authorized(new_record))
        return new_record

    async def user_info(self) -> dict[str, Any]:
        """Fetch the signed-in user's claims."""
        access_token = await self.get_valid_access_token()
        return await self.token_exchange.fetch_user_info(access_token)

    async def logout(self) -> bool:
        """End the provider session and clear local tokens.

        Local tokens are cleared even when the provider cannot be reached.

        Returns
        -------
        bool
            Whether the provider acknowledged the logout.
        """
        acknowledged = False
        try:
            record = await self.lifecycle.get()
            if record is not None and self.token_exchange.logout_url:
                acknowledged = await self.token_exchange.end_session(
                    record.id_token, self.settings.oauth.client_id
                )
        except AuthFlowError as exc:
            logger.warning("End-session request failed: %s", exc)
        finally:
            await self.lifecycle.clear()
            self._session = None
            self._publish(AuthenticationState.unauthenticated())
        logger.info("Logged out")
        return acknowledged
