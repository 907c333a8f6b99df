"""Enrichment of authenticator summaries into fully detailed descriptors.

Multi-option steps list each authenticator in summary form. Selecting one
with an empty parameter set makes the provider answer with that
authenticator alone, carrying its ``requiredParams`` and prompt metadata.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Literal

from .exceptions import MalformedResponse, TransportError
from .interpreter import FlowInterpreter
from .models import FlowFailed, FlowIncomplete
from .transport import read_json


if TYPE_CHECKING:
    from .models import AuthenticatorDescriptor
    from .transport import HttpTransport


logger = logging.getLogger("authflow.resolver")


def build_authn_request(
    flow_id: str,
    authenticator_id: str,
    params: dict[str, str] | None,
    encoding: Literal["json", "form"] = "json",
) -> dict[str, Any]:
    """Keyword arguments for :meth:`HttpTransport.send` selecting an authenticator.

    Parameters
    ----------
    flow_id : str
        The current flow.
    authenticator_id : str
        The selected authenticator.
    params : dict or None
        Collected parameters; ``None`` asks for the authenticator's details.
    encoding : {"json", "form"}
        Body encoding expected by the provider.
    """
    if encoding == "form":
        form = {"flowId": flow_id, "authenticatorId": authenticator_id}
        form.update(params or {})
        return {"data": form}

    selected: dict[str, Any] = {"authenticatorId": authenticator_id}
    if params is not None:
        selected["params"] = params
    return {"json": {"flowId": flow_id, "selectedAuthenticator": selected}}


class AuthenticatorResolver:
    """Fetch full metadata for the authenticators of a flow step.

    Parameters
    ----------
    transport : HttpTransport
        Transport used for lookup requests.
    authn_url : str
        The step-advance endpoint.
    encoding : {"json", "form"}
        Body encoding for lookup requests.
    timeout : float
        Per-request timeout in seconds.
    retries : int
        Extra attempts after a :class:`TransportError`. Lookups select an
        authenticator without submitting anything, so repeating one is safe.
    interpreter : FlowInterpreter, optional
        Parser for lookup responses.
    """

    def __init__(
        self,
        transport: HttpTransport,
        authn_url: str,
        *,
        encoding: Literal["json", "form"] = "json",
        timeout: float = 30.0,
        retries: int = 1,
        interpreter: FlowInterpreter | None = None,
    ) -> None:
        """Initialize the resolver."""
        self.transport = transport
        self.authn_url = authn_url
        self.encoding = encoding
        self.timeout = timeout
        self.retries = retries
        self.interpreter = interpreter or FlowInterpreter()

    async def resolve(
        self, flow_id: str, descriptor: AuthenticatorDescriptor
    ) -> AuthenticatorDescriptor:
        """Return a fully detailed version of ``descriptor``.

        Descriptors that already declare their required parameters and
        prompt type are returned without a network call.

        Raises
        ------
        TransportError
            If every attempt failed to get a response.
        MalformedResponse
            If the provider did not answer with exactly one authenticator.
        IncompleteFlowError
            If the provider rejected the lookup.
        """
        if descriptor.is_detailed:
            return descriptor

        attempt = 0
        while True:
            try:
                return await self._lookup(flow_id, descriptor)
            except TransportError as exc:
                if attempt >= self.retries:
                    raise
                attempt += 1
                logger.warning(
                    "Lookup of authenticator %s failed (%s), retry %d of %d",
                    descriptor.id,
                    exc,
                    attempt,
                    self.retries,
                )

    async def resolve_all(
        self, flow_id: str, descriptors: Sequence[AuthenticatorDescriptor]
    ) -> list[AuthenticatorDescriptor]:
        """Resolve each descriptor in order.

        A step with a single option already holds that authenticator's
        details and is returned unchanged. The first definitive failure
        aborts the whole call; partially enriched steps are never returned.
        """
        if len(descriptors) == 1:
            return list(descriptors)
        resolved = []
        for descriptor in descriptors:
            resolved.append(await self.resolve(flow_id, descriptor))
        return resolved

    async def _lookup(
        self, flow_id: str, descriptor: AuthenticatorDescriptor
    ) -> AuthenticatorDescriptor:
        logger.debug("Resolving authenticator %s in flow %s", descriptor.id, flow_id)
        response = await self.transport.send(
            "POST",
            self.authn_url,
            timeout=self.timeout,
            **build_authn_request(flow_id, descriptor.id, None, self.encoding),
        )
        outcome = self.interpreter.interpret_response(response.status_code, read_json(response))

        if isinstance(outcome, FlowFailed):
            raise outcome.error
        if not isinstance(outcome, FlowIncomplete) or len(outcome.step.authenticator_options) != 1:
            msg = "Authenticator lookup must return exactly one authenticator"
            raise MalformedResponse(msg, flow_id=flow_id, authenticator_id=descriptor.id)

        return outcome.step.authenticator_options[0]
