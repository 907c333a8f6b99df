"""Interpretation of authorize/authn responses into flow outcomes."""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from collections.abc import Mapping
from typing import Any

from .exceptions import AuthFlowError, IncompleteFlowError, MalformedResponse
from .models import (
    AuthenticatorDescriptor,
    FlowComplete,
    FlowFailed,
    FlowIncomplete,
    FlowOutcome,
    FlowStep,
)


logger = logging.getLogger("authflow.flow")

STATUS_SUCCESS = "SUCCESS_COMPLETED"
STATUS_INCOMPLETE = "INCOMPLETE"
STATUS_FAIL_INCOMPLETE = "FAIL_INCOMPLETE"


class FlowInterpreter:
    """Parse a decoded provider response into a :data:`FlowOutcome`.

    ``interpret`` is a pure function of its input and never raises for
    protocol problems: they come back as :class:`FlowFailed` so the
    caller decides whether to retry or abandon the attempt.
    """

    def interpret(self, raw: Any) -> FlowOutcome:
        """Map one response body to ``Incomplete``, ``Complete`` or ``Failed``.

        Parameters
        ----------
        raw : Any
            The decoded JSON body of an authorize or authn response.

        Returns
        -------
        FlowOutcome
            ``FlowComplete`` carrying ``authData.code`` verbatim for
            ``SUCCESS_COMPLETED``; ``FlowIncomplete`` with a non-empty step
            for ``INCOMPLETE``; ``FlowFailed`` otherwise.
        """
        try:
            outcome = self._interpret(raw)
        except AuthFlowError as exc:
            logger.debug("Flow response rejected: %s", exc)
            return FlowFailed(exc)
        return outcome

    def interpret_response(self, status_code: int, raw: Any) -> FlowOutcome:
        """Like :meth:`interpret`, taking the HTTP status into account.

        A client error (4xx) whose body carries no ``flowStatus`` is the
        provider refusing the step outright, e.g. an unknown or expired
        ``flowId``; the attempt cannot continue.
        """
        if status_code >= 400 and not (isinstance(raw, Mapping) and "flowStatus" in raw):
            details = raw if isinstance(raw, Mapping) else {}
            msg = f"Provider rejected the flow request with status {status_code}"
            return FlowFailed(
                IncompleteFlowError(
                    msg,
                    status_code=status_code,
                    code=details.get("code"),
                    description=details.get("description") or details.get("message"),
                )
            )
        return self.interpret(raw)

    def _interpret(self, raw: Any) -> FlowOutcome:
        if not isinstance(raw, Mapping):
            msg = "Flow response is not a JSON object"
            raise MalformedResponse(msg)

        status = raw.get("flowStatus")
        if not isinstance(status, str) or not status:
            msg = "Flow response has no flowStatus"
            raise MalformedResponse(msg)

        flow_id = raw.get("flowId")
        if status == STATUS_SUCCESS:
            return self._complete(raw)
        if status == STATUS_INCOMPLETE:
            return FlowIncomplete(self._step(raw))
        if status == STATUS_FAIL_INCOMPLETE:
            msg = "Authentication is not completed, provider returned FAIL_INCOMPLETE"
            raise IncompleteFlowError(msg, flow_id=flow_id, messages=_messages(raw))

        msg = f"Unrecognized flow status {status!r}"
        raise IncompleteFlowError(msg, flow_id=flow_id)

    @staticmethod
    def _complete(raw: Mapping[str, Any]) -> FlowComplete:
        auth_data = raw.get("authData")
        code = auth_data.get("code") if isinstance(auth_data, Mapping) else None
        if not isinstance(code, str) or not code:
            msg = "Successful flow response has no authData.code"
            raise MalformedResponse(msg)
        session_state = auth_data.get("session_state")
        logger.debug("Flow completed")
        return FlowComplete(
            artifact=code,
            session_state=session_state if isinstance(session_state, str) else None,
        )

    @staticmethod
    def _step(raw: Mapping[str, Any]) -> FlowStep:
        flow_id = raw.get("flowId")
        if not isinstance(flow_id, str) or not flow_id:
            msg = "Incomplete flow response has no flowId"
            raise MalformedResponse(msg)

        next_step = raw.get("nextStep")
        entries = next_step.get("authenticators") if isinstance(next_step, Mapping) else None
        if not isinstance(entries, list) or not entries:
            msg = "Incomplete flow response offers no authenticators"
            raise IncompleteFlowError(msg, flow_id=flow_id)

        options = tuple(AuthenticatorDescriptor.from_json(entry) for entry in entries)
        step_type = next_step.get("stepType")
        logger.debug(
            "Flow %s needs %s: %s",
            flow_id,
            step_type,
            ", ".join(option.id for option in options),
        )
        return FlowStep(
            flow_id=flow_id,
            authenticator_options=options,
            step_type=step_type if isinstance(step_type, str) else None,
        )


def _messages(raw: Mapping[str, Any]) -> list[str] | None:
    """Provider messages attached to a failed step (``nextStep.messages[].message``)."""
    next_step = raw.get("nextStep")
    messages = next_step.get("messages") if isinstance(next_step, Mapping) else None
    if not isinstance(messages, list):
        return None
    texts = [m.get("message") for m in messages if isinstance(m, Mapping)]
    return [t for t in texts if isinstance(t, str)] or None
