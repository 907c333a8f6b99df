"""Tests for the flow data model.

Descriptor parsing, step invariants, token record serialization and
session bookkeeping.
"""

from __future__ import annotations

import pytest

from authflow.exceptions import IncompleteFlowError, MalformedResponse
from authflow.models import (
    AuthenticationState,
    AuthenticatorDescriptor,
    AuthStatus,
    FlowComplete,
    FlowFailed,
    FlowIncomplete,
    FlowSession,
    FlowStep,
    PromptType,
    SessionState,
    TokenRecord,
)
from tests.payloads import NOW, basic_auth, google_redirect


class TestAuthenticatorDescriptor:
    """Tests for AuthenticatorDescriptor.from_json."""

    def test_detailed_entry(self) -> None:
        descriptor = AuthenticatorDescriptor.from_json(basic_auth())
        assert descriptor.id == "QmFzaWNBdXRoZW50aWNhdG9yOkxPQ0FM"
        assert descriptor.name == "Username & Password"
        assert descriptor.identity_provider_id == "LOCAL"
        assert descriptor.prompt_type == PromptType.USER_PROMPT
        assert descriptor.required_params == ("username", "password")
        assert descriptor.is_detailed

    def test_summary_entry(self) -> None:
        descriptor = AuthenticatorDescriptor.from_json(basic_auth(detailed=False))
        assert descriptor.required_params == ()
        assert descriptor.prompt_type == ""
        assert not descriptor.is_detailed

    def test_param_specs_sorted_by_order(self) -> None:
        descriptor = AuthenticatorDescriptor.from_json(basic_auth())
        assert [spec["param"] for spec in descriptor.param_specs] == ["username", "password"]

    def test_redirect_url(self) -> None:
        descriptor = AuthenticatorDescriptor.from_json(google_redirect())
        assert descriptor.redirect_url is not None
        assert descriptor.redirect_url.startswith("https://accounts.google.test/")
        assert descriptor.additional_data["state"] == "st-1"

    def test_no_redirect_url(self) -> None:
        descriptor = AuthenticatorDescriptor.from_json(basic_auth())
        assert descriptor.redirect_url is None
        assert descriptor.additional_data == {}

    def test_metadata_is_read_only(self) -> None:
        descriptor = AuthenticatorDescriptor.from_json(basic_auth())
        with pytest.raises(TypeError):
            descriptor.metadata["promptType"] = "X"  # type: ignore[index]

    @pytest.mark.parametrize(
        "entry",
        [
            "not-an-object",
            {"authenticator": "No id"},
            {"authenticatorId": ""},
            {"authenticatorId": "a", "requiredParams": "username"},
            {"authenticatorId": "a", "requiredParams": [1, 2]},
            {"authenticatorId": "a", "metadata": ["x"]},
        ],
    )
    def test_malformed_entries(self, entry: object) -> None:
        with pytest.raises(MalformedResponse):
            AuthenticatorDescriptor.from_json(entry)

    def test_unknown_prompt_type_kept(self) -> None:
        entry = {"authenticatorId": "a", "metadata": {"promptType": "VOICE_PROMPT"}}
        assert AuthenticatorDescriptor.from_json(entry).prompt_type == "VOICE_PROMPT"


class TestFlowStep:
    """Tests for FlowStep invariants and lookups."""

    def test_empty_options_rejected(self) -> None:
        with pytest.raises(ValueError, match="at least one"):
            FlowStep(flow_id="f1", authenticator_options=())

    def test_find(self) -> None:
        option = AuthenticatorDescriptor(id="a", name="A")
        step = FlowStep(flow_id="f1", authenticator_options=(option,))
        assert step.find("a") is option
        assert step.find("b") is None

    def test_duplicate_names(self) -> None:
        google = AuthenticatorDescriptor(id="g1", name="Google", identity_provider_id="Google")
        google_work = AuthenticatorDescriptor(id="g2", name="Google", identity_provider_id="GoogleWork")
        step = FlowStep(flow_id="f1", authenticator_options=(google, google_work))
        assert step.has_duplicate_names
        assert [option.id for option in step.by_name("Google")] == ["g1", "g2"]

    def test_with_options_keeps_identity(self) -> None:
        step = FlowStep(
            flow_id="f1",
            authenticator_options=(AuthenticatorDescriptor(id="a"),),
            step_type="AUTHENTICATOR_PROMPT",
        )
        detailed = AuthenticatorDescriptor(id="a", required_params=("x",), prompt_type="USER_PROMPT")
        enriched = step.with_options((detailed,))
        assert enriched.flow_id == "f1"
        assert enriched.step_type == "AUTHENTICATOR_PROMPT"
        assert enriched.authenticator_options == (detailed,)


class TestTokenRecord:
    """Tests for TokenRecord expiry and serialization."""

    def test_expiry_boundary(self) -> None:
        record = TokenRecord(access_token="tok", expires_at=NOW)
        assert not record.is_expired(NOW - 1)
        assert record.is_expired(NOW)
        assert record.is_expired(NOW + 1)

    def test_bytes_preserve_fields(self) -> None:
        record = TokenRecord(
            access_token="tok",
            refresh_token="rt",
            id_token="idt",
            scope="openid",
            expires_at=NOW,
        )
        assert TokenRecord.from_bytes(record.to_bytes()) == record

    @pytest.mark.parametrize("data", [b"", b"\xff\xfe", b"[]", b'{"access_token": "tok"}'])
    def test_corrupt_bytes(self, data: bytes) -> None:
        with pytest.raises(MalformedResponse, match="corrupt"):
            TokenRecord.from_bytes(data)


class TestAuthenticationState:
    """Tests for the consumer-facing state projection."""

    def test_constructors(self) -> None:
        assert AuthenticationState.unauthenticated().status is AuthStatus.UNAUTHENTICATED
        record = TokenRecord(access_token="tok", expires_at=NOW)
        assert AuthenticationState.authorized(record).tokens is record

    def test_failed_carries_reason(self) -> None:
        state = AuthenticationState.failed(IncompleteFlowError("gone"))
        assert state.status is AuthStatus.ERROR
        assert state.reason is not None
        assert state.reason.value == "incomplete_flow"

    def test_reason_none_without_error(self) -> None:
        assert AuthenticationState.unauthenticated().reason is None


class TestFlowSession:
    """Tests for FlowSession bookkeeping."""

    @pytest.fixture()
    def step(self) -> FlowStep:
        return FlowStep(flow_id="f1", authenticator_options=(AuthenticatorDescriptor(id="a"),))

    def test_new_session_idle(self) -> None:
        session = FlowSession()
        assert session.state is SessionState.IDLE
        assert session.current_step is None
        assert not session.is_terminal

    def test_record_incomplete(self, step: FlowStep) -> None:
        session = FlowSession()
        session.record(FlowIncomplete(step))
        assert session.state is SessionState.IN_PROGRESS
        assert session.flow_id == "f1"
        assert session.current_step is step

    def test_record_failed(self, step: FlowStep) -> None:
        session = FlowSession()
        session.record(FlowIncomplete(step))
        session.record(FlowFailed(IncompleteFlowError("gone")))
        assert session.state is SessionState.FAILED
        assert session.current_step is None
        assert session.is_terminal

    def test_record_complete_leaves_state(self, step: FlowStep) -> None:
        session = FlowSession()
        session.record(FlowIncomplete(step))
        session.record(FlowComplete("code-1"))
        assert session.state is SessionState.IN_PROGRESS
        assert session.current_step is None

    def test_fail(self) -> None:
        session = FlowSession()
        session.fail(MalformedResponse("bad"))
        assert isinstance(session.outcome, FlowFailed)
        assert session.is_terminal
