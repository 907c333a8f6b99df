"""Tests for configuration classes.

Tests AuthFlowSettings layering (TOML files and environment variables),
endpoint derivation from the base URL, and redacted exports.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from pydantic import ValidationError

from authflow.config import (
    REDACTED,
    AuthFlowSettings,
    OAuthSettings,
    TimeoutSettings,
    TokenSettings,
)


class TestOAuthSettings:
    """Tests for OAuthSettings endpoint derivation."""

    def test_defaults(self) -> None:
        settings = OAuthSettings()
        assert settings.scope == "openid profile"
        assert settings.use_pkce is True
        assert settings.authn_encoding == "json"

    def test_endpoints_derived_from_base_url(self) -> None:
        settings = OAuthSettings(base_url="https://api.asgardeo.io/t/acme")
        assert settings.resolved_authorize_url == "https://api.asgardeo.io/t/acme/oauth2/authorize"
        assert settings.resolved_authn_url == "https://api.asgardeo.io/t/acme/oauth2/authn"
        assert settings.resolved_token_url == "https://api.asgardeo.io/t/acme/oauth2/token"
        assert settings.resolved_userinfo_url == "https://api.asgardeo.io/t/acme/oauth2/userinfo"
        assert settings.resolved_logout_url == "https://api.asgardeo.io/t/acme/oidc/logout"

    def test_trailing_slash_stripped(self) -> None:
        settings = OAuthSettings(base_url="https://idp.test/")
        assert settings.base_url == "https://idp.test"
        assert settings.resolved_token_url == "https://idp.test/oauth2/token"

    def test_override_wins(self) -> None:
        settings = OAuthSettings(base_url="https://idp.test", token_url="https://other.test/token")
        assert settings.resolved_token_url == "https://other.test/token"
        assert settings.resolved_authn_url == "https://idp.test/oauth2/authn"

    def test_no_base_url_means_no_endpoint(self) -> None:
        assert OAuthSettings().resolved_authorize_url == ""

    def test_invalid_encoding_rejected(self) -> None:
        with pytest.raises(ValidationError):
            OAuthSettings(authn_encoding="xml")

    def test_env_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AUTHFLOW_OAUTH__CLIENT_ID", "from-env")
        assert OAuthSettings().client_id == "from-env"


class TestTimeoutSettings:
    """Tests for TimeoutSettings bounds."""

    def test_defaults(self) -> None:
        settings = TimeoutSettings()
        assert settings.request == 30.0
        assert settings.token == 30.0
        assert settings.userinfo == 10.0
        assert settings.redirect == 300.0

    def test_redirect_minimum(self) -> None:
        with pytest.raises(ValidationError):
            TimeoutSettings(redirect=0.5)

    def test_positive_request_timeout(self) -> None:
        with pytest.raises(ValidationError):
            TimeoutSettings(request=0)


class TestTokenSettings:
    """Tests for TokenSettings validation."""

    def test_defaults(self) -> None:
        settings = TokenSettings()
        assert settings.store_backend == "memory"
        assert settings.default_lifetime_seconds == 3600
        assert settings.resolve_retries == 1

    def test_unknown_backend_rejected(self) -> None:
        with pytest.raises(ValidationError):
            TokenSettings(store_backend="sqlite")

    def test_lifetime_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            TokenSettings(default_lifetime_seconds=0)


# ── Layering ────────────────────────────────────────────────────────


class TestLayering:
    """Configuration files and environment variables."""

    def test_defaults_without_files(self) -> None:
        settings = AuthFlowSettings()
        assert settings.oauth.client_id == ""
        assert settings.token.store_backend == "memory"

    def test_authflow_toml(self, isolated_config: Path) -> None:
        (isolated_config / "authflow.toml").write_text(
            '[oauth]\nclient_id = "from-toml"\n\n[timeout]\ntoken = 12.5\n',
            encoding="utf-8",
        )
        settings = AuthFlowSettings()
        assert settings.oauth.client_id == "from-toml"
        assert settings.timeout.token == 12.5

    def test_pyproject_tool_section(self, isolated_config: Path) -> None:
        (isolated_config / "pyproject.toml").write_text(
            '[project]\nname = "demo"\n\n[tool.authflow.oauth]\nscope = "openid email"\n',
            encoding="utf-8",
        )
        assert AuthFlowSettings().oauth.scope == "openid email"

    def test_authflow_toml_overrides_pyproject(self, isolated_config: Path) -> None:
        (isolated_config / "pyproject.toml").write_text(
            '[tool.authflow.oauth]\nclient_id = "pyproject"\nscope = "openid email"\n',
            encoding="utf-8",
        )
        (isolated_config / "authflow.toml").write_text(
            '[oauth]\nclient_id = "authflow-toml"\n', encoding="utf-8"
        )
        settings = AuthFlowSettings()
        assert settings.oauth.client_id == "authflow-toml"
        assert settings.oauth.scope == "openid email"

    def test_user_config(self, tmp_path: Path) -> None:
        user_dir = tmp_path / "home" / ".config" / "authflow"
        user_dir.mkdir(parents=True)
        (user_dir / "config.toml").write_text('[token]\nstore_backend = "file"\n', encoding="utf-8")
        assert AuthFlowSettings().token.store_backend == "file"

    def test_config_file_env_var(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config_file = tmp_path / "custom.toml"
        config_file.write_text('[log]\nlevel = "DEBUG"\n', encoding="utf-8")
        monkeypatch.setenv("AUTHFLOW_CONFIG_FILE", str(config_file))
        assert AuthFlowSettings().log.level == "DEBUG"

    def test_unreadable_file_ignored(self, isolated_config: Path) -> None:
        (isolated_config / "authflow.toml").write_text("[oauth\nbroken", encoding="utf-8")
        assert AuthFlowSettings().oauth.client_id == ""

    def test_env_variable(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AUTHFLOW_TIMEOUT__TOKEN", "15")
        assert AuthFlowSettings().timeout.token == 15.0

    def test_section_env_overrides_toml(self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (isolated_config / "authflow.toml").write_text(
            '[oauth]\nclient_id = "from-toml"\nscope = "openid email"\n', encoding="utf-8"
        )
        monkeypatch.setenv("AUTHFLOW_OAUTH__CLIENT_ID", "from-env")
        settings = AuthFlowSettings()
        assert settings.oauth.client_id == "from-env"
        assert settings.oauth.scope == "openid email"

    def test_nested_env_overrides_toml(self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (isolated_config / "authflow.toml").write_text('[timeout]\ntoken = 12.5\n', encoding="utf-8")
        monkeypatch.setenv("AUTHFLOW__TIMEOUT__TOKEN", "7")
        assert AuthFlowSettings().timeout.token == 7.0

    def test_explicit_arguments_beat_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AUTHFLOW_OAUTH__CLIENT_ID", "from-env")
        assert AuthFlowSettings(oauth={"client_id": "explicit"}).oauth.client_id == "explicit"

    def test_explicit_arguments_win(self, isolated_config: Path) -> None:
        (isolated_config / "authflow.toml").write_text(
            '[oauth]\nclient_id = "from-toml"\n', encoding="utf-8"
        )
        settings = AuthFlowSettings(oauth={"client_id": "explicit"})
        assert settings.oauth.client_id == "explicit"


# ── Export ──────────────────────────────────────────────────────────


class TestExport:
    """Redacted dumps and TOML/env exports."""

    @pytest.fixture()
    def secret_settings(self) -> AuthFlowSettings:
        return AuthFlowSettings(
            oauth={"client_id": "app", "client_secret": "s3cr3t", "use_pkce": False},
            token={"redis_url": "redis://:pw@cache:6379/0"},
        )

    def test_redacted_dump(self, secret_settings: AuthFlowSettings) -> None:
        dumped = secret_settings.redacted_dump()
        assert dumped["oauth"]["client_secret"] == REDACTED
        assert dumped["oauth"]["client_id"] == "app"
        assert dumped["token"]["redis_url"] == REDACTED

    def test_empty_secret_not_masked(self) -> None:
        dumped = AuthFlowSettings().redacted_dump()
        assert dumped["oauth"]["client_secret"] == ""

    def test_to_toml(self, secret_settings: AuthFlowSettings) -> None:
        toml = secret_settings.to_toml()
        assert toml.startswith("# authflow configuration")
        assert "[oauth]" in toml
        assert 'client_id = "app"' in toml
        assert "use_pkce = false" in toml
        assert "s3cr3t" not in toml

    def test_to_toml_escapes_strings(self, isolated_config: Path) -> None:
        settings = AuthFlowSettings(
            token={"file_path": "C:\\Users\\me\\token.json"},
            log={"format": 'say "%(message)s"'},
        )
        (isolated_config / "authflow.toml").write_text(settings.to_toml(), encoding="utf-8")
        loaded = AuthFlowSettings()
        assert loaded.token.file_path == "C:\\Users\\me\\token.json"
        assert loaded.log.format == 'say "%(message)s"'

    def test_to_env(self, secret_settings: AuthFlowSettings) -> None:
        env = secret_settings.to_env()
        assert "AUTHFLOW_OAUTH__CLIENT_ID=app" in env.splitlines()
        assert "AUTHFLOW_OAUTH__USE_PKCE=false" in env.splitlines()
        assert "AUTHFLOW_TIMEOUT__REDIRECT=300.0" in env.splitlines()
        assert "s3cr3t" not in env
