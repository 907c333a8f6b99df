"""Configuration system for authflow using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.authflow] section (project-level)
3. ./authflow.toml (project-level, explicit)
4. ~/.config/authflow/config.toml (user-level, overrides project)
5. Environment variables (highest priority)

Environment variables use AUTHFLOW_ prefix with nested delimiter __.
Example: AUTHFLOW_OAUTH__CLIENT_ID, AUTHFLOW_TIMEOUT__TOKEN
"""

from __future__ import annotations

import logging
import os
import sys

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


logger = logging.getLogger("authflow.config")


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    authflow_toml = Path("authflow.toml")
    if authflow_toml.exists():
        files.append(authflow_toml)

    if sys.platform == "win32":
        user_config = Path(os.environ.get("APPDATA", "~")) / "authflow" / "config.toml"
    else:
        user_config = Path("~/.config/authflow/config.toml")
    user_config = user_config.expanduser()
    if user_config.exists():
        files.append(user_config)

    env_config = os.environ.get("AUTHFLOW_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            logger.warning("Ignoring unreadable config file %s: %s", config_file, exc)
            continue

        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("authflow", {})

        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


# Field names that contain sensitive data and must be redacted in output.
SENSITIVE_FIELDS: set[str] = {
    "client_secret",
    "integrity_token",
    "redis_url",
}

REDACTED = "********"


class OAuthSettings(BaseSettings):
    """Identity provider endpoints and client registration.

    Environment prefix: AUTHFLOW_OAUTH__
    Example: AUTHFLOW_OAUTH__BASE_URL=https://api.asgardeo.io/t/acme

    Endpoint URLs left empty are derived from ``base_url``.
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTHFLOW_OAUTH__",
        extra="ignore",
    )

    base_url: str = Field(
        default="",
        description="Identity provider base URL; endpoints are derived from it",
    )
    authorize_url: str = Field(default="", description="Authorize endpoint override")
    authn_url: str = Field(default="", description="Step-advance endpoint override")
    token_url: str = Field(default="", description="Token endpoint override")
    userinfo_url: str = Field(default="", description="User-info endpoint override")
    logout_url: str = Field(default="", description="End-session endpoint override")

    client_id: str = Field(default="", description="OAuth2 client ID")
    client_secret: str = Field(
        default="",
        description="OAuth2 client secret (empty for public clients with PKCE)",
    )
    redirect_uri: str = Field(default="", description="Registered redirect URI")
    scope: str = Field(
        default="openid profile",
        description="Space-separated OAuth2 scopes to request",
    )
    use_pkce: bool = Field(
        default=True,
        description="Send a PKCE challenge with the authorize request",
    )
    integrity_token: str = Field(
        default="",
        description="Client attestation token sent as the x-client-attestation header",
    )
    authn_encoding: Literal["json", "form"] = Field(
        default="json",
        description="Body encoding for step-advance requests",
    )

    @field_validator("base_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the base URL so derived endpoints never contain ``//``."""
        return v.rstrip("/")

    def _endpoint(self, override: str, path: str) -> str:
        if override:
            return override
        return f"{self.base_url}{path}" if self.base_url else ""

    @property
    def resolved_authorize_url(self) -> str:
        """Authorize endpoint (``{base_url}/oauth2/authorize`` by default)."""
        return self._endpoint(self.authorize_url, "/oauth2/authorize")

    @property
    def resolved_authn_url(self) -> str:
        """Step-advance endpoint (``{base_url}/oauth2/authn`` by default)."""
        return self._endpoint(self.authn_url, "/oauth2/authn")

    @property
    def resolved_token_url(self) -> str:
        """Token endpoint (``{base_url}/oauth2/token`` by default)."""
        return self._endpoint(self.token_url, "/oauth2/token")

    @property
    def resolved_userinfo_url(self) -> str:
        """User-info endpoint (``{base_url}/oauth2/userinfo`` by default)."""
        return self._endpoint(self.userinfo_url, "/oauth2/userinfo")

    @property
    def resolved_logout_url(self) -> str:
        """End-session endpoint (``{base_url}/oidc/logout`` by default)."""
        return self._endpoint(self.logout_url, "/oidc/logout")


class TimeoutSettings(BaseSettings):
    """Timeouts for network round trips and interactive steps.

    Environment prefix: AUTHFLOW_TIMEOUT__
    Example: AUTHFLOW_TIMEOUT__TOKEN=15.0
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTHFLOW_TIMEOUT__",
        extra="ignore",
    )

    request: float = Field(default=30.0, gt=0, description="Authorize/authn request timeout")
    token: float = Field(default=30.0, gt=0, description="Token exchange/refresh timeout")
    userinfo: float = Field(default=10.0, gt=0, description="User-info request timeout")
    redirect: float = Field(
        default=300.0,
        ge=1.0,
        description="Maximum seconds to wait for a redirect callback",
    )


class TokenSettings(BaseSettings):
    """Token persistence and lifetime settings.

    Environment prefix: AUTHFLOW_TOKEN__
    Example: AUTHFLOW_TOKEN__STORE_BACKEND=keyring
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTHFLOW_TOKEN__",
        extra="ignore",
    )

    store_backend: Literal["memory", "file", "keyring", "redis"] = Field(
        default="memory",
        description="Token storage backend: memory, file, keyring, or redis",
    )
    file_path: str = Field(
        default="~/.config/authflow/token.json",
        description="Token file for the file backend",
    )
    keyring_service: str = Field(
        default="authflow",
        description="Service name for the keyring backend",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Connection URL for the redis backend",
    )
    redis_key: str = Field(
        default="authflow:token",
        description="Key holding the token record in redis",
    )
    default_lifetime_seconds: int = Field(
        default=3600,
        ge=1,
        description="Lifetime assumed when the token endpoint omits expires_in",
    )
    resolve_retries: int = Field(
        default=1,
        ge=0,
        description="Retries of an authenticator detail lookup after a transport error",
    )


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: AUTHFLOW_LOG__
    Example: AUTHFLOW_LOG__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTHFLOW_LOG__",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    format: str = "%(name)s - %(levelname)s - %(message)s"


class LayeredConfigSource(PydanticBaseSettingsSource):
    """Config files overlaid with each section's own environment prefix.

    A section validated from a dict never reads ``AUTHFLOW_<SECTION>__*``
    itself, so those variables are merged over the file values here.
    """

    sections: dict[str, type[BaseSettings]] = {
        "oauth": OAuthSettings,
        "timeout": TimeoutSettings,
        "token": TokenSettings,
        "log": LogSettings,
    }

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        data = _load_toml_config()
        for name, section_cls in self.sections.items():
            env_values = section_cls().model_dump(exclude_unset=True)
            if not env_values:
                continue
            file_values = data.get(name)
            data[name] = _deep_merge(file_values if isinstance(file_values, dict) else {}, env_values)
        return data


class AuthFlowSettings(BaseSettings):
    """Main settings aggregating all configuration sections.

    Environment prefix: AUTHFLOW__

    Configuration sources (in order of precedence):
    1. Built-in defaults
    2. pyproject.toml [tool.authflow] section
    3. ./authflow.toml (project-level)
    4. ~/.config/authflow/config.toml (user-level, overrides project)
    5. Environment variables (highest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTHFLOW__",
        env_nested_delimiter="__",
        extra="ignore",
    )

    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    timeout: TimeoutSettings = Field(default_factory=TimeoutSettings)
    token: TokenSettings = Field(default_factory=TokenSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Rank config files below every environment variable."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            file_secret_settings,
            LayeredConfigSource(settings_cls),
        )

    def redacted_dump(self) -> dict[str, dict[str, Any]]:
        """Dump all sections with secret values replaced by a placeholder."""
        dumped = self.model_dump()
        for section in dumped.values():
            for name in SENSITIVE_FIELDS & section.keys():
                if section[name]:
                    section[name] = REDACTED
        return dumped

    def to_toml(self) -> str:
        """Export settings as TOML string (secrets redacted)."""
        lines = ["# authflow configuration", "# Generated by: authflow config --toml", ""]
        for section_name, section_data in self.redacted_dump().items():
            lines.append(f"[{section_name}]")
            for field_name, field_value in section_data.items():
                if isinstance(field_value, bool):
                    value_str = "true" if field_value else "false"
                elif isinstance(field_value, str):
                    escaped = field_value.replace("\\", "\\\\").replace('"', '\\"')
                    escaped = escaped.replace("\n", "\\n")
                    value_str = f'"{escaped}"'
                else:
                    value_str = str(field_value)
                lines.append(f"{field_name} = {value_str}")
            lines.append("")
        return "\n".join(lines)

    def to_env(self) -> str:
        """Export settings as ``AUTHFLOW_<SECTION>__<FIELD>=value`` lines."""
        lines = []
        for section_name, section_data in self.redacted_dump().items():
            for field_name, field_value in section_data.items():
                if isinstance(field_value, bool):
                    field_value = "true" if field_value else "false"
                lines.append(f"AUTHFLOW_{section_name.upper()}__{field_name.upper()}={field_value}")
        return "\n".join(lines)
