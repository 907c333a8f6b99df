"""authflow - client for server-driven, multi-step login flows.

Drives an identity provider's app-native authentication API step by
step, dispatches each authenticator to the strategy for its prompt type,
and manages the resulting OAuth2 tokens (exchange, storage, expiry,
refresh, logout).
"""

from __future__ import annotations

from .capabilities import (
    BrowserRedirectCapability,
    CredentialCapability,
    CredentialRequest,
    InteractionCapabilities,
    RedirectCapability,
)
from .config import AuthFlowSettings, LogSettings, OAuthSettings, TimeoutSettings, TokenSettings
from .core import AuthenticationCore
from .exceptions import (
    AuthFlowError,
    Cancelled,
    FailureReason,
    FlowStateError,
    IncompleteFlowError,
    MalformedResponse,
    RedirectTimeout,
    TokenExchangeError,
    TransportError,
    UnsupportedAuthenticator,
    UserInfoError,
)
from .interpreter import FlowInterpreter
from .lifecycle import TokenLifecycleManager
from .log import configure_logging, enable_debug, get_logger, set_level
from .models import (
    AuthenticationState,
    AuthenticatorDescriptor,
    AuthStatus,
    FlowComplete,
    FlowFailed,
    FlowIncomplete,
    FlowOutcome,
    FlowSession,
    FlowStep,
    PromptType,
    TokenRecord,
)
from .pkce import PKCEPair
from .resolver import AuthenticatorResolver
from .strategies import (
    AuthenticatorStrategy,
    CredentialPromptStrategy,
    PlatformCredentialStrategy,
    RedirectionPromptStrategy,
    StrategyRegistry,
    default_registry,
)
from .token_store import (
    FileTokenStorage,
    KeyringTokenStorage,
    MemoryTokenStorage,
    RedisTokenStorage,
    TokenStorage,
    get_token_storage,
)
from .tokens import TokenExchangeManager, TokenRequestContext
from .transport import HttpTransport


__version__ = "0.1.0"

__all__ = [
    "AuthFlowError",
    "AuthFlowSettings",
    "AuthStatus",
    "AuthenticationCore",
    "AuthenticationState",
    "AuthenticatorDescriptor",
    "AuthenticatorResolver",
    "AuthenticatorStrategy",
    "BrowserRedirectCapability",
    "Cancelled",
    "CredentialCapability",
    "CredentialPromptStrategy",
    "CredentialRequest",
    "FailureReason",
    "FileTokenStorage",
    "FlowComplete",
    "FlowFailed",
    "FlowIncomplete",
    "FlowInterpreter",
    "FlowOutcome",
    "FlowSession",
    "FlowStateError",
    "FlowStep",
    "HttpTransport",
    "IncompleteFlowError",
    "InteractionCapabilities",
    "KeyringTokenStorage",
    "LogSettings",
    "MalformedResponse",
    "MemoryTokenStorage",
    "OAuthSettings",
    "PKCEPair",
    "PlatformCredentialStrategy",
    "PromptType",
    "RedirectCapability",
    "RedirectTimeout",
    "RedirectionPromptStrategy",
    "RedisTokenStorage",
    "StrategyRegistry",
    "TimeoutSettings",
    "TokenExchangeError",
    "TokenExchangeManager",
    "TokenLifecycleManager",
    "TokenRecord",
    "TokenRequestContext",
    "TokenSettings",
    "TokenStorage",
    "TransportError",
    "UnsupportedAuthenticator",
    "UserInfoError",
    "__version__",
    "configure_logging",
    "default_registry",
    "enable_debug",
    "get_logger",
    "get_token_storage",
    "set_level",
]
