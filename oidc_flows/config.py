"""
oidc_flows configuration. Defaults come from OIDC_* environment variables.
Nothing here is a secret: public clients only (PKCE, no client_secret).
"""
import os
from dataclasses import dataclass
from typing import Any, Callable

# Authorization Server (issuer) and our registered client
ISSUER = os.environ.get("OIDC_ISSUER", "").rstrip("/")
CLIENT_ID = os.environ.get("OIDC_CLIENT_ID", "")
REDIRECT_URI = os.environ.get("OIDC_REDIRECT_URI", "")

# Space-separated, order matters (compared verbatim against the token response)
SCOPE = os.environ.get("OIDC_SCOPE", "openid")
RESPONSE_MODE = os.environ.get("OIDC_RESPONSE_MODE", "")
STORAGE_TOKEN_NAME = os.environ.get("OIDC_STORAGE_TOKEN_NAME", "")

# Timeout for every call to the authorization server (seconds)
HTTP_TIMEOUT = float(os.environ.get("OIDC_HTTP_TIMEOUT", "10.0"))

# How often the popup strategy checks whether the user closed the window (seconds)
POPUP_POLL_INTERVAL = float(os.environ.get("OIDC_POPUP_POLL_INTERVAL", "0.5"))

DEFAULT_SCOPES = ["openid"]
DEFAULT_RESPONSE_TYPE = "code"
DEFAULT_RESPONSE_MODE = "query"
DEFAULT_STORAGE_TOKEN_NAME = "sty.session"

# Pending State entries live under "<prefix><state id>"
STATE_KEY_PREFIX = "sty."

DISCOVERY_PATH = "/.well-known/openid-configuration"

# Popup geometry
POPUP_DEFAULT_HEIGHT = 640
POPUP_WIDTHS = (800, 720, 600, 480)
POPUP_MIN_WIDTH = 360
GOLDEN_RATIO = 1.618


@dataclass
class FlowOptions:
    """Client registration and behaviour switches for a flow. Defaults are applied by BaseFlow."""

    issuer: str
    client_id: str
    redirect_uri: str
    scopes: list[str] | None = None
    response_type: str | None = None
    response_mode: str | None = None
    storage_token_name: str | None = None
    # Navigation collaborator: (url, params) -> anything (awaitable allowed)
    url_handler: Callable[..., Any] | None = None
    # Callback collaborator: (url, response_mode) -> dict of response params (awaitable allowed)
    callback_handler: Callable[..., Any] | None = None
    # Exact, order-sensitive comparison of the returned scope string
    strict_scope: bool = True

    @classmethod
    def from_env(cls, **overrides: Any) -> "FlowOptions":
        """Build options from OIDC_* environment variables; keyword overrides win."""
        values: dict[str, Any] = {
            "issuer": ISSUER,
            "client_id": CLIENT_ID,
            "redirect_uri": REDIRECT_URI,
            "scopes": SCOPE.split() if SCOPE.strip() else None,
            "response_mode": RESPONSE_MODE or None,
            "storage_token_name": STORAGE_TOKEN_NAME or None,
        }
        values.update(overrides)
        return cls(**values)

    @property
    def scope(self) -> str:
        return " ".join(self.scopes or [])
