"""
Per-call request parameters for login/register/logout.
"""
from dataclasses import dataclass
from typing import Any


@dataclass
class ExtraRequestArgs:
    prompt: str | None = None
    login_hint: str | None = None
    acr_values: list[str] | None = None
    ui_locales: list[str] | None = None
    audiences: list[str] | None = None


@dataclass
class RedirectParams(ExtraRequestArgs):
    # Passed through to the url_handler; web apps map these onto their redirect response
    location_method: str = "assign"
    target_window: str = "self"


@dataclass
class PopupParams(ExtraRequestArgs):
    popup_window_features: dict[str, Any] | None = None
    popup_window_target: str | None = None


@dataclass
class NativeParams(RedirectParams):
    # Reported to the authorization server as the `sdk` query parameter
    sdk: str | None = None


@dataclass
class LogoutParams:
    post_logout_redirect_uri: str | None = None
