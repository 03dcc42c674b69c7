"""
Drivers for the session-bound login conversation of the native and embedded strategies.

start_session() opens a login session on the authorization server (or short-circuits to the code
exchange when the issuer session is already authenticated); submit_form() posts one screen at a
time until the server hands back a finalizeUrl or asks us to fall back to the hosted UI.
"""
from typing import Any
from urllib.parse import urlsplit

import httpx

from oidc_flows.errors import AuthorizationError, FallbackError, FlowProtocolError, OIDCError
from oidc_flows.handlers import url_params
from oidc_flows.http_client import HttpResponse, landing_url
from oidc_flows.login_state import Completed, Continue, Failed, Fallback, FlowStep, LoginFlowState, resolve_layout
from oidc_flows.params import NativeParams, RedirectParams


class FlowSessionHandler:
    """Shared authorization GET, fast-path exchange and finalize steps."""

    def __init__(self, flow: Any, params: RedirectParams | None = None):
        self.flow = flow
        self.params = params
        self.session_id: str | None = None

    @property
    def logger(self):
        return self.flow.logger

    def sdk_name(self) -> str:
        return "web"

    async def authorize(self, *required: str) -> dict[str, str] | None:
        """
        Persist a State and GET the authorization URL with the issuer session cookie.
        Returns the landing URL parameters, or None when the server answered with a code
        straight away and the exchange already happened. Each name in `required` must be
        present in the landing URL.
        """
        self.logger.x_event_id = None
        state, url = await self.flow.create_state_url(self.params, [("sdk", self.sdk_name())])
        response = await self.flow.http_client.request(url, method="GET", credentials=True)
        landing = landing_url(response)
        params = url_params(landing)

        if params.get("error"):
            await self.flow._delete(state.storage_key)
            self.logger.error("Authorization error: %s", params.get("error"))
            raise AuthorizationError(params.get("error"), params.get("error_description"))
        if params.get("code"):
            self.logger.info("Issuer session already authenticated, exchanging code")
            await self.exchange_redirect(landing)
            return None
        for name in required:
            if not params.get(name):
                await self.flow._delete(state.storage_key)
                raise FlowProtocolError(f'"{name}" is missing from the authorization response')
        return params

    async def exchange_redirect(self, redirect_url: str) -> None:
        if not redirect_url.startswith(self.flow.options.redirect_uri):
            self.logger.error("Unexpected redirect to %s", urlsplit(redirect_url).netloc)
            raise FlowProtocolError("Invalid redirect URI")
        params = await self.flow.parse_callback(redirect_url)
        await self.flow.exchange_code_for_tokens(params)

    async def finalize_session(self, finalize_url: str) -> None:
        """GET the finalize URL; the body is the redirect URI carrying the authorization code."""
        response = await self.flow.http_client.request(
            finalize_url,
            method="GET",
            headers={"Authorization": f"Bearer {self.session_id}"},
            credentials=True,
        )
        if not response.ok:
            raise FlowProtocolError(f"HTTP {response.status}: {response.status_text}")
        await self.exchange_redirect(landing_url(response))


class NativeFlowHandler(FlowSessionHandler):
    def __init__(self, flow: Any, params: NativeParams | None = None):
        super().__init__(flow, params or NativeParams())

    def sdk_name(self) -> str:
        return self.params.sdk or "web"

    async def start_session(self, session_id: str | None = None) -> LoginFlowState | None:
        """
        First screen of the login, or None when the user was already logged in at the issuer
        (tokens are then in the flow's session). A known session_id resumes that session.
        """
        await self.flow.wait_to_initialize()
        self.logger.info("Starting login session")
        if session_id:
            self.session_id = session_id
            return await self.submit_form()

        params = await self.authorize("session_id")
        if params is None:
            return None
        self.session_id = params["session_id"]
        return await self.submit_form()

    async def submit_form(self, form_id: str | None = None, body: dict[str, Any] | None = None) -> LoginFlowState:
        """
        POST one form (or `init` without a form id). Returns the next state to render; raises
        FallbackError when the server wants the hosted UI. When the server hands back a
        finalizeUrl the login is completed before returning.
        """
        path = f"form/{form_id}" if form_id else "init"
        response = await self.flow.http_client.request(
            f"{self.flow.options.issuer}/flow/api/v1/{path}",
            method="POST",
            headers={"Authorization": f"Bearer {self.session_id}"},
            json_body=body or {},
            credentials=True,
        )
        data = self._json_or_none(response)

        if 400 <= response.status < 500:
            if response.status != 403 and data.get("hostedUrl") and data.get("messages") is None:
                self.logger.warning("Falling back to hosted login after HTTP %s", response.status)
                raise FallbackError(data["hostedUrl"])
            if response.status != 400:
                raise FlowProtocolError(f"HTTP {response.status}: {response.status_text}")
        elif not response.ok:
            raise FlowProtocolError(f"HTTP {response.status}: {response.status_text}")

        state = LoginFlowState.from_dict(data)
        if state.finalize_url:
            await self.finalize_session(state.finalize_url)
        elif state.hosted_url and state.forms is None and state.messages is None:
            self.logger.warning("Falling back to hosted login for screen %s", state.screen)
            raise FallbackError(state.hosted_url)
        else:
            self.logger.debug("Rendering screen %s", state.screen)
        return state

    @staticmethod
    def _json_or_none(response: HttpResponse) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    # Tagged variants of start_session / submit_form

    async def begin(self, session_id: str | None = None) -> FlowStep:
        return await self._as_step(self.start_session(session_id))

    async def step(self, form_id: str | None = None, body: dict[str, Any] | None = None) -> FlowStep:
        return await self._as_step(self.submit_form(form_id, body))

    async def _as_step(self, pending) -> FlowStep:
        try:
            state = await pending
            if state is None or state.finalize_url:
                return Completed()
            # A screen whose layout we can't render is a fallback too
            resolve_layout(state)
        except FallbackError as e:
            return Fallback(e.url)
        except (OIDCError, httpx.HTTPError) as e:
            return Failed(e)
        return Continue(state)
