"""
BaseFlow: configuration, the persisted token session, discovery, and the token lifecycle
(code exchange, refresh, revoke, logout) shared by every delivery strategy.

A flow instance is not safe to share between event loops. Within one loop, is_authenticated()
calls are coalesced and a refresh is never started while another is running.
"""
import asyncio
import inspect
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit

from oidc_flows.config import (
    DEFAULT_RESPONSE_MODE,
    DEFAULT_RESPONSE_TYPE,
    DEFAULT_SCOPES,
    DEFAULT_STORAGE_TOKEN_NAME,
    DISCOVERY_PATH,
    FlowOptions,
)
from oidc_flows.errors import (
    AuthorizationError,
    ConfigurationError,
    FlowProtocolError,
    OIDCError,
    ProtocolValidationError,
    StateDeserializationError,
)
from oidc_flows.events import Event, EventBus, Subscription
from oidc_flows.handlers import append_query, redirect_callback_handler, redirect_url_handler
from oidc_flows.http_client import HttpClient, HttpResponse, HttpxClient, landing_url
from oidc_flows.jwt_utils import decode_claims, first_audience
from oidc_flows.log import FlowLogger
from oidc_flows.metadata import Metadata
from oidc_flows.params import ExtraRequestArgs, LogoutParams
from oidc_flows.session import Session, timestamp
from oidc_flows.state import State, state_key
from oidc_flows.storage import MemoryStorage, Storage


class LogoutOutcome(str, Enum):
    SKIPPED = "skipped"  # no id_token, nothing to end
    COMPLETED = "completed"  # local session cleared and end-session navigation handed off
    DEGRADED = "degraded"  # local session cleared, end-session URL or navigation failed


async def resolve(value: Any) -> Any:
    """Await `value` if a collaborator handed back an awaitable."""
    if inspect.isawaitable(value):
        return await value
    return value


def _error_from(response: HttpResponse) -> AuthorizationError:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return AuthorizationError(body.get("error"), body.get("error_description"))
    return AuthorizationError(f"HTTP {response.status}", response.status_text or None)


class BaseFlow(ABC):
    # `sdk` value sent on entry requests
    entry_sdk = "web"
    # Whether entry() must find a short_app_id in the landing URL
    entry_requires_app_id = False

    def __init__(
        self,
        options: FlowOptions,
        storage: Storage | None = None,
        http_client: HttpClient | None = None,
        logger: FlowLogger | None = None,
    ):
        self.logger = logger or FlowLogger()
        self.options = self._validate(options)
        self.storage = storage if storage is not None else MemoryStorage()
        self._owns_http_client = http_client is None
        self.http_client = http_client or HttpxClient(logger=self.logger)
        self.events = EventBus()
        self.metadata = Metadata(self.http_client, urljoin(self.options.issuer, DISCOVERY_PATH), self.logger)

        self.session = Session.load(self.storage.get(self.options.storage_token_name))
        self._refresh_in_progress = False
        self._authenticated_task: asyncio.Future | None = None
        self._announced = False

        # Subscribers attached right after construction still see init/sessionLoaded
        try:
            asyncio.get_running_loop().call_soon(self._announce)
        except RuntimeError:
            pass

    def _validate(self, options: FlowOptions) -> FlowOptions:
        for name, label in (("issuer", "issuer"), ("client_id", "clientId"), ("redirect_uri", "redirectUri")):
            if not getattr(options, name, None):
                self.logger.error("Missing option: %s", label)
                raise ConfigurationError(f"Missing option: {label}")
        if options.scopes is not None and (
            not isinstance(options.scopes, (list, tuple)) or not all(isinstance(s, str) for s in options.scopes)
        ):
            self.logger.error("Invalid option: scopes")
            raise ConfigurationError("Invalid option: scopes")

        options = replace(options, issuer=options.issuer.rstrip("/"))
        options.scopes = list(options.scopes or DEFAULT_SCOPES)
        options.response_type = options.response_type or DEFAULT_RESPONSE_TYPE
        options.response_mode = options.response_mode or DEFAULT_RESPONSE_MODE
        options.storage_token_name = options.storage_token_name or DEFAULT_STORAGE_TOKEN_NAME
        return options

    def _announce(self) -> None:
        if self._announced:
            return
        self._announced = True
        self.events.dispatch(Event.INIT)
        if self.session and self.session.access_token and self.session.claims:
            self.logger.debug("Session loaded from storage")
            self.events.dispatch(
                Event.SESSION_LOADED,
                {"access_token": self.access_token, "refresh_token": self.refresh_token, "claims": self.id_token_claims},
            )
        if self.session and self.session.access_token and self.access_token_expired:
            self.events.dispatch(
                Event.ACCESS_TOKEN_EXPIRED, {"access_token": self.access_token, "refresh_token": self.refresh_token}
            )

    async def wait_to_initialize(self) -> None:
        """Make sure the construction-time events went out before the first async operation."""
        self._announce()

    async def aclose(self) -> None:
        """Close the HTTP client if this flow created it. An injected client is left to its owner."""
        if self._owns_http_client:
            await self.http_client.aclose()

    # Session views

    @property
    def id_token_claims(self) -> dict[str, Any] | None:
        return self.session.claims if self.session else None

    @property
    def access_token(self) -> str | None:
        return self.session.access_token if self.session else None

    @property
    def refresh_token(self) -> str | None:
        return self.session.refresh_token if self.session else None

    @property
    def access_token_expired(self) -> bool:
        if not self.session or not self.session.access_token or not self.session.expires_at:
            return True
        return self.session.expires_at <= timestamp()

    @property
    def access_token_expiration_date(self) -> datetime | None:
        if not self.session or not self.session.expires_at:
            return None
        return datetime.fromtimestamp(self.session.expires_at, tz=timezone.utc)

    @property
    def refresh_in_progress(self) -> bool:
        return self._refresh_in_progress

    @property
    def is_authenticated_sync(self) -> bool:
        """Point-in-time check without refreshing."""
        return not self.access_token_expired

    async def is_authenticated(self) -> bool:
        """
        True when a non-expired access token is held, refreshing first if the access token is
        expired and a refresh token is available. Concurrent callers share one check.
        """
        if self._authenticated_task is None:
            self._authenticated_task = asyncio.ensure_future(self._check_authenticated())
        return await asyncio.shield(self._authenticated_task)

    async def _check_authenticated(self) -> bool:
        try:
            await self.wait_to_initialize()
            if self.access_token_expired and self.refresh_token and not self._refresh_in_progress:
                await self.refresh()
            return not self.access_token_expired
        finally:
            self._authenticated_task = None

    # Strategy surface

    @abstractmethod
    def login(self, params: Any = None) -> Any:
        ...

    @abstractmethod
    def register(self, params: Any = None) -> Any:
        ...

    async def handle_callback(self, url: str) -> Session:
        """Complete a login from the callback URL the authorization server redirected to."""
        params = await self.parse_callback(url)
        return await self.exchange_code_for_tokens(params)

    async def parse_callback(self, url: str) -> dict[str, str]:
        handler: Callable[..., Any] = self.options.callback_handler or redirect_callback_handler
        return await resolve(handler(url, self.options.response_mode))

    async def navigate(self, url: str, params: Any = None) -> Any:
        """Hand `url` to the configured url_handler (the system browser by default)."""
        handler: Callable[..., Any] = self.options.url_handler or redirect_url_handler
        return await resolve(handler(url, params))

    # Authorization request

    async def get_authorization_url(self, params: ExtraRequestArgs | None = None) -> str:
        """Authorization endpoint URL with the client and request options; strategies add state, PKCE and nonce."""
        params = params or ExtraRequestArgs()
        endpoint = await self.metadata.authorization_endpoint
        if not endpoint:
            raise OIDCError("Discovery document has no authorization_endpoint")

        query = [
            ("client_id", self.options.client_id),
            ("redirect_uri", self.options.redirect_uri),
            ("response_type", self.options.response_type),
            ("response_mode", self.options.response_mode),
            ("scope", self.options.scope),
            ("code_challenge_method", "S256"),
        ]
        if params.prompt:
            query.append(("prompt", params.prompt))
        if params.acr_values:
            query.append(("acr_values", " ".join(params.acr_values)))
        if params.login_hint:
            query.append(("login_hint", params.login_hint))
        if params.ui_locales:
            query.append(("ui_locales", " ".join(params.ui_locales)))
        if params.audiences:
            query.append(("audience", " ".join(params.audiences)))
        return append_query(endpoint, query)

    async def create_state_url(self, params: ExtraRequestArgs | None, extra: list[tuple[str, str]] = ()) -> tuple[State, str]:
        """New State persisted under its key, plus the authorization URL carrying it."""
        state = await State.create()
        url = append_query(
            await self.get_authorization_url(params),
            [("state", state.id), ("code_challenge", state.code_challenge), ("nonce", state.nonce), *extra],
        )
        await self._store(state.storage_key, state.to_json())
        return state, url

    # Token endpoint

    async def send_token_request(self, url: str, data: Mapping[str, str]) -> HttpResponse:
        """Form-encoded POST to a token or revocation endpoint."""
        return await self.http_client.request(
            url,
            method="POST",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            data=dict(data),
        )

    async def exchange_code_for_tokens(self, params: Mapping[str, Any] | None) -> Session:
        """
        Validate the authorization response, redeem the code and check the ID token.

        Checks run in a fixed order and the first failure raises: callback error, code, state,
        token endpoint error, scope, nonce, issuer, audience. The pending State is deleted as soon
        as it is read. The session is persisted and loggedIn dispatched only when every check passed.
        """
        await self.wait_to_initialize()
        try:
            session = await self._exchange_code(dict(params or {}))
        except OIDCError as e:
            self.logger.error("Validation failed: %s", e)
            raise

        self.session = session
        if session.access_token and session.claims:
            self.events.dispatch(
                Event.LOGGED_IN,
                {"access_token": session.access_token, "refresh_token": session.refresh_token, "claims": session.claims},
            )
        self.logger.info("Login completed for subject %s", (session.claims or {}).get("sub"))
        self.logger.x_event_id = None
        return session

    async def _exchange_code(self, params: dict[str, Any]) -> Session:
        if params.get("error"):
            raise AuthorizationError(params.get("error"), params.get("error_description"))
        if not params.get("code"):
            raise ProtocolValidationError("Invalid or missing code")

        state = await self._consume_state(params.get("state"))

        session = Session().update(params)
        response = await self.send_token_request(
            await self.metadata.token_endpoint,
            {
                "grant_type": "authorization_code",
                "client_id": self.options.client_id,
                "redirect_uri": self.options.redirect_uri,
                "code_verifier": state.code_verifier,
                "code": params["code"],
            },
        )
        if not response.ok:
            raise _error_from(response)
        try:
            body = response.json()
        except ValueError as e:
            raise ProtocolValidationError("Token response is not valid JSON") from e
        if not isinstance(body, dict):
            raise ProtocolValidationError("Token response is not a JSON object")

        session.update(body)
        if session.id_token:
            session.claims = decode_claims(session.id_token)

        self._check_scope(session.scope)
        claims = session.claims or {}
        if claims.get("nonce") != state.nonce:
            raise ProtocolValidationError("Invalid nonce")
        if claims.get("iss") != await self.metadata.issuer:
            raise ProtocolValidationError("Invalid iss")
        if first_audience(claims) != self.options.client_id:
            raise ProtocolValidationError("Invalid aud")

        await self._store(self.options.storage_token_name, session.to_json())
        return session

    async def _consume_state(self, state_id: str | None) -> State:
        serialized = self.storage.get(state_key(state_id)) if state_id else None
        if serialized is None:
            raise ProtocolValidationError("Invalid or missing state")
        # Single use: gone before anything else can suspend
        deleted = self.storage.delete(state_key(state_id))
        await resolve(deleted)
        try:
            return State.from_serialized_data(serialized)
        except StateDeserializationError as e:
            raise ProtocolValidationError("Invalid or missing state") from e

    def _check_scope(self, scope: Any) -> None:
        if self.options.strict_scope:
            if scope != self.options.scope:
                raise ProtocolValidationError("Invalid scope")
            return
        if scope is None:
            return
        if not isinstance(scope, str) or set(scope.split()) != set(self.options.scopes):
            raise ProtocolValidationError("Invalid scope")

    async def refresh(self) -> bool:
        """
        Redeem the refresh token. Returns False (after clearing the session and dispatching
        tokenRefreshFailed) when the endpoint or the response is unusable. Returns False without
        touching storage when logout() or revoke() ended the session while the request was pending.
        """
        await self.wait_to_initialize()
        session = self.session
        refresh_token = self.refresh_token
        if session is None or not refresh_token:
            raise OIDCError("No refresh token available")

        self._refresh_in_progress = True
        try:
            response = await self.send_token_request(
                await self.metadata.token_endpoint,
                {"grant_type": "refresh_token", "client_id": self.options.client_id, "refresh_token": refresh_token},
            )
            if self.session is not session:
                # Logged out or revoked while the request was in flight
                self.logger.info("Session ended during token refresh, discarding response")
                return False
            if not response.ok:
                raise _error_from(response)
            body = response.json()
            if not isinstance(body, dict):
                raise ProtocolValidationError("Token response is not a JSON object")
            session.update(body)
            if session.id_token:
                session.claims = decode_claims(session.id_token)
            await self._store(self.options.storage_token_name, session.to_json())
        except Exception as e:
            self.logger.info("Token refresh failed: %s", e)
            if self.session is not session:
                return False
            self.session = None
            await self._delete(self.options.storage_token_name)
            self.events.dispatch(Event.TOKEN_REFRESH_FAILED, {"refresh_token": refresh_token})
            return False
        finally:
            self._refresh_in_progress = False

        self.events.dispatch(
            Event.TOKEN_REFRESHED,
            {"access_token": session.access_token, "refresh_token": session.refresh_token, "claims": session.claims},
        )
        return True

    async def revoke(self) -> bool:
        """
        Revoke the refresh token (else the access token) and clear the local session either way.
        Returns False when the revocation request failed.
        """
        await self.wait_to_initialize()
        token, hint = None, None
        if self.refresh_token:
            token, hint = self.refresh_token, "refresh_token"
        elif self.access_token:
            token, hint = self.access_token, "access_token"

        revoked = True
        try:
            if token:
                endpoint = await self.metadata.revocation_endpoint
                if not endpoint:
                    raise OIDCError("Discovery document has no revocation_endpoint")
                response = await self.send_token_request(
                    endpoint,
                    {"client_id": self.options.client_id, "token_type_hint": hint, "token": token},
                )
                if not response.ok:
                    raise _error_from(response)
        except Exception as e:
            self.logger.warning("Token revocation failed: %s", e)
            revoked = False
        finally:
            self.session = None
            await self._delete(self.options.storage_token_name)

        if token:
            event = Event.TOKEN_REVOKED if revoked else Event.TOKEN_REVOKE_FAILED
            self.events.dispatch(event, {"token": token, "token_type_hint": hint})
        return revoked

    async def logout(self, params: LogoutParams | None = None) -> LogoutOutcome:
        """
        End the session. The local session is cleared before any network call; the end-session
        URL is then handed to the url_handler.
        """
        await self.wait_to_initialize()
        session = self.session
        if not session or not session.id_token:
            self.logger.debug("Logout skipped: no id_token")
            return LogoutOutcome.SKIPPED

        self.session = None
        await self._delete(self.options.storage_token_name)
        self.events.dispatch(Event.LOGOUT_INITIATED, {"id_token": session.id_token, "claims": session.claims})

        try:
            endpoint = await self.metadata.end_session_endpoint
            if not endpoint:
                raise OIDCError("Discovery document has no end_session_endpoint")
            query = [("id_token_hint", session.id_token)]
            if params and params.post_logout_redirect_uri:
                query.append(("post_logout_redirect_uri", params.post_logout_redirect_uri))
            await self.navigate(append_query(endpoint, query), params)
        except Exception as e:
            # Local logout already happened; only the IdP side is missing
            self.logger.warning("End-session navigation failed: %s", e)
            return LogoutOutcome.DEGRADED
        return LogoutOutcome.COMPLETED

    # Native/embedded entry

    async def entry(self, url: str) -> dict[str, str]:
        """
        Resume a flow started outside this client: forward the query of `url` to the entry
        endpoint and return the session_id (and short_app_id) of the login session it lands on.
        """
        await self.wait_to_initialize()
        query = parse_qsl(urlsplit(url).query, keep_blank_values=True) + [
            ("sdk", self.entry_sdk),
            ("client_id", self.options.client_id),
            ("redirect_uri", self.options.redirect_uri),
        ]
        response = await self.http_client.request(
            f"{self.options.issuer}/provider/flow/entry?{urlencode(query)}", method="GET", credentials=True
        )
        if response.status == 400:
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("error"):
                raise AuthorizationError(body.get("error"), body.get("error_description"))
            if isinstance(body, dict) and body.get("errorKey"):
                raise FlowProtocolError(body["errorKey"])
        if not response.ok:
            raise FlowProtocolError(f"Entry request failed with status {response.status}")

        landed = dict(parse_qsl(urlsplit(landing_url(response)).query))
        result = {"session_id": landed.get("session_id")}
        if self.entry_requires_app_id:
            result["short_app_id"] = landed.get("short_app_id")
        missing = [key for key, value in result.items() if not value]
        if missing:
            raise FlowProtocolError(f"Entry response is missing {', '.join(missing)}")
        return result

    # Events

    def subscribe_to_event(self, event: Event | str, callback: Callable[..., Any]) -> Subscription:
        return self.events.subscribe(event, callback)

    def dispatch_event(self, event: Event | str, *args: Any) -> None:
        self.events.dispatch(event, *args)

    # Storage

    async def _store(self, key: str, value: str) -> None:
        await resolve(self.storage.set(key, value))

    async def _delete(self, key: str) -> None:
        await resolve(self.storage.delete(key))
