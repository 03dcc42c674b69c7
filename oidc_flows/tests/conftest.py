"""
Pytest configuration for oidc_flows: a scripted HTTP client standing in for the authorization
server, and HS256 ID tokens minted with PyJWT (signatures are never verified by the flows).
"""
import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable
from urllib.parse import parse_qs, urlsplit

import jwt
import pytest

from oidc_flows.config import FlowOptions
from oidc_flows.http_client import HttpClient, HttpResponse
from oidc_flows.storage import MemoryStorage

ISSUER = "https://idp.example"
CLIENT_ID = "abc"
REDIRECT_URI = "https://app.example/cb"

DISCOVERY = {
    "issuer": ISSUER,
    "authorization_endpoint": f"{ISSUER}/oauth2/auth",
    "token_endpoint": f"{ISSUER}/oauth2/token",
    "userinfo_endpoint": f"{ISSUER}/oauth2/userinfo",
    "end_session_endpoint": f"{ISSUER}/oauth2/sessions/logout",
    "revocation_endpoint": f"{ISSUER}/oauth2/revoke",
    "jwks_uri": f"{ISSUER}/.well-known/jwks.json",
}

TEST_SIGNING_KEY = "test-signing-key-for-hs256-id-tokens-only"


@dataclass
class RecordedRequest:
    url: str
    method: str
    headers: dict[str, str] = field(default_factory=dict)
    data: dict[str, str] | None = None
    json_body: Any = None
    credentials: bool = False

    @property
    def query(self) -> dict[str, str]:
        return {k: v[0] for k, v in parse_qs(urlsplit(self.url).query).items()}


def response(status: int = 200, body: Any = None, *, text: str | None = None, url: str = "", status_text: str = "", headers=None) -> HttpResponse:
    if text is not None:
        raw = text.encode()
    elif body is not None:
        raw = json.dumps(body).encode()
    else:
        raw = b""
    return HttpResponse(status=status, url=url, status_text=status_text, headers=headers or {}, body=raw)


class FakeHttpClient(HttpClient):
    """
    Routes on (method, URL without query). A route holds a queue of responses (the last one
    repeats) or a callable taking the RecordedRequest.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], list] = {}
        self.requests: list[RecordedRequest] = []

    def add(self, method: str, url: str, resp: HttpResponse | Callable[[RecordedRequest], HttpResponse]) -> None:
        self.routes.setdefault((method, url), []).append(resp)

    def replace(self, method: str, url: str, resp) -> None:
        self.routes[(method, url)] = [resp]

    async def request(self, url, *, method="GET", headers=None, data=None, json_body=None, credentials=False):
        recorded = RecordedRequest(url, method, dict(headers or {}), dict(data) if data else None, json_body, credentials)
        self.requests.append(recorded)
        queue = self.routes.get((method, url.split("?")[0]))
        if not queue:
            raise AssertionError(f"Unexpected request {method} {url}")
        resp = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(resp):
            resp = resp(recorded)
        if not resp.url:
            resp.url = url
        return resp

    def calls(self, method: str, url: str) -> list[RecordedRequest]:
        return [r for r in self.requests if r.method == method and r.url.split("?")[0] == url]


def mint_id_token(**claims: Any) -> str:
    now = int(time.time())
    payload = {"iss": ISSUER, "aud": CLIENT_ID, "sub": "user-1", "iat": now, "exp": now + 3600}
    payload.update(claims)
    return jwt.encode(payload, TEST_SIGNING_KEY, algorithm="HS256")


def token_body(nonce: str | None = None, **overrides: Any) -> dict[str, Any]:
    claims = overrides.pop("claims", {})
    body = {
        "access_token": "at-1",
        "refresh_token": "rt-1",
        "id_token": mint_id_token(nonce=nonce, **claims),
        "token_type": "bearer",
        "expires_in": 3600,
        "scope": "openid",
    }
    body.update(overrides)
    return body


@pytest.fixture
def options():
    return FlowOptions(issuer=ISSUER, client_id=CLIENT_ID, redirect_uri=REDIRECT_URI, url_handler=lambda url, params: None)


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def http():
    client = FakeHttpClient()
    client.add("GET", f"{ISSUER}/.well-known/openid-configuration", response(200, DISCOVERY))
    return client


@pytest.fixture
def idp():
    """Endpoints, token helpers and canned responses the tests script the fake server with."""

    class Idp:
        issuer = ISSUER
        client_id = CLIENT_ID
        redirect_uri = REDIRECT_URI
        discovery = DISCOVERY
        authorization_endpoint = DISCOVERY["authorization_endpoint"]
        token_endpoint = DISCOVERY["token_endpoint"]
        revocation_endpoint = DISCOVERY["revocation_endpoint"]
        end_session_endpoint = DISCOVERY["end_session_endpoint"]

    Idp.response = staticmethod(response)
    Idp.mint_id_token = staticmethod(mint_id_token)
    Idp.token_body = staticmethod(token_body)
    return Idp


@pytest.fixture
def stored_session(idp):
    """Serialized session as BaseFlow persists it, valid for an hour unless overridden."""

    def build(**overrides: Any) -> str:
        data = {
            "access_token": "at-0",
            "refresh_token": "rt-0",
            "id_token": idp.mint_id_token(nonce="n0"),
            "token_type": "bearer",
            "scope": "openid",
            "expires_at": int(time.time()) + 3600,
            "claims": {"iss": idp.issuer, "aud": idp.client_id, "sub": "user-1", "nonce": "n0"},
        }
        data.update(overrides)
        return json.dumps(data)

    return build
