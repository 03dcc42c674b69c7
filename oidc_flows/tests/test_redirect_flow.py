"""Tests for the redirect strategy, including the full login round trip."""
import json
from urllib.parse import parse_qs, urlsplit

import pytest

from oidc_flows.errors import AuthorizationError, ProtocolValidationError
from oidc_flows.events import Event
from oidc_flows.flows.redirect import RedirectFlow
from oidc_flows.params import RedirectParams
from oidc_flows.pkce import code_challenge_for
from oidc_flows.state import State, state_key


def _query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


@pytest.mark.asyncio
async def test_login_then_callback_persists_session_and_dispatches_logged_in(options, storage, http, idp):
    navigated = []
    options.url_handler = lambda url, params: navigated.append(url)
    flow = RedirectFlow(options, storage=storage, http_client=http)
    logged_in = []
    flow.subscribe_to_event(Event.LOGGED_IN, logged_in.append)

    url = await flow.login()

    assert navigated == [url]
    assert url.startswith("https://idp.example/")
    query = _query(url)
    state = State.from_serialized_data(storage.get(state_key(query["state"])))
    assert query["code_challenge"] == state.code_challenge == code_challenge_for(state.code_verifier)
    assert query["nonce"] == state.nonce
    assert query["client_id"] == "abc"
    assert query["redirect_uri"] == "https://app.example/cb"
    assert query["code_challenge_method"] == "S256"
    assert query["response_type"] == "code"
    assert query["scope"] == "openid"

    http.add("POST", idp.token_endpoint, idp.response(200, idp.token_body(nonce=state.nonce)))
    session = await flow.handle_callback(f"https://app.example/cb?code=c1&state={state.id}")

    assert session.access_token == "at-1"
    assert flow.is_authenticated_sync
    assert json.loads(storage.get("sty.session"))["access_token"] == "at-1"
    assert storage.get(state_key(state.id)) is None
    assert len(logged_in) == 1
    assert logged_in[0]["claims"]["nonce"] == state.nonce
    assert logged_in[0]["claims"]["aud"] == "abc"

    token_request = http.calls("POST", idp.token_endpoint)[0]
    assert token_request.data == {
        "grant_type": "authorization_code",
        "client_id": "abc",
        "redirect_uri": "https://app.example/cb",
        "code_verifier": state.code_verifier,
        "code": "c1",
    }


@pytest.mark.asyncio
async def test_login_dispatches_login_initiated(options, storage, http):
    flow = RedirectFlow(options, storage=storage, http_client=http)
    seen = []
    flow.subscribe_to_event("loginInitiated", lambda: seen.append("x"))
    await flow.login()
    assert seen == ["x"]


@pytest.mark.asyncio
async def test_login_carries_extra_request_args(options, storage, http):
    flow = RedirectFlow(options, storage=storage, http_client=http)
    url = await flow.login(
        RedirectParams(login_hint="ann@example.com", acr_values=["mfa", "pwd"], ui_locales=["en", "hu"], audiences=["api"])
    )
    query = _query(url)
    assert query["login_hint"] == "ann@example.com"
    assert query["acr_values"] == "mfa pwd"
    assert query["ui_locales"] == "en hu"
    assert query["audience"] == "api"
    assert "prompt" not in query


@pytest.mark.asyncio
async def test_register_sets_prompt_create_without_touching_caller_params(options, storage, http):
    flow = RedirectFlow(options, storage=storage, http_client=http)
    params = RedirectParams(login_hint="x")
    url = await flow.register(params)
    assert _query(url)["prompt"] == "create"
    assert params.prompt is None


@pytest.mark.asyncio
async def test_callback_error_is_raised(options, storage, http):
    flow = RedirectFlow(options, storage=storage, http_client=http)
    with pytest.raises(AuthorizationError, match="access_denied: User said no"):
        await flow.handle_callback("https://app.example/cb?error=access_denied&error_description=User+said+no&state=s")


@pytest.mark.asyncio
async def test_fragment_mode_reads_fragment(options, storage, http, idp):
    options.response_mode = "fragment"
    flow = RedirectFlow(options, storage=storage, http_client=http)
    url = await flow.login()
    query = _query(url)
    assert query["response_mode"] == "fragment"

    http.add("POST", idp.token_endpoint, idp.response(200, idp.token_body(nonce=query["nonce"])))
    session = await flow.handle_callback(f"https://app.example/cb#code=c1&state={query['state']}")
    assert session.claims["sub"] == "user-1"


@pytest.mark.asyncio
async def test_missing_code_in_callback(options, storage, http):
    flow = RedirectFlow(options, storage=storage, http_client=http)
    with pytest.raises(ProtocolValidationError, match="Invalid or missing code"):
        await flow.handle_callback("https://app.example/cb?state=abc")
