"""Tests for the embedded strategy and the entry endpoint."""
import pytest

from oidc_flows.embedded_handler import EmbeddedFlowHandler
from oidc_flows.errors import AuthorizationError, FlowProtocolError
from oidc_flows.flows.embedded import EmbeddedFlow
from oidc_flows.flows.native import NativeFlow

ENTRY_URL = "https://idp.example/provider/flow/entry"


@pytest.fixture
def flow(options, storage, http):
    return EmbeddedFlow(options, storage, http)


@pytest.mark.asyncio
async def test_start_session_sets_widget_ids(flow, http, idp):
    http.add(
        "GET",
        idp.authorization_endpoint,
        idp.response(200, text="https://idp.example/login?short_app_id=app1&session_id=s1"),
    )
    handler = flow.login()
    assert isinstance(handler, EmbeddedFlowHandler)

    await handler.start_session()

    assert handler.short_app_id == "app1"
    assert handler.session_id == "s1"
    request = http.calls("GET", idp.authorization_endpoint)[0]
    assert request.query["sdk"] == "web-embedded"
    assert request.credentials


@pytest.mark.asyncio
async def test_start_session_requires_short_app_id(flow, storage, http, idp):
    http.add("GET", idp.authorization_endpoint, idp.response(200, text="https://idp.example/login?session_id=s1"))
    with pytest.raises(FlowProtocolError, match="short_app_id"):
        await flow.login().start_session()
    assert storage.keys() == []


@pytest.mark.asyncio
async def test_start_session_falls_back_to_final_url(flow, http, idp):
    # Server redirected instead of answering with the URL as text
    http.add(
        "GET",
        idp.authorization_endpoint,
        idp.response(200, text="<html></html>", url="https://idp.example/login?short_app_id=app1&session_id=s2"),
    )
    handler = flow.login()
    await handler.start_session()
    assert handler.session_id == "s2"


@pytest.mark.asyncio
async def test_start_session_fast_path(flow, http, idp):
    http.add(
        "GET",
        idp.authorization_endpoint,
        lambda request: idp.response(200, text=f"{idp.redirect_uri}?code=c1&state={request.query['state']}"),
    )
    http.add(
        "POST",
        idp.token_endpoint,
        lambda request: idp.response(
            200, idp.token_body(nonce=http.calls("GET", idp.authorization_endpoint)[0].query["nonce"])
        ),
    )
    handler = flow.login()
    await handler.start_session()
    assert handler.session_id is None
    assert flow.is_authenticated_sync


@pytest.mark.asyncio
async def test_finalize_session(flow, storage, http, idp):
    http.add(
        "GET",
        idp.authorization_endpoint,
        idp.response(200, text="https://idp.example/login?short_app_id=app1&session_id=s1"),
    )
    http.add(
        "GET",
        "https://idp.example/finalize",
        lambda request: idp.response(
            200, text=f"{idp.redirect_uri}?code=c9&state={http.calls('GET', idp.authorization_endpoint)[0].query['state']}"
        ),
    )
    http.add(
        "POST",
        idp.token_endpoint,
        lambda request: idp.response(
            200, idp.token_body(nonce=http.calls("GET", idp.authorization_endpoint)[0].query["nonce"])
        ),
    )
    handler = flow.login()
    await handler.start_session()
    await handler.finalize_session("https://idp.example/finalize")

    assert http.calls("GET", "https://idp.example/finalize")[0].headers["Authorization"] == "Bearer s1"
    assert http.calls("POST", idp.token_endpoint)[0].data["code"] == "c9"
    assert flow.access_token == "at-1"


@pytest.mark.asyncio
async def test_entry_returns_app_and_session_ids(flow, http, idp):
    http.add("GET", ENTRY_URL, idp.response(200, text="https://idp.example/login?short_app_id=app1&session_id=s1"))

    result = await flow.entry("https://app.example/entry?challenge=xyz")

    assert result == {"session_id": "s1", "short_app_id": "app1"}
    query = http.calls("GET", ENTRY_URL)[0].query
    assert query == {
        "challenge": "xyz",
        "sdk": "web-embedded",
        "client_id": "abc",
        "redirect_uri": "https://app.example/cb",
    }


@pytest.mark.asyncio
async def test_native_entry_needs_only_session_id(options, storage, http, idp):
    http.add("GET", ENTRY_URL, idp.response(200, text="https://idp.example/login?session_id=s1"))
    flow = NativeFlow(options, storage, http)
    assert await flow.entry("https://app.example/entry") == {"session_id": "s1"}
    assert http.calls("GET", ENTRY_URL)[0].query["sdk"] == "web"


@pytest.mark.asyncio
async def test_entry_400_with_oauth_error(flow, http, idp):
    http.add("GET", ENTRY_URL, idp.response(400, {"error": "invalid_request", "error_description": "Unknown flow"}))
    with pytest.raises(AuthorizationError, match="invalid_request: Unknown flow"):
        await flow.entry("https://app.example/entry")


@pytest.mark.asyncio
async def test_entry_400_with_error_key(flow, http, idp):
    http.add("GET", ENTRY_URL, idp.response(400, {"errorKey": "flow.expired"}))
    with pytest.raises(FlowProtocolError, match="flow.expired"):
        await flow.entry("https://app.example/entry")


@pytest.mark.asyncio
async def test_entry_other_failure(flow, http, idp):
    http.add("GET", ENTRY_URL, idp.response(500))
    with pytest.raises(FlowProtocolError, match="Entry request failed with status 500"):
        await flow.entry("https://app.example/entry")


@pytest.mark.asyncio
async def test_entry_missing_ids(flow, http, idp):
    http.add("GET", ENTRY_URL, idp.response(200, text="https://idp.example/login?session_id=s1"))
    with pytest.raises(FlowProtocolError, match="short_app_id"):
        await flow.entry("https://app.example/entry")
