"""Tests for the httpx-backed HTTP client and landing URL detection."""
import logging

import httpx
import pytest

from oidc_flows.http_client import HttpResponse, HttpxClient, landing_url
from oidc_flows.log import FlowLogger


@pytest.mark.asyncio
async def test_form_post_and_response_mapping():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["content_type"] = request.headers["content-type"]
        seen["body"] = request.content.decode()
        return httpx.Response(200, json={"access_token": "at"}, headers={"X-Event-ID": "ev-1"})

    flow_logger = FlowLogger()
    client = HttpxClient(transport=httpx.MockTransport(handler), logger=flow_logger)
    response = await client.request("https://idp.example/token", method="POST", data={"grant_type": "refresh_token"})
    await client.aclose()

    assert response.ok
    assert response.json() == {"access_token": "at"}
    assert response.headers["x-event-id"] == "ev-1"
    assert seen["content_type"].startswith("application/x-www-form-urlencoded")
    assert seen["body"] == "grant_type=refresh_token"
    assert flow_logger.x_event_id == "ev-1"


@pytest.mark.asyncio
async def test_redirects_are_followed():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/start":
            return httpx.Response(302, headers={"Location": "https://idp.example/login?session_id=s1"})
        return httpx.Response(200, text="<html></html>")

    client = HttpxClient(transport=httpx.MockTransport(handler))
    response = await client.request("https://idp.example/start")
    await client.aclose()

    assert response.url == "https://idp.example/login?session_id=s1"
    assert landing_url(response) == "https://idp.example/login?session_id=s1"


@pytest.mark.asyncio
async def test_cookies_are_replayed_between_requests():
    cookies = []

    def handler(request: httpx.Request) -> httpx.Response:
        cookies.append(request.headers.get("cookie"))
        return httpx.Response(200, text="ok", headers={"Set-Cookie": "sid=abc; Path=/"})

    client = HttpxClient(transport=httpx.MockTransport(handler))
    await client.request("https://idp.example/oauth2/auth", credentials=True)
    await client.request("https://idp.example/flow/api/v1/init", method="POST", credentials=True)
    await client.aclose()

    assert cookies == [None, "sid=abc"]


@pytest.mark.asyncio
async def test_request_log_omits_query(caplog):
    caplog.set_level(logging.DEBUG, logger="oidc_flows")
    client = HttpxClient(transport=httpx.MockTransport(lambda request: httpx.Response(204)))
    await client.request("https://idp.example/oauth2/auth?code_challenge=secret")
    await client.aclose()
    assert "REQUEST [GET]: https://idp.example/oauth2/auth" in caplog.text
    assert "secret" not in caplog.text


def test_landing_url_prefers_body_url():
    response = HttpResponse(200, "https://idp.example/final", body=b"https://app.example/cb?code=1\n")
    assert landing_url(response) == "https://app.example/cb?code=1"


def test_landing_url_uses_location_on_redirect():
    response = HttpResponse(302, "https://idp.example/start", headers={"Location": "https://app.example/cb?code=2"})
    assert landing_url(response) == "https://app.example/cb?code=2"


def test_landing_url_falls_back_to_final_url():
    response = HttpResponse(200, "https://idp.example/login?session_id=s1", body=b"<html>hello world</html>")
    assert landing_url(response) == "https://idp.example/login?session_id=s1"


def test_flow_logger_prefixes_event_id(caplog):
    caplog.set_level(logging.INFO, logger="oidc_flows")
    flow_logger = FlowLogger()
    flow_logger.info("before")
    flow_logger.update_event_id("ev-9")
    flow_logger.info("after")
    assert "before" in caplog.text
    assert "(ev-9) after" in caplog.text
