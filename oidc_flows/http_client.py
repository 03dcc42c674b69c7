"""
HTTP collaborator used by flows: a tiny request(url, ...) -> HttpResponse contract,
and the default implementation on httpx.AsyncClient.
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping
from urllib.parse import urlsplit

import httpx

from oidc_flows.config import HTTP_TIMEOUT
from oidc_flows.log import FlowLogger

logger = logging.getLogger(__name__)


@dataclass
class HttpResponse:
    status: int
    url: str
    status_text: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Decoded JSON body. Raises ValueError when the body is not JSON."""
        return json.loads(self.body or b"null")


class HttpClient(ABC):
    @abstractmethod
    async def request(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        data: Mapping[str, str] | None = None,
        json_body: Any = None,
        credentials: bool = False,
    ) -> HttpResponse:
        """
        Send one request. `data` is form-encoded, `json_body` JSON-encoded.
        `credentials` marks requests that depend on the issuer session cookie (browser `credentials: include`);
        implementations must keep cookies across such calls.
        Transport failures propagate unchanged.
        """


class HttpxClient(HttpClient):
    """
    Default HTTP client. One AsyncClient per instance so cookies set by the authorization
    server during a native/embedded session are replayed on the following requests.
    """

    def __init__(
        self,
        *,
        timeout: float = HTTP_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: FlowLogger | None = None,
    ):
        self.logger = logger
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport, follow_redirects=True)

    async def request(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        data: Mapping[str, str] | None = None,
        json_body: Any = None,
        credentials: bool = False,
    ) -> HttpResponse:
        parts = urlsplit(url)
        (self.logger or logger).debug("REQUEST [%s]: %s://%s%s", method, parts.scheme, parts.netloc, parts.path)

        kwargs: dict[str, Any] = {"headers": dict(headers or {})}
        if data is not None:
            kwargs["data"] = dict(data)
        if json_body is not None:
            kwargs["json"] = json_body
        r = await self._client.request(method, url, **kwargs)

        x_event_id = r.headers.get("x-event-id")
        if self.logger is not None and x_event_id:
            self.logger.update_event_id(x_event_id)

        return HttpResponse(
            status=r.status_code,
            url=str(r.url),
            status_text=r.reason_phrase,
            headers=dict(r.headers),
            body=r.content,
        )

    async def aclose(self) -> None:
        await self._client.aclose()


def landing_url(response: HttpResponse) -> str:
    """
    Where an authorization-server GET ended up. The server answers SDK requests with the target URL
    as the body; otherwise use a redirect Location, else the final URL after redirects.
    """
    text = response.text().strip()
    parts = urlsplit(text)
    if parts.scheme in ("http", "https") and parts.netloc and " " not in text:
        return text
    location = {k.lower(): v for k, v in response.headers.items()}.get("location")
    if 300 <= response.status < 400 and location:
        return location
    return response.url
