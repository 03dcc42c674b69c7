"""
Navigation and callback collaborators for the redirect-style flows.
"""
import logging
import webbrowser
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

logger = logging.getLogger(__name__)


def origin_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


async def redirect_url_handler(url: str, params: Any = None) -> None:
    """
    Send the user agent to `url`. Desktop apps get the system browser; web apps pass their own
    url_handler that answers the current request with a 302.
    """
    logger.debug("Opening %s", origin_of(url) + urlsplit(url).path)
    if not webbrowser.open(url, new=0):
        raise RuntimeError("No browser available to open the authorization URL")


def redirect_callback_handler(url: str, response_mode: str | None = None) -> dict[str, str]:
    """Decode the authorization response from the callback URL's query (response_mode=query) or fragment."""
    parts = urlsplit(url)
    raw = parts.query if response_mode == "query" else parts.fragment
    return dict(parse_qsl(raw, keep_blank_values=True))


def append_query(url: str, params: list[tuple[str, str]]) -> str:
    """Add query parameters to `url`, keeping any it already has."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True) + list(params)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def url_params(url: str) -> dict[str, str]:
    """Query and fragment parameters of `url` together; fragment wins on clashes."""
    parts = urlsplit(url)
    params = dict(parse_qsl(parts.query, keep_blank_values=True))
    params.update(parse_qsl(parts.fragment, keep_blank_values=True))
    return params
