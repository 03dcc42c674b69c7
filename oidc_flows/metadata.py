"""
OpenID Connect discovery document, fetched lazily once per flow and cached whole.
"""
import asyncio
import logging
from typing import Any

from oidc_flows.errors import OIDCError
from oidc_flows.http_client import HttpClient

logger = logging.getLogger(__name__)


class Metadata:
    def __init__(self, http_client: HttpClient, metadata_url: str, logger: Any = None):
        self.http_client = http_client
        self.metadata_url = metadata_url
        self.logger = logger or logging.getLogger(__name__)
        self.data: dict[str, Any] | None = None
        self._lock = asyncio.Lock()

    @property
    def issuer(self):
        return self.get_metadata_property("issuer")

    @property
    def authorization_endpoint(self):
        return self.get_metadata_property("authorization_endpoint")

    @property
    def token_endpoint(self):
        return self.get_metadata_property("token_endpoint")

    @property
    def userinfo_endpoint(self):
        return self.get_metadata_property("userinfo_endpoint")

    @property
    def end_session_endpoint(self):
        return self.get_metadata_property("end_session_endpoint")

    @property
    def revocation_endpoint(self):
        return self.get_metadata_property("revocation_endpoint")

    @property
    def jwks_uri(self):
        return self.get_metadata_property("jwks_uri")

    async def fetch_metadata(self) -> None:
        """GET the discovery document. Failures propagate and nothing is cached."""
        try:
            response = await self.http_client.request(self.metadata_url, method="GET")
            if not response.ok:
                raise OIDCError(f"Discovery request failed with status {response.status}")
            data = response.json()
        except Exception as e:
            self.logger.error("Failed to fetch metadata: %s", e)
            raise
        if not isinstance(data, dict):
            raise OIDCError("Discovery document is not a JSON object")
        self.data = data

    async def get_metadata_property(self, key: str) -> Any:
        """Value of one discovery field; the first call fetches the whole document."""
        if self.data is not None:
            return self.data.get(key)
        async with self._lock:
            # Another caller may have fetched while we waited
            if self.data is None:
                await self.fetch_metadata()
        return self.data.get(key)
