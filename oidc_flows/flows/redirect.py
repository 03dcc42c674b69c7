"""
Redirect strategy: navigate the whole user agent to the authorization endpoint and complete the
login when the redirect URI is hit.
"""
from dataclasses import replace

from oidc_flows.events import Event
from oidc_flows.flows.base import BaseFlow
from oidc_flows.params import RedirectParams


class RedirectFlow(BaseFlow):
    async def login(self, params: RedirectParams | None = None) -> str:
        """
        Persist a new State and hand the authorization URL to the url_handler.
        Returns the URL, so web apps can answer the current request with a redirect to it.
        """
        await self.wait_to_initialize()
        _, url = await self.create_state_url(params or RedirectParams())
        self.dispatch_event(Event.LOGIN_INITIATED)
        await self.url_handler(url, params)
        return url

    async def register(self, params: RedirectParams | None = None) -> str:
        return await self.login(replace(params or RedirectParams(), prompt="create"))

    async def url_handler(self, url: str, params: RedirectParams | None = None) -> None:
        self.logger.info("Redirecting to the authorization endpoint")
        await self.navigate(url, params)
