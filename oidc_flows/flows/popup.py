"""
Popup strategy: open the authorization URL in a popup and wait for the callback page to post the
authorization response back. The opener then redeems the code itself.
"""
from dataclasses import replace

from oidc_flows.config import FlowOptions
from oidc_flows.events import Event
from oidc_flows.flows.base import BaseFlow
from oidc_flows.handlers import origin_of
from oidc_flows.http_client import HttpClient
from oidc_flows.log import FlowLogger
from oidc_flows.params import PopupParams
from oidc_flows.popup import BrowserPopupOpener, PopupHandler
from oidc_flows.session import Session
from oidc_flows.storage import Storage


class PopupFlow(BaseFlow):
    def __init__(
        self,
        options: FlowOptions,
        storage: Storage | None = None,
        http_client: HttpClient | None = None,
        logger: FlowLogger | None = None,
        popup: PopupHandler | None = None,
    ):
        super().__init__(options, storage, http_client, logger)
        self.popup = popup or PopupHandler(BrowserPopupOpener())

    async def login(self, params: PopupParams | None = None) -> Session:
        await self.wait_to_initialize()
        params = params or PopupParams()
        state, url = await self.create_state_url(params, [("display", "popup")])
        self.dispatch_event(Event.LOGIN_INITIATED)
        try:
            response = await self.url_handler(url, params)
        except BaseException:
            # Blocked, closed or cancelled: the State will never be redeemed
            await self._delete(state.storage_key)
            raise
        return await self.exchange_code_for_tokens(response)

    async def register(self, params: PopupParams | None = None) -> Session:
        return await self.login(replace(params or PopupParams(), prompt="create"))

    async def url_handler(self, url: str, params: PopupParams | None = None) -> dict[str, str]:
        """Open the popup on `url` and return the authorization response it posts back."""
        self.logger.info("Opening authorization popup")
        return await self.popup.wait_for_response(url, origin_of(self.options.redirect_uri), params)

    async def handle_callback(self, url: str) -> None:
        """
        Runs on the callback page inside the popup: post the authorization response to the opener.
        The opener validates and redeems it.
        """
        params = await self.parse_callback(url)
        self.popup.channel.post_message(params, origin=origin_of(url), source=self.popup.current_window)
