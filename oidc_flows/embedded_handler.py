"""
Bootstraps the authorization server's embedded login widget: the widget needs the app's
short_app_id and a login session_id, then drives the forms itself.
"""
from typing import Any

from oidc_flows.native_handler import FlowSessionHandler
from oidc_flows.params import RedirectParams


class EmbeddedFlowHandler(FlowSessionHandler):
    def __init__(self, flow: Any, params: RedirectParams | None = None):
        super().__init__(flow, params or RedirectParams())
        self.short_app_id: str | None = None

    def sdk_name(self) -> str:
        return "web-embedded"

    async def start_session(self) -> None:
        """
        Open the login session for the widget. If the issuer session was already authenticated the
        code is exchanged right away and is_authenticated_sync on the flow becomes true.
        """
        await self.flow.wait_to_initialize()
        self.logger.info("Starting embedded login session")
        params = await self.authorize("short_app_id", "session_id")
        if params is None:
            return
        self.short_app_id = params["short_app_id"]
        self.session_id = params["session_id"]
