"""
Embedded strategy: the authorization server's own login widget is embedded in the app. The client
only bootstraps the widget session (short_app_id, session_id) and redeems the code at the end.
"""
from dataclasses import replace

from oidc_flows.embedded_handler import EmbeddedFlowHandler
from oidc_flows.events import Event
from oidc_flows.flows.base import BaseFlow
from oidc_flows.params import RedirectParams


class EmbeddedFlow(BaseFlow):
    entry_sdk = "web-embedded"
    entry_requires_app_id = True

    def login(self, params: RedirectParams | None = None) -> EmbeddedFlowHandler:
        self.dispatch_event(Event.LOGIN_INITIATED)
        return EmbeddedFlowHandler(self, params)

    def register(self, params: RedirectParams | None = None) -> EmbeddedFlowHandler:
        return self.login(replace(params or RedirectParams(), prompt="create"))
