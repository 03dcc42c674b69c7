"""
Native strategy: the app renders the login screens itself and drives the authorization server's
flow API through a NativeFlowHandler.
"""
from dataclasses import replace

from oidc_flows.events import Event
from oidc_flows.flows.base import BaseFlow
from oidc_flows.native_handler import NativeFlowHandler
from oidc_flows.params import NativeParams


class NativeFlow(BaseFlow):
    def login(self, params: NativeParams | None = None) -> NativeFlowHandler:
        """A handler for one login; call start_session() (or begin()) on it to contact the server."""
        self.dispatch_event(Event.LOGIN_INITIATED)
        return NativeFlowHandler(self, params)

    def register(self, params: NativeParams | None = None) -> NativeFlowHandler:
        return self.login(replace(params or NativeParams(), prompt="create"))
