"""
init_flow: build the flow strategy for a delivery mode with injected collaborators.
"""
from typing import Any

from oidc_flows.config import FlowOptions
from oidc_flows.errors import ConfigurationError
from oidc_flows.flows.base import BaseFlow
from oidc_flows.flows.embedded import EmbeddedFlow
from oidc_flows.flows.native import NativeFlow
from oidc_flows.flows.popup import PopupFlow
from oidc_flows.flows.redirect import RedirectFlow
from oidc_flows.http_client import HttpClient
from oidc_flows.log import FlowLogger
from oidc_flows.storage import Storage

FLOWS: dict[str, type[BaseFlow]] = {
    "redirect": RedirectFlow,
    "popup": PopupFlow,
    "native": NativeFlow,
    "embedded": EmbeddedFlow,
}


def init_flow(
    mode: str,
    options: FlowOptions,
    storage: Storage | None = None,
    http_client: HttpClient | None = None,
    logger: FlowLogger | None = None,
    **kwargs: Any,
) -> BaseFlow:
    """Extra keyword arguments go to the strategy (e.g. popup=PopupHandler(...) for "popup")."""
    try:
        flow_cls = FLOWS[mode]
    except KeyError:
        raise ConfigurationError(f"Invalid option: mode ({mode})") from None
    return flow_cls(options, storage=storage, http_client=http_client, logger=logger, **kwargs)
