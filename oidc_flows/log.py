"""
Logging adapter handed to flows and the HTTP client. Messages are prefixed with the
authorization server's X-Event-ID once one has been seen, so client and server logs correlate.
"""
import logging


class FlowLogger(logging.LoggerAdapter):
    def __init__(self, logger: logging.Logger | None = None, x_event_id: str | None = None):
        super().__init__(logger or logging.getLogger("oidc_flows"), {})
        self.x_event_id = x_event_id

    def process(self, msg, kwargs):
        if self.x_event_id:
            msg = f"({self.x_event_id}) {msg}"
        return msg, kwargs

    def update_event_id(self, x_event_id: str | None) -> None:
        if x_event_id and x_event_id != self.x_event_id:
            self.x_event_id = x_event_id
            self.debug("X-Event-ID updated: %s", x_event_id)
