"""
Loopback callback page for desktop apps: the authorization server redirects the browser here.
Popup flows post the response to the waiting opener; redirect flows redeem the code directly.
"""
import asyncio
import html
import logging
from urllib.parse import urlsplit, urlunsplit

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse

from oidc_flows.errors import OIDCError

logger = logging.getLogger(__name__)

# Fragment responses never reach the server; this page resends the fragment as the query string
FRAGMENT_RELAY_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Completing login</title></head>
<body>
  <script>
    if (window.location.hash.length > 1) {
      window.location.replace(window.location.pathname + "?" + window.location.hash.substring(1));
    }
  </script>
  <p>Completing login...</p>
</body>
</html>"""


def _page(title: str, message: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{html.escape(title)}</title></head>
<body>
  <h1>{html.escape(title)}</h1>
  <p>{html.escape(message)}</p>
</body>
</html>"""


def create_callback_app(flow) -> FastAPI:
    """FastAPI app serving GET <redirect_uri path> for `flow`."""
    app = FastAPI(title="oidc_flows callback")
    path = urlsplit(flow.options.redirect_uri).path or "/"
    fragment_mode = flow.options.response_mode == "fragment"

    @app.get(path, response_class=HTMLResponse)
    async def callback(request: Request):
        query = request.url.query
        if fragment_mode and not query:
            return HTMLResponse(FRAGMENT_RELAY_PAGE)
        if not query:
            return HTMLResponse(_page("Error", "Missing authorization response."), status_code=400)

        url = str(request.url)
        if fragment_mode:
            # Relayed: put the parameters back where the callback handler looks for them
            parts = urlsplit(url)
            url = urlunsplit((parts.scheme, parts.netloc, parts.path, "", query))
        try:
            await flow.handle_callback(url)
        except OIDCError as e:
            logger.warning("Callback failed: %s", e)
            return HTMLResponse(_page("Login error", str(e)), status_code=400)
        return HTMLResponse(_page("Login complete", "You can close this window."))

    return app


class LoopbackCallbackServer:
    """Runs the callback app with uvicorn inside the current event loop."""

    def __init__(self, app: FastAPI, host: str = "127.0.0.1", port: int = 8000):
        self.config = uvicorn.Config(app, host=host, port=port, log_level="warning", access_log=False)
        self.server = uvicorn.Server(self.config)
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        self._task = asyncio.create_task(self.server.serve())
        while not self.server.started:
            if self._task.done():
                # serve() exited early, e.g. the port is taken
                self._task.result()
                raise OIDCError("Callback server stopped during startup")
            await asyncio.sleep(0.05)
        logger.info("Callback server listening on http://%s:%s", self.config.host, self.config.port)

    async def stop(self) -> None:
        self.server.should_exit = True
        if self._task is not None:
            await self._task
            self._task = None
