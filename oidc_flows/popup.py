"""
Popup delivery: open a centered window on the authorization URL and wait for the callback page
to post the authorization response back through a MessageChannel.

Only one popup is live per PopupHandler. Everything acquired for a popup (the window, the message
listener, the close-poll task) is released when PopupHandler.open() exits, on every path.
"""
import asyncio
import logging
import webbrowser
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Protocol

from oidc_flows.config import GOLDEN_RATIO, POPUP_DEFAULT_HEIGHT, POPUP_MIN_WIDTH, POPUP_POLL_INTERVAL, POPUP_WIDTHS
from oidc_flows.errors import PopupBlockedError, PopupClosedError

logger = logging.getLogger(__name__)


class PopupWindow(Protocol):
    @property
    def closed(self) -> bool: ...

    def close(self) -> None: ...

    def focus(self) -> None: ...

    def navigate(self, url: str) -> None: ...


@dataclass
class Viewport:
    """Opener window geometry used to center the popup."""

    screen_x: int = 0
    screen_y: int = 0
    outer_width: int = 1280
    outer_height: int = 800


class WindowOpener(Protocol):
    viewport: Viewport

    def open(self, target: str, features: str) -> PopupWindow | None: ...


@dataclass
class Message:
    data: dict[str, str]
    origin: str
    source: Any = None


class MessageChannel:
    """In-process stand-in for window.postMessage between the callback page and the opener."""

    def __init__(self):
        self._listeners: set[Callable[[Message], None]] = set()

    def add_listener(self, listener: Callable[[Message], None]) -> Callable[[], None]:
        self._listeners.add(listener)
        return lambda: self._listeners.discard(listener)

    def post_message(self, data: dict[str, str], origin: str, source: Any = None) -> None:
        message = Message(data=data, origin=origin, source=source)
        for listener in list(self._listeners):
            listener(message)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


def popup_window_features(features: dict[str, Any] | None, viewport: Viewport) -> dict[str, Any]:
    """Default and center the popup: height 640, width from the opener width, clamped to the screen."""
    result: dict[str, Any] = {"location": False, "toolbar": False, "height": POPUP_DEFAULT_HEIGHT}
    result.update(features or {})

    if result.get("width") is None:
        result["width"] = next(
            (w for w in POPUP_WIDTHS if w <= viewport.outer_width / GOLDEN_RATIO),
            POPUP_MIN_WIDTH,
        )
    result["left"] = max(0, round(viewport.screen_x + (viewport.outer_width - result["width"]) / 2))
    if result.get("height") is not None:
        result["top"] = max(0, round(viewport.screen_y + (viewport.outer_height - result["height"]) / 2))
    return result


def format_window_features(features: dict[str, Any]) -> str:
    """window.open() feature string: booleans become yes/no, None entries are dropped."""
    parts = []
    for key, value in features.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "yes" if value else "no"
        parts.append(f"{key}={value}")
    return ",".join(parts)


@dataclass
class _LivePopup:
    window: PopupWindow
    result: asyncio.Future
    releases: list[Callable[[], None]] = field(default_factory=list)

    def release(self) -> None:
        for release in self.releases:
            release()
        self.releases.clear()
        if not self.window.closed:
            self.window.close()


class PopupHandler:
    def __init__(
        self,
        opener: WindowOpener,
        channel: MessageChannel | None = None,
        *,
        poll_interval: float = POPUP_POLL_INTERVAL,
    ):
        self.opener = opener
        self.channel = channel or MessageChannel()
        self.poll_interval = poll_interval
        self._live: _LivePopup | None = None

    @property
    def current_window(self) -> PopupWindow | None:
        return self._live.window if self._live else None

    @asynccontextmanager
    async def open(self, url: str, expected_origin: str, params: Any = None) -> AsyncIterator[asyncio.Future]:
        """
        Open the popup and yield a future resolved with the posted authorization response
        (or failed with PopupClosedError). Leaving the block tears the popup down.
        """
        if self._live is not None:
            logger.debug("Closing previous popup before opening a new one")
            previous = self._live
            self._live = None
            if not previous.result.done():
                previous.result.set_exception(PopupClosedError("Popup replaced by a new popup"))
            previous.release()

        features = popup_window_features(getattr(params, "popup_window_features", None), self.opener.viewport)
        target = getattr(params, "popup_window_target", None) or "_blank"
        window = self.opener.open(target, format_window_features(features))
        if not window:
            raise PopupBlockedError()

        live = _LivePopup(window=window, result=asyncio.get_running_loop().create_future())
        self._live = live
        try:
            window.focus()
            window.navigate(url)

            def on_message(message: Message) -> None:
                if message.origin == expected_origin and message.source is window and message.data:
                    if not live.result.done():
                        live.result.set_result(message.data)

            live.releases.append(self.channel.add_listener(on_message))
            poll_task = asyncio.create_task(self._poll_closed(live))
            live.releases.append(poll_task.cancel)

            yield live.result
        finally:
            live.release()
            if self._live is live:
                self._live = None
            if not live.result.done():
                live.result.cancel()

    async def wait_for_response(self, url: str, expected_origin: str, params: Any = None) -> dict[str, str]:
        async with self.open(url, expected_origin, params) as result:
            return await result

    async def _poll_closed(self, live: _LivePopup) -> None:
        while not live.result.done():
            await asyncio.sleep(self.poll_interval)
            if live.window.closed and not live.result.done():
                live.result.set_exception(PopupClosedError())


class BrowserPopupWindow:
    """A system-browser window. We can't observe the user closing it; close() only marks it."""

    def __init__(self):
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def focus(self) -> None:
        pass

    def navigate(self, url: str) -> None:
        if not webbrowser.open(url, new=1):
            self._closed = True
            raise PopupBlockedError("No browser available to open the popup")


class BrowserPopupOpener:
    """Opens popups in the system browser; pair it with the loopback callback app."""

    def __init__(self, viewport: Viewport | None = None):
        self.viewport = viewport or Viewport()

    def open(self, target: str, features: str) -> BrowserPopupWindow:
        return BrowserPopupWindow()
