"""
Lifecycle events and the per-flow event bus. Each flow owns one EventBus; nothing is shared
between flow instances.
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)


class Event(str, Enum):
    INIT = "init"
    LOGGED_IN = "loggedIn"
    SESSION_LOADED = "sessionLoaded"
    TOKEN_REFRESHED = "tokenRefreshed"
    TOKEN_REFRESH_FAILED = "tokenRefreshFailed"
    LOGOUT_INITIATED = "logoutInitiated"
    TOKEN_REVOKED = "tokenRevoked"
    TOKEN_REVOKE_FAILED = "tokenRevokeFailed"
    LOGIN_INITIATED = "loginInitiated"
    ACCESS_TOKEN_EXPIRED = "accessTokenExpired"


@dataclass
class Subscription:
    bus: "EventBus"
    event: Event
    callback: Callable[..., Any]

    def dispose(self) -> None:
        self.bus.unsubscribe(self.event, self.callback)


class EventBus:
    def __init__(self):
        self._callbacks: dict[Event, set[Callable[..., Any]]] = {event: set() for event in Event}
        # Strong refs to scheduled async callbacks until they finish
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, event: Event | str, callback: Callable[..., Any]) -> Subscription:
        event = Event(event)
        self._callbacks[event].add(callback)
        return Subscription(self, event, callback)

    def unsubscribe(self, event: Event | str, callback: Callable[..., Any]) -> None:
        self._callbacks[Event(event)].discard(callback)

    def subscribers(self, event: Event | str) -> set[Callable[..., Any]]:
        return set(self._callbacks[Event(event)])

    def dispatch(self, event: Event | str, *args: Any) -> None:
        """
        Call every subscriber of `event` with `args`. Async subscribers are scheduled, not awaited.
        A failing subscriber is logged and does not stop the others.
        """
        event = Event(event)
        for callback in list(self._callbacks[event]):
            try:
                result = callback(*args)
            except Exception:
                logger.exception("Subscriber for %s failed", event.value)
                continue
            if inspect.isawaitable(result):
                self._schedule(event, result)

    def _schedule(self, event: Event, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Async subscriber for %s dropped: no running event loop", event.value)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        task = asyncio.ensure_future(awaitable, loop=loop)
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error("Subscriber for %s failed", event.value, exc_info=t.exception())

        task.add_done_callback(_done)
