"""
Payloads of the native/embedded login flow API (/flow/api/v1/...) and helpers for walking them.

A state describes the screen to render next: forms (each a list of widgets), a layout tree whose
`widget` leaves point at (formId, widgetId) pairs, and per-form messages. Layout leaves that don't
resolve mean the client can't render the screen and must fall back to the hosted UI.
"""
from dataclasses import dataclass, field
from typing import Any, Iterator

from oidc_flows.errors import FallbackError, FlowProtocolError

LAYOUT_CONTAINERS = ("vertical", "horizontal")


@dataclass
class LoginFlowState:
    screen: str | None = None
    hosted_url: str | None = None
    finalize_url: str | None = None
    forms: list[dict[str, Any]] | None = None
    layout: dict[str, Any] | None = None
    messages: dict[str, Any] | None = None
    branding: dict[str, Any] | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "LoginFlowState":
        data = data or {}
        return cls(
            screen=data.get("screen"),
            hosted_url=data.get("hostedUrl"),
            finalize_url=data.get("finalizeUrl"),
            forms=data.get("forms"),
            layout=data.get("layout"),
            messages=data.get("messages"),
            branding=data.get("branding"),
            raw=data,
        )

    def merged_with(self, newer: "LoginFlowState") -> "LoginFlowState":
        """Next state to render: fields present in `newer` win, absent ones carry over."""
        return LoginFlowState(
            screen=newer.screen if newer.screen is not None else self.screen,
            hosted_url=newer.hosted_url if newer.hosted_url is not None else self.hosted_url,
            finalize_url=newer.finalize_url if newer.finalize_url is not None else self.finalize_url,
            forms=newer.forms if newer.forms is not None else self.forms,
            layout=newer.layout if newer.layout is not None else self.layout,
            messages=newer.messages if newer.messages is not None else self.messages,
            branding=newer.branding if newer.branding is not None else self.branding,
            raw=newer.raw,
        )

    @property
    def global_message(self) -> str | None:
        message = (self.messages or {}).get("global")
        return message.get("text") if isinstance(message, dict) else None

    def find_widget(self, form_id: str, widget_id: str) -> tuple[dict, dict] | None:
        for form in self.forms or []:
            if form.get("id") != form_id:
                continue
            for widget in form.get("widgets") or []:
                if widget.get("id") == widget_id:
                    return form, widget
            return None
        return None


def iter_layout(state: LoginFlowState) -> Iterator[tuple[dict, dict]]:
    """
    Depth-first (form, widget) pairs referenced by the layout tree.
    Raises FallbackError at the first leaf that doesn't resolve or node of unknown type
    (FlowProtocolError when the state carries no hosted URL to fall back to).
    """

    def fallback() -> Exception:
        if not state.hosted_url:
            return FlowProtocolError("No hosted URL provided")
        return FallbackError(state.hosted_url)

    def walk(node: dict) -> Iterator[tuple[dict, dict]]:
        node_type = node.get("type")
        if node_type == "widget":
            pair = state.find_widget(node.get("formId"), node.get("widgetId"))
            if pair is None:
                raise fallback()
            yield pair
        elif node_type in LAYOUT_CONTAINERS:
            for item in node.get("items") or []:
                yield from walk(item)
        else:
            raise fallback()

    if state.layout:
        yield from walk(state.layout)


def resolve_layout(state: LoginFlowState) -> list[tuple[dict, dict]]:
    return list(iter_layout(state))


def unflatten_object(flat: dict[str, Any]) -> dict[str, Any]:
    """{"a.b": 1, "a.c": 2} -> {"a": {"b": 1, "c": 2}}; used to build form submission bodies."""
    nested: dict[str, Any] = {}
    for key, value in flat.items():
        parts = key.split(".")
        node = nested
        for part in parts[:-1]:
            if not isinstance(node.get(part), dict):
                node[part] = {}
            node = node[part]
        node[parts[-1]] = value
    return nested


# Tagged results for callers that prefer matching over exception types


@dataclass
class Continue:
    """Render this state next."""

    state: LoginFlowState


@dataclass
class Completed:
    """Tokens were obtained; the flow's session is populated."""


@dataclass
class Fallback:
    """Leave the in-app flow and open the hosted UI at `url`."""

    url: str


@dataclass
class Failed:
    error: Exception


FlowStep = Continue | Completed | Fallback | Failed
