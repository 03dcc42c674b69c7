"""
Error kinds raised by the flows. Callers discriminate on type, and on message for validation errors.
"""


class OIDCError(Exception):
    """Base class for every error raised by oidc_flows."""


class ConfigurationError(OIDCError):
    """Missing or invalid required option; raised from flow constructors."""


class ProtocolValidationError(OIDCError):
    """Authorization response or token response failed a protocol check (code, state, scope, nonce, iss, aud)."""


class AuthorizationError(OIDCError):
    """OAuth error returned by the authorization server (callback, redirect or token endpoint)."""

    def __init__(self, error: str | None, error_description: str | None = None):
        self.error = error
        self.error_description = error_description
        super().__init__(f"{error}: {error_description}")


class TokenDecodeError(OIDCError):
    """ID token is not a decodable JWT."""


class StateDeserializationError(OIDCError):
    """Serialized State could not be parsed."""


class PopupBlockedError(OIDCError):
    def __init__(self, message: str = "Popup window blocked"):
        super().__init__(message)


class PopupClosedError(OIDCError):
    def __init__(self, message: str = "Popup closed by user"):
        super().__init__(message)


class FlowProtocolError(OIDCError):
    """Native/embedded session protocol failure that is not a fallback (e.g. HTTP 403, missing session_id)."""


class FallbackError(OIDCError):
    """
    Stop the in-app protocol and send the user to the hosted login page at `url`.
    A control-flow signal, not a failure.
    """

    def __init__(self, url: str):
        self.url = url
        super().__init__("Fallback occurred")
