"""
Token session held by a flow: the authorization response, the token endpoint response and decoded claims.
Persisted as JSON under FlowOptions.storage_token_name. Only the owning flow mutates it.
"""
import json
import logging
import math
import time
from dataclasses import dataclass, field, fields
from typing import Any, Mapping

logger = logging.getLogger(__name__)


def timestamp() -> int:
    """Current Unix time in whole seconds."""
    return int(time.time())


def _as_seconds(value: Any) -> int | None:
    """Numeric seconds from int/float/numeric string; None for anything else (bools, NaN, junk)."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return math.floor(number)


@dataclass
class Session:
    state: str | None = None
    code: str | None = None
    error: str | None = None
    error_description: str | None = None
    id_token: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    token_type: str = "bearer"
    scope: str | None = None
    expires_at: int | None = None
    claims: dict[str, Any] | None = None
    # Token response members we don't model (e.g. refresh_expires_in); kept so they round-trip
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def expires_in(self) -> int:
        """Seconds until the access token expires; 0 when no expiry is known."""
        if not self.expires_at:
            return 0
        return self.expires_at - timestamp()

    @expires_in.setter
    def expires_in(self, value: Any) -> None:
        seconds = _as_seconds(value)
        if seconds is not None:
            self.expires_at = seconds + timestamp()

    def update(self, data: Mapping[str, Any]) -> "Session":
        """Shallow merge of an authorization/token response into this session."""
        known = {f.name for f in fields(self)} - {"extra"}
        for key, value in data.items():
            if key == "expires_in":
                self.expires_in = value
            elif key in known:
                setattr(self, key, value)
            else:
                self.extra[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "extra"}
        data.update(self.extra)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def load(cls, serialized: str | None) -> "Session | None":
        """Session from stored JSON, or None when nothing is stored or the payload is unreadable."""
        if not serialized:
            return None
        try:
            data = json.loads(serialized)
        except (TypeError, ValueError):
            logger.warning("Stored session is not valid JSON; ignoring it")
            return None
        if not isinstance(data, dict):
            logger.warning("Stored session is not a JSON object; ignoring it")
            return None
        return cls().update(data)
