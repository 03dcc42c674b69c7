"""
One-time anti-replay record for a single authorization request (state id, nonce, PKCE pair).
The caller persists it under state_key(id) before navigating away and deletes it on first use.
"""
import json
import time
from dataclasses import asdict, dataclass, fields

from oidc_flows.config import STATE_KEY_PREFIX
from oidc_flows.errors import StateDeserializationError
from oidc_flows.pkce import code_challenge_for, generate_code_verifier, generate_nonce, generate_state


def state_key(state_id: str | None) -> str:
    return f"{STATE_KEY_PREFIX}{state_id}"


@dataclass
class State:
    id: str
    created_at: int
    code_verifier: str
    code_challenge: str
    nonce: str

    @classmethod
    async def create(cls) -> "State":
        """New random state; async so callers can await it like any other suspension point."""
        code_verifier = generate_code_verifier()
        return cls(
            id=generate_state(),
            created_at=int(time.time()),
            code_verifier=code_verifier,
            code_challenge=code_challenge_for(code_verifier),
            nonce=generate_nonce(),
        )

    @property
    def storage_key(self) -> str:
        return state_key(self.id)

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_serialized_data(cls, serialized: str) -> "State":
        """Parse a State written by to_json(). Raises StateDeserializationError on any malformed input."""
        try:
            data = json.loads(serialized)
        except (TypeError, ValueError) as e:
            raise StateDeserializationError(f"State is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise StateDeserializationError("State must be a JSON object")
        missing = [f.name for f in fields(cls) if f.name not in data]
        if missing:
            raise StateDeserializationError(f"State is missing fields: {', '.join(missing)}")
        return cls(**{f.name: data[f.name] for f in fields(cls)})
