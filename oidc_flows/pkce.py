"""
PKCE (RFC 7636) material for one authorization request: state id, nonce, S256 verifier/challenge.
"""
import hashlib
import secrets
from base64 import urlsafe_b64encode


def generate_state() -> str:
    """Opaque value for CSRF protection; returned in callback and used as the State storage key."""
    return secrets.token_urlsafe(32)


def generate_nonce() -> str:
    """Random value for ID token binding; echoed back in the id_token `nonce` claim."""
    return secrets.token_urlsafe(32)


def generate_code_verifier() -> str:
    # 64 bytes -> 86 chars base64url, inside RFC 7636's 43..128
    return secrets.token_urlsafe(64)


def code_challenge_for(code_verifier: str) -> str:
    """S256 transform: base64url(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")

