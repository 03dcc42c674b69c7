"""
ID token claim decoding. Signatures are NOT verified here: the token comes straight from the
token endpoint over TLS, and the claims we rely on (nonce, iss, aud) are checked by BaseFlow.
"""
import jwt

from oidc_flows.errors import TokenDecodeError


def decode_claims(token: str) -> dict:
    """Return the JWT payload as a dict. Raises TokenDecodeError for anything that isn't a JWS compact token."""
    if not isinstance(token, str) or token.count(".") != 2:
        raise TokenDecodeError("Invalid JWT")
    try:
        claims = jwt.decode(
            token,
            options={
                "verify_signature": False,
                "verify_exp": False,
                "verify_aud": False,
                "verify_iss": False,
            },
        )
    except jwt.InvalidTokenError as e:
        raise TokenDecodeError(f"Invalid JWT: {e}") from e
    return claims


def first_audience(claims: dict) -> str | None:
    """`aud` may be a string or a list; the first entry is the intended client."""
    aud = claims.get("aud")
    if isinstance(aud, list):
        return aud[0] if aud else None
    return aud
