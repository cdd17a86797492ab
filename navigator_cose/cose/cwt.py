"""CBOR Web Token claims (RFC 8392) carrying a namespace scope."""
from typing import Any, Optional

import cbor2

from ..exceptions import InvalidEncoding, PermissionDenied

CLOCK_SKEW = 5 * 60  # 5 minutes

CLAIM_ISS = 1
CLAIM_SUB = 2
CLAIM_AUD = 3
CLAIM_EXP = 4
CLAIM_NBF = 5
CLAIM_IAT = 6
CLAIM_CTI = 7
CLAIM_SCOPE = 9


def encode_claims(
    issuer: str,
    subject: str,
    audience: str,
    issued_at: int,
    expires_in: int,
    cwt_id: bytes,
    scope: str,
) -> bytes:
    claims = {
        CLAIM_ISS: issuer,
        CLAIM_SUB: subject,
        CLAIM_AUD: audience,
        CLAIM_EXP: issued_at + expires_in,
        CLAIM_NBF: issued_at,
        CLAIM_IAT: issued_at,
        CLAIM_CTI: cwt_id,
        CLAIM_SCOPE: scope,
    }
    return cbor2.dumps(claims)


def _seconds(value: Any) -> int:
    if isinstance(value, (int, float)):
        return int(value)
    raise InvalidEncoding(f"invalid timestamp claim: {value!r}")


def decode_cwt(data: bytes, now_sec: int) -> dict:
    """Decode a claims set and check its validity window.

    Raises:
        InvalidEncoding: The claims are not a CBOR map.
        PermissionDenied: The token is expired or not yet valid.
    """
    try:
        claims = cbor2.loads(data)
    except (cbor2.CBORDecodeError, ValueError, EOFError) as err:
        raise InvalidEncoding(f"invalid claims: {err}") from err
    if not isinstance(claims, dict):
        raise InvalidEncoding("invalid claims: expected a map")

    exp: Optional[Any] = claims.get(CLAIM_EXP)
    if exp is not None and _seconds(exp) < now_sec - CLOCK_SKEW:
        raise PermissionDenied("token expired")
    nbf: Optional[Any] = claims.get(CLAIM_NBF)
    if nbf is not None and _seconds(nbf) > now_sec + CLOCK_SKEW:
        raise PermissionDenied("token not yet valid")
    return claims


def get_scope(claims: dict) -> str:
    scope = claims.get(CLAIM_SCOPE)
    if scope is None:
        raise InvalidEncoding("missing scope")
    if not isinstance(scope, str):
        raise InvalidEncoding("invalid scope text")
    return scope
