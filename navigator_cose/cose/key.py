"""COSE_Key encoding for symmetric keys (RFC 9052 §7)."""
from typing import Optional

import cbor2

from ..exceptions import InvalidEncoding
from .crypto import KEY_LENGTH

KEY_KTY = 1
KEY_KID = 2
KEY_ALG = 3

KTY_OKP = 1
KTY_EC2 = 2
KTY_SYMMETRIC = 4

SYMMETRIC_K = -1
PRIVATE_D = -4  # OKP and EC2 private key parameter

ALG_A256GCM = 3


def wrap_symmetric_key(secret: bytes, key_id: Optional[bytes] = None) -> bytes:
    """Encode a 32-byte secret as an A256GCM symmetric COSE_Key."""
    if len(secret) != KEY_LENGTH:
        raise InvalidEncoding(
            f"invalid secret length, expected {KEY_LENGTH}, got {len(secret)}"
        )
    key = {KEY_KTY: KTY_SYMMETRIC, KEY_ALG: ALG_A256GCM, SYMMETRIC_K: bytes(secret)}
    if key_id is not None:
        key[KEY_KID] = bytes(key_id)
    return cbor2.dumps(key)


def unwrap_symmetric_key(data: bytes) -> bytes:
    """Extract the 32-byte secret from a COSE_Key.

    Symmetric keys carry it under ``k`` (-1); OKP and EC2 private keys under
    ``d`` (-4).

    Raises:
        InvalidEncoding: Unsupported key type or a missing/short secret.
    """
    try:
        key = cbor2.loads(data)
    except (cbor2.CBORDecodeError, ValueError, EOFError) as err:
        raise InvalidEncoding(f"invalid COSE key: {err}") from err
    if not isinstance(key, dict):
        raise InvalidEncoding("invalid COSE key: expected a map")

    kty = key.get(KEY_KTY)
    if kty == KTY_SYMMETRIC:
        label = SYMMETRIC_K
    elif kty in (KTY_OKP, KTY_EC2):
        label = PRIVATE_D
    else:
        raise InvalidEncoding(f"unsupported key type: {kty!r}")

    secret = key.get(label)
    if secret is None:
        raise InvalidEncoding("missing secret key")
    if not isinstance(secret, bytes) or len(secret) != KEY_LENGTH:
        raise InvalidEncoding("invalid secret key")
    return secret
