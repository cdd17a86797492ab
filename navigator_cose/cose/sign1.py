"""COSE_Sign1 envelopes (RFC 9052 §4.2) signed with EdDSA."""
from dataclasses import dataclass
from typing import Optional

import cbor2
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric import ed25519

from ..exceptions import CryptoFailure, InvalidEncoding
from .encrypt0 import HEADER_ALG, HEADER_KID, skip_prefix

SIGN1_TAG = b"\xd2"
ALG_EDDSA = -8


@dataclass
class Sign1:
    protected: bytes
    unprotected: dict
    payload: bytes
    signature: bytes = b""

    def tbs_data(self, aad: bytes = b"") -> bytes:
        """The ``Sig_structure`` covered by the signature."""
        return cbor2.dumps(["Signature1", self.protected, aad, self.payload])

    @property
    def alg(self):
        return cbor2.loads(self.protected).get(HEADER_ALG) if self.protected else None

    def to_bytes(self) -> bytes:
        return SIGN1_TAG + cbor2.dumps(
            [self.protected, self.unprotected, self.payload, self.signature]
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "Sign1":
        try:
            item = cbor2.loads(skip_prefix(SIGN1_TAG, bytes(data)))
        except (cbor2.CBORDecodeError, ValueError, EOFError) as err:
            raise InvalidEncoding(f"invalid COSE sign1 token: {err}") from err
        if not isinstance(item, list) or len(item) != 4:
            raise InvalidEncoding("invalid COSE sign1 token: expected a 4 element array")
        protected, unprotected, payload, signature = item
        if not (isinstance(protected, bytes) and isinstance(unprotected, dict)
                and isinstance(payload, bytes) and isinstance(signature, bytes)):
            raise InvalidEncoding("invalid COSE sign1 token")
        return cls(protected, unprotected, payload, signature)


def cose_sign1(payload: bytes, alg: int = ALG_EDDSA, key_id: Optional[bytes] = None) -> Sign1:
    """Build an unsigned COSE_Sign1; fill ``signature`` from ``tbs_data``."""
    protected = {HEADER_ALG: alg}
    if key_id is not None:
        protected[HEADER_KID] = key_id
    return Sign1(protected=cbor2.dumps(protected), unprotected={}, payload=payload)


def verify_sign1(data: bytes, aad: bytes, public_keys: list[bytes]) -> Sign1:
    """Parse a COSE_Sign1 and verify it against any of the Ed25519 keys.

    Raises:
        InvalidEncoding: Malformed token or unsupported algorithm.
        CryptoFailure: No key verifies the signature.
    """
    sign1 = Sign1.from_bytes(data)
    if sign1.alg != ALG_EDDSA:
        raise InvalidEncoding(f"unsupported algorithm: {sign1.alg!r}")
    tbs = sign1.tbs_data(aad)
    for raw in public_keys:
        try:
            ed25519.Ed25519PublicKey.from_public_bytes(raw).verify(sign1.signature, tbs)
            return sign1
        except InvalidSignature:
            continue
    raise CryptoFailure("COSE sign1 signature verification failed")
