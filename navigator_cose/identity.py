"""
Canister-signature identities and delegation messages.

A fixed identity is the self-authenticating principal of a canister
signature public key whose seed is ``cbor([namespace, name])``. The DER form
is::

    SEQUENCE {
        SEQUENCE { OID 1.3.6.1.4.1.56387.1.2 }
        BIT STRING { len(service_id) || service_id || seed }
    }

Delegations are signed over a representation independent hash of
``{pubkey, expiration}`` prefixed with the ``ic-request-auth-delegation``
domain separator.
"""
from typing import Optional

import cbor2

from .cose.crypto import sha256
from .principal import Principal

CANISTER_SIG_OID = bytes.fromhex("2b0601040183b8430102")
DELEGATION_SIG_DOMAIN = b"ic-request-auth-delegation"


def _der_length(size: int) -> bytes:
    if size < 0x80:
        return bytes([size])
    encoded = size.to_bytes((size.bit_length() + 7) // 8, "big")
    return bytes([0x80 | len(encoded)]) + encoded


def _der(tag: int, content: bytes) -> bytes:
    return bytes([tag]) + _der_length(len(content)) + content


def fixed_identity_seed(ns: str, name: str) -> bytes:
    return cbor2.dumps([ns, name.lower()])


def canister_sig_public_key(service_id: Principal, seed: bytes) -> bytes:
    """DER encoded canister signature public key for ``seed``."""
    algorithm = _der(0x30, _der(0x06, CANISTER_SIG_OID))
    raw = bytes([len(service_id.raw)]) + service_id.raw + seed
    bit_string = _der(0x03, b"\x00" + raw)
    return _der(0x30, algorithm + bit_string)


def fixed_identity(service_id: Principal, ns: str, name: str) -> Principal:
    der = canister_sig_public_key(service_id, fixed_identity_seed(ns, name))
    return Principal.self_authenticating(der)


# ---------------------------------------------------------------------------
# Representation independent hashing
# ---------------------------------------------------------------------------

def _leb128(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _hash_value(value) -> bytes:
    if isinstance(value, bytes):
        return sha256(value)
    if isinstance(value, str):
        return sha256(value.encode("utf-8"))
    if isinstance(value, int):
        return sha256(_leb128(value))
    if isinstance(value, list):
        return sha256(b"".join(_hash_value(v) for v in value))
    raise TypeError(f"unsupported value type: {type(value).__name__}")


def representation_independent_hash(fields: dict) -> bytes:
    pairs = sorted(
        sha256(k.encode("utf-8")) + _hash_value(v)
        for k, v in fields.items()
    )
    return sha256(b"".join(pairs))


def delegation_signature_msg(
    pubkey: bytes,
    expiration: int,
    targets: Optional[list[bytes]] = None,
) -> bytes:
    """Domain separated hash a delegation signature is computed over."""
    fields = {"pubkey": bytes(pubkey), "expiration": expiration}
    if targets is not None:
        fields["targets"] = list(targets)
    digest = representation_independent_hash(fields)
    return sha256(bytes([len(DELEGATION_SIG_DOMAIN)]), DELEGATION_SIG_DOMAIN, digest)
