"""COSE codec: Encrypt0 and Sign1 envelopes, COSE keys, CWT, X25519."""

from .crypto import (
    sha256,
    sha3_256,
    mac3_256,
    hkdf256,
    aes256_gcm_encrypt,
    aes256_gcm_decrypt,
)
from .encrypt0 import (
    ENCRYPT0_TAG,
    Encrypt0,
    encode_encrypt0,
    decode_encrypt0,
    try_decode_encrypt0,
)
from .key import wrap_symmetric_key, unwrap_symmetric_key
from .payload import try_decode_payload
from .ecdh import ECDHExchange, ecdh_x25519, generate_client_keypair, client_shared_secret

__all__ = [
    "sha256",
    "sha3_256",
    "mac3_256",
    "hkdf256",
    "aes256_gcm_encrypt",
    "aes256_gcm_decrypt",
    "ENCRYPT0_TAG",
    "Encrypt0",
    "encode_encrypt0",
    "decode_encrypt0",
    "try_decode_encrypt0",
    "wrap_symmetric_key",
    "unwrap_symmetric_key",
    "try_decode_payload",
    "ECDHExchange",
    "ecdh_x25519",
    "generate_client_keypair",
    "client_shared_secret",
]
