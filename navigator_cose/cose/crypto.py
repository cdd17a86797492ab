"""
COSE Crypto Core: hashing, MAC, key derivation and AES-256-GCM.

Primitives shared by the codec, the key derivation oracle and the ECDH
exchange:
- ``mac3_256``: HMAC-SHA3-256, used to bind derived keys to a namespace
- ``hkdf256``: HKDF-SHA256 expansion
- ``aes256_gcm_encrypt`` / ``aes256_gcm_decrypt``: AEAD with the 16-byte tag
  appended to the ciphertext

Security Note:
    Never log plaintext, ciphertext or key material.
"""
import logging
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import CryptoFailure, InvalidArgument

logger = logging.getLogger("navigator.cose")

NONCE_SIZE = 12  # 96-bit nonce
KEY_LENGTH = 32  # AES-256
TAG_SIZE = 16


def _digest(algorithm: hashes.HashAlgorithm, *chunks: bytes) -> bytes:
    h = hashes.Hash(algorithm)
    for chunk in chunks:
        h.update(chunk)
    return h.finalize()


def sha256(*chunks: bytes) -> bytes:
    return _digest(hashes.SHA256(), *chunks)


def sha3_256(*chunks: bytes) -> bytes:
    return _digest(hashes.SHA3_256(), *chunks)


def mac3_256(key: bytes, data: bytes) -> bytes:
    """HMAC-SHA3-256 of ``data`` keyed with ``key``."""
    mac = hmac.HMAC(key, hashes.SHA3_256())
    mac.update(data)
    return mac.finalize()


def hkdf256(secret: bytes, info: bytes, salt: Optional[bytes] = None,
            length: int = KEY_LENGTH) -> bytes:
    """Derive ``length`` bytes with HKDF-SHA256.

    Args:
        secret: Input key material.
        info: Context string for domain separation.
        salt: Optional salt; ``None`` keeps the derivation deterministic.
        length: Output length in bytes.

    Returns:
        Derived key bytes.
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=length,
        salt=salt,
        info=info,
    )
    return hkdf.derive(secret)


def _check_key(key: bytes, nonce: bytes) -> None:
    if len(key) != KEY_LENGTH:
        raise InvalidArgument(
            f"invalid key length, expected {KEY_LENGTH}, got {len(key)}"
        )
    if len(nonce) != NONCE_SIZE:
        raise InvalidArgument(
            f"invalid nonce length, expected {NONCE_SIZE}, got {len(nonce)}"
        )


def aes256_gcm_encrypt(key: bytes, nonce: bytes, aad: bytes, plaintext: bytes) -> bytes:
    """Encrypt with AES-256-GCM.

    Returns:
        Ciphertext with the 16-byte authentication tag appended.
    """
    _check_key(key, nonce)
    return AESGCM(key).encrypt(nonce, plaintext, aad)


def aes256_gcm_decrypt(key: bytes, nonce: bytes, aad: bytes, ciphertext: bytes) -> bytes:
    """Decrypt AES-256-GCM ciphertext (payload || tag).

    Raises:
        CryptoFailure: If the tag does not verify for this key, nonce and aad.
    """
    _check_key(key, nonce)
    if len(ciphertext) < TAG_SIZE:
        raise CryptoFailure(
            f"ciphertext too short: {len(ciphertext)} bytes (minimum {TAG_SIZE})"
        )
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, aad)
    except InvalidTag as err:
        logger.debug("AES-256-GCM tag verification failed")
        raise CryptoFailure("AES-256-GCM authentication failed") from err
