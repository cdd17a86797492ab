"""
COSE_Encrypt0: single recipient AEAD envelope (RFC 9052 §5.2).

Wire layout::

    0xD0 [ bstr(protected {1: 3}), {5: iv[, 4: key_id]}, ciphertext || tag ]

The AEAD additional data is the ``Enc_structure``
``["Encrypt0", protected, external_aad]`` so the protected header and the
caller supplied aad are both bound into the tag.
"""
import io
from dataclasses import dataclass
from typing import Optional

import cbor2

from ..exceptions import InvalidEncoding
from .crypto import NONCE_SIZE, aes256_gcm_decrypt, aes256_gcm_encrypt

ENCRYPT0_TAG = b"\xd0"

# IANA COSE labels
HEADER_ALG = 1
HEADER_KID = 4
HEADER_IV = 5
ALG_A256GCM = 3

_PROTECTED = cbor2.dumps({HEADER_ALG: ALG_A256GCM})


def skip_prefix(tag: bytes, data: bytes) -> bytes:
    if data.startswith(tag):
        return data[len(tag):]
    return data


def loads_exact(data: bytes):
    """Decode exactly one CBOR item, refusing trailing bytes."""
    fp = io.BytesIO(data)
    item = cbor2.CBORDecoder(fp).decode()
    if fp.tell() != len(data):
        raise InvalidEncoding(f"{len(data) - fp.tell()} trailing bytes after CBOR item")
    return item


@dataclass
class Encrypt0:
    """Parsed COSE_Encrypt0 item."""

    protected: bytes
    unprotected: dict
    ciphertext: bytes

    @property
    def iv(self) -> bytes:
        return self.unprotected.get(HEADER_IV, b"")

    @property
    def key_id(self) -> Optional[bytes]:
        return self.unprotected.get(HEADER_KID)

    @property
    def alg(self) -> Optional[int]:
        if not self.protected:
            return None
        return cbor2.loads(self.protected).get(HEADER_ALG)


def _enc_structure(protected: bytes, aad: bytes) -> bytes:
    return cbor2.dumps(["Encrypt0", protected, aad])


def try_decode_encrypt0(data: bytes) -> Encrypt0:
    """Parse a COSE_Encrypt0 structure without decrypting it.

    Raises:
        InvalidEncoding: If ``data`` is not a well formed COSE_Encrypt0 item.
    """
    try:
        item = loads_exact(skip_prefix(ENCRYPT0_TAG, bytes(data)))
    except (cbor2.CBORDecodeError, ValueError, EOFError) as err:
        raise InvalidEncoding(f"invalid COSE_Encrypt0 item: {err}") from err
    if not isinstance(item, list) or len(item) != 3:
        raise InvalidEncoding("invalid COSE_Encrypt0 item: expected a 3 element array")
    protected, unprotected, ciphertext = item
    if not isinstance(protected, bytes):
        raise InvalidEncoding("invalid COSE_Encrypt0 protected header")
    if not isinstance(unprotected, dict):
        raise InvalidEncoding("invalid COSE_Encrypt0 unprotected header")
    if not isinstance(ciphertext, bytes):
        raise InvalidEncoding("invalid COSE_Encrypt0 ciphertext")
    if protected:
        try:
            header = cbor2.loads(protected)
        except (cbor2.CBORDecodeError, ValueError, EOFError) as err:
            raise InvalidEncoding(f"invalid COSE_Encrypt0 protected header: {err}") from err
        if not isinstance(header, dict):
            raise InvalidEncoding("invalid COSE_Encrypt0 protected header")
    return Encrypt0(protected=protected, unprotected=unprotected, ciphertext=ciphertext)


def encode_encrypt0(
    plaintext: bytes,
    key: bytes,
    aad: bytes,
    nonce: bytes,
    key_id: Optional[bytes] = None,
) -> bytes:
    """Encrypt ``plaintext`` into a tagged COSE_Encrypt0 item.

    Args:
        plaintext: Data to encrypt.
        key: 32-byte AES-256-GCM key.
        aad: External additional data (the subject principal bytes).
        nonce: 12-byte IV, carried in the unprotected header.
        key_id: Optional key identifier for the unprotected header.

    Returns:
        ``0xD0`` prefixed CBOR bytes.
    """
    unprotected = {HEADER_IV: bytes(nonce)}
    if key_id is not None:
        unprotected[HEADER_KID] = bytes(key_id)
    ciphertext = aes256_gcm_encrypt(
        key, nonce, _enc_structure(_PROTECTED, aad), plaintext,
    )
    body = cbor2.dumps([_PROTECTED, unprotected, ciphertext])
    return ENCRYPT0_TAG + body


def decrypt(item: Encrypt0, key: bytes, aad: bytes) -> bytes:
    """Decrypt a parsed COSE_Encrypt0 item."""
    iv = item.iv
    if not isinstance(iv, bytes) or len(iv) != NONCE_SIZE:
        size = len(iv) if isinstance(iv, bytes) else 0
        raise InvalidEncoding(
            f"invalid nonce length, expected {NONCE_SIZE}, got {size}"
        )
    alg = item.alg
    if alg is not None and alg != ALG_A256GCM:
        raise InvalidEncoding(f"unsupported COSE algorithm: {alg}")
    return aes256_gcm_decrypt(
        key, iv, _enc_structure(item.protected, aad), item.ciphertext,
    )


def decode_encrypt0(data: bytes, key: bytes, aad: bytes) -> bytes:
    """Parse and decrypt a COSE_Encrypt0 item.

    Raises:
        InvalidEncoding: Malformed structure or IV length other than 12.
        CryptoFailure: Authentication tag mismatch.
    """
    return decrypt(try_decode_encrypt0(data), key, aad)
