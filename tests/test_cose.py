"""
Tests for the COSE codec.

Tests cover:
- HMAC-SHA3-256 / HKDF helpers and AES-256-GCM failures
- COSE_Encrypt0 layout, AAD binding and tamper detection
- COSE_Key wrapping of symmetric secrets
- Plaintext payload CBOR validation
- COSE_Sign1 and CWT claims
"""
import os

import cbor2
import pytest
from cryptography.hazmat.primitives.asymmetric import ed25519
from cryptography.hazmat.primitives import serialization

from navigator_cose.cose.crypto import (
    aes256_gcm_decrypt,
    aes256_gcm_encrypt,
    hkdf256,
    mac3_256,
    sha3_256,
)
from navigator_cose.cose.cwt import CLAIM_SCOPE, decode_cwt, encode_claims, get_scope
from navigator_cose.cose.encrypt0 import (
    ENCRYPT0_TAG,
    HEADER_IV,
    HEADER_KID,
    decode_encrypt0,
    encode_encrypt0,
    try_decode_encrypt0,
)
from navigator_cose.cose.key import unwrap_symmetric_key, wrap_symmetric_key
from navigator_cose.cose.payload import try_decode_payload
from navigator_cose.cose.sign1 import Sign1, cose_sign1, verify_sign1
from navigator_cose.exceptions import (
    CryptoFailure,
    InvalidArgument,
    InvalidEncoding,
    PayloadTooLarge,
    PermissionDenied,
)


# --- Test Fixtures ---

@pytest.fixture
def key():
    return bytes(range(32))


@pytest.fixture
def nonce():
    return bytes(12)


AAD = b"\x04" * 29


# --- Test Primitives ---

class TestPrimitives:
    """Tests for hashing, MAC and AEAD helpers."""

    def test_mac3_256_is_deterministic(self):
        """Test the MAC depends on both key and data."""
        assert mac3_256(b"ns", b"key") == mac3_256(b"ns", b"key")
        assert mac3_256(b"ns", b"key") != mac3_256(b"ns2", b"key")
        assert len(mac3_256(b"ns", b"key")) == 32

    def test_sha3_256_length(self):
        """Test SHA3-256 digests are 32 bytes."""
        assert len(sha3_256(b"hello", b"world")) == 32
        assert sha3_256(b"hello", b"world") == sha3_256(b"helloworld")

    def test_hkdf_context_separation(self):
        """Test distinct info strings yield distinct keys."""
        assert hkdf256(b"secret", b"a") != hkdf256(b"secret", b"b")

    def test_aes_roundtrip(self, key, nonce):
        """Test AES-256-GCM encrypt/decrypt with the tag appended."""
        ct = aes256_gcm_encrypt(key, nonce, b"aad", b"plaintext")
        assert len(ct) == len(b"plaintext") + 16
        assert aes256_gcm_decrypt(key, nonce, b"aad", ct) == b"plaintext"

    def test_aes_wrong_aad_fails(self, key, nonce):
        """Test a different AAD is rejected as CryptoFailure."""
        ct = aes256_gcm_encrypt(key, nonce, b"aad", b"plaintext")
        with pytest.raises(CryptoFailure):
            aes256_gcm_decrypt(key, nonce, b"other", ct)

    def test_aes_bad_key_length(self, nonce):
        """Test short keys are rejected."""
        with pytest.raises(InvalidArgument):
            aes256_gcm_encrypt(b"short", nonce, b"", b"data")


# --- Test Encrypt0 ---

class TestEncrypt0:
    """Tests for the COSE_Encrypt0 envelope."""

    def test_tagged_prefix(self, key, nonce):
        """Test the encoded item starts with tag 16."""
        data = encode_encrypt0(b"secret", key, AAD, nonce)
        assert data[:1] == ENCRYPT0_TAG

    def test_roundtrip(self, key, nonce):
        """Test decoding returns the original plaintext."""
        data = encode_encrypt0(b"secret", key, AAD, nonce)
        assert decode_encrypt0(data, key, AAD) == b"secret"

    def test_headers(self, key, nonce):
        """Test alg is protected and iv/kid are unprotected."""
        data = encode_encrypt0(b"secret", key, AAD, nonce, key_id=b"kid")
        item = try_decode_encrypt0(data)
        assert cbor2.loads(item.protected) == {1: 3}
        assert item.unprotected[HEADER_IV] == nonce
        assert item.unprotected[HEADER_KID] == b"kid"
        assert item.alg == 3

    def test_wrong_aad(self, key, nonce):
        """Test the AAD is bound into the tag."""
        data = encode_encrypt0(b"secret", key, AAD, nonce)
        with pytest.raises(CryptoFailure):
            decode_encrypt0(data, key, b"\x05" * 29)

    def test_wrong_key(self, key, nonce):
        """Test decrypting with another key fails."""
        data = encode_encrypt0(b"secret", key, AAD, nonce)
        with pytest.raises(CryptoFailure):
            decode_encrypt0(data, bytes(32), AAD)

    def test_tampered_ciphertext(self, key, nonce):
        """Test flipping a ciphertext byte is detected."""
        data = bytearray(encode_encrypt0(b"secret", key, AAD, nonce))
        data[-1] ^= 0x01
        with pytest.raises(CryptoFailure):
            decode_encrypt0(bytes(data), key, AAD)

    def test_untagged_item_accepted(self, key, nonce):
        """Test the 0xD0 prefix is optional on decode."""
        data = encode_encrypt0(b"secret", key, AAD, nonce)
        assert decode_encrypt0(data[1:], key, AAD) == b"secret"

    def test_bad_iv_length(self, key):
        """Test an IV other than 12 bytes is an encoding error."""
        protected = cbor2.dumps({1: 3})
        data = ENCRYPT0_TAG + cbor2.dumps([protected, {5: b"\x00" * 8}, b"\x00" * 32])
        with pytest.raises(InvalidEncoding):
            decode_encrypt0(data, key, AAD)

    def test_garbage_is_invalid_encoding(self):
        """Test non-COSE input fails structural validation."""
        with pytest.raises(InvalidEncoding):
            try_decode_encrypt0(b"\xff\x00garbage")
        with pytest.raises(InvalidEncoding):
            try_decode_encrypt0(cbor2.dumps({"a": 1}))

    def test_trailing_bytes_rejected(self, key, nonce):
        """Test bytes after the COSE_Encrypt0 item are an encoding error."""
        data = encode_encrypt0(b"secret", key, AAD, nonce)
        with pytest.raises(InvalidEncoding):
            try_decode_encrypt0(data + b"\x00")
        with pytest.raises(InvalidEncoding):
            decode_encrypt0(data + cbor2.dumps("junk"), key, AAD)


# --- Test COSE Key ---

class TestCoseKey:
    """Tests for symmetric COSE_Key wrapping."""

    def test_wrap_layout(self, key):
        """Test the map carries kty, kid, alg and k."""
        decoded = cbor2.loads(wrap_symmetric_key(key, key_id=b"cfg"))
        assert decoded == {1: 4, 2: b"cfg", 3: 3, -1: key}

    def test_unwrap_symmetric(self, key):
        """Test the secret is read back from label -1."""
        assert unwrap_symmetric_key(wrap_symmetric_key(key)) == key

    def test_unwrap_okp_private(self, key):
        """Test OKP keys carry their secret under label -4."""
        data = cbor2.dumps({1: 1, -1: 6, -4: key})
        assert unwrap_symmetric_key(data) == key

    def test_unwrap_unsupported_kty(self, key):
        """Test unknown key types are rejected."""
        with pytest.raises(InvalidEncoding):
            unwrap_symmetric_key(cbor2.dumps({1: 3, -1: key}))

    def test_unwrap_short_secret(self):
        """Test secrets must be 32 bytes."""
        with pytest.raises(InvalidEncoding):
            unwrap_symmetric_key(cbor2.dumps({1: 4, -1: b"short"}))

    def test_wrap_short_secret(self):
        """Test wrapping refuses a short secret."""
        with pytest.raises(InvalidEncoding):
            wrap_symmetric_key(b"short")


# --- Test Plain Payloads ---

class TestPayload:
    """Tests for plaintext CBOR validation."""

    def test_any_item_without_ctype(self):
        """Test any CBOR item is accepted without a declared type."""
        assert try_decode_payload(100, cbor2.dumps(42)) == 42

    def test_declared_ctype_matches(self):
        """Test a map payload matches ctype 5."""
        payload = cbor2.dumps({"url": "https://example.com"})
        assert try_decode_payload(100, payload, 5) == {"url": "https://example.com"}

    def test_declared_ctype_mismatch(self):
        """Test a text payload does not satisfy ctype 5."""
        with pytest.raises(InvalidEncoding):
            try_decode_payload(100, cbor2.dumps("text"), 5)

    def test_invalid_ctype(self):
        """Test ctype outside 2..6 is an argument error."""
        with pytest.raises(InvalidArgument):
            try_decode_payload(100, cbor2.dumps(1), 0)

    def test_too_large(self):
        """Test the namespace size limit applies."""
        with pytest.raises(PayloadTooLarge):
            try_decode_payload(4, cbor2.dumps(b"0123456789"))

    def test_empty_and_malformed(self):
        """Test empty or truncated CBOR is rejected."""
        with pytest.raises(InvalidEncoding):
            try_decode_payload(100, b"")
        with pytest.raises(InvalidEncoding):
            try_decode_payload(100, b"\x5a\x00\x00")

    def test_trailing_bytes_rejected(self):
        """Test a payload must hold exactly one CBOR item."""
        with pytest.raises(InvalidEncoding):
            try_decode_payload(100, cbor2.dumps({"a": 1}) + b"\xff")
        with pytest.raises(InvalidEncoding):
            try_decode_payload(100, cbor2.dumps("x") + cbor2.dumps("y"), 3)


# --- Test Sign1 and CWT ---

class TestSign1AndCwt:
    """Tests for COSE_Sign1 envelopes and CWT claims."""

    def _signed(self, payload: bytes, aad: bytes):
        private = ed25519.Ed25519PrivateKey.generate()
        public = private.public_key().public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw,
        )
        sign1 = cose_sign1(payload)
        sign1.signature = private.sign(sign1.tbs_data(aad))
        return sign1.to_bytes(), public

    def test_sign_and_verify(self):
        """Test a signed envelope verifies with the right key and AAD."""
        token, public = self._signed(b"payload", b"caller")
        sign1 = verify_sign1(token, b"caller", [public])
        assert sign1.payload == b"payload"

    def test_wrong_aad_fails(self):
        """Test the external AAD is covered by the signature."""
        token, public = self._signed(b"payload", b"caller")
        with pytest.raises(CryptoFailure):
            verify_sign1(token, b"other", [public])

    def test_from_bytes_rejects_garbage(self):
        """Test malformed envelopes are encoding errors."""
        with pytest.raises(InvalidEncoding):
            Sign1.from_bytes(cbor2.dumps([1, 2]))

    def test_claims_roundtrip(self):
        """Test claims carry scope and validity window."""
        data = encode_claims("iss", "sub", "aud", 1000, 3600, b"\x01" * 16, "Namespace.*:app")
        claims = decode_cwt(data, 1000)
        assert claims[CLAIM_SCOPE] == "Namespace.*:app"
        assert get_scope(claims) == "Namespace.*:app"

    def test_expired_claims(self):
        """Test tokens past exp plus skew are rejected."""
        data = encode_claims("iss", "sub", "aud", 1000, 3600, os.urandom(16), "s")
        decode_cwt(data, 1000 + 3600 + 299)
        with pytest.raises(PermissionDenied):
            decode_cwt(data, 1000 + 3600 + 301)

    def test_not_yet_valid_claims(self):
        """Test tokens before nbf minus skew are rejected."""
        data = encode_claims("iss", "sub", "aud", 10_000, 3600, os.urandom(16), "s")
        with pytest.raises(PermissionDenied):
            decode_cwt(data, 10_000 - 301)
