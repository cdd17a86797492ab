"""
Principal: opaque caller identity.

Textual form is the checksummed base32 encoding used by the platform:
``base32(crc32_be(raw) || raw)`` in lowercase, without padding, grouped in
chunks of five characters separated by ``-``.
"""
import base64
import struct
import zlib
from functools import total_ordering

from cryptography.hazmat.primitives import hashes

MAX_PRINCIPAL_LENGTH = 29
_ANONYMOUS_TAG = b"\x04"
_SELF_AUTHENTICATING_TAG = b"\x02"


@total_ordering
class Principal:
    """Raw identity bytes with a total byte-lexicographic order."""

    __slots__ = ("_raw",)

    def __init__(self, raw: bytes):
        if not isinstance(raw, (bytes, bytearray)):
            raise TypeError("principal must be built from bytes")
        if len(raw) > MAX_PRINCIPAL_LENGTH:
            raise ValueError(
                f"principal too long: {len(raw)} bytes "
                f"(maximum {MAX_PRINCIPAL_LENGTH})"
            )
        self._raw = bytes(raw)

    @property
    def raw(self) -> bytes:
        return self._raw

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Principal):
            return NotImplemented
        return self._raw == other._raw

    def __lt__(self, other: "Principal") -> bool:
        if not isinstance(other, Principal):
            return NotImplemented
        return self._raw < other._raw

    def __hash__(self) -> int:
        return hash(self._raw)

    @classmethod
    def anonymous(cls) -> "Principal":
        return cls(_ANONYMOUS_TAG)

    @classmethod
    def self_authenticating(cls, public_key_der: bytes) -> "Principal":
        """Derive the principal owned by a DER encoded public key."""
        digest = hashes.Hash(hashes.SHA224())
        digest.update(public_key_der)
        return cls(digest.finalize() + _SELF_AUTHENTICATING_TAG)

    @classmethod
    def from_text(cls, text: str) -> "Principal":
        """Parse the textual representation, verifying the checksum.

        Raises:
            ValueError: If the text is malformed or the checksum is wrong.
        """
        compact = text.strip().replace("-", "").upper()
        if not compact:
            raise ValueError("empty principal text")
        padding = "=" * (-len(compact) % 8)
        try:
            data = base64.b32decode(compact + padding)
        except (ValueError, TypeError) as err:
            raise ValueError(f"invalid principal text {text!r}") from err
        if len(data) < 4:
            raise ValueError(f"invalid principal text {text!r}")
        checksum, raw = data[:4], data[4:]
        if struct.pack("!I", zlib.crc32(raw)) != checksum:
            raise ValueError(f"principal checksum mismatch for {text!r}")
        principal = cls(raw)
        if principal.to_text() != text.strip():
            raise ValueError(f"non-canonical principal text {text!r}")
        return principal

    def to_text(self) -> str:
        checksum = struct.pack("!I", zlib.crc32(self.raw))
        encoded = base64.b32encode(checksum + self.raw).decode("ascii")
        encoded = encoded.rstrip("=").lower()
        return "-".join(encoded[i:i + 5] for i in range(0, len(encoded), 5))

    @property
    def is_anonymous(self) -> bool:
        return self.raw == _ANONYMOUS_TAG

    def __bytes__(self) -> bytes:
        return self.raw

    def __str__(self) -> str:
        return self.to_text()

    def __repr__(self) -> str:
        return f"Principal({self.to_text()!r})"


ANONYMOUS = Principal.anonymous()
