"""
Ephemeral X25519 key agreement.

The server side never reuses a private scalar: each exchange draws 32 fresh
random bytes and binds them to the request nonce with HMAC-SHA3-256 before
clamping them into an X25519 key.
"""
import os
from collections.abc import Awaitable, Callable

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import x25519

from ..exceptions import InvalidArgument
from .crypto import NONCE_SIZE, mac3_256

PUBLIC_KEY_SIZE = 32

RandomSource = Callable[[int], Awaitable[bytes]]


async def system_random(size: int) -> bytes:
    return os.urandom(size)


def public_bytes(key: x25519.X25519PublicKey) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def _load_x25519_pub(raw: bytes) -> x25519.X25519PublicKey:
    if len(raw) != PUBLIC_KEY_SIZE:
        raise InvalidArgument("invalid X25519 public key length")
    return x25519.X25519PublicKey.from_public_bytes(bytes(raw))


def ecdh_x25519(secret: bytes, their_public: bytes) -> tuple[bytes, bytes]:
    """Compute the shared secret and our public key from a raw 32-byte secret.

    Returns:
        Tuple of (shared_secret, public_key), both 32 raw bytes.
    """
    private = x25519.X25519PrivateKey.from_private_bytes(bytes(secret))
    try:
        shared = private.exchange(_load_x25519_pub(their_public))
    except ValueError as err:
        # all-zero shared secret from a low order point
        raise InvalidArgument(f"invalid X25519 public key: {err}") from err
    return shared, public_bytes(private.public_key())


class ECDHExchange:
    """Server side of the ephemeral exchange used to return secret material."""

    def __init__(self, random_source: RandomSource = system_random):
        self._random = random_source

    async def server_exchange(self, client_public_key: bytes, nonce: bytes) -> tuple[bytes, bytes]:
        """Derive a one-off shared secret with the client.

        Args:
            client_public_key: Client X25519 public key (32 bytes).
            nonce: Per-request 12-byte nonce.

        Returns:
            Tuple of (shared_secret, server_public_key).
        """
        if len(nonce) != NONCE_SIZE:
            raise InvalidArgument(
                f"invalid nonce length, expected {NONCE_SIZE}, got {len(nonce)}"
            )
        _load_x25519_pub(client_public_key)
        seed = await self._random(32)
        secret = mac3_256(seed, bytes(nonce))
        return ecdh_x25519(secret, client_public_key)


def generate_client_keypair() -> tuple[x25519.X25519PrivateKey, bytes]:
    """Create a client ephemeral key pair; returns (private_key, raw_public)."""
    private = x25519.X25519PrivateKey.generate()
    return private, public_bytes(private.public_key())


def client_shared_secret(private: x25519.X25519PrivateKey, server_public_key: bytes) -> bytes:
    return private.exchange(_load_x25519_pub(server_public_key))
