"""
Key Derivation Oracle: KEKs derived from a deterministic signer.

A setting KEK is never stored. It is recomputed on demand::

    msg = HMAC-SHA3-256(ns, key_id)
    sig = signer.sign(b"COSE_Symmetric_Key", [subject, scope, ns], msg)
    kek = HMAC-SHA3-256(ns, sig)

The signer must be deterministic: the same (label, path, message) always
yields the same signature, otherwise previously wrapped DEKs become
unrecoverable.

Security Note:
    Never log KEKs, signatures or seeds.
"""
import logging
from typing import Optional, Protocol, runtime_checkable

import cbor2
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from .cose.crypto import hkdf256, mac3_256
from .exceptions import CoseError, CryptoFailure, InvalidArgument
from .models import SettingPathKey

logger = logging.getLogger("navigator.cose")

KEK_DOMAIN = b"COSE_Symmetric_Key"
SIGNING_DOMAIN = b"COSE_Schnorr_Signing"
IDENTITY_DOMAIN = b"COSE_Identity"
DELEGATION_DOMAIN = b"COSE_Delegation"


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------

@runtime_checkable
class DeterministicSigner(Protocol):
    """Signs messages with keys derived from (domain_label, path)."""

    async def sign(self, domain_label: bytes, path: list[bytes], message: bytes) -> bytes:
        ...

    async def public_key(self, domain_label: bytes, path: list[bytes]) -> bytes:
        ...


@runtime_checkable
class VetKDOracle(Protocol):
    """Verifiable encrypted key derivation service."""

    async def public_key(self, context: list[bytes]) -> bytes:
        ...

    async def encrypted_key(
        self, context: list[bytes], input_id: bytes, transport_public_key: bytes,
    ) -> bytes:
        ...


# ---------------------------------------------------------------------------
# Local adapters
# ---------------------------------------------------------------------------

class Ed25519Signer:
    """Deterministic Ed25519 signer backed by a single 32-byte seed.

    Each (domain_label, path) gets its own key:
    ``HKDF-SHA256(seed, info=cbor([domain_label, *path]))``.
    """

    def __init__(self, seed: bytes):
        if len(seed) != 32:
            raise InvalidArgument(f"signer seed must be 32 bytes, got {len(seed)}")
        self._seed = bytes(seed)

    def _private_key(self, domain_label: bytes, path: list[bytes]) -> ed25519.Ed25519PrivateKey:
        info = cbor2.dumps([bytes(domain_label), *[bytes(p) for p in path]])
        return ed25519.Ed25519PrivateKey.from_private_bytes(hkdf256(self._seed, info))

    async def sign(self, domain_label: bytes, path: list[bytes], message: bytes) -> bytes:
        return self._private_key(domain_label, path).sign(bytes(message))

    async def public_key(self, domain_label: bytes, path: list[bytes]) -> bytes:
        return self._private_key(domain_label, path).public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )


class UnavailableVetKD:
    """Placeholder used when no vetKD service is configured."""

    async def public_key(self, context: list[bytes]) -> bytes:
        raise CryptoFailure("vetKD service is not configured")

    async def encrypted_key(
        self, context: list[bytes], input_id: bytes, transport_public_key: bytes,
    ) -> bytes:
        raise CryptoFailure("vetKD service is not configured")


# ---------------------------------------------------------------------------
# Oracle
# ---------------------------------------------------------------------------

class KeyDerivationOracle:
    """Derives KEKs and forwards vetKD requests; persists nothing."""

    def __init__(
        self,
        signer: DeterministicSigner,
        vetkd: Optional[VetKDOracle] = None,
    ):
        self._signer = signer
        self._vetkd = vetkd or UnavailableVetKD()

    async def sign(self, domain_label: bytes, path: list[bytes], message: bytes) -> bytes:
        try:
            return await self._signer.sign(domain_label, path, message)
        except CoseError:
            raise
        except Exception as err:
            logger.error("Signer rejected request for domain %s: %s", domain_label, err)
            raise CryptoFailure(f"signing failed: {err}") from err

    async def public_key(self, domain_label: bytes, path: list[bytes]) -> bytes:
        try:
            return await self._signer.public_key(domain_label, path)
        except CoseError:
            raise
        except Exception as err:
            logger.error("Signer public key failed for domain %s: %s", domain_label, err)
            raise CryptoFailure(f"public key derivation failed: {err}") from err

    async def derive_kek(
        self, domain_label: bytes, tenant_scope: list[bytes], key_id: bytes,
    ) -> bytes:
        """Derive a 32-byte KEK for ``key_id`` within ``tenant_scope``.

        Args:
            domain_label: Domain separator for the signer.
            tenant_scope: ``[subject, scope, ns]``; the last element keys the MACs.
            key_id: Identifier of the protected item (the setting key).

        Raises:
            CryptoFailure: The signer failed.
        """
        ns = tenant_scope[-1]
        message = mac3_256(ns, bytes(key_id))
        sig = await self.sign(domain_label, tenant_scope, message)
        return mac3_256(ns, sig)

    async def setting_kek(self, spk: SettingPathKey, key_id: bytes) -> bytes:
        return await self.derive_kek(KEK_DOMAIN, spk.derivation_path(), key_id)

    async def vetkd_public_key(self, spk: SettingPathKey) -> bytes:
        context = [KEK_DOMAIN, *spk.derivation_path()]
        try:
            return await self._vetkd.public_key(context)
        except CoseError:
            raise
        except Exception as err:
            raise CryptoFailure(f"vetKD public key failed: {err}") from err

    async def derive_vetkd_key(
        self, spk: SettingPathKey, input_id: bytes, transport_public_key: bytes,
    ) -> bytes:
        context = [KEK_DOMAIN, *spk.derivation_path()]
        try:
            return await self._vetkd.encrypted_key(context, input_id, transport_public_key)
        except CoseError:
            raise
        except Exception as err:
            raise CryptoFailure(f"vetKD key derivation failed: {err}") from err
