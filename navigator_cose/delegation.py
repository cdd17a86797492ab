"""
DelegationIssuer: session delegations for fixed identities.

A delegator proves possession of a session key by signing
``cbor([ns, name, caller])`` with it. The issuer then signs a delegation
from the fixed identity of ``(ns, name)`` to that session key, valid for the
namespace ``session_expires_in_ms``. Signatures are kept in memory and
fetched afterwards with ``get_delegation``.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import cbor2
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

from .cose.crypto import sha256
from .exceptions import Disabled, InvalidArgument, NotFound, PermissionDenied
from .identity import canister_sig_public_key, delegation_signature_msg, fixed_identity_seed
from .models import SignDelegationInput
from .namespace import NamespaceStore
from .oracle import DELEGATION_DOMAIN, KeyDerivationOracle
from .principal import Principal

logger = logging.getLogger("navigator.cose")

NANOS_PER_MILLI = 1_000_000


@dataclass
class Delegation:
    pubkey: bytes
    expiration: int  # unix timestamp in nanoseconds
    targets: Optional[list[Principal]] = None


@dataclass
class SignedDelegation:
    delegation: Delegation
    signature: bytes


@dataclass
class SignInResponse:
    expiration: int  # unix timestamp in nanoseconds
    user_key: bytes  # DER encoded canister signature public key
    seed: bytes


def verify_basic_sig(pubkey_der: bytes, message: bytes, sig: bytes) -> None:
    """Verify ``sig`` over ``message`` with a DER encoded public key.

    Supports Ed25519, and ECDSA over P-256 or secp256k1 with raw ``r || s``
    signatures over SHA-256.

    Raises:
        InvalidArgument: The key cannot be parsed or uses another algorithm.
        PermissionDenied: The signature does not verify.
    """
    try:
        key = serialization.load_der_public_key(bytes(pubkey_der))
    except (ValueError, UnsupportedAlgorithm) as err:
        raise InvalidArgument(f"invalid public key: {err}") from err

    try:
        if isinstance(key, ed25519.Ed25519PublicKey):
            key.verify(bytes(sig), bytes(message))
        elif isinstance(key, ec.EllipticCurvePublicKey) and isinstance(
            key.curve, (ec.SECP256R1, ec.SECP256K1)
        ):
            if len(sig) != 64:
                raise PermissionDenied("challenge verification failed: invalid signature length")
            r = int.from_bytes(sig[:32], "big")
            s = int.from_bytes(sig[32:], "big")
            key.verify(encode_dss_signature(r, s), bytes(message), ec.ECDSA(hashes.SHA256()))
        else:
            raise InvalidArgument("unsupported public key algorithm")
    except InvalidSignature as err:
        raise PermissionDenied("challenge verification failed") from err


class DelegationIssuer:
    """Issues and serves delegations signed by the deterministic signer."""

    def __init__(
        self,
        namespaces: NamespaceStore,
        oracle: KeyDerivationOracle,
        service_id: Principal,
    ):
        self._namespaces = namespaces
        self._oracle = oracle
        self._service_id = service_id
        # (sha256(seed), delegation hash) -> (signature, expiration)
        self._signatures: dict[tuple[bytes, bytes], tuple[bytes, int]] = {}

    def _session_expires_in_ms(self, caller: Principal, ns: str, name: str) -> int:
        session_expires_in_ms = self._namespaces.session_expires_in_ms(caller, ns, name)
        if session_expires_in_ms == 0:
            raise Disabled("delegation is disabled")
        return session_expires_in_ms

    def _prune(self, now_ns: int) -> None:
        expired = [k for k, (_, exp) in self._signatures.items() if exp < now_ns]
        for key in expired:
            del self._signatures[key]

    async def sign_delegation(
        self,
        caller: Principal,
        input: SignDelegationInput,
        now_ms: int,
    ) -> SignInResponse:
        challenge = cbor2.dumps([input.ns, input.name, caller.raw])
        verify_basic_sig(input.pubkey, challenge, input.sig)

        session_expires_in_ms = self._session_expires_in_ms(caller, input.ns, input.name)
        expiration = (now_ms + session_expires_in_ms) * NANOS_PER_MILLI
        seed = fixed_identity_seed(input.ns, input.name)
        user_key = canister_sig_public_key(self._service_id, seed)
        delegation_hash = delegation_signature_msg(input.pubkey, expiration)

        signature = await self._oracle.sign(DELEGATION_DOMAIN, [seed], delegation_hash)

        # the delegator may have been removed while the signer was running
        self._session_expires_in_ms(caller, input.ns, input.name)
        self._prune(now_ms * NANOS_PER_MILLI)
        self._signatures[(sha256(seed), delegation_hash)] = (signature, expiration)
        logger.debug("Signed delegation for %s/%s by %s", input.ns, input.name, caller)
        return SignInResponse(expiration=expiration, user_key=user_key, seed=seed)

    def get_delegation(self, seed: bytes, pubkey: bytes, expiration: int) -> SignedDelegation:
        delegation_hash = delegation_signature_msg(pubkey, expiration)
        entry = self._signatures.get((sha256(seed), delegation_hash))
        if entry is None:
            raise NotFound("delegation signature not found")
        return SignedDelegation(
            delegation=Delegation(pubkey=bytes(pubkey), expiration=expiration),
            signature=entry[0],
        )

    async def delegation_public_key(self, seed: bytes) -> bytes:
        """Raw Ed25519 key that verifies delegations issued for ``seed``."""
        return await self._oracle.public_key(DELEGATION_DOMAIN, [seed])
