"""Navigator COSE: multi-tenant secret and configuration store.

Security Note (Threat Model):
    KEKs are recomputed from the deterministic signer on every request and
    never stored. Settings with a DEK are end-to-end encrypted; the service
    only decrypts them to hand the plaintext back re-encrypted under a fresh
    ECDH secret. Plaintext settings are readable by anyone holding the
    snapshot file.
"""

from .version import __version__
from .exceptions import (
    CoseError,
    PermissionDenied,
    NotFound,
    VersionMismatch,
    AlreadyExists,
    NotEmpty,
    PayloadTooLarge,
    InvalidEncoding,
    CryptoFailure,
    Disabled,
    InvalidArgument,
)
from .principal import Principal, ANONYMOUS
from .config import CoseConfig, generate_signer_seed
from .oracle import (
    DeterministicSigner,
    VetKDOracle,
    Ed25519Signer,
    KeyDerivationOracle,
)
from .store import MemoryRepository
from .service import CoseService

__all__ = [
    "__version__",
    "CoseError",
    "PermissionDenied",
    "NotFound",
    "VersionMismatch",
    "AlreadyExists",
    "NotEmpty",
    "PayloadTooLarge",
    "InvalidEncoding",
    "CryptoFailure",
    "Disabled",
    "InvalidArgument",
    "Principal",
    "ANONYMOUS",
    "CoseConfig",
    "generate_signer_seed",
    "DeterministicSigner",
    "VetKDOracle",
    "Ed25519Signer",
    "KeyDerivationOracle",
    "MemoryRepository",
    "CoseService",
]
