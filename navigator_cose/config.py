"""
Service Configuration: signer seed loading and validated settings.

Reads the service configuration from environment variables:
    COSE_NAME = <service name>
    COSE_SERVICE_ID = <principal text of this service>
    COSE_SIGNER_SEED = <base64-encoded 32-byte seed>
    COSE_CONTROLLERS / COSE_MANAGERS / COSE_AUDITORS = <comma separated principal texts>
    COSE_ALLOWED_APIS = <comma separated API names>
    COSE_SNAPSHOT_PATH = <path of the JSON snapshot file>

Security Note:
    Never log the signer seed. Only log principal texts and key names.
"""
import os
import base64
import secrets
import logging
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .models import validate_principals
from .principal import Principal

logger = logging.getLogger("navigator.cose")

SEED_SIZE = 32


def load_signer_seed() -> bytes:
    """Load the signing seed from the COSE_SIGNER_SEED environment variable.

    Returns:
        Raw 32-byte seed.

    Raises:
        RuntimeError: If COSE_SIGNER_SEED is not set.
        ValueError: If the seed does not decode to exactly 32 bytes.
    """
    value = os.environ.get("COSE_SIGNER_SEED")
    if not value:
        raise RuntimeError(
            "No signer seed found in environment. "
            "Set COSE_SIGNER_SEED=<base64-encoded-32-byte-seed>"
        )
    seed = base64.b64decode(value)
    if len(seed) != SEED_SIZE:
        raise ValueError(
            f"COSE_SIGNER_SEED must decode to exactly {SEED_SIZE} bytes, "
            f"got {len(seed)}"
        )
    return seed


def _principals_from_env(name: str) -> set[Principal]:
    raw = os.environ.get(name, "")
    return {Principal.from_text(p.strip()) for p in raw.split(",") if p.strip()}


def _names_from_env(name: str) -> set[str]:
    raw = os.environ.get(name, "")
    return {p.strip() for p in raw.split(",") if p.strip()}


def generate_signer_seed() -> str:
    """Generate a random 32-byte signer seed and return it as base64 string.

    This is a utility for operators to provision new deployments.
    """
    return base64.b64encode(secrets.token_bytes(SEED_SIZE)).decode("ascii")


class CoseConfig(BaseModel):
    """Validated service configuration."""

    name: str = Field(default="navigator-cose", min_length=1)
    service_id: Principal
    signer_seed: bytes
    schnorr_key_name: str = Field(default="dfx_test_key", min_length=1)
    vetkd_key_name: str = Field(default="dfx_test_key", min_length=1)
    controllers: set[Principal] = Field(default_factory=set)
    managers: set[Principal] = Field(default_factory=set)
    auditors: set[Principal] = Field(default_factory=set)
    allowed_apis: set[str] = Field(default_factory=set)
    snapshot_path: Optional[str] = None

    model_config = {"arbitrary_types_allowed": True}

    @field_validator("signer_seed")
    @classmethod
    def validate_seed(cls, v: bytes) -> bytes:
        """Validate the seed length."""
        if len(v) != SEED_SIZE:
            raise ValueError(
                f"signer_seed must be exactly {SEED_SIZE} bytes, got {len(v)}"
            )
        return v

    @field_validator("controllers", "managers", "auditors")
    @classmethod
    def validate_members(cls, v: set[Principal]) -> set[Principal]:
        if v:
            validate_principals(v)
        return v

    @model_validator(mode="after")
    def validate_service_id(self) -> "CoseConfig":
        """Ensure the service identity is a real principal."""
        if self.service_id.is_anonymous:
            raise ValueError("service_id cannot be the anonymous principal")
        return self

    @classmethod
    def from_env(cls) -> "CoseConfig":
        """Create CoseConfig by loading values from environment.

        Returns:
            Populated CoseConfig instance.
        """
        service_id = os.environ.get("COSE_SERVICE_ID")
        if not service_id:
            raise RuntimeError("COSE_SERVICE_ID environment variable is not set")
        config = cls(
            name=os.environ.get("COSE_NAME", "navigator-cose"),
            service_id=Principal.from_text(service_id),
            signer_seed=load_signer_seed(),
            controllers=_principals_from_env("COSE_CONTROLLERS"),
            managers=_principals_from_env("COSE_MANAGERS"),
            auditors=_principals_from_env("COSE_AUDITORS"),
            allowed_apis=_names_from_env("COSE_ALLOWED_APIS"),
            snapshot_path=os.environ.get("COSE_SNAPSHOT_PATH") or None,
        )
        logger.debug(
            "Loaded configuration for service %s with %d manager(s)",
            config.service_id, len(config.managers),
        )
        return config
