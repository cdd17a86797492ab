"""
Records and request models for namespaces and settings.

Stored records (``Namespace``, ``Setting``, ``SettingArchived``) are plain
dataclasses owned by the stores; request inputs are pydantic models validated
at construction time.
"""
import base64
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .exceptions import InvalidArgument
from .principal import Principal

MAX_PAYLOAD_SIZE = 2_000_000  # 2MB
DEFAULT_SESSION_EXPIRES_IN_MS = 24 * 3600 * 1000  # 1 day
MAX_SETTING_KEY_LENGTH = 64

STATUS_ARCHIVED = -1
STATUS_READ_WRITE = 0
STATUS_READ_ONLY = 1

VISIBILITY_PRIVATE = 0
VISIBILITY_PUBLIC = 1

SCOPE_SERVER = 0
SCOPE_USER = 1


def validate_key(s: str) -> str:
    """Validate a namespace, tag or delegation name: non-empty [a-z0-9_]."""
    if not s:
        raise InvalidArgument("empty string")
    for c in s:
        if not ("a" <= c <= "z" or "0" <= c <= "9" or c == "_"):
            raise InvalidArgument(f"invalid character: {c}")
    return s


def validate_principals(principals: set[Principal]) -> set[Principal]:
    if not principals:
        raise InvalidArgument("principals cannot be empty")
    if any(p.is_anonymous for p in principals):
        raise InvalidArgument("anonymous user is not allowed")
    return principals


def _validate_max_payload_size(v: Optional[int]) -> Optional[int]:
    if v is not None:
        if v <= 0:
            raise ValueError("max_payload_size should be greater than 0")
        if v > MAX_PAYLOAD_SIZE:
            raise ValueError(
                f"max_payload_size should be less than or equal to {MAX_PAYLOAD_SIZE}"
            )
    return v


def _validate_tags(tags: Optional[dict[str, str]]) -> Optional[dict[str, str]]:
    if tags:
        for k in tags:
            validate_key(k)
    return tags


# ---------------------------------------------------------------------------
# Snapshot helpers
# ---------------------------------------------------------------------------

def _b64(data: Optional[bytes]) -> Optional[str]:
    return None if data is None else base64.b64encode(data).decode("ascii")


def _unb64(data: Optional[str]) -> Optional[bytes]:
    return None if data is None else base64.b64decode(data)


def _principals_out(principals: set[Principal]) -> list[str]:
    return [p.to_text() for p in sorted(principals)]


def _principals_in(texts: list[str]) -> set[Principal]:
    return {Principal.from_text(t) for t in texts}


# ---------------------------------------------------------------------------
# Setting path
# ---------------------------------------------------------------------------

@dataclass(frozen=True, order=True)
class SettingPathKey:
    """Composite key of a setting; ordering matches the tuple order of fields.

    ``version`` 0 designates the live record.
    """

    ns: str
    scope: int
    subject: Principal
    key: bytes
    version: int = 0

    @classmethod
    def from_path(cls, path: "SettingPath", caller: Principal) -> "SettingPathKey":
        return cls(
            ns=path.ns,
            scope=SCOPE_USER if path.user_owned else SCOPE_SERVER,
            subject=path.subject or caller,
            key=path.key,
            version=path.version,
        )

    def with_version(self, version: int) -> "SettingPathKey":
        return replace(self, version=version)

    @property
    def current(self) -> "SettingPathKey":
        return self.with_version(0)

    def derivation_path(self) -> list[bytes]:
        """Tenant scope used for key derivation: [subject, scope, namespace]."""
        return [self.subject.raw, bytes([self.scope]), self.ns.encode("utf-8")]

    def to_dict(self) -> dict:
        return {
            "ns": self.ns,
            "scope": self.scope,
            "subject": self.subject.to_text(),
            "key": _b64(self.key),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SettingPathKey":
        return cls(
            ns=data["ns"],
            scope=data["scope"],
            subject=Principal.from_text(data["subject"]),
            key=_unb64(data["key"]),
            version=data["version"],
        )

    def __str__(self) -> str:
        return (
            f"({self.ns},{self.scope},{self.subject.to_text()},"
            f"{self.key.hex()},{self.version})"
        )


class SettingPath(BaseModel):
    """Caller supplied address of a setting."""

    ns: str
    user_owned: bool = False
    subject: Optional[Principal] = None  # default to caller
    key: bytes
    version: int = Field(default=0, ge=0)

    model_config = {"arbitrary_types_allowed": True}

    @field_validator("ns")
    @classmethod
    def validate_ns(cls, v: str) -> str:
        return validate_key(v)

    @field_validator("key")
    @classmethod
    def validate_setting_key(cls, v: bytes) -> bytes:
        if len(v) > MAX_SETTING_KEY_LENGTH:
            raise ValueError(
                f"key length exceeds the limit {MAX_SETTING_KEY_LENGTH}"
            )
        return v


# ---------------------------------------------------------------------------
# Stored records
# ---------------------------------------------------------------------------

@dataclass
class Namespace:
    name: str
    desc: str = ""
    created_at: int = 0  # unix timestamp in milliseconds
    updated_at: int = 0  # unix timestamp in milliseconds
    max_payload_size: int = MAX_PAYLOAD_SIZE
    payload_bytes_total: int = 0
    status: int = STATUS_READ_WRITE  # -1: archived; 0: read-write; 1: read-only
    visibility: int = VISIBILITY_PRIVATE  # 0: private; 1: public
    managers: set[Principal] = field(default_factory=set)  # read and write all settings
    auditors: set[Principal] = field(default_factory=set)  # read all settings
    users: set[Principal] = field(default_factory=set)  # read and write their own settings
    fixed_id_names: dict[str, set[Principal]] = field(default_factory=dict)
    session_expires_in_ms: int = DEFAULT_SESSION_EXPIRES_IN_MS
    gas_balance: int = 0

    def can_read_namespace(self, caller: Principal) -> bool:
        if self.visibility == VISIBILITY_PUBLIC:
            return True
        if self.status < 0:
            return caller in self.managers or caller in self.auditors
        return caller in self.managers or caller in self.auditors or caller in self.users

    def can_write_namespace(self, caller: Principal) -> bool:
        return self.status < 1 and caller in self.managers

    def can_write_setting(self, caller: Principal, spk: SettingPathKey) -> bool:
        if self.status != STATUS_READ_WRITE:
            return False
        # only managers write server side settings, for any subject
        if spk.scope == SCOPE_SERVER:
            return caller in self.managers
        return caller in self.users and caller == spk.subject

    def partial_can_read_setting(self, caller: Principal, spk: SettingPathKey) -> Optional[bool]:
        """True/False when decided by role; None defers to the setting readers."""
        if self.visibility == VISIBILITY_PUBLIC:
            return True
        if self.status < 0:
            return caller in self.managers or caller in self.auditors
        if caller in self.managers or caller in self.auditors or caller == spk.subject:
            return True
        return None

    def has_kek_permission(self, caller: Principal, spk: SettingPathKey) -> bool:
        if self.status < 0 and caller not in self.managers:
            return False
        return (
            caller == spk.subject
            or caller in self.auditors
            or (spk.scope == SCOPE_SERVER and caller in self.managers)
        )

    def has_signing_permission(self, caller: Principal) -> bool:
        if self.status < 0 and caller not in self.managers:
            return False
        return caller in self.managers or caller in self.users

    def has_full_read(self, caller: Principal) -> bool:
        if self.visibility == VISIBILITY_PUBLIC:
            return True
        return caller in self.managers or caller in self.auditors

    def to_info(self, settings_total: int = 0, user_settings_total: int = 0) -> "NamespaceInfo":
        return NamespaceInfo(
            name=self.name,
            desc=self.desc,
            created_at=self.created_at,
            updated_at=self.updated_at,
            max_payload_size=self.max_payload_size,
            payload_bytes_total=self.payload_bytes_total,
            status=self.status,
            visibility=self.visibility,
            managers=set(self.managers),
            auditors=set(self.auditors),
            users=set(self.users),
            fixed_id_names={k: set(v) for k, v in self.fixed_id_names.items()},
            session_expires_in_ms=self.session_expires_in_ms,
            gas_balance=self.gas_balance,
            settings_total=settings_total,
            user_settings_total=user_settings_total,
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "desc": self.desc,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "max_payload_size": self.max_payload_size,
            "payload_bytes_total": self.payload_bytes_total,
            "status": self.status,
            "visibility": self.visibility,
            "managers": _principals_out(self.managers),
            "auditors": _principals_out(self.auditors),
            "users": _principals_out(self.users),
            "fixed_id_names": {
                k: _principals_out(v) for k, v in self.fixed_id_names.items()
            },
            "session_expires_in_ms": self.session_expires_in_ms,
            # may exceed the 64-bit integer range of JSON encoders
            "gas_balance": str(self.gas_balance),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Namespace":
        return cls(
            name=data["name"],
            desc=data.get("desc", ""),
            created_at=data.get("created_at", 0),
            updated_at=data.get("updated_at", 0),
            max_payload_size=data.get("max_payload_size", MAX_PAYLOAD_SIZE),
            payload_bytes_total=data.get("payload_bytes_total", 0),
            status=data.get("status", STATUS_READ_WRITE),
            visibility=data.get("visibility", VISIBILITY_PRIVATE),
            managers=_principals_in(data.get("managers", [])),
            auditors=_principals_in(data.get("auditors", [])),
            users=_principals_in(data.get("users", [])),
            fixed_id_names={
                k: _principals_in(v) for k, v in data.get("fixed_id_names", {}).items()
            },
            session_expires_in_ms=data.get(
                "session_expires_in_ms", DEFAULT_SESSION_EXPIRES_IN_MS
            ),
            gas_balance=int(data.get("gas_balance", 0)),
        )


@dataclass
class Setting:
    desc: str = ""
    created_at: int = 0
    updated_at: int = 0
    status: int = STATUS_READ_WRITE
    version: int = 1
    readers: set[Principal] = field(default_factory=set)  # supplemental read grants
    tags: dict[str, str] = field(default_factory=dict)
    ctype: Optional[int] = None  # declared CBOR major type of a plain payload
    payload: Optional[bytes] = None
    dek: Optional[bytes] = None  # COSE_Encrypt0 wrapped data encryption key

    @property
    def size(self) -> int:
        return len(self.payload or b"") + len(self.dek or b"")

    def to_info(self, spk: SettingPathKey, with_payload: bool = False) -> "SettingInfo":
        return SettingInfo(
            key=spk.key,
            subject=spk.subject,
            desc=self.desc,
            created_at=self.created_at,
            updated_at=self.updated_at,
            status=self.status,
            version=self.version,
            readers=set(self.readers),
            tags=dict(self.tags),
            ctype=self.ctype,
            dek=self.dek if with_payload else None,
            payload=self.payload if with_payload else None,
        )

    def to_dict(self) -> dict:
        return {
            "desc": self.desc,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "status": self.status,
            "version": self.version,
            "readers": _principals_out(self.readers),
            "tags": self.tags,
            "ctype": self.ctype,
            "payload": _b64(self.payload),
            "dek": _b64(self.dek),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Setting":
        return cls(
            desc=data.get("desc", ""),
            created_at=data.get("created_at", 0),
            updated_at=data.get("updated_at", 0),
            status=data.get("status", STATUS_READ_WRITE),
            version=data.get("version", 1),
            readers=_principals_in(data.get("readers", [])),
            tags=data.get("tags", {}),
            ctype=data.get("ctype"),
            payload=_unb64(data.get("payload")),
            dek=_unb64(data.get("dek")),
        )


@dataclass
class SettingArchived:
    archived_at: int
    deprecated: bool  # true if the payload should not be used for some reason
    payload: bytes
    dek: Optional[bytes] = None

    def to_dict(self) -> dict:
        return {
            "archived_at": self.archived_at,
            "deprecated": self.deprecated,
            "payload": _b64(self.payload),
            "dek": _b64(self.dek),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SettingArchived":
        return cls(
            archived_at=data["archived_at"],
            deprecated=data.get("deprecated", False),
            payload=_unb64(data["payload"]),
            dek=_unb64(data.get("dek")),
        )


@dataclass
class State:
    """Global service state."""

    name: str = "navigator-cose"
    schnorr_key_name: str = "dfx_test_key"
    vetkd_key_name: str = "dfx_test_key"
    controllers: set[Principal] = field(default_factory=set)
    managers: set[Principal] = field(default_factory=set)  # create namespaces, not settings
    auditors: set[Principal] = field(default_factory=set)  # list namespaces
    allowed_apis: set[str] = field(default_factory=set)  # empty allows every API

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "schnorr_key_name": self.schnorr_key_name,
            "vetkd_key_name": self.vetkd_key_name,
            "controllers": _principals_out(self.controllers),
            "managers": _principals_out(self.managers),
            "auditors": _principals_out(self.auditors),
            "allowed_apis": sorted(self.allowed_apis),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "State":
        return cls(
            name=data.get("name", "navigator-cose"),
            schnorr_key_name=data.get("schnorr_key_name", "dfx_test_key"),
            vetkd_key_name=data.get("vetkd_key_name", "dfx_test_key"),
            controllers=_principals_in(data.get("controllers", [])),
            managers=_principals_in(data.get("managers", [])),
            auditors=_principals_in(data.get("auditors", [])),
            allowed_apis=set(data.get("allowed_apis", [])),
        )


# ---------------------------------------------------------------------------
# Query results
# ---------------------------------------------------------------------------

@dataclass
class NamespaceInfo:
    name: str
    desc: str
    created_at: int
    updated_at: int
    max_payload_size: int
    payload_bytes_total: int
    status: int
    visibility: int
    managers: set[Principal]
    auditors: set[Principal]
    users: set[Principal]
    fixed_id_names: dict[str, set[Principal]]
    session_expires_in_ms: int
    gas_balance: int
    settings_total: int = 0
    user_settings_total: int = 0


@dataclass
class SettingInfo:
    key: bytes
    subject: Principal
    desc: str
    created_at: int
    updated_at: int
    status: int
    version: int
    readers: set[Principal]
    tags: dict[str, str]
    ctype: Optional[int] = None
    dek: Optional[bytes] = None
    payload: Optional[bytes] = None


@dataclass
class SettingArchivedPayload:
    version: int
    archived_at: int
    deprecated: bool
    payload: bytes
    dek: Optional[bytes] = None


@dataclass
class CreateSettingOutput:
    created_at: int
    updated_at: int
    version: int


UpdateSettingOutput = CreateSettingOutput


@dataclass
class StateInfo:
    name: str
    schnorr_key_name: str
    vetkd_key_name: str
    managers: set[Principal]
    auditors: set[Principal]
    allowed_apis: set[str]
    namespace_total: int = 0


@dataclass
class ECDHOutput:
    payload: Any  # COSE_Encrypt0 bytes or a SettingInfo with encrypted payload
    public_key: bytes  # server side ECDH public key


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

class CreateNamespaceInput(BaseModel):
    name: str
    visibility: int = VISIBILITY_PRIVATE
    desc: Optional[str] = None
    max_payload_size: Optional[int] = None
    managers: set[Principal]
    auditors: set[Principal] = Field(default_factory=set)
    users: set[Principal] = Field(default_factory=set)
    session_expires_in_ms: Optional[int] = Field(default=None, ge=0)

    model_config = {"arbitrary_types_allowed": True}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return validate_key(v)

    @field_validator("managers")
    @classmethod
    def validate_managers(cls, v: set[Principal]) -> set[Principal]:
        return validate_principals(v)

    @field_validator("max_payload_size")
    @classmethod
    def validate_max_payload_size(cls, v: Optional[int]) -> Optional[int]:
        return _validate_max_payload_size(v)

    @field_validator("visibility")
    @classmethod
    def validate_visibility(cls, v: int) -> int:
        if v not in (VISIBILITY_PRIVATE, VISIBILITY_PUBLIC):
            raise ValueError("visibility should be 0 or 1")
        return v


class UpdateNamespaceInput(BaseModel):
    name: str
    desc: Optional[str] = None
    max_payload_size: Optional[int] = None
    status: Optional[int] = Field(default=None, ge=-1, le=1)
    visibility: Optional[int] = None
    session_expires_in_ms: Optional[int] = Field(default=None, ge=0)

    @field_validator("max_payload_size")
    @classmethod
    def validate_max_payload_size(cls, v: Optional[int]) -> Optional[int]:
        return _validate_max_payload_size(v)

    @field_validator("visibility")
    @classmethod
    def validate_visibility(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v not in (VISIBILITY_PRIVATE, VISIBILITY_PUBLIC):
            raise ValueError("visibility should be 0 or 1")
        return v


class NamespaceDelegatorsInput(BaseModel):
    ns: str
    name: str
    delegators: set[Principal]

    model_config = {"arbitrary_types_allowed": True}

    @field_validator("ns")
    @classmethod
    def validate_ns(cls, v: str) -> str:
        return validate_key(v)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return validate_key(v.lower())

    @field_validator("delegators")
    @classmethod
    def validate_delegators(cls, v: set[Principal]) -> set[Principal]:
        return validate_principals(v)


class CreateSettingInput(BaseModel):
    payload: Optional[bytes] = None
    desc: Optional[str] = None
    status: Optional[int] = Field(default=None, ge=0, le=1)
    tags: Optional[dict[str, str]] = None
    ctype: Optional[int] = Field(default=None, ge=2, le=6)
    dek: Optional[bytes] = None

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: Optional[dict[str, str]]) -> Optional[dict[str, str]]:
        return _validate_tags(v)

    @model_validator(mode="after")
    def validate_readonly_payload(self) -> "CreateSettingInput":
        if self.status == STATUS_READ_ONLY and self.payload is None:
            raise ValueError("readonly setting should have payload")
        return self


class UpdateSettingInfoInput(BaseModel):
    desc: Optional[str] = None
    status: Optional[int] = Field(default=None, ge=-1, le=1)
    tags: Optional[dict[str, str]] = None

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: Optional[dict[str, str]]) -> Optional[dict[str, str]]:
        return _validate_tags(v)


class UpdateSettingPayloadInput(BaseModel):
    version: int = Field(ge=1)  # expected current version
    payload: bytes  # plain or encrypted payload
    dek: Optional[bytes] = None  # replaces the wrapped DEK when given
    status: Optional[int] = Field(default=None, ge=-1, le=1)
    deprecate_current: bool = False


class ECDHInput(BaseModel):
    nonce: bytes  # should be random for each request
    public_key: bytes  # client side X25519 public key

    @field_validator("nonce")
    @classmethod
    def validate_nonce(cls, v: bytes) -> bytes:
        if len(v) != 12:
            raise ValueError(f"nonce should be 12 bytes, got {len(v)}")
        return v

    @field_validator("public_key")
    @classmethod
    def validate_public_key(cls, v: bytes) -> bytes:
        if len(v) != 32:
            raise ValueError(f"public_key should be 32 bytes, got {len(v)}")
        return v


class SignDelegationInput(BaseModel):
    ns: str
    name: str
    pubkey: bytes  # DER encoded session public key
    sig: bytes  # signature over cbor([ns, name, caller])

    @field_validator("ns")
    @classmethod
    def validate_ns(cls, v: str) -> str:
        return validate_key(v)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return validate_key(v.lower())
