"""
CoseService: the RPC surface of the store.

Every method takes the calling principal first. Update methods reject the
anonymous principal and any API missing from a non-empty allow-list.
Methods that await the signer, the vetKD oracle or the randomness source
re-validate permissions (and setting versions) after resuming and before
returning secret material or committing state.

Usage::

    config = CoseConfig.from_env()
    service = CoseService(config)
    await service.admin_create_namespace(manager, CreateNamespaceInput(...))

Security Note:
    Never log payloads, DEKs, KEKs or ECDH secrets. Only log namespace names,
    setting paths and principals.
"""
import logging
import time
from pathlib import Path
from typing import Callable, Optional, Union

from .config import CoseConfig
from .cose.cwt import encode_claims
from .cose.ecdh import ECDHExchange, RandomSource, system_random
from .cose.encrypt0 import decode_encrypt0, encode_encrypt0
from .cose.key import unwrap_symmetric_key, wrap_symmetric_key
from .cose.sign1 import cose_sign1
from .delegation import DelegationIssuer, SignedDelegation, SignInResponse
from .exceptions import NotFound, PermissionDenied, VersionMismatch
from .models import (
    CreateNamespaceInput,
    CreateSettingInput,
    CreateSettingOutput,
    ECDHInput,
    ECDHOutput,
    NamespaceDelegatorsInput,
    NamespaceInfo,
    SettingArchivedPayload,
    SettingInfo,
    SettingPath,
    SettingPathKey,
    SignDelegationInput,
    State,
    StateInfo,
    UpdateNamespaceInput,
    UpdateSettingInfoInput,
    UpdateSettingOutput,
    UpdateSettingPayloadInput,
    validate_key,
    validate_principals,
)
from .namespace import NamespaceStore
from .oracle import (
    IDENTITY_DOMAIN,
    SIGNING_DOMAIN,
    DeterministicSigner,
    Ed25519Signer,
    KeyDerivationOracle,
    VetKDOracle,
)
from .principal import Principal
from .setting import SettingStore
from .store import MemoryRepository

logger = logging.getLogger("navigator.cose")

CWT_EXPIRATION_SECONDS = 3600
CWT_ID_SIZE = 16


def now_ms() -> int:
    return int(time.time() * 1000)


class CoseService:
    """Namespaces, settings, key exchange and delegations behind one facade."""

    def __init__(
        self,
        config: CoseConfig,
        signer: Optional[DeterministicSigner] = None,
        vetkd: Optional[VetKDOracle] = None,
        random_source: RandomSource = system_random,
        clock: Callable[[], int] = now_ms,
        repo: Optional[MemoryRepository] = None,
    ):
        self.config = config
        self._clock = clock
        self._random = random_source
        self.repo = repo or MemoryRepository(
            State(
                name=config.name,
                schnorr_key_name=config.schnorr_key_name,
                vetkd_key_name=config.vetkd_key_name,
                controllers=set(config.controllers),
                managers=set(config.managers),
                auditors=set(config.auditors),
                allowed_apis=set(config.allowed_apis),
            )
        )
        self.oracle = KeyDerivationOracle(signer or Ed25519Signer(config.signer_seed), vetkd)
        self.ecdh = ECDHExchange(random_source)
        self._bind(self.repo)

    def _bind(self, repo: MemoryRepository) -> None:
        self.repo = repo
        self.namespaces = NamespaceStore(repo, self.config.service_id)
        self.settings = SettingStore(repo, self.namespaces)
        self.delegations = DelegationIssuer(
            self.namespaces, self.oracle, self.config.service_id,
        )

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    @property
    def state(self) -> State:
        return self.repo.state

    def _authenticated(self, caller: Principal) -> None:
        if caller.is_anonymous:
            raise PermissionDenied("anonymous user is not allowed")

    def _allowed_api(self, caller: Principal, api: str) -> None:
        """Guard for update methods."""
        self._authenticated(caller)
        allowed = self.state.allowed_apis
        if allowed and api not in allowed:
            raise PermissionDenied(f"API {api} is not allowed")

    def _controller(self, caller: Principal) -> None:
        if caller not in self.state.controllers:
            raise PermissionDenied("user is not a controller")

    def _spk(self, caller: Principal, path: SettingPath) -> SettingPathKey:
        return SettingPathKey.from_path(path, caller)

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    async def admin_add_managers(self, caller: Principal, principals: set[Principal]) -> None:
        self._controller(caller)
        validate_principals(principals)
        self.state.managers.update(principals)

    async def admin_remove_managers(self, caller: Principal, principals: set[Principal]) -> None:
        self._controller(caller)
        validate_principals(principals)
        self.state.managers.difference_update(principals)

    async def admin_add_auditors(self, caller: Principal, principals: set[Principal]) -> None:
        self._controller(caller)
        validate_principals(principals)
        self.state.auditors.update(principals)

    async def admin_remove_auditors(self, caller: Principal, principals: set[Principal]) -> None:
        self._controller(caller)
        validate_principals(principals)
        self.state.auditors.difference_update(principals)

    async def admin_set_allowed_apis(self, caller: Principal, apis: set[str]) -> None:
        """Replace the allow-list; an empty set allows every API."""
        self._controller(caller)
        self.state.allowed_apis = set(apis)
        logger.info("Allowed APIs set to %s", sorted(apis) or "all")

    async def admin_create_namespace(self, caller: Principal, input: CreateNamespaceInput) -> NamespaceInfo:
        self._authenticated(caller)
        return self.namespaces.create(caller, input, self._clock())

    async def admin_list_namespace(
        self, caller: Principal, prev: Optional[str] = None, take: Optional[int] = None,
    ) -> list[NamespaceInfo]:
        return self.namespaces.list_namespaces(caller, prev, take)

    async def state_get_info(self, caller: Principal) -> StateInfo:
        state = self.state
        return StateInfo(
            name=state.name,
            schnorr_key_name=state.schnorr_key_name,
            vetkd_key_name=state.vetkd_key_name,
            managers=set(state.managers),
            auditors=set(state.auditors),
            allowed_apis=set(state.allowed_apis),
            namespace_total=self.repo.namespace_count(),
        )

    # ------------------------------------------------------------------
    # Namespaces
    # ------------------------------------------------------------------

    async def namespace_get_info(self, caller: Principal, ns: str) -> NamespaceInfo:
        return self.namespaces.get(caller, ns)

    async def namespace_update_info(self, caller: Principal, input: UpdateNamespaceInput) -> None:
        self._allowed_api(caller, "namespace_update_info")
        self.namespaces.update_info(caller, input, self._clock())

    async def namespace_delete(self, caller: Principal, ns: str) -> None:
        self._allowed_api(caller, "namespace_delete")
        self.namespaces.delete(caller, ns)

    async def namespace_add_managers(self, caller: Principal, ns: str, principals: set[Principal]) -> None:
        self._allowed_api(caller, "namespace_add_managers")
        self.namespaces.add_managers(caller, ns, principals, self._clock())

    async def namespace_remove_managers(self, caller: Principal, ns: str, principals: set[Principal]) -> None:
        self._allowed_api(caller, "namespace_remove_managers")
        self.namespaces.remove_managers(caller, ns, principals, self._clock())

    async def namespace_add_auditors(self, caller: Principal, ns: str, principals: set[Principal]) -> None:
        self._allowed_api(caller, "namespace_add_auditors")
        self.namespaces.add_auditors(caller, ns, principals, self._clock())

    async def namespace_remove_auditors(self, caller: Principal, ns: str, principals: set[Principal]) -> None:
        self._allowed_api(caller, "namespace_remove_auditors")
        self.namespaces.remove_auditors(caller, ns, principals, self._clock())

    async def namespace_add_users(self, caller: Principal, ns: str, principals: set[Principal]) -> None:
        self._allowed_api(caller, "namespace_add_users")
        self.namespaces.add_users(caller, ns, principals, self._clock())

    async def namespace_remove_users(self, caller: Principal, ns: str, principals: set[Principal]) -> None:
        self._allowed_api(caller, "namespace_remove_users")
        self.namespaces.remove_users(caller, ns, principals, self._clock())

    async def namespace_is_member(self, caller: Principal, ns: str, kind: str, user: Principal) -> bool:
        self._authenticated(caller)
        return self.namespaces.is_member(caller, ns, kind, user)

    async def namespace_top_up(self, caller: Principal, ns: str, amount: int) -> int:
        self._allowed_api(caller, "namespace_top_up")
        return self.namespaces.top_up(caller, ns, amount, self._clock())

    async def namespace_list_setting_keys(
        self, caller: Principal, ns: str, user_owned: bool, subject: Optional[Principal] = None,
    ) -> list[tuple[Principal, bytes]]:
        return self.settings.list_keys(caller, ns, user_owned, subject)

    async def namespace_get_delegators(self, caller: Principal, ns: str, name: str) -> set[Principal]:
        return self.namespaces.get_delegators(caller, ns, name)

    async def namespace_add_delegator(self, caller: Principal, input: NamespaceDelegatorsInput) -> set[Principal]:
        self._allowed_api(caller, "namespace_add_delegator")
        return self.namespaces.add_delegator(caller, input, self._clock())

    async def namespace_remove_delegator(self, caller: Principal, input: NamespaceDelegatorsInput) -> None:
        self._allowed_api(caller, "namespace_remove_delegator")
        self.namespaces.remove_delegator(caller, input, self._clock())

    async def namespace_get_fixed_identity(self, ns: str, name: str) -> Principal:
        return self.namespaces.get_fixed_identity(ns, name)

    async def namespace_sign_delegation(self, caller: Principal, input: SignDelegationInput) -> SignInResponse:
        self._allowed_api(caller, "namespace_sign_delegation")
        return await self.delegations.sign_delegation(caller, input, self._clock())

    async def get_delegation(self, seed: bytes, pubkey: bytes, expiration: int) -> SignedDelegation:
        return self.delegations.get_delegation(seed, pubkey, expiration)

    # ------------------------------------------------------------------
    # Namespace signing
    # ------------------------------------------------------------------

    @staticmethod
    def _signing_path(ns: str, derivation_path: list[bytes]) -> list[bytes]:
        return [ns.encode("utf-8"), *[bytes(p) for p in derivation_path]]

    async def namespace_public_key(
        self, caller: Principal, ns: str, derivation_path: list[bytes],
    ) -> bytes:
        self.namespaces.check_read_permission(caller, ns)
        return await self.oracle.public_key(SIGNING_DOMAIN, self._signing_path(ns, derivation_path))

    async def namespace_sign(
        self, caller: Principal, ns: str, derivation_path: list[bytes], message: bytes,
    ) -> bytes:
        self._authenticated(caller)
        self.namespaces.check_signing_permission(caller, ns)
        sig = await self.oracle.sign(
            SIGNING_DOMAIN, self._signing_path(ns, derivation_path), message,
        )
        self.namespaces.check_signing_permission(caller, ns)
        return sig

    async def identity_public_key(self) -> bytes:
        """Raw Ed25519 key that verifies CWT identity tokens."""
        return await self.oracle.public_key(IDENTITY_DOMAIN, [])

    async def namespace_sign_identity(self, caller: Principal, ns: str, audience: str) -> bytes:
        """Issue a COSE_Sign1 wrapped CWT naming the caller's scope in ``ns``.

        The signature covers the caller's raw principal bytes as external AAD.
        """
        self._authenticated(caller)
        validate_key(ns)
        scope = self.namespaces.identity_scope(caller, ns)
        now_sec = self._clock() // 1000
        cwt_id = await self._random(CWT_ID_SIZE)
        payload = encode_claims(
            issuer=self.config.service_id.to_text(),
            subject=caller.to_text(),
            audience=audience,
            issued_at=now_sec,
            expires_in=CWT_EXPIRATION_SECONDS,
            cwt_id=cwt_id,
            scope=scope,
        )
        sign1 = cose_sign1(payload)
        sign1.signature = await self.oracle.sign(IDENTITY_DOMAIN, [], sign1.tbs_data(caller.raw))
        if self.namespaces.identity_scope(caller, ns) != scope:
            raise PermissionDenied("namespace membership changed")
        return sign1.to_bytes()

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def setting_create(
        self, caller: Principal, path: SettingPath, input: CreateSettingInput,
    ) -> CreateSettingOutput:
        self._allowed_api(caller, "setting_create")
        return self.settings.create(caller, self._spk(caller, path), input, self._clock())

    async def setting_update_payload(
        self, caller: Principal, path: SettingPath, input: UpdateSettingPayloadInput,
    ) -> UpdateSettingOutput:
        self._allowed_api(caller, "setting_update_payload")
        return self.settings.update_payload(caller, self._spk(caller, path), input, self._clock())

    async def setting_update_info(
        self, caller: Principal, path: SettingPath, input: UpdateSettingInfoInput,
    ) -> UpdateSettingOutput:
        self._allowed_api(caller, "setting_update_info")
        return self.settings.update_info(caller, self._spk(caller, path), input, self._clock())

    async def setting_get(self, caller: Principal, path: SettingPath) -> SettingInfo:
        return self.settings.get(caller, self._spk(caller, path))

    async def setting_get_info(self, caller: Principal, path: SettingPath) -> SettingInfo:
        return self.settings.get_info(caller, self._spk(caller, path))

    async def setting_get_archived_payload(
        self, caller: Principal, path: SettingPath,
    ) -> SettingArchivedPayload:
        return self.settings.get_archived_payload(caller, self._spk(caller, path))

    async def setting_add_readers(
        self, caller: Principal, path: SettingPath, readers: set[Principal],
    ) -> None:
        self._allowed_api(caller, "setting_add_readers")
        self.settings.add_readers(caller, self._spk(caller, path), readers, self._clock())

    async def setting_remove_readers(
        self, caller: Principal, path: SettingPath, readers: set[Principal],
    ) -> None:
        self._allowed_api(caller, "setting_remove_readers")
        self.settings.remove_readers(caller, self._spk(caller, path), readers, self._clock())

    async def setting_delete(self, caller: Principal, path: SettingPath) -> None:
        self._allowed_api(caller, "setting_delete")
        self.settings.delete(caller, self._spk(caller, path))

    # ------------------------------------------------------------------
    # Key exchange
    # ------------------------------------------------------------------

    async def ecdh_cose_encrypted_key(
        self, caller: Principal, path: SettingPath, ecdh: ECDHInput,
    ) -> ECDHOutput:
        """Return the setting KEK as a COSE_Key, encrypted under an ECDH secret.

        The client decrypts ``payload`` with the X25519 secret shared with
        ``public_key``, using the subject's raw principal as AAD.
        """
        self._allowed_api(caller, "ecdh_cose_encrypted_key")
        spk = self._spk(caller, path)
        self.namespaces.check_kek_permission(caller, spk)

        kek = await self.oracle.setting_kek(spk, spk.key)
        shared_secret, public_key = await self.ecdh.server_exchange(ecdh.public_key, ecdh.nonce)

        self.namespaces.check_kek_permission(caller, spk)
        key = wrap_symmetric_key(kek, key_id=spk.key)
        payload = encode_encrypt0(key, shared_secret, spk.subject.raw, ecdh.nonce)
        logger.debug("Issued encrypted KEK for %s to %s", spk, caller)
        return ECDHOutput(payload=payload, public_key=public_key)

    async def ecdh_setting_get(
        self, caller: Principal, path: SettingPath, ecdh: ECDHInput,
    ) -> ECDHOutput:
        """Return the setting with its plaintext payload re-encrypted under ECDH.

        Encrypted settings are unwrapped server side: the KEK decrypts the DEK,
        the DEK decrypts the payload. They also require KEK permission, so
        a readers grant or a public namespace alone does not expose them.
        """
        self._allowed_api(caller, "ecdh_setting_get")
        spk = self._spk(caller, path)
        info = self.settings.get(caller, spk)
        if info.payload is None:
            raise NotFound(f"setting {spk} has no payload")

        aad = spk.subject.raw
        data = info.payload
        if info.dek is not None:
            # encrypted payloads need KEK permission
            self.namespaces.check_kek_permission(caller, spk)
            kek = await self.oracle.setting_kek(spk, spk.key)
            self.namespaces.check_kek_permission(caller, spk)
            dek = unwrap_symmetric_key(decode_encrypt0(info.dek, kek, aad))
            data = decode_encrypt0(info.payload, dek, aad)
        shared_secret, public_key = await self.ecdh.server_exchange(ecdh.public_key, ecdh.nonce)

        current = self.settings.get_info(caller, spk)
        if current.version != info.version and spk.version == 0:
            raise VersionMismatch(
                f"setting {spk} changed to version {current.version} during the request"
            )
        info.payload = encode_encrypt0(data, shared_secret, aad, ecdh.nonce)
        return ECDHOutput(payload=info, public_key=public_key)

    async def vetkd_public_key(self, caller: Principal, path: SettingPath) -> bytes:
        spk = self._spk(caller, path)
        self.namespaces.check_read_permission(caller, spk.ns)
        return await self.oracle.vetkd_public_key(spk)

    async def vetkd_encrypted_key(
        self, caller: Principal, path: SettingPath, transport_public_key: bytes,
    ) -> bytes:
        self._allowed_api(caller, "vetkd_encrypted_key")
        spk = self._spk(caller, path)
        self.namespaces.check_kek_permission(caller, spk)
        key = await self.oracle.derive_vetkd_key(spk, spk.key, transport_public_key)
        self.namespaces.check_kek_permission(caller, spk)
        return key

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: Union[str, Path, None] = None) -> None:
        path = path or self.config.snapshot_path
        if not path:
            raise ValueError("no snapshot path configured")
        self.repo.save(path)

    def load(self, path: Union[str, Path, None] = None) -> None:
        """Replace the in-memory tables with a snapshot.

        Delegation signatures are not part of snapshots and are dropped.
        """
        path = path or self.config.snapshot_path
        if not path:
            raise ValueError("no snapshot path configured")
        self._bind(MemoryRepository.load(path))
