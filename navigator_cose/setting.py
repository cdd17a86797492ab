"""
SettingStore: versioned settings inside a namespace.

Lifecycle of a setting::

    absent -> v1 (rw) -> v2 (rw) -> ... -> vN (ro)

Each payload update archives the superseded payload and DEK under the
pre-update SettingPathKey and increments ``version``. Read-only settings
(status 1) reject payload writes; archived settings (status -1) block writes
until reopened through ``update_info``.

Encrypted settings carry a COSE_Encrypt0 ``dek``; their payload must also be
a COSE_Encrypt0 item. Plaintext payloads must be CBOR of the declared ctype.
"""
import logging
from typing import Callable, Optional, TypeVar

from .cose.encrypt0 import try_decode_encrypt0
from .cose.payload import check_payload_size, try_decode_payload
from .exceptions import Disabled, NotFound, PermissionDenied, VersionMismatch
from .models import (
    STATUS_READ_ONLY,
    STATUS_READ_WRITE,
    CreateSettingInput,
    CreateSettingOutput,
    Namespace,
    Setting,
    SettingArchived,
    SettingArchivedPayload,
    SettingInfo,
    SettingPathKey,
    UpdateSettingInfoInput,
    UpdateSettingOutput,
    UpdateSettingPayloadInput,
    validate_principals,
)
from .namespace import NamespaceStore
from .principal import Principal
from .store import MemoryRepository

logger = logging.getLogger("navigator.cose")

T = TypeVar("T")


class SettingStore:
    """Setting and archived payload rows, guarded by the namespace ACLs."""

    def __init__(self, repo: MemoryRepository, namespaces: NamespaceStore):
        self._repo = repo
        self._namespaces = namespaces

    # ------------------------------------------------------------------
    # Permission helpers
    # ------------------------------------------------------------------

    def _readable(self, caller: Principal, spk: SettingPathKey) -> tuple[Namespace, Setting]:
        """Resolve a setting the caller may read.

        Raises:
            NotFound: Namespace or setting missing, or version above current.
            PermissionDenied: The caller has no read access.
        """
        ns = self._namespaces.namespace(spk.ns)
        can = ns.partial_can_read_setting(caller, spk)
        if can is False:
            raise PermissionDenied("no permission")
        setting = self._repo.get_setting(spk)
        if setting is None:
            raise NotFound(f"setting {spk} not found")
        if can is None and caller not in setting.readers:
            raise PermissionDenied("no permission")
        if spk.version > setting.version:
            raise NotFound(f"setting {spk} version not found")
        return ns, setting

    def _writable(self, caller: Principal, spk: SettingPathKey) -> tuple[Namespace, Setting]:
        ns = self._namespaces.namespace(spk.ns)
        if not ns.can_write_setting(caller, spk):
            raise PermissionDenied("no permission")
        setting = self._repo.get_setting(spk)
        if setting is None:
            raise NotFound(f"setting {spk} not found")
        return ns, setting

    def _with_setting_mut(
        self,
        caller: Principal,
        spk: SettingPathKey,
        now_ms: int,
        apply: Callable[[Setting], T],
    ) -> T:
        _, setting = self._writable(caller, spk)
        if spk.version != 0 and spk.version != setting.version:
            raise VersionMismatch(
                f"version mismatch, expected {setting.version}, got {spk.version}"
            )
        if setting.status == STATUS_READ_ONLY:
            raise Disabled("readonly setting can not be updated")
        result = apply(setting)
        setting.updated_at = now_ms
        return result

    @staticmethod
    def _validate_encrypted(max_size: int, payload: Optional[bytes]) -> None:
        if payload is not None:
            check_payload_size(max_size, payload)
            try_decode_encrypt0(payload)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        caller: Principal,
        spk: SettingPathKey,
        input: CreateSettingInput,
        now_ms: int,
    ) -> CreateSettingOutput:
        ns = self._namespaces.namespace(spk.ns)
        if not ns.can_write_setting(caller, spk):
            raise PermissionDenied("no permission")
        if spk.version != 0 or self._repo.get_setting(spk) is not None:
            raise VersionMismatch(f"setting {spk} already exists")

        if input.dek is not None:
            try_decode_encrypt0(input.dek)
            self._validate_encrypted(ns.max_payload_size, input.payload)
        elif input.payload is not None:
            try_decode_payload(ns.max_payload_size, input.payload, input.ctype)

        setting = Setting(
            desc=input.desc or "",
            created_at=now_ms,
            updated_at=now_ms,
            status=STATUS_READ_WRITE if input.status is None else input.status,
            version=1,
            tags=dict(input.tags or {}),
            ctype=input.ctype,
            payload=input.payload,
            dek=input.dek,
        )
        self._repo.settings[spk.current] = setting
        ns.payload_bytes_total += setting.size
        logger.debug("Created setting %s by %s", spk, caller)
        return CreateSettingOutput(created_at=now_ms, updated_at=now_ms, version=1)

    def update_payload(
        self,
        caller: Principal,
        spk: SettingPathKey,
        input: UpdateSettingPayloadInput,
        now_ms: int,
    ) -> UpdateSettingOutput:
        ns, setting = self._writable(caller, spk)
        if setting.status != STATUS_READ_WRITE:
            raise Disabled("readonly or archived setting can not be updated")
        if input.version != setting.version:
            raise VersionMismatch(
                f"version mismatch, expected {setting.version}, got {input.version}"
            )

        dek = input.dek if input.dek is not None else setting.dek
        if input.dek is not None:
            try_decode_encrypt0(input.dek)
        if dek is not None:
            self._validate_encrypted(ns.max_payload_size, input.payload)
        else:
            try_decode_payload(ns.max_payload_size, input.payload, setting.ctype)

        if setting.payload is not None:
            self._repo.archive(
                spk.with_version(setting.version),
                SettingArchived(
                    archived_at=now_ms,
                    deprecated=input.deprecate_current,
                    payload=setting.payload,
                    dek=setting.dek,
                ),
            )

        if input.status is not None:
            setting.status = input.status
        setting.payload = input.payload
        setting.dek = dek
        setting.version += 1
        setting.updated_at = now_ms
        ns.payload_bytes_total += len(input.payload) + len(input.dek or b"")
        logger.debug("Updated setting %s payload to version %d by %s",
                     spk, setting.version, caller)
        return UpdateSettingOutput(
            created_at=setting.created_at,
            updated_at=setting.updated_at,
            version=setting.version,
        )

    def update_info(
        self,
        caller: Principal,
        spk: SettingPathKey,
        input: UpdateSettingInfoInput,
        now_ms: int,
    ) -> UpdateSettingOutput:
        _, setting = self._writable(caller, spk)
        if spk.version != 0 and spk.version != setting.version:
            raise VersionMismatch(
                f"version mismatch, expected {setting.version}, got {spk.version}"
            )
        if (
            setting.status == STATUS_READ_ONLY
            and input.status is not None
            and input.status != setting.status
        ):
            raise Disabled("readonly setting status can not be changed")

        if input.status is not None:
            setting.status = input.status
        if input.desc is not None:
            setting.desc = input.desc
        if input.tags is not None:
            setting.tags = dict(input.tags)
        setting.updated_at = now_ms
        logger.debug("Updated setting %s info by %s", spk, caller)
        return UpdateSettingOutput(
            created_at=setting.created_at,
            updated_at=setting.updated_at,
            version=setting.version,
        )

    def add_readers(self, caller: Principal, spk: SettingPathKey,
                    readers: set[Principal], now_ms: int) -> None:
        validate_principals(readers)
        self._with_setting_mut(caller, spk, now_ms, lambda s: s.readers.update(readers))

    def remove_readers(self, caller: Principal, spk: SettingPathKey,
                       readers: set[Principal], now_ms: int) -> None:
        validate_principals(readers)
        self._with_setting_mut(
            caller, spk, now_ms, lambda s: s.readers.difference_update(readers)
        )

    def delete(self, caller: Principal, spk: SettingPathKey) -> None:
        ns, setting = self._writable(caller, spk)
        if setting.status == STATUS_READ_ONLY:
            raise Disabled("readonly setting can not be deleted")
        self._repo.remove_setting(spk)
        ns.payload_bytes_total = max(0, ns.payload_bytes_total - setting.size)
        logger.debug("Deleted setting %s by %s", spk, caller)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_info(self, caller: Principal, spk: SettingPathKey) -> SettingInfo:
        _, setting = self._readable(caller, spk)
        return setting.to_info(spk)

    def get(self, caller: Principal, spk: SettingPathKey) -> SettingInfo:
        """Return the setting with payload and DEK.

        Version 0 or the current version reads the live record; an older
        version is served from the archive.
        """
        _, setting = self._readable(caller, spk)
        if spk.version == 0 or spk.version == setting.version:
            return setting.to_info(spk, with_payload=True)

        archived = self._repo.get_archived(spk)
        if archived is None:
            raise NotFound(f"setting {spk} payload not found")
        info = setting.to_info(spk)
        info.version = spk.version
        info.updated_at = archived.archived_at
        info.payload = archived.payload
        info.dek = archived.dek
        return info

    def get_archived_payload(self, caller: Principal, spk: SettingPathKey) -> SettingArchivedPayload:
        _, setting = self._readable(caller, spk)
        if spk.version == 0 or spk.version >= setting.version:
            raise NotFound(f"setting {spk} has no archived version {spk.version}")
        archived = self._repo.get_archived(spk)
        if archived is None:
            raise NotFound(f"setting {spk} payload not found")
        return SettingArchivedPayload(
            version=spk.version,
            archived_at=archived.archived_at,
            deprecated=archived.deprecated,
            payload=archived.payload,
            dek=archived.dek,
        )

    def list_keys(
        self,
        caller: Principal,
        ns_name: str,
        user_owned: bool,
        subject: Optional[Principal] = None,
    ) -> list[tuple[Principal, bytes]]:
        """List (subject, key) pairs in SettingPathKey order.

        Full readers may list any subject; namespace users only their own.
        """
        ns = self._namespaces.namespace(ns_name)
        if not ns.has_full_read(caller):
            if caller not in ns.users or ns.status < 0 or subject not in (None, caller):
                raise PermissionDenied("no permission")
            subject = caller
        scope = 1 if user_owned else 0
        return [
            (spk.subject, spk.key)
            for spk, _ in self._repo.scan_settings(ns_name, scope, subject)
        ]

    def count(self, ns_name: str) -> int:
        return self._repo.count_settings(ns_name)
