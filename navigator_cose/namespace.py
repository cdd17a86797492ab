"""
NamespaceStore: namespace lifecycle, membership and fixed identities.

Every mutation checks ``can_write_namespace`` on the stored record and
bumps ``updated_at``. Principal sets are validated before any lookup.
"""
import logging
from typing import Callable, Optional

from .exceptions import (
    AlreadyExists,
    InvalidArgument,
    NotEmpty,
    NotFound,
    PermissionDenied,
)
from .identity import fixed_identity
from .models import (
    DEFAULT_SESSION_EXPIRES_IN_MS,
    MAX_PAYLOAD_SIZE,
    SCOPE_USER,
    CreateNamespaceInput,
    Namespace,
    NamespaceDelegatorsInput,
    NamespaceInfo,
    SettingPathKey,
    UpdateNamespaceInput,
    validate_key,
    validate_principals,
)
from .principal import Principal
from .store import MemoryRepository

logger = logging.getLogger("navigator.cose")

DEFAULT_LIST_TAKE = 10
MAX_LIST_TAKE = 100


class NamespaceStore:
    """Namespace rows and the permission checks that guard them."""

    def __init__(self, repo: MemoryRepository, service_id: Principal):
        self._repo = repo
        self._service_id = service_id

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------

    def namespace(self, name: str) -> Namespace:
        """Return the stored namespace or raise NotFound."""
        ns = self._repo.namespaces.get(name)
        if ns is None:
            raise NotFound(f"namespace {name} not found")
        return ns

    def _writable(self, caller: Principal, name: str) -> Namespace:
        ns = self.namespace(name)
        if not ns.can_write_namespace(caller):
            raise PermissionDenied("no permission")
        return ns

    def _readable(self, caller: Principal, name: str) -> Namespace:
        ns = self.namespace(name)
        if not ns.can_read_namespace(caller):
            raise PermissionDenied("no permission")
        return ns

    def info(self, ns: Namespace) -> NamespaceInfo:
        return ns.to_info(
            settings_total=self._repo.count_settings(ns.name, 0),
            user_settings_total=self._repo.count_settings(ns.name, SCOPE_USER),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(self, creator: Principal, input: CreateNamespaceInput, now_ms: int) -> NamespaceInfo:
        if creator not in self._repo.state.managers:
            raise PermissionDenied("no permission")
        if input.name in self._repo.namespaces:
            raise AlreadyExists(f"namespace {input.name} already exists")

        ns = Namespace(
            name=input.name,
            desc=input.desc or "",
            created_at=now_ms,
            updated_at=now_ms,
            max_payload_size=input.max_payload_size or MAX_PAYLOAD_SIZE,
            visibility=input.visibility,
            managers=set(input.managers),
            auditors=set(input.auditors),
            users=set(input.users),
            session_expires_in_ms=(
                DEFAULT_SESSION_EXPIRES_IN_MS
                if input.session_expires_in_ms is None
                else input.session_expires_in_ms
            ),
        )
        self._repo.namespaces[ns.name] = ns
        logger.debug("Created namespace %s by %s", ns.name, creator)
        return self.info(ns)

    def get(self, caller: Principal, name: str) -> NamespaceInfo:
        return self.info(self._readable(caller, name))

    def list_namespaces(self, caller: Principal, prev: Optional[str] = None,
                        take: Optional[int] = None) -> list[NamespaceInfo]:
        """List namespaces in descending name order; global managers and auditors only."""
        state = self._repo.state
        if caller not in state.managers and caller not in state.auditors:
            raise PermissionDenied("no permission")
        take = min(DEFAULT_LIST_TAKE if take is None else take, MAX_LIST_TAKE)
        if take <= 0:
            return []
        return [self.info(ns) for ns in self._repo.list_namespaces(prev, take)]

    def update_info(self, caller: Principal, input: UpdateNamespaceInput, now_ms: int) -> None:
        ns = self._writable(caller, input.name)
        if input.desc is not None:
            ns.desc = input.desc
        if input.max_payload_size is not None:
            ns.max_payload_size = input.max_payload_size
        if input.status is not None:
            ns.status = input.status
        if input.visibility is not None:
            ns.visibility = input.visibility
        if input.session_expires_in_ms is not None:
            ns.session_expires_in_ms = input.session_expires_in_ms
        ns.updated_at = now_ms
        logger.debug("Updated namespace %s by %s", ns.name, caller)

    def delete(self, caller: Principal, name: str) -> None:
        self._writable(caller, name)
        total = self._repo.count_settings(name)
        if total > 0:
            raise NotEmpty(f"namespace {name} still holds {total} setting(s)")
        del self._repo.namespaces[name]
        logger.debug("Deleted namespace %s by %s", name, caller)

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def _update_members(
        self,
        caller: Principal,
        name: str,
        principals: set[Principal],
        now_ms: int,
        apply: Callable[[Namespace, set[Principal]], None],
    ) -> None:
        validate_principals(principals)
        ns = self._writable(caller, name)
        apply(ns, set(principals))
        ns.updated_at = now_ms

    def add_managers(self, caller: Principal, name: str, principals: set[Principal], now_ms: int) -> None:
        self._update_members(caller, name, principals, now_ms,
                             lambda ns, ps: ns.managers.update(ps))

    def remove_managers(self, caller: Principal, name: str, principals: set[Principal], now_ms: int) -> None:
        self._update_members(caller, name, principals, now_ms,
                             lambda ns, ps: ns.managers.difference_update(ps))

    def add_auditors(self, caller: Principal, name: str, principals: set[Principal], now_ms: int) -> None:
        self._update_members(caller, name, principals, now_ms,
                             lambda ns, ps: ns.auditors.update(ps))

    def remove_auditors(self, caller: Principal, name: str, principals: set[Principal], now_ms: int) -> None:
        self._update_members(caller, name, principals, now_ms,
                             lambda ns, ps: ns.auditors.difference_update(ps))

    def add_users(self, caller: Principal, name: str, principals: set[Principal], now_ms: int) -> None:
        self._update_members(caller, name, principals, now_ms,
                             lambda ns, ps: ns.users.update(ps))

    def remove_users(self, caller: Principal, name: str, principals: set[Principal], now_ms: int) -> None:
        self._update_members(caller, name, principals, now_ms,
                             lambda ns, ps: ns.users.difference_update(ps))

    def is_member(self, caller: Principal, name: str, kind: str, user: Principal) -> bool:
        ns = self._readable(caller, name)
        if kind == "manager":
            return user in ns.managers
        if kind == "auditor":
            return user in ns.auditors
        if kind == "user":
            return user in ns.users
        raise InvalidArgument(f"invalid member kind: {kind}")

    def top_up(self, caller: Principal, name: str, amount: int, now_ms: int) -> int:
        """Credit ``amount`` to the namespace gas balance; returns the amount received."""
        if amount <= 0:
            raise InvalidArgument("top up amount should be greater than 0")
        ns = self.namespace(name)
        ns.gas_balance += amount
        ns.updated_at = now_ms
        logger.debug("Namespace %s topped up by %s", name, caller)
        return amount

    # ------------------------------------------------------------------
    # Permission checks used by the setting and signing paths
    # ------------------------------------------------------------------

    def check_kek_permission(self, caller: Principal, spk: SettingPathKey) -> Namespace:
        ns = self.namespace(spk.ns)
        if not ns.has_kek_permission(caller, spk):
            raise PermissionDenied("no permission")
        return ns

    def check_signing_permission(self, caller: Principal, name: str) -> Namespace:
        ns = self.namespace(name)
        if not ns.has_signing_permission(caller):
            raise PermissionDenied("no permission")
        return ns

    def check_read_permission(self, caller: Principal, name: str) -> Namespace:
        return self._readable(caller, name)

    def identity_scope(self, caller: Principal, name: str) -> str:
        """Scope string carried by the CWT identity token of ``caller``."""
        ns = self.namespace(name)
        if caller in ns.managers:
            return f"Namespace.*:{name}"
        if caller in ns.users:
            if caller in ns.auditors:
                return f"Namespace.Read:{name} Namespace.*.SubjectedSetting:{name}"
            return f"Namespace.Read.Info:{name} Namespace.*.SubjectedSetting:{name}"
        if caller in ns.auditors:
            return f"Namespace.Read:{name}"
        raise PermissionDenied("no permission")

    # ------------------------------------------------------------------
    # Fixed identities
    # ------------------------------------------------------------------

    def get_delegators(self, caller: Principal, ns_name: str, name: str) -> set[Principal]:
        ns = self._readable(caller, ns_name)
        delegators = ns.fixed_id_names.get(name.lower())
        if delegators is None:
            raise NotFound(f"name {name} not found")
        return set(delegators)

    def add_delegator(self, caller: Principal, input: NamespaceDelegatorsInput, now_ms: int) -> set[Principal]:
        ns = self._writable(caller, input.ns)
        delegators = ns.fixed_id_names.setdefault(input.name, set())
        delegators.update(input.delegators)
        ns.updated_at = now_ms
        return set(delegators)

    def remove_delegator(self, caller: Principal, input: NamespaceDelegatorsInput, now_ms: int) -> None:
        ns = self._writable(caller, input.ns)
        delegators = ns.fixed_id_names.get(input.name)
        if delegators is not None:
            delegators.difference_update(input.delegators)
            if not delegators:
                del ns.fixed_id_names[input.name]
        ns.updated_at = now_ms

    def session_expires_in_ms(self, caller: Principal, ns_name: str, name: str) -> int:
        """Session lifetime granted to ``caller`` as delegator of ``name``."""
        ns = self.namespace(ns_name)
        delegators = ns.fixed_id_names.get(name.lower())
        if delegators is None:
            raise NotFound(f"name {name} not found")
        if caller not in delegators:
            raise PermissionDenied("caller is not a delegator")
        return ns.session_expires_in_ms

    def get_fixed_identity(self, ns_name: str, name: str) -> Principal:
        """Pure derivation; the namespace does not need to exist."""
        validate_key(ns_name)
        return fixed_identity(self._service_id, ns_name, name.lower())
