"""Shared fixtures for the navigator_cose test-suite."""
import pytest

from navigator_cose.config import CoseConfig
from navigator_cose.models import CreateNamespaceInput, SettingPathKey
from navigator_cose.principal import Principal
from navigator_cose.service import CoseService

SIGNER_SEED = bytes(range(32))
SERVICE_ID = Principal(bytes.fromhex("00000000000000070101"))


def make_principal(n: int) -> Principal:
    """Self-authenticating style principal, distinct per ``n``."""
    return Principal(bytes([n]) * 28 + b"\x02")


class FakeClock:
    """Millisecond clock under test control."""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def make_spk(ns: str, subject: Principal, key: bytes = b"cfg",
             user_owned: bool = False, version: int = 0) -> SettingPathKey:
    return SettingPathKey(
        ns=ns, scope=1 if user_owned else 0, subject=subject, key=key, version=version,
    )


@pytest.fixture
def controller():
    return make_principal(1)


@pytest.fixture
def manager():
    return make_principal(2)


@pytest.fixture
def auditor():
    return make_principal(3)


@pytest.fixture
def user():
    return make_principal(4)


@pytest.fixture
def outsider():
    return make_principal(5)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(controller, manager, auditor):
    return CoseConfig(
        service_id=SERVICE_ID,
        signer_seed=SIGNER_SEED,
        controllers={controller},
        managers={manager},
        auditors={auditor},
    )


@pytest.fixture
def service(config, clock):
    """Service with in-memory tables and the fake clock."""
    svc = CoseService(config, clock=clock)
    return svc


@pytest.fixture
def app_ns(service, manager, auditor, user, clock):
    """Create the ``app`` namespace with one member of each role."""
    return service.namespaces.create(
        manager,
        CreateNamespaceInput(
            name="app",
            desc="application settings",
            managers={manager},
            auditors={auditor},
            users={user},
        ),
        clock(),
    )
