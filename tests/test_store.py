"""
Tests for principals, setting path keys and repository snapshots.
"""
import orjson
import pytest

from navigator_cose.models import (
    Namespace,
    Setting,
    SettingArchived,
    SettingPathKey,
    State,
)
from navigator_cose.principal import ANONYMOUS, Principal
from navigator_cose.store import MemoryRepository

from conftest import SERVICE_ID, make_principal, make_spk


# --- Test Principal ---

class TestPrincipal:
    """Tests for the principal text encoding."""

    def test_anonymous_text(self):
        """Test the well-known anonymous principal text."""
        assert ANONYMOUS.to_text() == "2vxsx-fae"
        assert Principal.from_text("2vxsx-fae").is_anonymous

    def test_text_roundtrip(self):
        """Test principals survive their text form."""
        for principal in (SERVICE_ID, make_principal(9), Principal(b"")):
            assert Principal.from_text(principal.to_text()) == principal

    def test_bad_checksum(self):
        """Test a changed character fails the CRC check."""
        text = make_principal(9).to_text()
        broken = ("b" if text[0] != "b" else "c") + text[1:]
        with pytest.raises(ValueError):
            Principal.from_text(broken)

    def test_too_long(self):
        """Test principals are at most 29 bytes."""
        with pytest.raises(ValueError):
            Principal(b"\x00" * 30)

    def test_ordering(self):
        """Test principals order by raw bytes."""
        assert make_principal(1) < make_principal(2)
        assert sorted([make_principal(3), make_principal(1)]) == [make_principal(1), make_principal(3)]


# --- Test Setting Path Keys ---

class TestSettingPathKey:
    """Tests for SettingPathKey ordering and serialization."""

    def test_ordering(self):
        """Test keys order by namespace, scope, subject, key then version."""
        a, b = make_principal(1), make_principal(2)
        keys = [
            make_spk("b", a),
            make_spk("a", b, key=b"x"),
            make_spk("a", a, user_owned=True),
            make_spk("a", b, key=b"a"),
            make_spk("a", b, key=b"a", version=2),
        ]
        assert sorted(keys) == [
            make_spk("a", b, key=b"a"),
            make_spk("a", b, key=b"a", version=2),
            make_spk("a", b, key=b"x"),
            make_spk("a", a, user_owned=True),
            make_spk("b", a),
        ]

    def test_dict_roundtrip(self):
        """Test keys survive their snapshot form."""
        spk = make_spk("app", make_principal(4), key=b"\x00\xff", user_owned=True, version=3)
        assert SettingPathKey.from_dict(spk.to_dict()) == spk

    def test_current(self):
        """Test the live record key has version 0."""
        spk = make_spk("app", make_principal(4), version=7)
        assert spk.current.version == 0
        assert spk.with_version(2).version == 2


# --- Test Snapshots ---

class TestSnapshot:
    """Tests for MemoryRepository snapshots."""

    def _repo(self):
        owner = make_principal(2)
        repo = MemoryRepository(State(managers={owner}, allowed_apis={"setting_create"}))
        repo.namespaces["app"] = Namespace(
            name="app",
            managers={owner},
            fixed_id_names={"bot": {make_principal(4)}},
            gas_balance=2 ** 70,
        )
        spk = make_spk("app", owner, key=b"db")
        repo.settings[spk] = Setting(
            version=2, payload=b"\xa0", readers={make_principal(5)}, tags={"env": "prod"},
        )
        repo.archive(spk.with_version(1), SettingArchived(archived_at=10, deprecated=True, payload=b"\x01"))
        return repo, spk

    def test_roundtrip(self):
        """Test every table survives dumps and loads."""
        repo, spk = self._repo()
        restored = MemoryRepository.loads(repo.dumps())
        assert restored.state == repo.state
        assert restored.namespaces == repo.namespaces
        assert restored.get_setting(spk) == repo.get_setting(spk)
        assert restored.get_archived(spk.with_version(1)) == repo.get_archived(spk.with_version(1))

    def test_big_gas_balance(self):
        """Test balances beyond 64 bits are kept as text."""
        repo, _ = self._repo()
        data = orjson.loads(repo.dumps())
        assert data["namespaces"][0]["gas_balance"] == str(2 ** 70)

    def test_unsupported_version(self):
        """Test unknown snapshot versions are refused."""
        with pytest.raises(ValueError):
            MemoryRepository.from_dict({"version": 99})

    def test_save_is_atomic(self, tmp_path):
        """Test save leaves only the final file behind."""
        repo, spk = self._repo()
        path = tmp_path / "snapshot.json"
        repo.save(path)
        assert [p.name for p in tmp_path.iterdir()] == ["snapshot.json"]
        assert MemoryRepository.load(path).get_setting(spk).version == 2

    def test_remove_setting_drops_archive(self):
        """Test removing a setting removes its archived versions."""
        repo, spk = self._repo()
        repo.remove_setting(spk)
        assert repo.get_setting(spk) is None
        assert repo.archived == {}
