"""
Tests for the ECDH exchange and the key derivation oracle.
"""
import pytest

from navigator_cose.cose.crypto import mac3_256
from navigator_cose.cose.ecdh import (
    ECDHExchange,
    client_shared_secret,
    ecdh_x25519,
    generate_client_keypair,
)
from navigator_cose.exceptions import CryptoFailure, InvalidArgument
from navigator_cose.oracle import (
    KEK_DOMAIN,
    DeterministicSigner,
    Ed25519Signer,
    KeyDerivationOracle,
)

from conftest import SIGNER_SEED, make_principal, make_spk


# --- Test Fixtures ---

class FixedRandom:
    """Async random source returning a constant and recording requests."""

    def __init__(self, value: bytes = b"\x11" * 32):
        self.value = value
        self.calls = []

    async def __call__(self, size: int) -> bytes:
        self.calls.append(size)
        return self.value[:size]


class BrokenSigner:
    async def sign(self, domain_label, path, message):
        raise RuntimeError("threshold signer unavailable")

    async def public_key(self, domain_label, path):
        raise RuntimeError("threshold signer unavailable")


class RecordingVetKD:
    def __init__(self):
        self.requests = []

    async def public_key(self, context):
        self.requests.append(("public_key", context))
        return b"\x01" * 96

    async def encrypted_key(self, context, input_id, transport_public_key):
        self.requests.append(("encrypted_key", context, input_id, transport_public_key))
        return b"\x02" * 192


@pytest.fixture
def signer():
    return Ed25519Signer(SIGNER_SEED)


@pytest.fixture
def oracle(signer):
    return KeyDerivationOracle(signer)


# --- Test ECDH ---

class TestECDHExchange:
    """Tests for the ephemeral X25519 exchange."""

    @pytest.mark.asyncio
    async def test_shared_secret_is_symmetric(self):
        """Test client and server agree on the shared secret."""
        private, public = generate_client_keypair()
        exchange = ECDHExchange()
        shared, server_public = await exchange.server_exchange(public, b"\x00" * 12)
        assert len(shared) == 32
        assert len(server_public) == 32
        assert client_shared_secret(private, server_public) == shared

    @pytest.mark.asyncio
    async def test_private_key_binds_nonce(self):
        """Test the server secret is mac3_256(random, nonce)."""
        private, public = generate_client_keypair()
        random = FixedRandom()
        exchange = ECDHExchange(random)
        nonce = b"\x07" * 12
        shared, server_public = await exchange.server_exchange(public, nonce)
        expected_shared, expected_public = ecdh_x25519(mac3_256(random.value, nonce), public)
        assert (shared, server_public) == (expected_shared, expected_public)
        assert random.calls == [32]

    @pytest.mark.asyncio
    async def test_fresh_key_per_exchange(self):
        """Test two exchanges never reuse the server key."""
        _, public = generate_client_keypair()
        exchange = ECDHExchange()
        _, pub1 = await exchange.server_exchange(public, b"\x00" * 12)
        _, pub2 = await exchange.server_exchange(public, b"\x00" * 12)
        assert pub1 != pub2

    @pytest.mark.asyncio
    async def test_rejects_bad_nonce(self):
        """Test nonces must be 12 bytes."""
        _, public = generate_client_keypair()
        with pytest.raises(InvalidArgument):
            await ECDHExchange().server_exchange(public, b"\x00" * 8)

    @pytest.mark.asyncio
    async def test_rejects_bad_public_key(self):
        """Test client keys must be 32 bytes."""
        with pytest.raises(InvalidArgument):
            await ECDHExchange().server_exchange(b"\x01" * 31, b"\x00" * 12)

    @pytest.mark.asyncio
    async def test_rejects_low_order_public_key(self):
        """Test a small order point is an argument error, not a bare ValueError."""
        with pytest.raises(InvalidArgument):
            await ECDHExchange().server_exchange(b"\x00" * 32, b"\x00" * 12)
        with pytest.raises(InvalidArgument):
            ecdh_x25519(b"\x07" * 32, b"\x00" * 32)


# --- Test Signer ---

class TestEd25519Signer:
    """Tests for the local deterministic signer."""

    def test_is_a_deterministic_signer(self, signer):
        """Test the adapter satisfies the signer protocol."""
        assert isinstance(signer, DeterministicSigner)

    @pytest.mark.asyncio
    async def test_signatures_are_deterministic(self, signer):
        """Test the same request always yields the same signature."""
        sig1 = await signer.sign(b"label", [b"a", b"b"], b"message")
        sig2 = await Ed25519Signer(SIGNER_SEED).sign(b"label", [b"a", b"b"], b"message")
        assert sig1 == sig2
        assert len(sig1) == 64

    @pytest.mark.asyncio
    async def test_paths_derive_distinct_keys(self, signer):
        """Test each path gets its own key."""
        pk1 = await signer.public_key(b"label", [b"a"])
        pk2 = await signer.public_key(b"label", [b"b"])
        pk3 = await signer.public_key(b"other", [b"a"])
        assert len({pk1, pk2, pk3}) == 3

    def test_rejects_short_seed(self):
        """Test seeds must be 32 bytes."""
        with pytest.raises(InvalidArgument):
            Ed25519Signer(b"short")


# --- Test Oracle ---

class TestKeyDerivationOracle:
    """Tests for KEK derivation and vetKD forwarding."""

    @pytest.mark.asyncio
    async def test_kek_formula(self, oracle, signer):
        """Test kek = mac3_256(ns, sign(path, mac3_256(ns, key_id)))."""
        spk = make_spk("app", make_principal(9), key=b"db")
        path = spk.derivation_path()
        assert path == [make_principal(9).raw, b"\x00", b"app"]
        sig = await signer.sign(KEK_DOMAIN, path, mac3_256(b"app", b"db"))
        assert await oracle.setting_kek(spk, b"db") == mac3_256(b"app", sig)

    @pytest.mark.asyncio
    async def test_kek_is_stable(self, oracle):
        """Test repeated derivations return the same KEK."""
        spk = make_spk("app", make_principal(9), key=b"db")
        assert await oracle.setting_kek(spk, b"db") == await oracle.setting_kek(spk, b"db")

    @pytest.mark.asyncio
    async def test_kek_depends_on_scope(self, oracle):
        """Test KEKs differ per key id, subject and scope."""
        subject = make_principal(9)
        server = make_spk("app", subject, key=b"db")
        user_owned = make_spk("app", subject, key=b"db", user_owned=True)
        other = make_spk("app", make_principal(8), key=b"db")
        keks = {
            await oracle.setting_kek(server, b"db"),
            await oracle.setting_kek(server, b"api"),
            await oracle.setting_kek(user_owned, b"db"),
            await oracle.setting_kek(other, b"db"),
        }
        assert len(keks) == 4

    @pytest.mark.asyncio
    async def test_signer_failure_is_crypto_failure(self):
        """Test signer errors surface as CryptoFailure."""
        oracle = KeyDerivationOracle(BrokenSigner())
        spk = make_spk("app", make_principal(9))
        with pytest.raises(CryptoFailure):
            await oracle.setting_kek(spk, b"cfg")
        with pytest.raises(CryptoFailure):
            await oracle.public_key(b"label", [])

    @pytest.mark.asyncio
    async def test_vetkd_unavailable_by_default(self, oracle):
        """Test the default vetKD oracle refuses requests."""
        spk = make_spk("app", make_principal(9))
        with pytest.raises(CryptoFailure):
            await oracle.vetkd_public_key(spk)
        with pytest.raises(CryptoFailure):
            await oracle.derive_vetkd_key(spk, b"cfg", b"\x00" * 48)

    @pytest.mark.asyncio
    async def test_vetkd_forwarding(self, signer):
        """Test vetKD requests carry the setting derivation context."""
        vetkd = RecordingVetKD()
        oracle = KeyDerivationOracle(signer, vetkd)
        spk = make_spk("app", make_principal(9), key=b"cfg")
        assert await oracle.vetkd_public_key(spk) == b"\x01" * 96
        assert await oracle.derive_vetkd_key(spk, b"cfg", b"\x03" * 48) == b"\x02" * 192
        context = [KEK_DOMAIN, *spk.derivation_path()]
        assert vetkd.requests == [
            ("public_key", context),
            ("encrypted_key", context, b"cfg", b"\x03" * 48),
        ]
