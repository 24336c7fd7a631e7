"""
Tests for signature-based key derivation.

Tests cover:
- Deterministic re-derivation of master key and identity
- Domain separation between scopes and between the two secrets
- Signer flavors (sync, async, bytes, hex, sign_message objects)
- Failure handling and zeroable key buffers
"""
import pytest

from datavault.crypto import KeyExchange
from datavault.exceptions import KeyDerivationError, VaultLocked
from datavault.keys import (
    IDENTITY_MESSAGE,
    MASTER_MESSAGE_PREFIX,
    SecretBytes,
    derive_encryption_identity,
    derive_master_key,
    signature_bytes,
)


@pytest.fixture
def signer(signer_factory):
    return signer_factory(b"deterministic")


class TestMasterKey:
    """Tests for master key derivation."""

    @pytest.mark.asyncio
    async def test_deterministic(self, signer):
        first = await derive_master_key(signer, "space1")
        second = await derive_master_key(signer, "space1")
        assert bytes(first) == bytes(second)
        assert len(first) == 32

    @pytest.mark.asyncio
    async def test_scope_separation(self, signer):
        a = await derive_master_key(signer, "space1")
        b = await derive_master_key(signer, "space2")
        assert bytes(a) != bytes(b)

    @pytest.mark.asyncio
    async def test_signed_message(self):
        seen = []

        def sign(message):
            seen.append(message)
            return b"\x01" * 65

        await derive_master_key(sign, "space1")
        assert seen == [MASTER_MESSAGE_PREFIX + "space1"]

    @pytest.mark.asyncio
    async def test_different_signers(self, signer_factory):
        a = await derive_master_key(signer_factory(b"one"), "space1")
        b = await derive_master_key(signer_factory(b"two"), "space1")
        assert bytes(a) != bytes(b)


class TestEncryptionIdentity:
    """Tests for X25519 identity derivation."""

    @pytest.mark.asyncio
    async def test_deterministic(self, signer):
        first = await derive_encryption_identity(signer)
        second = await derive_encryption_identity(signer)
        assert first.public_key == second.public_key
        assert bytes(first.private_key) == bytes(second.private_key)

    @pytest.mark.asyncio
    async def test_keypair_matches(self, signer):
        identity = await derive_encryption_identity(signer)
        assert len(identity.public_key) == 32
        assert KeyExchange().public_key(bytes(identity.private_key)) == identity.public_key

    @pytest.mark.asyncio
    async def test_private_key_is_clamped(self, signer):
        identity = await derive_encryption_identity(signer)
        scalar = bytes(identity.private_key)
        assert scalar[0] & 7 == 0
        assert scalar[31] & 0xC0 == 0x40

    @pytest.mark.asyncio
    async def test_independent_from_master_key(self, signer):
        identity = await derive_encryption_identity(signer)
        master = await derive_master_key(signer, "")
        assert bytes(identity.private_key) != bytes(master)

    @pytest.mark.asyncio
    async def test_signed_message_has_no_scope(self):
        seen = []

        def sign(message):
            seen.append(message)
            return b"\x02" * 65

        await derive_encryption_identity(sign)
        assert seen == [IDENTITY_MESSAGE]


class TestSigners:
    """Tests for the supported signer shapes."""

    @pytest.mark.asyncio
    async def test_async_signer(self, signer):
        async def async_sign(message):
            return signer(message)

        a = await derive_master_key(async_sign, "s")
        b = await derive_master_key(signer, "s")
        assert bytes(a) == bytes(b)

    @pytest.mark.asyncio
    async def test_sign_message_object(self, signer):
        class Wallet:
            def sign_message(self, message):
                return signer(message)

        a = await derive_master_key(Wallet(), "s")
        b = await derive_master_key(signer, "s")
        assert bytes(a) == bytes(b)

    def test_signature_bytes(self):
        assert signature_bytes("0x0aff") == b"\x0a\xff"
        assert signature_bytes(b"\x01") == b"\x01"
        assert signature_bytes("plain") == b"plain"
        assert signature_bytes("0xnothex") == b"0xnothex"

    def test_signature_bytes_rejects_other_types(self):
        with pytest.raises(TypeError):
            signature_bytes(12345)

    @pytest.mark.asyncio
    async def test_failing_signer(self):
        def broken(message):
            raise ConnectionError("wallet disconnected")

        with pytest.raises(KeyDerivationError) as excinfo:
            await derive_master_key(broken, "s")
        assert isinstance(excinfo.value, VaultLocked)
        assert excinfo.value.code == "VAULT_LOCKED"

    @pytest.mark.asyncio
    async def test_empty_signature(self):
        with pytest.raises(KeyDerivationError):
            await derive_encryption_identity(lambda message: b"")


class TestSecretBytes:
    """Tests for the zeroable key buffer."""

    def test_wipe(self):
        secret = SecretBytes(b"\x07" * 32)
        assert not secret.wiped
        secret.wipe()
        assert secret.wiped
        assert bytes(secret) == b"\x00" * 32

    def test_repr_hides_content(self):
        assert "07" not in repr(SecretBytes(b"\x07" * 4))

    def test_equality(self):
        assert SecretBytes(b"ab") == b"ab"
        assert SecretBytes(b"ab") == SecretBytes(b"ab")
        assert SecretBytes(b"ab") != SecretBytes(b"ac")
