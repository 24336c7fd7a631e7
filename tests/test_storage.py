"""
Tests for storage backends, the storage call wrapper and key rotation.
"""
import asyncio

import pytest

from datavault.crypto import KeyExchange, generate_entry_key
from datavault.envelope import seal_value, unwrap, wrap
from datavault.exceptions import KeyNotFound, PublicKeyNotFound, StorageError
from datavault.grants import GrantProtocol, GrantRecord, grant_path
from datavault.key_rotation import load_envelope, load_key_blob, rotate_entry_key, store_entry
from datavault.storage import MemoryStorage, StoredValue, call_storage


@pytest.fixture
def storage():
    return MemoryStorage("space-a")


class TestMemoryStorage:

    @pytest.mark.asyncio
    async def test_put_get_delete(self, storage):
        await storage.put("a/b", "value", metadata={"x-vault-version": "1"})
        stored = await storage.get("a/b")
        assert stored == StoredValue("value", {"x-vault-version": "1"})
        await storage.delete("a/b")
        assert await storage.get("a/b") is None
        await storage.delete("a/b")

    @pytest.mark.asyncio
    async def test_list(self, storage):
        for path in ("vault/b", "vault/a", "keys/a"):
            await storage.put(path, "x")
        assert await storage.list("vault/") == ["vault/a", "vault/b"]
        assert await storage.list("vault/", remove_prefix=True) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_spaces_are_separate(self, storage):
        other = storage.session("space-b")
        await storage.put("k", "in a")
        await other.put("k", "in b")
        assert (await storage.get("k")).data == "in a"
        assert (await storage.get("k", space="space-b")).data == "in b"
        assert (await other.get_public("space-a", "k")).data == "in a"

    @pytest.mark.asyncio
    async def test_rejects_other_types(self, storage):
        with pytest.raises(TypeError):
            await storage.put("k", {"not": "serialized"})

    def test_stored_value_text(self):
        assert StoredValue(b"abc").text() == "abc"
        assert StoredValue("abc").text() == "abc"


class TestCallStorage:

    @pytest.mark.asyncio
    async def test_wraps_errors(self):
        async def boom():
            raise OSError("disk")

        with pytest.raises(StorageError) as excinfo:
            await call_storage(boom(), "get", "keys/a")
        assert excinfo.value.operation == "get"
        assert excinfo.value.path == "keys/a"
        assert isinstance(excinfo.value.cause, OSError)

    @pytest.mark.asyncio
    async def test_timeout(self):
        with pytest.raises(StorageError):
            await call_storage(asyncio.sleep(5), "get", "k", timeout=0.01)

    @pytest.mark.asyncio
    async def test_vault_errors_pass_through(self):
        async def missing():
            raise KeyNotFound("k")

        with pytest.raises(KeyNotFound):
            await call_storage(missing(), "get", "k")


class TestKeyRotation:
    """Tests for rotate_entry_key."""

    @pytest.fixture
    def master_key(self):
        return generate_entry_key()

    @pytest.fixture
    def recipients(self):
        kx = KeyExchange()
        return {"did:pkh:eip155:1:0x" + c * 40: kx.generate() for c in "bc"}

    async def _store(self, storage, master_key, key, plaintext):
        entry_key = generate_entry_key()
        envelope = seal_value(entry_key, plaintext, metadata={"owner": "a"})
        await store_entry(storage, key, wrap(master_key, entry_key), envelope)
        return entry_key

    @pytest.mark.asyncio
    async def test_rotation(self, storage, master_key, recipients):
        old_key = await self._store(storage, master_key, "doc", b'"payload"')

        async def resolve(did):
            return recipients[did][1]

        stats = await rotate_entry_key(
            storage, master_key, "doc", list(recipients), resolve,
            grantor="did:owner", space_id="space-a",
        )
        assert stats["reissued"] == 2
        assert stats["errors"] == 0

        new_blob = await load_key_blob(storage, "doc")
        new_key = unwrap(master_key, new_blob)
        assert new_key != old_key
        assert stats["key_id"] == new_blob.key_id

        envelope = await load_envelope(storage, "doc")
        assert envelope.key_id == new_blob.key_id
        assert envelope.custom_metadata() == {"owner": "a"}

        protocol = GrantProtocol()
        for did, (private_key, _) in recipients.items():
            stored = await storage.get(grant_path(did, "doc"))
            record = GrantRecord.from_json(stored.data)
            assert record.grantor == "did:owner"
            assert protocol.open_grant(private_key, record.blob) == new_key

    @pytest.mark.asyncio
    async def test_failed_grantee_is_counted(self, storage, master_key, recipients):
        await self._store(storage, master_key, "doc", b"1")
        missing = next(iter(recipients))

        async def resolve(did):
            if did == missing:
                raise PublicKeyNotFound(did)
            return recipients[did][1]

        stats = await rotate_entry_key(
            storage, master_key, "doc", list(recipients), resolve,
            grantor="did:owner", space_id="space-a",
        )
        assert stats["reissued"] == 1
        assert stats["errors"] == 1
        assert stats["failed"] == [missing]

    @pytest.mark.asyncio
    async def test_missing_entry(self, storage, master_key):
        async def resolve(did):
            raise AssertionError("not called")

        with pytest.raises(KeyNotFound):
            await rotate_entry_key(
                storage, master_key, "missing", [], resolve,
                grantor="did:owner", space_id="space-a",
            )
