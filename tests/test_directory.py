"""Tests for public key publication and resolution."""
import base64

import pytest

from datavault.crypto import KeyExchange
from datavault.did import parse_did
from datavault.directory import (
    PUBKEY_PATH,
    SPACE_PATH,
    VERSION_PATH,
    PublicKeyDirectory,
)
from datavault.exceptions import PublicKeyNotFound
from datavault.storage import MemoryStorage

from .conftest import ALICE_DID, BOB_DID

ALICE = parse_did(ALICE_DID)


@pytest.fixture
def storage(store):
    return MemoryStorage(ALICE.default_space_id, store=store)


@pytest.fixture
def directory(storage):
    return PublicKeyDirectory(storage)


@pytest.fixture
def public_key():
    return KeyExchange().generate()[1]


class TestPublish:

    @pytest.mark.asyncio
    async def test_publish_and_resolve(self, directory, store, public_key):
        await directory.publish(ALICE, public_key)
        records = store[ALICE.public_space_id]
        assert base64.b64decode(records[PUBKEY_PATH].data) == public_key
        assert records[VERSION_PATH].data == "1"

        fresh = PublicKeyDirectory(MemoryStorage("other", store=store))
        record = await fresh.resolve(ALICE_DID)
        assert record.public_key == public_key
        assert record.version == "1"
        assert record.vault_space is None

    @pytest.mark.asyncio
    async def test_vault_space_pointer(self, directory, store, public_key):
        vault_space = ALICE.space_id("vault")
        await directory.publish(ALICE, public_key, vault_space=vault_space)
        assert store[ALICE.public_space_id][SPACE_PATH].data == vault_space

        fresh = PublicKeyDirectory(MemoryStorage("other", store=store))
        assert await fresh.resolve_vault_space(ALICE_DID) == vault_space
        assert (await fresh.resolve(ALICE_DID)).vault_space == vault_space

    @pytest.mark.asyncio
    async def test_default_space_clears_pointer(self, directory, store, public_key):
        await directory.publish(ALICE, public_key, vault_space=ALICE.space_id("vault"))
        await directory.publish(ALICE, public_key, vault_space=ALICE.default_space_id)
        assert SPACE_PATH not in store[ALICE.public_space_id]
        directory.forget()
        assert await directory.resolve_vault_space(ALICE_DID) == ALICE.default_space_id

    @pytest.mark.asyncio
    async def test_publish_rejects_bad_key(self, directory):
        with pytest.raises(ValueError):
            await directory.publish(ALICE, b"\x01" * 16)


class TestResolve:

    @pytest.mark.asyncio
    async def test_unpublished(self, directory):
        with pytest.raises(PublicKeyNotFound) as excinfo:
            await directory.resolve(BOB_DID)
        assert excinfo.value.did == BOB_DID
        assert excinfo.value.code == "PUBLIC_KEY_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_invalid_did(self, directory):
        with pytest.raises(PublicKeyNotFound):
            await directory.resolve("not-a-did")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("published", ["%%%", base64.b64encode(b"short").decode(), ""])
    async def test_malformed_record(self, directory, store, published):
        await directory.storage.put(PUBKEY_PATH, published, space=ALICE.public_space_id)
        with pytest.raises(PublicKeyNotFound):
            await directory.resolve(ALICE_DID)

    @pytest.mark.asyncio
    async def test_vault_space_pointer_is_not_cached(self, directory, store, public_key):
        await directory.publish(ALICE, public_key, vault_space=ALICE.space_id("vault"))
        reader = PublicKeyDirectory(MemoryStorage("other", store=store))
        assert (await reader.resolve(ALICE_DID)).vault_space == ALICE.space_id("vault")

        await directory.publish(ALICE, public_key, vault_space=ALICE.space_id("moved"))
        assert await reader.resolve_vault_space(ALICE_DID) == ALICE.space_id("moved")
        assert (await reader.resolve(ALICE_DID)).vault_space == ALICE.space_id("moved")

        await directory.publish(ALICE, public_key)
        assert await reader.resolve_vault_space(ALICE_DID) == ALICE.default_space_id
        assert (await reader.resolve(ALICE_DID)).vault_space is None

    @pytest.mark.asyncio
    async def test_cache_and_forget(self, directory, store, public_key):
        await directory.publish(ALICE, public_key)
        del store[ALICE.public_space_id][PUBKEY_PATH]
        assert (await directory.resolve(ALICE_DID)).public_key == public_key
        directory.forget(ALICE_DID)
        with pytest.raises(PublicKeyNotFound):
            await directory.resolve(ALICE_DID)
