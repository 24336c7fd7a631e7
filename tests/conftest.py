"""Shared fixtures for vault tests."""
import hashlib
import hmac

import pytest
import pytest_asyncio

from datavault import DataVault, MemoryStorage, parse_did

ALICE_DID = "did:pkh:eip155:1:0x" + "a1" * 20
BOB_DID = "did:pkh:eip155:1:0x" + "b2" * 20
CAROL_DID = "did:pkh:eip155:1:0x" + "c3" * 20


def make_signer(secret: bytes):
    """Deterministic wallet-like signer returning 0x-prefixed hex."""
    def sign(message: str) -> str:
        digest = hmac.new(secret, message.encode("utf-8"), hashlib.sha512).hexdigest()
        return "0x" + digest + "1b"
    return sign


@pytest.fixture
def store():
    """Backing store shared by every principal of a test."""
    return {}


@pytest.fixture
def alice_signer():
    return make_signer(b"alice-wallet-key")


@pytest.fixture
def bob_signer():
    return make_signer(b"bob-wallet-key")


@pytest.fixture
def carol_signer():
    return make_signer(b"carol-wallet-key")


def _storage_for(did: str, store: dict) -> MemoryStorage:
    return MemoryStorage(parse_did(did).default_space_id, store=store)


@pytest.fixture
def alice_storage(store):
    return _storage_for(ALICE_DID, store)


@pytest.fixture
def alice(alice_storage):
    """Locked vault of Alice."""
    return DataVault(alice_storage, ALICE_DID)


@pytest_asyncio.fixture
async def unlocked_alice(alice, alice_signer):
    await alice.unlock(alice_signer)
    yield alice
    alice.lock()


@pytest_asyncio.fixture
async def unlocked_bob(store, bob_signer):
    vault = DataVault(_storage_for(BOB_DID, store), BOB_DID)
    await vault.unlock(bob_signer)
    yield vault
    vault.lock()


@pytest_asyncio.fixture
async def unlocked_carol(store, carol_signer):
    vault = DataVault(_storage_for(CAROL_DID, store), CAROL_DID)
    await vault.unlock(carol_signer)
    yield vault
    vault.lock()


@pytest.fixture
def signer_factory():
    return make_signer
