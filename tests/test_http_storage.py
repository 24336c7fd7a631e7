"""
Tests for the aiohttp storage backend against an in-process server.
"""
import pytest
import pytest_asyncio
from aiohttp import test_utils, web

from datavault import DataVault, HTTPStorage, StorageError, parse_did
from datavault.storage import call_storage

from .conftest import ALICE_DID, BOB_DID

ALICE_SPACE = parse_did(ALICE_DID).default_space_id
BOB_SPACE = parse_did(BOB_DID).default_space_id


def make_app(records: dict, auth_log: list) -> web.Application:
    """Minimal key-value service speaking the HTTPStorage wire layout."""

    def _key(request):
        return request.match_info["space"], request.match_info["path"]

    def _respond(stored):
        if stored is None:
            raise web.HTTPNotFound()
        body, metadata = stored
        return web.Response(body=body, headers=metadata)

    async def read_public(request):
        auth_log.append(("public", request.headers.get("Authorization")))
        return _respond(records.get(_key(request)))

    async def read(request):
        if request.match_info["space"] == "broken":
            raise web.HTTPInternalServerError()
        auth_log.append(("get", request.headers.get("Authorization")))
        return _respond(records.get(_key(request)))

    async def write(request):
        auth_log.append(("put", request.headers.get("Authorization")))
        metadata = {
            k: v for k, v in request.headers.items() if k.lower().startswith("x-vault-")
        }
        records[_key(request)] = (await request.read(), metadata)
        return web.Response(status=204)

    async def remove(request):
        if records.pop(_key(request), None) is None:
            raise web.HTTPNotFound()
        return web.Response(status=204)

    async def listing(request):
        space = request.match_info["space"]
        prefix = request.query.get("prefix", "")
        return web.json_response(
            [path for (s, path) in records if s == space and path.startswith(prefix)]
        )

    app = web.Application()
    app.router.add_get("/public/{space}/kv/{path:.*}", read_public)
    app.router.add_get("/{space}/kv", listing)
    app.router.add_get("/{space}/kv/{path:.*}", read)
    app.router.add_put("/{space}/kv/{path:.*}", write)
    app.router.add_delete("/{space}/kv/{path:.*}", remove)
    return app


def authorize(action, space, path):
    return f"Bearer {action}"


@pytest.fixture
def records():
    return {}


@pytest.fixture
def auth_log():
    return []


@pytest_asyncio.fixture
async def base_url(records, auth_log):
    async with test_utils.TestServer(make_app(records, auth_log)) as server:
        yield str(server.make_url("/"))


@pytest_asyncio.fixture
async def storage(base_url):
    async with HTTPStorage(base_url, ALICE_SPACE, authorize=authorize) as backend:
        yield backend


class TestHTTPStorage:

    @pytest.mark.asyncio
    async def test_put_and_get(self, storage, records, auth_log):
        await storage.put("vault/a", '{"data":"x"}', metadata={
            "x-vault-version": "1", "ignored": "nope",
        })
        body, metadata = records[(ALICE_SPACE, "vault/a")]
        assert body == b'{"data":"x"}'
        assert metadata == {"x-vault-version": "1"}

        stored = await storage.get("vault/a")
        assert stored.text() == '{"data":"x"}'
        assert stored.metadata == {"x-vault-version": "1"}
        assert auth_log == [("put", "Bearer kv/put"), ("get", "Bearer kv/get")]

    @pytest.mark.asyncio
    async def test_get_missing(self, storage):
        assert await storage.get("vault/none") is None

    @pytest.mark.asyncio
    async def test_delete(self, storage, records):
        await storage.put("vault/a", "x")
        await storage.delete("vault/a")
        assert records == {}
        await storage.delete("vault/a")

    @pytest.mark.asyncio
    async def test_list(self, storage):
        for path in ("vault/b", "vault/a", "keys/a"):
            await storage.put(path, "x")
        await storage.put("vault/c", "x", space=BOB_SPACE)
        assert await storage.list("vault/") == ["vault/a", "vault/b"]
        assert await storage.list("vault/", remove_prefix=True) == ["a", "b"]
        assert await storage.list("vault/", space=BOB_SPACE) == ["vault/c"]

    @pytest.mark.asyncio
    async def test_public_read_is_unauthenticated(self, storage, auth_log):
        await storage.put(".well-known/vault-pubkey", "abc", space="pub-space")
        stored = await storage.get_public("pub-space", ".well-known/vault-pubkey")
        assert stored.text() == "abc"
        assert auth_log[-1] == ("public", None)

    @pytest.mark.asyncio
    async def test_paths_are_percent_encoded(self, storage, records):
        path = "vault/notes 100%?x=1#frag"
        await storage.put(path, "x")
        assert list(records) == [(ALICE_SPACE, path)]
        assert (await storage.get(path)).text() == "x"
        assert await storage.get("vault/notes 100%") is None
        assert await storage.list("vault/") == [path]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["vault/../keys/a", "vault/./a", ".."])
    async def test_dot_segments_rejected(self, storage, records, path):
        with pytest.raises(ValueError):
            await storage.put(path, "x")
        with pytest.raises(ValueError):
            await storage.get_public(ALICE_SPACE, path)
        assert records == {}

    @pytest.mark.asyncio
    async def test_async_authorize(self, base_url, auth_log):
        async def token(action, space, path):
            return f"Session {space}"

        async with HTTPStorage(base_url, ALICE_SPACE, authorize=token) as backend:
            await backend.put("k", b"\x00")
        assert auth_log == [("put", f"Session {ALICE_SPACE}")]

    @pytest.mark.asyncio
    async def test_server_error(self, storage):
        with pytest.raises(StorageError):
            await call_storage(storage.get("k", space="broken"), "get", "k")


class TestVaultOverHTTP:

    @pytest.mark.asyncio
    async def test_share_between_principals(self, base_url, alice_signer, bob_signer):
        async with HTTPStorage(base_url, ALICE_SPACE) as alice_storage, \
                HTTPStorage(base_url, BOB_SPACE) as bob_storage:
            alice = DataVault(alice_storage, ALICE_DID)
            bob = DataVault(bob_storage, BOB_DID)
            await alice.unlock(alice_signer)
            await bob.unlock(bob_signer)

            await alice.put("medical/2026", {"bp": "120/80"})
            assert (await alice.get("medical/2026")).value == {"bp": "120/80"}
            assert await alice.list() == ["medical/2026"]

            await alice.grant("medical/2026", BOB_DID)
            assert await alice.list_grants("medical/2026") == [BOB_DID]
            shared = await bob.get_shared(ALICE_DID, "medical/2026")
            assert shared.value == {"bp": "120/80"}

            await alice.revoke("medical/2026", BOB_DID)
            assert await alice.list_grants("medical/2026") == []
