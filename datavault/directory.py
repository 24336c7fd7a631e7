"""
Public Key Directory — Discovery of vault encryption keys.

Each principal publishes, in its public space:

    .well-known/vault-pubkey   base64 X25519 public key
    .well-known/vault-version  protocol version
    .well-known/vault-space    vault space id, when it is not the
                               principal's default space

Anyone can resolve these through the public read path. A missing or
malformed record is an expected condition (the principal never unlocked
a vault) and is reported as ``PublicKeyNotFound``.
"""
import base64
import binascii
import logging
from dataclasses import dataclass, replace
from typing import Optional

from .crypto import KEY_LENGTH
from .did import Principal, parse_did
from .envelope import b64encode
from .exceptions import InvalidPrincipal, PublicKeyNotFound
from .storage import StorageBackend, call_storage

logger = logging.getLogger("datavault")

PUBKEY_PATH = ".well-known/vault-pubkey"
VERSION_PATH = ".well-known/vault-version"
SPACE_PATH = ".well-known/vault-space"
DIRECTORY_VERSION = "1"


@dataclass(frozen=True)
class PublicKeyRecord:
    """Resolved public vault identity of a principal."""

    did: str
    public_key: bytes
    version: str = DIRECTORY_VERSION
    vault_space: Optional[str] = None


class PublicKeyDirectory:
    """Publish and resolve X25519 public keys.

    Args:
        storage: Backend used for writes (own public space) and public reads.
        timeout: Default timeout for each storage call, in seconds.
    """

    def __init__(self, storage: StorageBackend, timeout: Optional[float] = None) -> None:
        self.storage = storage
        self.timeout = timeout
        self._cache: dict[str, PublicKeyRecord] = {}

    async def publish(
        self,
        principal: Principal,
        public_key: bytes,
        vault_space: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """Publish ``public_key`` (and the vault space pointer) for a principal.

        Raises:
            StorageError: If any write fails.
        """
        if len(public_key) != KEY_LENGTH:
            raise ValueError(f"Public key must be {KEY_LENGTH} bytes")
        timeout = timeout or self.timeout
        space = principal.public_space_id
        await call_storage(
            self.storage.put(PUBKEY_PATH, b64encode(public_key), space=space),
            "put", PUBKEY_PATH, timeout,
        )
        await call_storage(
            self.storage.put(VERSION_PATH, DIRECTORY_VERSION, space=space),
            "put", VERSION_PATH, timeout,
        )
        if vault_space and vault_space != principal.default_space_id:
            await call_storage(
                self.storage.put(SPACE_PATH, vault_space, space=space),
                "put", SPACE_PATH, timeout,
            )
        else:
            await call_storage(
                self.storage.delete(SPACE_PATH, space=space),
                "delete", SPACE_PATH, timeout,
            )
        self._cache[principal.did] = PublicKeyRecord(
            did=principal.did,
            public_key=bytes(public_key),
            vault_space=vault_space,
        )
        logger.info("Published vault public key for %s", principal.did)

    def _principal(self, did: str) -> Principal:
        try:
            return parse_did(did)
        except InvalidPrincipal as err:
            raise PublicKeyNotFound(did, str(err)) from err

    async def _read_text(self, space: str, path: str, timeout: Optional[float]) -> Optional[str]:
        stored = await call_storage(
            self.storage.get_public(space, path), "get_public", path, timeout,
        )
        if stored is None:
            return None
        try:
            return stored.text().strip()
        except UnicodeDecodeError:
            return None

    async def resolve(self, did: str, timeout: Optional[float] = None) -> PublicKeyRecord:
        """Resolve a principal's published vault public key.

        Raises:
            PublicKeyNotFound: If the DID is invalid or the record is
                absent or malformed.
            StorageError: If the public read fails.
        """
        if did in self._cache:
            return self._cache[did]
        timeout = timeout or self.timeout
        principal = self._principal(did)
        space = principal.public_space_id
        encoded = await self._read_text(space, PUBKEY_PATH, timeout)
        if not encoded:
            raise PublicKeyNotFound(did)
        try:
            public_key = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            raise PublicKeyNotFound(did, "malformed public key encoding") from None
        if len(public_key) != KEY_LENGTH:
            raise PublicKeyNotFound(
                did, f"public key must be {KEY_LENGTH} bytes, got {len(public_key)}"
            )
        version = await self._read_text(space, VERSION_PATH, timeout) or DIRECTORY_VERSION
        vault_space = await self._read_text(space, SPACE_PATH, timeout) or None
        record = PublicKeyRecord(
            did=principal.did,
            public_key=public_key,
            version=version,
            vault_space=vault_space,
        )
        self._cache[did] = record
        logger.debug("Resolved vault public key for %s (v%s)", did, version)
        return record

    async def resolve_vault_space(self, did: str, timeout: Optional[float] = None) -> str:
        """Space holding a principal's vault data.

        The published pointer wins; otherwise the principal's default space.
        The pointer is read on every call and refreshes any cached record.
        """
        principal = self._principal(did)
        pointer = await self._read_text(
            principal.public_space_id, SPACE_PATH, timeout or self.timeout,
        ) or None
        cached = self._cache.get(did)
        if cached is not None and cached.vault_space != pointer:
            self._cache[did] = replace(cached, vault_space=pointer)
        return pointer or principal.default_space_id

    def forget(self, did: Optional[str] = None) -> None:
        """Drop one cached record, or all of them."""
        if did is None:
            self._cache.clear()
        else:
            self._cache.pop(did, None)
