"""
DataVault — End-to-end encrypted key-value storage with sharing.

Provides the public API of the vault:

- ``unlock(signer)`` / ``lock()`` — derive / wipe key material
- ``put(key, value)`` / ``get(key)`` — encrypt+store / fetch+decrypt
- ``delete(key)`` / ``list()`` / ``head(key)`` — manage entries
- ``grant(key, did)`` / ``revoke(key, did)`` / ``list_grants(key)`` — sharing
- ``get_shared(owner_did, key)`` — read an entry another principal shared
- ``resolve_public_key(did)`` — public key discovery

Persisted layout in the vault space:

    keys/{key}                 KeyBlob
    vault/{key}                VaultEnvelope
    grants/{recipient}/{key}   GrantRecord

Security Note:
    Never log plaintext, ciphertext or key values. Only log key names,
    key ids and DIDs. Decrypted values are returned to the caller and
    never cached.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .config import ROTATION_PER_KEY, VaultConfig
from .crypto import EntryCipher, KeyExchange, generate_entry_key, get_cipher, key_id
from .did import Principal, parse_did
from .directory import PublicKeyDirectory
from .envelope import VaultEnvelope, open_value, seal_value, unwrap, wrap
from .exceptions import (
    GrantNotFound,
    KeyNotFound,
    PublicKeyNotFound,
    VaultIntegrityError,
    VaultLocked,
)
from .grants import GRANTS_PREFIX, GrantProtocol, GrantRecord, grant_path, parse_grant_path
from .key_rotation import (
    KEYS_PREFIX,
    VAULT_PREFIX,
    load_envelope,
    load_key_blob,
    rotate_entry_key,
    store_entry,
)
from .keys import (
    EncryptionIdentity,
    SecretBytes,
    SignFunction,
    derive_encryption_identity,
    derive_master_key,
)
from .serializers import deserialize_value, guess_content_type, serialize_value
from .storage import StorageBackend, call_storage

logger = logging.getLogger("datavault")

_MAX_KEY_LENGTH = 255
_FORBIDDEN_KEY_CHARS = "?#\\"

# a key blob and its envelope can be read mid-rotation; re-read once
_READ_ATTEMPTS = 2


@dataclass
class VaultEntry:
    """A decrypted vault value."""

    value: Any
    metadata: dict[str, str] = field(default_factory=dict)
    key_id: str = ""


class DataVault:
    """Encrypted vault owned by one principal.

    The vault is ``Locked`` until ``unlock()`` derives the master key and
    the encryption identity from the principal's signer. Every data
    operation on a locked vault raises ``VaultLocked`` without touching
    storage.

    Args:
        storage: Backend bound to the principal's session.
        did: The principal's did:pkh identifier.
        config: Vault settings; defaults to the principal's default space.
        cipher: Entry cipher override (defaults to ``config.cipher``).
        key_exchange: X25519 capability override.
        directory: Public key directory override.
    """

    def __init__(
        self,
        storage: StorageBackend,
        did: str,
        config: Optional[VaultConfig] = None,
        cipher: Optional[EntryCipher] = None,
        key_exchange: Optional[KeyExchange] = None,
        directory: Optional[PublicKeyDirectory] = None,
    ):
        self._principal: Principal = parse_did(did)
        self._config = config or VaultConfig(space_id=self._principal.default_space_id)
        self._storage = storage
        self._cipher = cipher or get_cipher(self._config.cipher)
        self._key_exchange = key_exchange or KeyExchange()
        self._grants = GrantProtocol(self._key_exchange)
        self._directory = directory or PublicKeyDirectory(
            storage, timeout=self._config.timeout,
        )
        self._master_key: Optional[SecretBytes] = None
        self._identity: Optional[EncryptionIdentity] = None

    def __repr__(self) -> str:
        state = "unlocked" if self.is_unlocked else "locked"
        return f"<DataVault {self.did} space={self.space_id} {state}>"

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def did(self) -> str:
        return self._principal.did

    @property
    def principal(self) -> Principal:
        return self._principal

    @property
    def space_id(self) -> str:
        return self._config.space_id

    @property
    def config(self) -> VaultConfig:
        return self._config

    @property
    def directory(self) -> PublicKeyDirectory:
        return self._directory

    @property
    def is_unlocked(self) -> bool:
        return self._master_key is not None and self._identity is not None

    @property
    def public_key(self) -> Optional[bytes]:
        """The X25519 public key of this vault, None while locked."""
        return self._identity.public_key if self._identity else None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate_key(self, key: str) -> None:
        """Validate a vault key name.

        Raises:
            ValueError: If key is empty, too long, or not a relative path, or if it holds
                dot segments or URL delimiters.
        """
        if not key or not isinstance(key, str):
            raise ValueError("Vault key cannot be empty")
        if len(key) > _MAX_KEY_LENGTH:
            raise ValueError(f"Vault key cannot exceed {_MAX_KEY_LENGTH} characters")
        if key.startswith("/") or key.endswith("/") or "//" in key:
            raise ValueError("Vault key must be a relative path without empty segments")
        if any(segment in (".", "..") for segment in key.split("/")):
            raise ValueError("Vault key cannot contain '.' or '..' segments")
        if any(char in key for char in _FORBIDDEN_KEY_CHARS):
            raise ValueError(
                f"Vault key cannot contain any of {_FORBIDDEN_KEY_CHARS!r}"
            )

    def _require_unlocked(self) -> tuple[SecretBytes, EncryptionIdentity]:
        if self._master_key is None or self._identity is None:
            raise VaultLocked()
        return self._master_key, self._identity

    def _timeout(self, timeout: Optional[float]) -> Optional[float]:
        return timeout if timeout is not None else self._config.timeout

    def _decode(
        self,
        plaintext: bytes,
        envelope: VaultEnvelope,
        deserialize: Optional[Callable[[bytes], Any]],
        raw: bool,
        allow_pickle: bool,
    ) -> Any:
        if raw:
            return plaintext
        if deserialize is not None:
            return deserialize(plaintext)
        try:
            return deserialize_value(
                plaintext, envelope.content_type, allow_pickle=allow_pickle
            )
        except (ValueError, RuntimeError) as err:
            raise VaultIntegrityError(
                f"Cannot deserialize {envelope.content_type} value: {err}"
            ) from err

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def unlock(self, signer: SignFunction, timeout: Optional[float] = None) -> None:
        """Derive key material from ``signer`` and publish the public key.

        Args:
            signer: Signing capability; a callable (sync or async) taking
                the message and returning the signature, or an object with
                a ``sign_message`` method.
            timeout: Timeout for publication storage calls.

        Raises:
            KeyDerivationError: If signing or derivation fails; the vault
                stays locked with no partial key state.
            StorageError: If publishing the public key fails; the vault is
                unlocked nonetheless.
        """
        self.lock()
        master_key: Optional[SecretBytes] = None
        identity: Optional[EncryptionIdentity] = None
        try:
            master_key = await derive_master_key(signer, self.space_id)
            identity = await derive_encryption_identity(signer, self._key_exchange)
        except BaseException:
            if master_key is not None:
                master_key.wipe()
            if identity is not None:
                identity.wipe()
            raise
        self._master_key = master_key
        self._identity = identity
        logger.info("Vault unlocked: did=%s space=%s", self.did, self.space_id)

        if self._config.publish_on_unlock:
            await self._directory.publish(
                self._principal,
                identity.public_key,
                vault_space=self.space_id,
                timeout=self._timeout(timeout),
            )

    def lock(self) -> None:
        """Wipe key material from memory. Safe to call when locked."""
        was_unlocked = self.is_unlocked
        if self._master_key is not None:
            self._master_key.wipe()
        if self._identity is not None:
            self._identity.wipe()
        self._master_key = None
        self._identity = None
        if was_unlocked:
            logger.info("Vault locked: did=%s", self.did)

    def sign_out(self) -> None:
        """Session ended externally; same as lock()."""
        self.lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def put(
        self,
        key: str,
        value: Any,
        *,
        content_type: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        serialize: Optional[Callable[[Any], bytes]] = None,
        timeout: Optional[float] = None,
    ) -> dict[str, str]:
        """Encrypt and persist a value.

        Args:
            key: Vault key (relative path, max 255 chars).
            value: Value to encrypt.
            content_type: Recorded content type; guessed when omitted.
            metadata: Custom metadata added to the envelope.
            serialize: Custom serializer producing bytes.
            timeout: Timeout per storage call, in seconds.

        Returns:
            The envelope metadata written.

        Raises:
            VaultLocked: If the vault is locked.
            StorageError: If either write fails (no rollback).
            ValueError: If no serializer handles ``content_type``.
        """
        master_key, _ = self._require_unlocked()
        self._validate_key(key)
        timeout = self._timeout(timeout)

        content_type = content_type or guess_content_type(value)
        if serialize is not None:
            plaintext = serialize(value)
        else:
            plaintext = serialize_value(value, content_type)

        entry_key = None
        if self._config.key_rotation == ROTATION_PER_KEY:
            try:
                entry_key = unwrap(master_key, await load_key_blob(self._storage, key, timeout))
            except KeyNotFound:
                entry_key = None
        if entry_key is None:
            entry_key = generate_entry_key()

        key_blob = wrap(master_key, entry_key, self._cipher)
        envelope = seal_value(
            entry_key,
            plaintext,
            cipher=self._cipher,
            content_type=content_type,
            key_rotation=self._config.key_rotation,
            metadata=metadata,
        )
        await store_entry(self._storage, key, key_blob, envelope, timeout)
        logger.debug("Vault put: did=%s key=%s key_id=%s", self.did, key, key_blob.key_id)
        return dict(envelope.metadata)

    async def get(
        self,
        key: str,
        *,
        deserialize: Optional[Callable[[bytes], Any]] = None,
        raw: bool = False,
        allow_pickle: bool = False,
        timeout: Optional[float] = None,
    ) -> VaultEntry:
        """Fetch and decrypt a value.

        Args:
            key: Vault key.
            deserialize: Custom deserializer for the decrypted bytes.
            raw: Return the decrypted bytes without deserialization.
            allow_pickle: Decode values stored as application/x-jsonpickle.
                The recorded content type is not authenticated, so only
                enable this for entries you trust.
            timeout: Timeout per storage call, in seconds.

        Raises:
            VaultLocked: If the vault is locked.
            KeyNotFound: If no entry is stored under ``key``.
            DecryptionFailed: If the key blob or value does not authenticate.
            VaultIntegrityError: If key blob and envelope disagree on keyId.
        """
        master_key, _ = self._require_unlocked()
        self._validate_key(key)
        timeout = self._timeout(timeout)

        for _ in range(_READ_ATTEMPTS):
            key_blob = await load_key_blob(self._storage, key, timeout)
            entry_key = unwrap(master_key, key_blob)
            envelope = await load_envelope(self._storage, key, timeout=timeout)
            if envelope.key_id == key_blob.key_id:
                break
        else:
            raise VaultIntegrityError(
                f"Envelope keyId {envelope.key_id} does not match key blob "
                f"{key_blob.key_id} for {key}"
            )

        plaintext = open_value(entry_key, envelope)
        logger.debug("Vault get: did=%s key=%s", self.did, key)
        return VaultEntry(
            value=self._decode(plaintext, envelope, deserialize, raw, allow_pickle),
            metadata=dict(envelope.metadata),
            key_id=key_blob.key_id,
        )

    async def delete(self, key: str, timeout: Optional[float] = None) -> None:
        """Delete a value, its key blob, and every grant issued for it."""
        self._require_unlocked()
        self._validate_key(key)
        timeout = self._timeout(timeout)

        for recipient in await self.list_grants(key, timeout=timeout):
            path = grant_path(recipient, key)
            await call_storage(self._storage.delete(path), "delete", path, timeout)
        for path in (f"{VAULT_PREFIX}{key}", f"{KEYS_PREFIX}{key}"):
            await call_storage(self._storage.delete(path), "delete", path, timeout)
        logger.debug("Vault delete: did=%s key=%s", self.did, key)

    async def head(self, key: str, timeout: Optional[float] = None) -> dict[str, str]:
        """Envelope metadata of ``key`` without decrypting it.

        Raises:
            KeyNotFound: If no entry is stored under ``key``.
        """
        self._require_unlocked()
        self._validate_key(key)
        envelope = await load_envelope(self._storage, key, timeout=self._timeout(timeout))
        return dict(envelope.metadata)

    # ------------------------------------------------------------------
    # Sharing
    # ------------------------------------------------------------------

    async def resolve_public_key(self, did: str, timeout: Optional[float] = None) -> bytes:
        """Resolve the published vault public key of ``did``.

        Raises:
            PublicKeyNotFound: If nothing valid is published for ``did``.
        """
        record = await self._directory.resolve(did, timeout=self._timeout(timeout))
        return record.public_key

    async def grant(
        self,
        key: str,
        recipient_did: str,
        *,
        metadata: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> GrantRecord:
        """Share the entry key of ``key`` with ``recipient_did``.

        Raises:
            VaultLocked: If the vault is locked.
            PublicKeyNotFound: If the recipient has no published key.
            KeyNotFound: If ``key`` has no key blob.
        """
        master_key, _ = self._require_unlocked()
        self._validate_key(key)
        timeout = self._timeout(timeout)

        public_key = await self.resolve_public_key(recipient_did, timeout=timeout)
        key_blob = await load_key_blob(self._storage, key, timeout)
        try:
            blob = self._grants.create_grant(master_key, key_blob, public_key)
        except ValueError as err:
            raise PublicKeyNotFound(recipient_did, str(err)) from err

        record = GrantRecord.build(
            blob, space_id=self.space_id, grantor=self.did, metadata=metadata,
        )
        path = grant_path(recipient_did, key)
        await call_storage(self._storage.put(path, record.to_json()), "put", path, timeout)
        logger.debug(
            "Vault grant: did=%s key=%s recipient=%s key_id=%s",
            self.did, key, recipient_did, key_blob.key_id,
        )
        return record

    async def list_grants(self, key: str, timeout: Optional[float] = None) -> list[str]:
        """Recipient DIDs holding a grant for ``key``."""
        self._require_unlocked()
        self._validate_key(key)
        paths = await call_storage(
            self._storage.list(GRANTS_PREFIX, remove_prefix=True),
            "list", GRANTS_PREFIX, self._timeout(timeout),
        )
        recipients = []
        for path in paths:
            parsed = parse_grant_path(path)
            if parsed is not None and parsed[1] == key and parsed[0] not in recipients:
                recipients.append(parsed[0])
        return recipients

    async def revoke(
        self, key: str, recipient_did: str, timeout: Optional[float] = None,
    ) -> dict[str, Any]:
        """Revoke a recipient's access to ``key`` and rotate its entry key.

        The revoked grant is deleted, the value is re-encrypted under a new
        entry key, and every remaining grantee receives a fresh grant.

        Returns:
            Rotation stats (see ``rotate_entry_key``) plus ``revoked``.

        Raises:
            VaultLocked: If the vault is locked.
            GrantNotFound: If ``recipient_did`` holds no grant for ``key``.
            StorageError: If deleting the grant or rewriting the entry fails.
        """
        master_key, _ = self._require_unlocked()
        self._validate_key(key)
        timeout = self._timeout(timeout)

        grantees = await self.list_grants(key, timeout=timeout)
        if recipient_did not in grantees:
            raise GrantNotFound(self.did, key)

        path = grant_path(recipient_did, key)
        await call_storage(self._storage.delete(path), "delete", path, timeout)
        remaining = [g for g in grantees if g != recipient_did]

        async def _resolve(did: str) -> bytes:
            return await self.resolve_public_key(did, timeout=timeout)

        stats = await rotate_entry_key(
            self._storage,
            master_key,
            key,
            remaining,
            _resolve,
            grantor=self.did,
            space_id=self.space_id,
            cipher=self._cipher,
            grant_protocol=self._grants,
            timeout=timeout,
        )
        stats["revoked"] = recipient_did
        if stats["errors"]:
            logger.warning(
                "Vault revoke: did=%s key=%s left %d grantee(s) without a grant",
                self.did, key, stats["errors"],
            )
        return stats

    async def get_shared(
        self,
        owner_did: str,
        key: str,
        *,
        deserialize: Optional[Callable[[bytes], Any]] = None,
        raw: bool = False,
        allow_pickle: bool = False,
        timeout: Optional[float] = None,
    ) -> VaultEntry:
        """Decrypt an entry that ``owner_did`` shared with this principal.

        Raises:
            VaultLocked: If the vault is locked.
            GrantNotFound: If the owner has no grant for us on ``key``.
            KeyNotFound: If the owner's entry is gone.
            DecryptionFailed: If the grant is stale (entry key rotated).
        """
        _, identity = self._require_unlocked()
        self._validate_key(key)
        timeout = self._timeout(timeout)

        try:
            owner_space = await self._directory.resolve_vault_space(owner_did, timeout=timeout)
        except PublicKeyNotFound:
            raise GrantNotFound(owner_did, key) from None

        path = grant_path(self.did, key)
        stored = await call_storage(
            self._storage.get(path, space=owner_space), "get", path, timeout,
        )
        if stored is None:
            raise GrantNotFound(owner_did, key)
        record = GrantRecord.from_json(stored.data)
        entry_key = self._grants.open_grant(identity.private_key, record.blob)

        envelope = await load_envelope(self._storage, key, space=owner_space, timeout=timeout)
        plaintext = open_value(entry_key, envelope)
        logger.debug("Vault get_shared: did=%s owner=%s key=%s", self.did, owner_did, key)
        return VaultEntry(
            value=self._decode(plaintext, envelope, deserialize, raw, allow_pickle),
            metadata=dict(envelope.metadata),
            key_id=key_id(entry_key),
        )

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list(
        self,
        prefix: Optional[str] = None,
        remove_prefix: bool = False,
        timeout: Optional[float] = None,
    ) -> list[str]:
        """List vault keys, optionally under ``prefix``.

        Returns:
            Keys relative to the vault root, or to ``prefix`` when
            ``remove_prefix`` is set.
        """
        self._require_unlocked()
        full_prefix = f"{VAULT_PREFIX}{prefix or ''}"
        paths = await call_storage(
            self._storage.list(full_prefix, remove_prefix=True),
            "list", full_prefix, self._timeout(timeout),
        )
        if remove_prefix or not prefix:
            return list(paths)
        return [f"{prefix}{p}" for p in paths]
