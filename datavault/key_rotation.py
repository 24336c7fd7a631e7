"""
Vault Key Rotation — Re-key one entry and reissue its grants.

Rotation is what makes revocation effective: once ``keys/{key}`` and
``vault/{key}`` are rewritten under a new entry key, any grant issued for
the previous key opens to a key that decrypts nothing current.

Steps:
    1. unwrap the current entry key, decrypt the current value
    2. draw a new entry key, re-encrypt the value, re-wrap the key blob
    3. overwrite ``keys/{key}`` then ``vault/{key}``
    4. issue a fresh grant to every remaining grantee

Writes are not transactional. A failure in step 3 is raised as
StorageError; failures in step 4 are counted per grantee.

Security Note:
    Plaintext exists in memory only during re-encryption.
    Never log plaintext, ciphertext or key values; key ids only.
"""
import logging
from typing import Any, Awaitable, Callable, Optional

from .config import ROTATION_PER_WRITE
from .crypto import ByteLike, EntryCipher, generate_entry_key, get_cipher
from .envelope import KeyBlob, VaultEnvelope, VaultHeaders, open_value, seal_value, unwrap, wrap
from .exceptions import KeyNotFound, StorageError, VaultError
from .grants import GrantProtocol, GrantRecord, grant_path
from .storage import StorageBackend, call_storage

logger = logging.getLogger("datavault")

KEYS_PREFIX = "keys/"
VAULT_PREFIX = "vault/"

ResolveFunction = Callable[[str], Awaitable[bytes]]


async def load_key_blob(
    storage: StorageBackend, key: str, timeout: Optional[float] = None,
) -> KeyBlob:
    """Read ``keys/{key}``.

    Raises:
        KeyNotFound: If no key blob is stored for ``key``.
    """
    path = f"{KEYS_PREFIX}{key}"
    stored = await call_storage(storage.get(path), "get", path, timeout)
    if stored is None:
        raise KeyNotFound(key)
    return KeyBlob.from_json(stored.data)


async def load_envelope(
    storage: StorageBackend,
    key: str,
    space: Optional[str] = None,
    timeout: Optional[float] = None,
) -> VaultEnvelope:
    """Read ``vault/{key}``, optionally from another principal's space.

    Raises:
        KeyNotFound: If no envelope is stored for ``key``.
    """
    path = f"{VAULT_PREFIX}{key}"
    stored = await call_storage(storage.get(path, space=space), "get", path, timeout)
    if stored is None:
        raise KeyNotFound(key)
    return VaultEnvelope.from_json(stored.data)


async def store_entry(
    storage: StorageBackend,
    key: str,
    key_blob: KeyBlob,
    envelope: VaultEnvelope,
    timeout: Optional[float] = None,
) -> None:
    """Write ``keys/{key}`` and ``vault/{key}``.

    Both writes are attempted even if the first fails; there is no rollback.

    Raises:
        StorageError: The first failure, after both writes were attempted.
    """
    key_path = f"{KEYS_PREFIX}{key}"
    value_path = f"{VAULT_PREFIX}{key}"
    failure: Optional[StorageError] = None
    try:
        await call_storage(
            storage.put(key_path, key_blob.to_json()), "put", key_path, timeout,
        )
    except StorageError as err:
        failure = err
    try:
        await call_storage(
            storage.put(value_path, envelope.to_json(), metadata=envelope.metadata),
            "put", value_path, timeout,
        )
    except StorageError as err:
        failure = failure or err
    if failure is not None:
        raise failure


async def rotate_entry_key(
    storage: StorageBackend,
    master_key: ByteLike,
    key: str,
    grantees: list[str],
    resolve_public_key: ResolveFunction,
    grantor: str,
    space_id: str,
    cipher: Optional[EntryCipher] = None,
    grant_protocol: Optional[GrantProtocol] = None,
    timeout: Optional[float] = None,
) -> dict[str, Any]:
    """Re-encrypt ``key`` under a new entry key and reissue its grants.

    Args:
        storage: Owner's storage backend.
        master_key: Owner's master key.
        key: Vault key to rotate.
        grantees: Recipient DIDs that must keep access.
        resolve_public_key: Coroutine returning a recipient's public key.
        grantor: Owner DID recorded in reissued grants.
        space_id: Owner's vault space recorded in reissued grants.
        cipher: Cipher for the new key blob; the value keeps its own cipher.
        grant_protocol: Grant implementation (injectable).
        timeout: Timeout per storage call, in seconds.

    Returns:
        Stats dict with keys: key_id, previous_key_id, reissued, errors, failed.

    Raises:
        KeyNotFound: If the entry does not exist.
        StorageError: If rewriting the key blob or the value fails.
    """
    grant_protocol = grant_protocol or GrantProtocol()
    key_blob = await load_key_blob(storage, key, timeout)
    envelope = await load_envelope(storage, key, timeout=timeout)

    old_entry_key = unwrap(master_key, key_blob)
    plaintext = open_value(old_entry_key, envelope)

    new_entry_key = generate_entry_key()
    new_envelope = seal_value(
        new_entry_key,
        plaintext,
        cipher=get_cipher(envelope.cipher),
        content_type=envelope.content_type,
        key_rotation=envelope.metadata.get(VaultHeaders.KEY_ROTATION, ROTATION_PER_WRITE),
        metadata=envelope.custom_metadata(),
    )
    new_key_blob = wrap(master_key, new_entry_key, cipher)
    del plaintext

    stats: dict[str, Any] = {
        "key_id": new_key_blob.key_id,
        "previous_key_id": key_blob.key_id,
        "reissued": 0,
        "errors": 0,
        "failed": [],
    }
    logger.info(
        "Rotating entry key for %s (%s -> %s), %d grantee(s)",
        key, key_blob.key_id, new_key_blob.key_id, len(grantees),
    )

    await store_entry(storage, key, new_key_blob, new_envelope, timeout)

    for recipient in grantees:
        path = grant_path(recipient, key)
        try:
            public_key = await resolve_public_key(recipient)
            blob = grant_protocol.seal_entry_key(new_entry_key, public_key)
            record = GrantRecord.build(blob, space_id=space_id, grantor=grantor)
            await call_storage(storage.put(path, record.to_json()), "put", path, timeout)
            stats["reissued"] += 1
        except (VaultError, ValueError) as err:
            logger.error(
                "Error reissuing grant key=%s recipient=%s: %s",
                key, recipient, err,
            )
            stats["errors"] += 1
            stats["failed"].append(recipient)

    logger.info("Key rotation complete for %s: %s", key, stats)
    return stats
