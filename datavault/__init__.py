"""DataVault — End-to-end encrypted key-value storage on an untrusted store.

Keys are derived from a principal's deterministic signature; values are
encrypted client side with per-entry keys and shared through X25519 grants.

Security Note (Threat Model):
    Master key, private key and decrypted values live in process memory
    while the vault is unlocked. ``lock()`` zeroes the key buffers, but
    CPython may keep transient copies. A memory dump of the process
    while unlocked can expose key material; this is an accepted
    limitation.
"""

from .version import __version__
from .config import VaultConfig
from .crypto import AESGCMCipher, ChaCha20Cipher, EntryCipher, KeyExchange, get_cipher
from .data_vault import DataVault, VaultEntry
from .did import Principal, parse_did, parse_space_id, did_for_address
from .directory import PublicKeyDirectory, PublicKeyRecord
from .envelope import KeyBlob, VaultEnvelope, VaultHeaders
from .exceptions import (
    VaultError,
    VaultLocked,
    KeyDerivationError,
    DecryptionFailed,
    KeyNotFound,
    GrantNotFound,
    PublicKeyNotFound,
    VaultIntegrityError,
    StorageError,
    InvalidPrincipal,
)
from .grants import GrantProtocol, GrantRecord
from .http_storage import HTTPStorage
from .keys import EncryptionIdentity, SecretBytes, derive_master_key, derive_encryption_identity
from .key_rotation import rotate_entry_key
from .storage import StorageBackend, StoredValue, MemoryStorage

__all__ = [
    "__version__",
    "DataVault",
    "VaultEntry",
    "VaultConfig",
    "EntryCipher",
    "AESGCMCipher",
    "ChaCha20Cipher",
    "KeyExchange",
    "get_cipher",
    "Principal",
    "parse_did",
    "parse_space_id",
    "did_for_address",
    "PublicKeyDirectory",
    "PublicKeyRecord",
    "KeyBlob",
    "VaultEnvelope",
    "VaultHeaders",
    "GrantProtocol",
    "GrantRecord",
    "EncryptionIdentity",
    "SecretBytes",
    "derive_master_key",
    "derive_encryption_identity",
    "rotate_entry_key",
    "StorageBackend",
    "StoredValue",
    "MemoryStorage",
    "HTTPStorage",
    "VaultError",
    "VaultLocked",
    "KeyDerivationError",
    "DecryptionFailed",
    "KeyNotFound",
    "GrantNotFound",
    "PublicKeyNotFound",
    "VaultIntegrityError",
    "StorageError",
    "InvalidPrincipal",
]
