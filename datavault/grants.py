"""
Grant Protocol — Share one entry key with one recipient.

A grant re-encrypts an entry key to the recipient's X25519 public key
through an ephemeral Diffie-Hellman exchange:

    shared    = X25519(ephemeral_private, recipient_public)
    grant_key = HKDF-SHA256(shared, salt="x25519-domain", info="vault-grant")
    blob      = ephemeral_public(32B) || EncryptedBlob(entry_key, grant_key)

The recipient recomputes ``shared`` from its own private key and the
ephemeral public key. A fresh ephemeral key pair is drawn per grant.

Grants are persisted as ``grants/{recipient}/{key}`` in the owner's space.
"""
import logging
from typing import Any, Optional

from pydantic import Field

from .config import CIPHER_AES_GCM
from .crypto import (
    KEY_LENGTH,
    NONCE_SIZE,
    TAG_SIZE,
    ByteLike,
    EntryCipher,
    KeyExchange,
    get_cipher,
    hkdf_sha256,
)
from .envelope import KeyBlob, VaultHeaders, VaultRecord, b64decode, b64encode, unwrap
from .exceptions import DecryptionFailed

logger = logging.getLogger("datavault")

GRANT_INFO = "vault-grant"
GRANT_SALT = "x25519-domain"
GRANT_VERSION = "1"
GRANTS_PREFIX = "grants/"

# ephemeral public key + nonce + tag
MIN_GRANT_SIZE = KEY_LENGTH + NONCE_SIZE + TAG_SIZE


class GrantRecord(VaultRecord):
    """Persisted grant: the grant blob plus grantor bookkeeping."""

    grant: str
    space_id: str = Field(alias="spaceId")
    metadata: dict[str, str] = Field(default_factory=dict)

    @property
    def blob(self) -> bytes:
        return b64decode(self.grant)

    @property
    def grantor(self) -> Optional[str]:
        return self.metadata.get(VaultHeaders.GRANTOR)

    @classmethod
    def build(
        cls,
        blob: bytes,
        space_id: str,
        grantor: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> "GrantRecord":
        meta = {str(k): str(v) for k, v in (metadata or {}).items()}
        meta[VaultHeaders.GRANT_VERSION] = GRANT_VERSION
        meta[VaultHeaders.GRANTOR] = grantor
        return cls(grant=b64encode(blob), space_id=space_id, metadata=meta)


def grant_path(recipient: str, key: str) -> str:
    return f"{GRANTS_PREFIX}{recipient}/{key}"


def parse_grant_path(path: str) -> Optional[tuple[str, str]]:
    """Split ``grants/{recipient}/{key}`` (prefix optional) into its parts.

    Recipients are DIDs and never contain ``/``; keys may.
    """
    if path.startswith(GRANTS_PREFIX):
        path = path[len(GRANTS_PREFIX):]
    recipient, sep, key = path.partition("/")
    if not sep or not recipient or not key:
        return None
    return recipient, key


def derive_grant_key(shared_secret: bytes) -> bytes:
    return hkdf_sha256(shared_secret, info=GRANT_INFO, salt=GRANT_SALT)


class GrantProtocol:
    """Create and open grant blobs.

    Args:
        key_exchange: X25519 capability (injectable).
        cipher: AEAD used for the grant payload; AES-256-GCM.
    """

    def __init__(
        self,
        key_exchange: Optional[KeyExchange] = None,
        cipher: Optional[EntryCipher] = None,
    ) -> None:
        self.key_exchange = key_exchange or KeyExchange()
        self.cipher = cipher or get_cipher(CIPHER_AES_GCM)

    def seal_entry_key(self, entry_key: ByteLike, recipient_public_key: bytes) -> bytes:
        """Encrypt a raw entry key to a recipient public key."""
        if len(recipient_public_key) != KEY_LENGTH:
            raise ValueError(
                f"Recipient public key must be {KEY_LENGTH} bytes, "
                f"got {len(recipient_public_key)}"
            )
        ephemeral_private, ephemeral_public = self.key_exchange.generate()
        shared = self.key_exchange.exchange(ephemeral_private, recipient_public_key)
        grant_key = derive_grant_key(shared)
        return ephemeral_public + self.cipher.encrypt(grant_key, bytes(entry_key))

    def create_grant(
        self,
        owner_master_key: ByteLike,
        owner_key_blob: KeyBlob,
        recipient_public_key: bytes,
    ) -> bytes:
        """Re-encrypt the entry key of ``owner_key_blob`` to a recipient.

        Returns:
            GrantBlob bytes (92 bytes for a 32-byte entry key).
        """
        entry_key = unwrap(owner_master_key, owner_key_blob)
        return self.seal_entry_key(entry_key, recipient_public_key)

    def open_grant(self, recipient_private_key: ByteLike, grant_blob: bytes) -> bytes:
        """Recover the entry key from a grant blob.

        Raises:
            DecryptionFailed: If the blob is malformed or not addressed
                to this private key.
        """
        if len(grant_blob) < MIN_GRANT_SIZE:
            raise DecryptionFailed(
                f"Grant blob too short: {len(grant_blob)} bytes "
                f"(minimum {MIN_GRANT_SIZE})"
            )
        ephemeral_public = grant_blob[:KEY_LENGTH]
        try:
            shared = self.key_exchange.exchange(recipient_private_key, ephemeral_public)
        except ValueError as err:
            raise DecryptionFailed(f"Invalid grant key exchange: {err}") from None
        grant_key = derive_grant_key(shared)
        return self.cipher.decrypt(grant_key, grant_blob[KEY_LENGTH:])
