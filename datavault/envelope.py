"""
Key Envelope — Wrapping of entry keys and self-describing value envelopes.

Persisted records:

- ``keys/{key}``  → KeyBlob:
    {"key": base64(EncryptedBlob(entry_key, master_key)),
     "metadata": {"keyId": ..., "cipher": ...}}
- ``vault/{key}`` → VaultEnvelope:
    {"data": base64(EncryptedBlob(plaintext, entry_key)),
     "metadata": {"x-vault-version": ..., "x-vault-cipher": ..., ...}}

Every consumer (put, get, grant, revoke) recovers entry keys through
``unwrap``; no other code path sees a raw entry key of the owner.
"""
import base64
import binascii
import logging
from typing import Any, Optional, Union

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import CIPHER_AES_GCM, ROTATION_PER_WRITE
from .crypto import KDF_NAME, ByteLike, EntryCipher, get_cipher, key_id
from .exceptions import DecryptionFailed, VaultIntegrityError
from .serializers import DEFAULT_CONTENT_TYPE

logger = logging.getLogger("datavault")

VAULT_VERSION = "1"


class VaultHeaders:
    """Metadata header keys used in vault envelopes and grants."""

    VERSION = "x-vault-version"
    CIPHER = "x-vault-cipher"
    KEY_ID = "x-vault-key-id"
    CONTENT_TYPE = "x-vault-content-type"
    KDF = "x-vault-kdf"
    KEY_ROTATION = "x-vault-key-rotation"
    GRANT_VERSION = "x-vault-grant-version"
    GRANTOR = "x-vault-grantor"


RecordSource = Union[str, bytes, bytearray, dict]


def b64encode(data: ByteLike) -> str:
    return base64.b64encode(bytes(data)).decode("ascii")


def b64decode(data: str) -> bytes:
    """Strict base64 decode.

    Raises:
        DecryptionFailed: If ``data`` is not valid base64.
    """
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as err:
        raise DecryptionFailed(f"Malformed ciphertext encoding: {err}") from None


def load_record(raw: RecordSource) -> dict:
    """Parse a stored JSON record into a dict.

    Raises:
        VaultIntegrityError: If the record is not a JSON object.
    """
    if isinstance(raw, dict):
        return raw
    try:
        parsed = orjson.loads(raw)
    except (orjson.JSONDecodeError, TypeError) as err:
        raise VaultIntegrityError(f"Malformed vault record: {err}") from None
    if not isinstance(parsed, dict):
        raise VaultIntegrityError("Malformed vault record: expected a JSON object")
    return parsed


class VaultRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_json(self) -> str:
        return orjson.dumps(self.model_dump(by_alias=True)).decode("utf-8")

    @classmethod
    def from_json(cls, raw: RecordSource):
        try:
            return cls.model_validate(load_record(raw))
        except ValidationError as err:
            raise VaultIntegrityError(
                f"Malformed {cls.__name__}: {err.error_count()} invalid field(s)"
            ) from None


class KeyBlobMetadata(VaultRecord):
    key_id: str = Field(alias="keyId")
    cipher: str = CIPHER_AES_GCM


class KeyBlob(VaultRecord):
    """An entry key wrapped under the owner's master key."""

    key: str
    metadata: KeyBlobMetadata

    @property
    def key_id(self) -> str:
        return self.metadata.key_id


class VaultEnvelope(VaultRecord):
    """Encrypted value plus self-describing metadata."""

    data: str
    metadata: dict[str, str] = Field(default_factory=dict)

    @property
    def key_id(self) -> Optional[str]:
        return self.metadata.get(VaultHeaders.KEY_ID)

    @property
    def cipher(self) -> str:
        return self.metadata.get(VaultHeaders.CIPHER, CIPHER_AES_GCM)

    @property
    def content_type(self) -> str:
        return self.metadata.get(VaultHeaders.CONTENT_TYPE, DEFAULT_CONTENT_TYPE)

    def custom_metadata(self) -> dict[str, str]:
        """Caller supplied metadata, without the reserved vault headers."""
        return {
            k: v for k, v in self.metadata.items()
            if not k.startswith("x-vault-")
        }


# ---------------------------------------------------------------------------
# Entry key wrapping
# ---------------------------------------------------------------------------

def wrap(
    master_key: ByteLike,
    entry_key: ByteLike,
    cipher: Optional[EntryCipher] = None,
) -> KeyBlob:
    """Encrypt an entry key under the master key.

    Returns:
        KeyBlob carrying the wrapped key and its key id.
    """
    cipher = cipher or get_cipher(CIPHER_AES_GCM)
    wrapped = cipher.encrypt(master_key, bytes(entry_key))
    return KeyBlob(
        key=b64encode(wrapped),
        metadata=KeyBlobMetadata(key_id=key_id(entry_key), cipher=cipher.name),
    )


def unwrap(master_key: ByteLike, key_blob: KeyBlob) -> bytes:
    """Recover an entry key from its KeyBlob.

    Raises:
        DecryptionFailed: If the blob does not open under ``master_key``.
        VaultIntegrityError: If the recovered key does not match the keyId.
    """
    cipher = get_cipher(key_blob.metadata.cipher)
    entry_key = cipher.decrypt(master_key, b64decode(key_blob.key))
    if key_id(entry_key) != key_blob.key_id:
        raise VaultIntegrityError(
            f"Key blob keyId mismatch (recorded {key_blob.key_id})"
        )
    return entry_key


# ---------------------------------------------------------------------------
# Value envelopes
# ---------------------------------------------------------------------------

def build_metadata(
    entry_key_id: str,
    cipher: str,
    content_type: str = DEFAULT_CONTENT_TYPE,
    key_rotation: str = ROTATION_PER_WRITE,
    custom: Optional[dict[str, Any]] = None,
) -> dict[str, str]:
    """Envelope metadata; reserved vault headers override custom keys."""
    metadata = {str(k): str(v) for k, v in (custom or {}).items()}
    metadata.update({
        VaultHeaders.VERSION: VAULT_VERSION,
        VaultHeaders.CIPHER: cipher,
        VaultHeaders.KEY_ID: entry_key_id,
        VaultHeaders.CONTENT_TYPE: content_type,
        VaultHeaders.KDF: KDF_NAME,
        VaultHeaders.KEY_ROTATION: key_rotation,
    })
    return metadata


def seal_value(
    entry_key: ByteLike,
    plaintext: bytes,
    cipher: Optional[EntryCipher] = None,
    content_type: str = DEFAULT_CONTENT_TYPE,
    key_rotation: str = ROTATION_PER_WRITE,
    metadata: Optional[dict[str, Any]] = None,
) -> VaultEnvelope:
    """Encrypt a serialized value under its entry key."""
    cipher = cipher or get_cipher(CIPHER_AES_GCM)
    blob = cipher.encrypt(entry_key, plaintext)
    return VaultEnvelope(
        data=b64encode(blob),
        metadata=build_metadata(
            key_id(entry_key), cipher.name, content_type, key_rotation, metadata,
        ),
    )


def open_value(entry_key: ByteLike, envelope: VaultEnvelope) -> bytes:
    """Decrypt an envelope with the cipher it records.

    Raises:
        DecryptionFailed: On tag mismatch or malformed data.
        VaultIntegrityError: If the envelope names an unknown cipher.
    """
    cipher = get_cipher(envelope.cipher)
    return cipher.decrypt(entry_key, b64decode(envelope.data))
