"""
Vault Crypto Core — Primitives behind the vault protocol.

Provides the two capability boundaries the orchestration layer depends on:

- ``EntryCipher``: AEAD encryption of byte payloads.
  Format: [nonce 12B][ciphertext][tag 16B]
- ``KeyExchange``: X25519 key generation and Diffie-Hellman.

plus HKDF-SHA256 derivation and key identifiers.

Security Note:
    Never log plaintext, ciphertext or key bytes.
    Nonces are random 96-bit drawn per call; never derived, never reused.
"""
import os
import hashlib
import logging
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)

from .config import CIPHER_AES_GCM, CIPHER_CHACHA20
from .exceptions import DecryptionFailed, VaultIntegrityError

logger = logging.getLogger("datavault")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16
KEY_LENGTH = 32  # AES-256 / X25519
KEY_ID_LENGTH = 16  # hex characters

KDF_NAME = "hkdf-sha256"

ByteLike = Union[bytes, bytearray, memoryview]


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def hkdf_sha256(
    ikm: ByteLike,
    info: Union[str, bytes],
    salt: Optional[Union[str, bytes]] = None,
    length: int = KEY_LENGTH,
) -> bytes:
    """Derive key material using HKDF-SHA256.

    Args:
        ikm: Input key material (signature bytes, DH shared secret).
        info: Context string for domain separation (e.g. "vault-master").
        salt: Optional salt; strings are UTF-8 encoded.
        length: Output length in bytes.

    Returns:
        Derived key bytes.
    """
    if isinstance(info, str):
        info = info.encode("utf-8")
    if isinstance(salt, str):
        salt = salt.encode("utf-8")
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=length,
        salt=salt,
        info=info,
    )
    return hkdf.derive(bytes(ikm))


def sha256(data: Union[str, ByteLike]) -> bytes:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(bytes(data)).digest()


def key_id(entry_key: ByteLike) -> str:
    """Non-secret identifier of an entry key: first 16 hex chars of SHA-256."""
    return hashlib.sha256(bytes(entry_key)).hexdigest()[:KEY_ID_LENGTH]


def generate_entry_key() -> bytes:
    """Generate a random 32-byte entry key."""
    return os.urandom(KEY_LENGTH)


# ---------------------------------------------------------------------------
# Entry cipher (AEAD)
# ---------------------------------------------------------------------------

class EntryCipher:
    """Authenticated encryption of byte payloads under a 32-byte key.

    Subclasses set ``name`` (recorded in envelopes) and ``aead_cls``.
    """

    name: str = ""
    aead_cls: type = AESGCM

    def encrypt(self, key: ByteLike, plaintext: bytes) -> bytes:
        """Encrypt plaintext with a fresh random nonce.

        Returns:
            EncryptedBlob bytes: [nonce 12B][ciphertext + tag 16B].
        """
        cipher = self.aead_cls(bytes(key))
        nonce = os.urandom(NONCE_SIZE)
        return nonce + cipher.encrypt(nonce, bytes(plaintext), None)

    def decrypt(self, key: ByteLike, blob: bytes) -> bytes:
        """Verify and decrypt an EncryptedBlob.

        Raises:
            DecryptionFailed: On tag mismatch, wrong key or malformed blob.
        """
        _min = NONCE_SIZE + TAG_SIZE
        if len(blob) < _min:
            raise DecryptionFailed(
                f"Encrypted blob too short: {len(blob)} bytes (minimum {_min})"
            )
        try:
            cipher = self.aead_cls(bytes(key))
            return cipher.decrypt(blob[:NONCE_SIZE], bytes(blob[NONCE_SIZE:]), None)
        except InvalidTag:
            raise DecryptionFailed(
                "Authentication tag mismatch (tampered data or wrong key)"
            ) from None
        except ValueError as err:
            raise DecryptionFailed(f"Invalid decryption key: {err}") from None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name}>"


class AESGCMCipher(EntryCipher):
    name = CIPHER_AES_GCM
    aead_cls = AESGCM


class ChaCha20Cipher(EntryCipher):
    name = CIPHER_CHACHA20
    aead_cls = ChaCha20Poly1305


_CIPHERS: dict[str, EntryCipher] = {
    CIPHER_AES_GCM: AESGCMCipher(),
    CIPHER_CHACHA20: ChaCha20Cipher(),
}


def get_cipher(name: str) -> EntryCipher:
    """Return the EntryCipher recorded under ``name`` in an envelope.

    Raises:
        VaultIntegrityError: If the cipher is unknown.
    """
    try:
        return _CIPHERS[name]
    except KeyError:
        raise VaultIntegrityError(f"Unsupported vault cipher: {name!r}") from None


# ---------------------------------------------------------------------------
# Key exchange (X25519)
# ---------------------------------------------------------------------------

def clamp(seed: ByteLike) -> bytes:
    """Clamp a 32-byte seed into an X25519 scalar (RFC 7748)."""
    if len(seed) != KEY_LENGTH:
        raise ValueError(f"X25519 seed must be {KEY_LENGTH} bytes, got {len(seed)}")
    scalar = bytearray(seed)
    scalar[0] &= 248
    scalar[31] &= 127
    scalar[31] |= 64
    return bytes(scalar)


class KeyExchange:
    """X25519 Diffie-Hellman over raw 32-byte keys."""

    name = "x25519"

    def generate(self) -> tuple[bytes, bytes]:
        """Generate a fresh key pair.

        Returns:
            Tuple of (private_key, public_key) raw bytes.
        """
        private = X25519PrivateKey.generate()
        return _private_bytes(private), _public_bytes(private.public_key())

    def public_key(self, private_key: ByteLike) -> bytes:
        private = X25519PrivateKey.from_private_bytes(bytes(private_key))
        return _public_bytes(private.public_key())

    def exchange(self, private_key: ByteLike, public_key: ByteLike) -> bytes:
        """Compute the X25519 shared secret.

        Raises:
            ValueError: If either key is malformed or the result is all-zero.
        """
        private = X25519PrivateKey.from_private_bytes(bytes(private_key))
        peer = X25519PublicKey.from_public_bytes(bytes(public_key))
        return private.exchange(peer)


def _private_bytes(key: X25519PrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _public_bytes(key: X25519PublicKey) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
