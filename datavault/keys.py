"""
Key Derivation — Master key and encryption identity from a signer.

Both secrets are re-derivable from the signing capability alone:

- Master key: sign("vault-master-v1:" + scope_id)
    → HKDF-SHA256(salt=SHA256(scope_id), info="vault-master")
- Encryption identity: sign("encryption-identity-v1")
    → HKDF-SHA256(salt="x25519-domain", info="encryption-identity")
    → clamp → X25519 key pair

Distinct messages and ``info`` strings keep the two secrets independent.

Security Note:
    Key bytes live in ``SecretBytes`` buffers which are zeroed on wipe().
    CPython may still hold transient copies (e.g. inside cryptography
    objects); this is an accepted limitation.
"""
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from .crypto import KEY_LENGTH, KeyExchange, clamp, hkdf_sha256, sha256
from .exceptions import KeyDerivationError

logger = logging.getLogger("datavault")

MASTER_MESSAGE_PREFIX = "vault-master-v1:"
MASTER_INFO = "vault-master"
IDENTITY_MESSAGE = "encryption-identity-v1"
IDENTITY_INFO = "encryption-identity"
X25519_SALT = "x25519-domain"

Signature = Union[bytes, str]
SignFunction = Callable[[str], Union[Signature, Awaitable[Signature]]]


class SecretBytes:
    """Mutable key buffer that can be explicitly zeroed."""

    __slots__ = ("_buf",)

    def __init__(self, data: Union[bytes, bytearray]) -> None:
        self._buf = bytearray(data)

    def __bytes__(self) -> bytes:
        return bytes(self._buf)

    def __len__(self) -> int:
        return len(self._buf)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SecretBytes):
            return self._buf == other._buf
        if isinstance(other, (bytes, bytearray)):
            return self._buf == other
        return NotImplemented

    __hash__ = None  # mutable

    def __repr__(self) -> str:
        return f"<SecretBytes len={len(self._buf)}>"

    @property
    def wiped(self) -> bool:
        return not any(self._buf)

    def wipe(self) -> None:
        for i in range(len(self._buf)):
            self._buf[i] = 0


@dataclass
class EncryptionIdentity:
    """X25519 key pair used to receive grants."""

    public_key: bytes
    private_key: SecretBytes

    def wipe(self) -> None:
        self.private_key.wipe()


def signature_bytes(signature: Signature) -> bytes:
    """Normalize a signer result to bytes.

    Wallet signers return ``0x``-prefixed hex strings; other strings are
    taken as UTF-8 text.
    """
    if isinstance(signature, (bytes, bytearray)):
        return bytes(signature)
    if isinstance(signature, str):
        if signature.startswith(("0x", "0X")):
            try:
                return bytes.fromhex(signature[2:])
            except ValueError:
                pass
        return signature.encode("utf-8")
    raise TypeError(f"Unsupported signature type: {type(signature).__name__}")


async def request_signature(sign: SignFunction, message: str) -> bytes:
    """Ask the signing capability for a signature over ``message``.

    Accepts plain callables, coroutine functions, and objects exposing
    a ``sign_message`` method.

    Raises:
        KeyDerivationError: If the signer fails or returns nothing.
    """
    func: Any = getattr(sign, "sign_message", sign)
    try:
        result = func(message)
        if inspect.isawaitable(result):
            result = await result
    except Exception as err:
        raise KeyDerivationError(f"Signer failed: {err}") from err
    if not result:
        raise KeyDerivationError("Signer returned an empty signature")
    try:
        return signature_bytes(result)
    except TypeError as err:
        raise KeyDerivationError(str(err)) from err


def master_key_from_signature(signature: bytes, scope_id: str) -> bytes:
    return hkdf_sha256(
        signature,
        info=MASTER_INFO,
        salt=sha256(scope_id),
    )


def identity_from_signature(
    signature: bytes, key_exchange: Optional[KeyExchange] = None
) -> EncryptionIdentity:
    key_exchange = key_exchange or KeyExchange()
    seed = hkdf_sha256(signature, info=IDENTITY_INFO, salt=X25519_SALT)
    private_key = clamp(seed)
    return EncryptionIdentity(
        public_key=key_exchange.public_key(private_key),
        private_key=SecretBytes(private_key),
    )


async def derive_master_key(sign: SignFunction, scope_id: str) -> SecretBytes:
    """Derive the 32-byte master key for ``scope_id``.

    Args:
        sign: Signing capability (message -> signature).
        scope_id: Vault scope, usually the vault space id.

    Returns:
        Master key in a zeroable buffer.
    """
    signature = await request_signature(sign, MASTER_MESSAGE_PREFIX + scope_id)
    key = master_key_from_signature(signature, scope_id)
    if len(key) != KEY_LENGTH:
        raise KeyDerivationError("Master key derivation produced a short key")
    return SecretBytes(key)


async def derive_encryption_identity(
    sign: SignFunction, key_exchange: Optional[KeyExchange] = None
) -> EncryptionIdentity:
    """Derive the X25519 encryption identity (scope independent)."""
    signature = await request_signature(sign, IDENTITY_MESSAGE)
    try:
        return identity_from_signature(signature, key_exchange)
    except ValueError as err:
        raise KeyDerivationError(f"Identity derivation failed: {err}") from err
