"""
Vault Errors — Typed failures for every vault operation.

Each error carries a stable ``code`` so callers can branch on the
failure kind without matching on messages.
"""
from typing import Optional


class VaultError(Exception):
    """Base class for all vault errors."""

    code: str = "VAULT_ERROR"

    def __init__(self, message: str = "") -> None:
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class VaultLocked(VaultError):
    """Vault is locked. Call unlock() first."""

    code = "VAULT_LOCKED"


class KeyDerivationError(VaultLocked):
    """Key derivation failed; the vault stays locked."""


class DecryptionFailed(VaultError):
    """Authentication tag mismatch or malformed ciphertext."""

    code = "DECRYPTION_FAILED"


class VaultIntegrityError(VaultError):
    """Structural inconsistency in stored vault records."""

    code = "INTEGRITY_ERROR"


class KeyNotFound(VaultError):
    code = "KEY_NOT_FOUND"

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Vault key not found: {key}")

    def to_dict(self) -> dict:
        return {**super().to_dict(), "key": self.key}


class GrantNotFound(VaultError):
    code = "GRANT_NOT_FOUND"

    def __init__(self, grantor: str, key: str) -> None:
        self.grantor = grantor
        self.key = key
        super().__init__(f"No grant from {grantor} for key {key}")

    def to_dict(self) -> dict:
        return {**super().to_dict(), "grantor": self.grantor, "key": self.key}


class PublicKeyNotFound(VaultError):
    code = "PUBLIC_KEY_NOT_FOUND"

    def __init__(self, did: str, reason: Optional[str] = None) -> None:
        self.did = did
        message = f"Vault public key not found for {did}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)

    def to_dict(self) -> dict:
        return {**super().to_dict(), "did": self.did}


class StorageError(VaultError):
    code = "STORAGE_ERROR"

    def __init__(self, cause: BaseException, operation: str = "", path: str = "") -> None:
        self.cause = cause
        self.operation = operation
        self.path = path
        where = f"{operation} {path}".strip()
        super().__init__(
            f"Storage {where} failed: {cause!r}" if where else f"Storage failed: {cause!r}"
        )


class InvalidPrincipal(ValueError):
    """A principal identifier (DID) could not be parsed."""
