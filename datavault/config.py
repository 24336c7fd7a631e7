"""
Vault Configuration — Validated settings for a DataVault instance.

Reads settings from environment variables:
    VAULT_SPACE_ID = <space id holding vault data>
    VAULT_CIPHER_BACKEND = aes-256-gcm | chacha20-poly1305
    VAULT_KEY_ROTATION = per-write | per-key
    VAULT_STORAGE_TIMEOUT = <seconds>
    VAULT_PUBLISH_ON_UNLOCK = true | false

Security Note:
    No key material is ever configured here. Keys are derived at unlock
    time from the principal's signer.
"""
import os
import logging
from typing import Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("datavault")

CIPHER_AES_GCM = "aes-256-gcm"
CIPHER_CHACHA20 = "chacha20-poly1305"
SUPPORTED_CIPHERS = (CIPHER_AES_GCM, CIPHER_CHACHA20)

ROTATION_PER_WRITE = "per-write"
ROTATION_PER_KEY = "per-key"

# accepted aliases for the cipher backend (legacy env values)
_CIPHER_ALIASES = {
    "aesgcm": CIPHER_AES_GCM,
    "chacha20": CIPHER_CHACHA20,
}

_TRUE_VALUES = ("1", "true", "yes", "on")


def get_space_id() -> str:
    """Read the vault space id from the VAULT_SPACE_ID env var.

    Raises:
        RuntimeError: If VAULT_SPACE_ID is not set.
    """
    raw = os.environ.get("VAULT_SPACE_ID")
    if not raw:
        raise RuntimeError(
            "VAULT_SPACE_ID environment variable is not set"
        )
    return raw


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    space_id: str
    cipher: str = Field(default=CIPHER_AES_GCM)
    key_rotation: str = Field(default=ROTATION_PER_WRITE)
    timeout: Optional[float] = Field(default=30.0, gt=0)
    publish_on_unlock: bool = True

    @field_validator("space_id")
    @classmethod
    def validate_space_id(cls, v: str) -> str:
        """Space id must be a non-empty, whitespace-free string."""
        v = v.strip()
        if not v or any(c.isspace() for c in v):
            raise ValueError(f"Invalid vault space id: {v!r}")
        return v

    @field_validator("cipher")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        v = _CIPHER_ALIASES.get(v.lower(), v.lower())
        if v not in SUPPORTED_CIPHERS:
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @field_validator("key_rotation")
    @classmethod
    def validate_rotation(cls, v: str) -> str:
        if v not in (ROTATION_PER_WRITE, ROTATION_PER_KEY):
            raise ValueError(f"Unsupported key rotation policy: {v}")
        return v

    @classmethod
    def from_env(cls, **overrides) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Keyword arguments override values read from the environment.

        Returns:
            Populated VaultConfig instance.
        """
        values = {
            "space_id": overrides.pop("space_id", None) or get_space_id(),
            "cipher": os.environ.get("VAULT_CIPHER_BACKEND", CIPHER_AES_GCM),
            "key_rotation": os.environ.get("VAULT_KEY_ROTATION", ROTATION_PER_WRITE),
        }
        timeout = os.environ.get("VAULT_STORAGE_TIMEOUT")
        if timeout:
            values["timeout"] = float(timeout)
        publish = os.environ.get("VAULT_PUBLISH_ON_UNLOCK")
        if publish is not None:
            values["publish_on_unlock"] = publish.lower() in _TRUE_VALUES
        values.update(overrides)
        config = cls(**values)
        logger.debug(
            "Vault config loaded: space=%s cipher=%s rotation=%s",
            config.space_id, config.cipher, config.key_rotation,
        )
        return config
