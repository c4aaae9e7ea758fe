"""
Vault Configuration: Master key loading and validated settings.

Reads master keys from environment variables in the format:
    SESSION_MASTER_KEY_v{N} = <base64-encoded 32-byte key>
    SESSION_ACTIVE_KEY_ID = <integer>

When no key is configured, a random key is generated once and held in
memory for the process lifetime. Ciphertext produced under it cannot be
read after a restart or by another instance.

Security Note:
    Never log key material. Only log key IDs and version numbers.
"""
import os
import re
import base64
import binascii
import secrets
import logging

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger("passgage.vault")

_KEY_ENV_PATTERN = re.compile(r"^SESSION_MASTER_KEY_v(\d+)$")

KEY_LENGTH = 32
EPHEMERAL_KEY_ID = 1


def load_master_keys(environ: dict = None) -> dict[int, bytes]:
    """Load master keys from SESSION_MASTER_KEY_v{N} environment variables.

    Each value must be base64-encoded and decode to exactly 32 bytes.

    Returns:
        Mapping of key version (int) to raw 32-byte key. Empty when no
        key is configured.

    Raises:
        ValueError: If a key is not valid base64 or not 32 bytes long.
    """
    environ = os.environ if environ is None else environ
    keys: dict[int, bytes] = {}
    for name, value in environ.items():
        match = _KEY_ENV_PATTERN.match(name)
        if match:
            version = int(match.group(1))
            try:
                key_bytes = base64.b64decode(value, validate=True)
            except binascii.Error as err:
                raise ValueError(f"{name} is not valid base64") from err
            if len(key_bytes) != KEY_LENGTH:
                raise ValueError(
                    f"{name} must decode to exactly {KEY_LENGTH} bytes, "
                    f"got {len(key_bytes)}"
                )
            keys[version] = key_bytes
    logger.debug("Loaded %d master key version(s): %s", len(keys), sorted(keys.keys()))
    return keys


def get_active_key_id(master_keys: dict[int, bytes], environ: dict = None) -> int:
    """Read the active key version from SESSION_ACTIVE_KEY_ID.

    Falls back to the highest configured version when the variable is unset.

    Raises:
        ValueError: If the value is not a valid integer.
    """
    environ = os.environ if environ is None else environ
    raw = environ.get("SESSION_ACTIVE_KEY_ID")
    if raw is None:
        return max(master_keys) if master_keys else EPHEMERAL_KEY_ID
    return int(raw)


def generate_master_key() -> str:
    """Generate a random 32-byte master key and return as base64 string.

    This is a utility for operators to generate new keys.
    """
    return base64.b64encode(secrets.token_bytes(KEY_LENGTH)).decode("ascii")


class VaultConfig(BaseModel):
    """Validated cipher configuration."""

    master_keys: dict[int, bytes] = Field(default_factory=dict)
    active_key_id: int = EPHEMERAL_KEY_ID
    cipher_backend: str = Field(default="aesgcm")
    cipher_mode: str = Field(default="aead")
    ephemeral: bool = False

    model_config = {"arbitrary_types_allowed": True}

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        v = v.lower()
        if v not in ("aesgcm", "chacha20"):
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @field_validator("cipher_mode")
    @classmethod
    def validate_mode(cls, v: str) -> str:
        v = v.lower()
        if v not in ("aead", "insecure"):
            raise ValueError(f"Unsupported cipher mode: {v}")
        return v

    @model_validator(mode="after")
    def validate_active_key_exists(self) -> "VaultConfig":
        """Ensure active_key_id is present in master_keys."""
        if self.cipher_mode == "insecure":
            return self
        if self.active_key_id not in self.master_keys:
            raise ValueError(
                f"active_key_id {self.active_key_id} not found in "
                f"master_keys (available: {sorted(self.master_keys.keys())})"
            )
        return self

    @property
    def active_key(self) -> bytes:
        return self.master_keys[self.active_key_id]

    @classmethod
    def ephemeral_config(cls, cipher_backend: str = "aesgcm") -> "VaultConfig":
        """Generate a process-lifetime key held only in memory."""
        logger.warning(
            "No SESSION_MASTER_KEY_v{N} configured: generated an in-memory "
            "key (v%d); sessions will not survive a restart",
            EPHEMERAL_KEY_ID,
        )
        return cls(
            master_keys={EPHEMERAL_KEY_ID: secrets.token_bytes(KEY_LENGTH)},
            active_key_id=EPHEMERAL_KEY_ID,
            cipher_backend=cipher_backend,
            ephemeral=True,
        )

    @classmethod
    def from_env(cls, environ: dict = None) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Raises:
            RuntimeError: If the insecure mode is requested in production.
        """
        environ = os.environ if environ is None else environ
        cipher_backend = environ.get("SESSION_CIPHER_BACKEND", "aesgcm")
        cipher_mode = environ.get("SESSION_CIPHER_MODE", "aead").lower()
        if cipher_mode == "insecure":
            if environ.get("ENVIRONMENT", "development").lower() == "production":
                raise RuntimeError(
                    "SESSION_CIPHER_MODE=insecure is not allowed in production"
                )
            return cls(cipher_mode="insecure", cipher_backend=cipher_backend)
        master_keys = load_master_keys(environ)
        if not master_keys:
            return cls.ephemeral_config(cipher_backend)
        return cls(
            master_keys=master_keys,
            active_key_id=get_active_key_id(master_keys, environ),
            cipher_backend=cipher_backend,
        )
