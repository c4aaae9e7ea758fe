"""
Vault Crypto Core: Key derivation and credential encryption/decryption.

Every secret is sealed with an AEAD cipher keyed by
HKDF(MASTER_KEY_vN, "passgage-session-vN"). The stored form is text:

    urlsafe_b64([key_id 2B uint16 BE][nonce 12B][encrypted_payload + tag 16B])

The embedded key id lets ciphertext written under a previous master key be
decrypted after the active key changes (see ``key_rotation``).

Security Note:
    Never log plaintext or ciphertext values.
    Nonces are random 96-bit; collision probability negligible under normal usage.
"""
import os
import struct
import base64
import binascii
import logging
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from ..exceptions import DecryptionError
from .config import VaultConfig, KEY_LENGTH

logger = logging.getLogger("passgage.vault")

NONCE_SIZE = 12  # 96-bit nonce
KEY_ID_SIZE = 2  # uint16 big-endian
TAG_SIZE = 16

INSECURE_PREFIX = "insecure:"

_CIPHERS = {
    "aesgcm": AESGCM,
    "chacha20": ChaCha20Poly1305,
}


def derive_key(seed: bytes, context: str) -> bytes:
    """Derive a 32-byte encryption key using HKDF-SHA256.

    Args:
        seed: Input key material (master key bytes).
        context: Context string for domain separation.

    Returns:
        32-byte derived key.
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=None,  # deterministic derivation per key version
        info=context.encode("utf-8"),
    )
    return hkdf.derive(seed)


def key_context(key_id: int) -> str:
    return f"passgage-session-v{key_id}"


def seal(plaintext: bytes, key_id: int, master_key: bytes, cipher_cls: type = AESGCM) -> bytes:
    """Encrypt plaintext with embedded key version.

    Format: [key_id 2B uint16 BE][nonce 12B][encrypted_payload + tag]
    """
    derived = derive_key(master_key, key_context(key_id))
    cipher = cipher_cls(derived)
    nonce = os.urandom(NONCE_SIZE)
    ct = cipher.encrypt(nonce, plaintext, None)
    return struct.pack("!H", key_id) + nonce + ct


def unseal(sealed: bytes, master_keys: dict[int, bytes], cipher_cls: type = AESGCM) -> bytes:
    """Decrypt ciphertext produced by :func:`seal`.

    Raises:
        DecryptionError: If the input is too short, the key version is
            unknown or the authentication tag does not verify.
    """
    _min = KEY_ID_SIZE + NONCE_SIZE + TAG_SIZE
    if len(sealed) < _min:
        raise DecryptionError(
            f"ciphertext too short: {len(sealed)} bytes (minimum {_min})"
        )
    key_id = struct.unpack("!H", sealed[:KEY_ID_SIZE])[0]
    if key_id not in master_keys:
        raise DecryptionError(
            f"Master key version {key_id} not found in provided keys"
        )
    derived = derive_key(master_keys[key_id], key_context(key_id))
    cipher = cipher_cls(derived)
    nonce = sealed[KEY_ID_SIZE:KEY_ID_SIZE + NONCE_SIZE]
    ct = sealed[KEY_ID_SIZE + NONCE_SIZE:]
    try:
        return cipher.decrypt(nonce, ct, None)
    except InvalidTag as err:
        raise DecryptionError(
            f"ciphertext failed authentication under key v{key_id}"
        ) from err


def _b64decode(value: str) -> bytes:
    try:
        return base64.urlsafe_b64decode(value.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError, ValueError) as err:
        raise DecryptionError("ciphertext is not valid base64") from err


class CredentialCipher:
    """Symmetric encrypt/decrypt of secret strings with the process key set.

    All master key versions are kept so that values sealed before a key
    change remain readable; new values are always sealed with the active key.
    """

    insecure = False

    def __init__(self, config: VaultConfig):
        self._master_keys = dict(config.master_keys)
        self._active_key_id = config.active_key_id
        self._cipher_cls = _CIPHERS[config.cipher_backend]

    @property
    def active_key_id(self) -> int:
        return self._active_key_id

    def encrypt(self, plaintext: str) -> str:
        sealed = seal(
            plaintext.encode("utf-8"),
            self._active_key_id,
            self._master_keys[self._active_key_id],
            self._cipher_cls,
        )
        return base64.urlsafe_b64encode(sealed).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        if not isinstance(ciphertext, str):
            raise DecryptionError("ciphertext must be a string")
        plaintext = unseal(_b64decode(ciphertext), self._master_keys, self._cipher_cls)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as err:
            raise DecryptionError("decrypted value is not valid UTF-8") from err

    def key_id_of(self, ciphertext: str) -> int:
        """Return the master key version a ciphertext was sealed with."""
        raw = _b64decode(ciphertext)
        if len(raw) < KEY_ID_SIZE:
            raise DecryptionError("ciphertext too short to carry a key id")
        return struct.unpack("!H", raw[:KEY_ID_SIZE])[0]


class DegradedCipher:
    """Base64 encoding with a marker prefix, for non-production use only.

    This provides no confidentiality. It is only built when explicitly
    requested with ``SESSION_CIPHER_MODE=insecure``.
    """

    insecure = True
    active_key_id = 0

    def __init__(self):
        logger.warning(
            "Credential cipher running in INSECURE degraded mode: secrets "
            "are only base64-encoded. Never use this in production."
        )

    def encrypt(self, plaintext: str) -> str:
        encoded = base64.urlsafe_b64encode(plaintext.encode("utf-8")).decode("ascii")
        return INSECURE_PREFIX + encoded

    def decrypt(self, ciphertext: str) -> str:
        if not isinstance(ciphertext, str) or not ciphertext.startswith(INSECURE_PREFIX):
            raise DecryptionError("value was not produced by the degraded cipher")
        try:
            return _b64decode(ciphertext[len(INSECURE_PREFIX):]).decode("utf-8")
        except UnicodeDecodeError as err:
            raise DecryptionError("decoded value is not valid UTF-8") from err

    def key_id_of(self, ciphertext: str) -> int:
        return 0


Cipher = Union[CredentialCipher, DegradedCipher]


def build_cipher(config: VaultConfig = None) -> Cipher:
    """Build the process cipher from configuration (environment by default)."""
    config = config or VaultConfig.from_env()
    if config.cipher_mode == "insecure":
        return DegradedCipher()
    logger.info(
        "Credential cipher ready: backend=%s active_key=v%d versions=%s",
        config.cipher_backend, config.active_key_id, sorted(config.master_keys),
    )
    return CredentialCipher(config)
