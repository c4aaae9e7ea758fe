"""Credential Vault: encryption of session secrets at rest.

Security Note (Threat Model):
    Secrets are decrypted in process memory only while an auth context is
    built or an upstream login/refresh runs. A memory dump of the process
    could expose the master keys. This is an accepted limitation;
    mitigation requires HSM/secure enclave integration which is out of scope.
"""

from .crypto import CredentialCipher, DegradedCipher, build_cipher
from .key_rotation import rotate_master_key
from .config import VaultConfig, load_master_keys, generate_master_key

__all__ = [
    "CredentialCipher",
    "DegradedCipher",
    "build_cipher",
    "rotate_master_key",
    "VaultConfig",
    "load_master_keys",
    "generate_master_key",
]
