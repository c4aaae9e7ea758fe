"""
Vault Key Rotation: Re-encryption of stored session secrets when rotating
master keys.

Walks every ``session:*`` record of a backend in batches and re-seals the
secret fields written under ``old_key_id`` with ``new_key_id``. Each record
keeps its remaining TTL. The operation is idempotent: fields already at the
target key version are skipped.

Security Note:
    Plaintext exists in memory only during re-encryption of each field.
    Never log plaintext or ciphertext values.
"""
import logging

from ..backends import AbstractBackend
from ..conf import MIN_BACKEND_TTL, SESSION_KEY_PREFIX
from ..data import SessionData
from ..exceptions import BackendUnavailable, DecryptionError
from .config import VaultConfig
from .crypto import CredentialCipher

logger = logging.getLogger("passgage.vault")


async def rotate_master_key(
    backend: AbstractBackend,
    old_key_id: int,
    new_key_id: int,
    master_keys: dict[int, bytes],
    batch_size: int = 100,
    cipher_backend: str = "aesgcm",
) -> dict:
    """Re-encrypt all session secrets from old_key_id to new_key_id.

    Args:
        backend: Backend holding the session records.
        old_key_id: Source key version to rotate from.
        new_key_id: Target key version to rotate to.
        master_keys: Mapping of all key versions to raw 32-byte keys.
        batch_size: Number of records fetched per batch.

    Returns:
        Stats dict with keys: total, rotated, errors, skipped.

    Raises:
        KeyError: If old_key_id or new_key_id is not in master_keys.
    """
    if old_key_id not in master_keys:
        raise KeyError(
            f"Old key version {old_key_id} not found in master_keys"
        )
    if new_key_id not in master_keys:
        raise KeyError(
            f"New key version {new_key_id} not found in master_keys"
        )

    cipher = CredentialCipher(VaultConfig(
        master_keys=master_keys,
        active_key_id=new_key_id,
        cipher_backend=cipher_backend,
    ))
    stats = {"total": 0, "rotated": 0, "errors": 0, "skipped": 0}

    logger.info(
        "Starting key rotation from v%d to v%d (batch_size=%d)",
        old_key_id, new_key_id, batch_size,
    )

    keys = await backend.list_by_prefix(SESSION_KEY_PREFIX)
    for offset in range(0, len(keys), batch_size):
        batch = keys[offset:offset + batch_size]
        logger.info(
            "Processing batch %d (%d records)", offset // batch_size + 1, len(batch),
        )
        for key in batch:
            stats["total"] += 1
            try:
                record = await backend.get(key)
                if record is None:
                    # expired since listing
                    stats["skipped"] += 1
                    continue
                session = SessionData.from_record(record)
                changed = False
                credentials = session.credentials
                for field in credentials.secret_fields:
                    value = getattr(credentials, field)
                    if value and cipher.key_id_of(value) == old_key_id:
                        setattr(credentials, field, cipher.encrypt(cipher.decrypt(value)))
                        changed = True
                if not changed:
                    stats["skipped"] += 1
                    continue
                ttl = session.ttl()
                if ttl <= 0:
                    stats["skipped"] += 1
                    continue
                if not await backend.replace(
                    key, session.to_record(), max(MIN_BACKEND_TTL, ttl),
                ):
                    # destroyed while being re-sealed
                    stats["skipped"] += 1
                    continue
                stats["rotated"] += 1
            except (DecryptionError, BackendUnavailable, ValueError) as err:
                logger.error(
                    "Error rotating record %s: %s", key[:len(SESSION_KEY_PREFIX) + 8],
                    type(err).__name__,
                )
                stats["errors"] += 1

    logger.info(
        "Key rotation complete: %s", stats,
    )
    return stats
