"""OS keystore integration using keyring for an optional offline copy of the wrapped key record.

Only the *wrapped* ``user_keys`` record is ever written: KDF parameters, salt,
wrapped vault key and its IV. All of it is public or ciphertext, so a leaked
keyring entry gives an attacker nothing without the master password. The
unwrapped vault key never goes through this module.

Use this for opt-in convenience (unlocking while the remote store is
unreachable); do not assume keyring provides hardware-backed security on all
platforms.
"""
import json
import logging
from typing import Optional

import keyring
from keyring.errors import PasswordDeleteError

from ..core.exceptions import StorageError, ValidationError
from ..core.models import UserKeysRecord

logger = logging.getLogger(__name__)


def assess_keyring_backend() -> tuple[bool, str]:
    """Return (is_secure, message) describing the current keyring backend.

    Heuristics are used because the `keyring` package exposes different backends
    across platforms.
    """
    try:
        backend = keyring.get_keyring()
    except Exception as e:
        return False, f"failed to get keyring backend: {e}"

    name = backend.__class__.__name__
    priority = getattr(backend, "priority", None)

    insecure_indicators = ("Plaintext", "Uncrypted", "Simple", "File", "Null", "Fail")
    if any(tok in name for tok in insecure_indicators):
        return False, f"insecure backend detected: {name}"

    if priority is not None and priority <= 0:
        return False, f"no suitable secure keyring backend available (priority={priority}, backend={name})"

    # treat known platform backends as acceptable
    if "Win" in name or "Keychain" in name or "SecretService" in name or "KWallet" in name:
        return True, f"backend looks acceptable: {name} (priority={priority})"

    return True, f"unknown backend '{name}', treat with caution (priority={priority})"


def save_record(service: str, account: str, record: UserKeysRecord, force: bool = False) -> None:
    """Persist ``record`` as JSON in the OS keystore under (service, account).

    Refuses an insecure-looking backend unless ``force`` is set.
    """
    if not isinstance(record, UserKeysRecord):
        raise ValidationError("only a UserKeysRecord can be stored in the keyring")
    if not force:
        secure, msg = assess_keyring_backend()
        if not secure:
            raise StorageError(
                f"refusing to store key record in OS keystore: {msg}; "
                "pass force=True to override if you understand the risk"
            )
    keyring.set_password(service, account, json.dumps(record.to_dict()))


def load_record(service: str, account: str) -> Optional[UserKeysRecord]:
    """Load a persisted record; returns None when absent or unreadable."""
    secret = keyring.get_password(service, account)
    if secret is None:
        return None
    try:
        return UserKeysRecord.from_row(json.loads(secret))
    except (ValueError, ValidationError, KeyError):
        logger.warning("ignoring unreadable key record in keyring for service %s", service)
        return None


def delete_record(service: str, account: str) -> None:
    """Remove the record from the OS keystore; missing entries are not an error."""
    try:
        keyring.delete_password(service, account)
    except PasswordDeleteError:
        pass
