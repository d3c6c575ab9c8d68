"""Key derivation: master secret -> key-encryption-key (KEK)."""
from typing import Dict

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..config import DEFAULT_ITERATIONS, KDF_ALGORITHM, KEY_LENGTH, MIN_ITERATIONS, SALT_LENGTH
from ..core.exceptions import ValidationError
from .encoding import b64decode, b64encode, random_bytes
from .keys import KeyEncryptionKey


def generate_salt(length: int = SALT_LENGTH) -> str:
    """Return a base64-encoded cryptographically secure random salt."""
    return b64encode(random_bytes(length))


def derive_kek(
    master_secret: str,
    salt_b64: str,
    iterations: int = DEFAULT_ITERATIONS,
) -> KeyEncryptionKey:
    """
    Derive a KEK from the master secret using PBKDF2-HMAC-SHA256.

    The same (secret, salt, iterations) always yields the same key, which is
    what lets a later login reopen a vault key wrapped at setup. The returned
    key can only wrap and unwrap.
    """
    if not master_secret:
        raise ValidationError("Master password cannot be empty")
    if isinstance(iterations, bool) or not isinstance(iterations, int):
        raise ValidationError("Iteration count must be an integer")
    if iterations < MIN_ITERATIONS:
        raise ValidationError(f"Iteration count too low (minimum {MIN_ITERATIONS:,})")
    if not salt_b64:
        raise ValidationError("Salt is required")
    try:
        salt = b64decode(salt_b64)
    except ValueError:
        raise ValidationError("Salt is not valid base64") from None
    if not salt:
        raise ValidationError("Salt is required")

    if isinstance(master_secret, str):
        master_secret = master_secret.encode("utf-8")

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return KeyEncryptionKey(kdf.derive(master_secret))


def kdf_params_to_dict(salt_b64: str, iterations: int = DEFAULT_ITERATIONS) -> Dict:
    return {
        "kdf": KDF_ALGORITHM,
        "kdf_iterations": iterations,
        "salt": salt_b64,
    }
