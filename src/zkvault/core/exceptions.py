"""
Exceptions for the zkvault core
Every error raised by the package derives from ZKVaultError so callers have a
single catch-all. Messages never carry key material, IVs or plaintext.
"""


class ZKVaultError(Exception):
    # general container for errors
    pass


class ValidationError(ZKVaultError):
    # raised on caller-correctable input (empty secret, low iteration count, bad salt)
    pass


class MissingKeyError(ValidationError):
    # raised when a key argument is absent or has the wrong capability
    pass


class CryptoError(ZKVaultError):
    # authentication-tag failures; the subclasses never say why it failed
    pass


class UnwrapError(CryptoError):
    # raised when the wrapped vault key cannot be opened (wrong password, corruption, tampering)
    pass


class DecryptError(CryptoError):
    # raised when a payload cannot be authenticated or decoded
    pass


class SerializationError(ZKVaultError):
    # raised when data cannot be turned into (or back from) canonical JSON
    pass


class VaultLockedError(ZKVaultError):
    # raised when an item operation needs the vault key but the cache is locked
    pass


class VaultNotInitializedError(ZKVaultError):
    # raised when the user has no wrapped key record yet
    pass


class StorageError(ZKVaultError):
    # raised if the local store fails in some way
    pass


class ItemNotFoundError(StorageError):
    # raised when a vault item DNE
    pass
