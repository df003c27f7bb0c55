"""Exception hierarchy for the passkey user store."""


class PasskeyStoreError(Exception):
    """Base exception for all passkey store errors."""


class ConflictError(PasskeyStoreError):
    """Raised when a write violates a uniqueness constraint."""


class NotFoundError(PasskeyStoreError):
    """Raised when a read that requires an existing record matches nothing."""


class StoreUnavailableError(PasskeyStoreError):
    """Raised when the underlying database is unreachable or times out."""


class InvalidSelectorError(PasskeyStoreError, ValueError):
    """Raised when a user selector carries neither an id nor an email."""
