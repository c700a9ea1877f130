"""Exception taxonomy for the wallet engine.

Nothing here is retried inside the engine; every error is surfaced to the
caller so it can be shown to the user.
"""

from typing import Optional


class WalletEngineError(Exception):
    """Base class for all engine errors."""
    pass


class NotFoundError(WalletEngineError):
    """A wallet, mnemonic or derivation pool entry is missing."""
    pass


class WalletNotFoundError(NotFoundError):
    """Raised when no wallet exists for the given id or public key."""

    def __init__(self, identifier):
        super().__init__(f"Wallet not found: {identifier}")
        self.identifier = identifier


class MnemonicNotFoundError(NotFoundError):
    """Raised when a wallet has no stored mnemonic (read-only wallets)."""
    pass


class KeyNotFoundError(NotFoundError):
    """Raised when the derivation pool has no node for a public key."""

    def __init__(self, public_key_id: str):
        super().__init__(f"No derivation node allocated for {public_key_id[:16]}...")
        self.public_key_id = public_key_id


class CapacityExceededError(WalletEngineError):
    """Raised when adding an address would exceed the gap limit."""

    def __init__(self, gap_limit: int):
        super().__init__(
            f"You cannot add more than {gap_limit} consecutive unused addresses."
        )
        self.gap_limit = gap_limit


class InsufficientFundsError(WalletEngineError):
    """Raised when the selectable inputs cannot cover a requested amount."""

    def __init__(self, token_id: str, required: int, available: int):
        super().__init__(
            f"Insufficient funds for token {token_id[:12]}...: "
            f"need {required}, have {available}"
        )
        self.token_id = token_id
        self.required = required
        self.available = available


class DecryptionError(WalletEngineError):
    """Raised when a mnemonic cannot be decrypted with the given password.

    Deliberately not a NotFoundError: a wrong password must never look like
    a missing wallet.
    """
    pass


class NetworkError(WalletEngineError):
    """Raised when a chain explorer or price oracle call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SigningError(WalletEngineError):
    """Raised when a transaction cannot be signed."""
    pass


class TransactionStateError(WalletEngineError):
    """Raised when a transaction step is invoked out of order."""
    pass


class InvalidAddressError(WalletEngineError, ValueError):
    """Raised when an address fails to decode or has a bad checksum."""
    pass
