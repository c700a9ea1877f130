"""HD node base interface.

A node wraps the account-level key (m/44'/429'/0'/0) of a wallet. Child
addresses are derived from it with non-hardened indexes, so a public-only
(neutered) node is enough to scan and display addresses. Private material is
only present on nodes built from a freshly decrypted mnemonic.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from ergovault.chains import ACCOUNT_DERIVATION_PATH


@dataclass(frozen=True)
class DerivedAddress:
    """A child address derived from a wallet node."""

    script: str
    index: int
    derivation_path: str
    public_key: str  # compressed, hex


class HDNode(ABC):
    """Abstract account-level derivation node."""

    @property
    @abstractmethod
    def public_key(self) -> bytes:
        """Compressed public key of the account node."""
        pass

    @property
    @abstractmethod
    def chain_code(self) -> bytes:
        pass

    @property
    @abstractmethod
    def is_public_only(self) -> bool:
        pass

    @abstractmethod
    def neutered(self) -> "HDNode":
        """Return a public-only copy of this node."""
        pass

    @abstractmethod
    def derive_address(self, index: int) -> DerivedAddress:
        """Derive the address at a child index."""
        pass

    @abstractmethod
    def derive_private_key(self, index: int) -> bytearray:
        """Derive the raw private key for a child index.

        The caller owns the returned buffer and must zero it after use.
        """
        pass

    @property
    def public_key_hex(self) -> str:
        return self.public_key.hex()

    def derive_addresses(self, count: int, offset: int = 0) -> list[DerivedAddress]:
        """Derive ``count`` consecutive addresses starting at ``offset``."""
        return [self.derive_address(index) for index in range(offset, offset + count)]

    def get_derivation_path(self, index: int) -> str:
        return f"{ACCOUNT_DERIVATION_PATH}/{index}"
