"""Process-wide pool of wallet derivation nodes.

The pool is the single owner of derivation state: callers look nodes up by
the wallet's public key instead of keeping their own copies. One instance is
created by the application and passed to the components that need it.
"""

import logging
from typing import Iterator

from ergovault.errors import KeyNotFoundError
from ergovault.hdwallet.base import DerivedAddress, HDNode

logger = logging.getLogger(__name__)


class KeyDerivationPool:
    """Map of wallet public key -> public-only derivation node."""

    def __init__(self):
        self._nodes: dict[str, HDNode] = {}

    def allocate(self, node: HDNode, public_key_id: str) -> HDNode:
        """Register a node under ``public_key_id``.

        Idempotent: if the id is already allocated the existing entry is
        returned and the new node is ignored. Only a neutered copy is kept,
        so private material never lives in the pool.
        """
        existing = self._nodes.get(public_key_id)
        if existing is not None:
            return existing

        stored = node if node.is_public_only else node.neutered()
        self._nodes[public_key_id] = stored
        logger.debug(f"Allocated derivation node for {public_key_id[:16]}...")
        return stored

    def get(self, public_key_id: str) -> HDNode:
        """Get the node for a public key.

        Raises:
            KeyNotFoundError: If ``allocate`` was never called for the id
        """
        node = self._nodes.get(public_key_id)
        if node is None:
            raise KeyNotFoundError(public_key_id)
        return node

    @staticmethod
    def derive_child(node: HDNode, index: int) -> DerivedAddress:
        """Derive one child address without touching pool state."""
        return node.derive_address(index)

    @staticmethod
    def derive_range(node: HDNode, count: int, start_index: int = 0) -> list[DerivedAddress]:
        """Derive ``count`` child addresses starting at ``start_index``."""
        return node.derive_addresses(count, start_index)

    def clear(self) -> None:
        """Drop all entries (useful for testing)."""
        self._nodes.clear()

    def __contains__(self, public_key_id: str) -> bool:
        return public_key_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[str]:
        return iter(self._nodes)
