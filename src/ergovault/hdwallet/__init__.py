"""HD wallet module for deterministic address generation."""

from ergovault.hdwallet.base import DerivedAddress, HDNode
from ergovault.hdwallet.ergo import ErgoHDNode
from ergovault.hdwallet.pool import KeyDerivationPool

__all__ = [
    "HDNode",
    "DerivedAddress",
    "ErgoHDNode",
    "KeyDerivationPool",
]
