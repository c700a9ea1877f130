"""Transaction building and signing."""

from ergovault.transactions.builder import TransactionBuilder
from ergovault.transactions.models import (
    OutputCandidate,
    SignedTransaction,
    TransactionState,
    TransferAsset,
    UnsignedTransaction,
)

__all__ = [
    "TransactionBuilder",
    "TransactionState",
    "TransferAsset",
    "OutputCandidate",
    "UnsignedTransaction",
    "SignedTransaction",
]
