"""Transaction signing."""

from ergovault.signing.base import SpendingProof, sign_digest, verify_proof
from ergovault.signing.context import SigningContext

__all__ = ["SigningContext", "SpendingProof", "sign_digest", "verify_proof"]
