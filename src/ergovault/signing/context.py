"""Signing context: chain state plus the secret used to sign.

A context is built from the last N block headers and, for the duration of a
single signing operation, a signing-capable node decrypted from the wallet
mnemonic. The node is forgotten as soon as signing completes, whether or not
it succeeded.
"""

import logging
from typing import Optional

from ergovault.chains import SIGNING_HEADER_COUNT
from ergovault.errors import SigningError
from ergovault.explorer.contracts import BlockHeader
from ergovault.hdwallet.address import blake2b256
from ergovault.hdwallet.ergo import ErgoHDNode
from ergovault.signing.base import SpendingProof, sign_digest

logger = logging.getLogger(__name__)


class SigningContext:
    """Recent headers bound to a transaction, plus a short-lived secret."""

    def __init__(self, headers: list[BlockHeader]):
        self.headers = headers
        self._node: Optional[ErgoHDNode] = None

    @classmethod
    def from_block_headers(
        cls, headers: list[BlockHeader], required: int = SIGNING_HEADER_COUNT
    ) -> "SigningContext":
        """Build a context from the most recent headers.

        Raises:
            SigningError: If fewer than ``required`` headers were supplied
        """
        if len(headers) < required:
            raise SigningError(
                f"Signing needs {required} recent block headers, got {len(headers)}"
            )
        ordered = sorted(headers, key=lambda h: h.height, reverse=True)[:required]
        return cls(ordered)

    @property
    def height(self) -> int:
        """Height of the newest header."""
        return self.headers[0].height

    @property
    def header_digest(self) -> bytes:
        return blake2b256(b"".join(bytes.fromhex(h.id) for h in self.headers))

    def message_for(self, tx_bytes: bytes) -> bytes:
        """Digest actually signed for a transaction."""
        return blake2b256(tx_bytes + self.header_digest)

    def with_secret(self, node: ErgoHDNode) -> "SigningContext":
        if node.is_public_only:
            raise SigningError("Signing requires a node with private key material")
        self._node = node
        return self

    @property
    def has_secret(self) -> bool:
        return self._node is not None

    def sign(self, tx_bytes: bytes, inputs: list[tuple[str, int]]) -> list[SpendingProof]:
        """Sign every input.

        Args:
            tx_bytes: Canonical unsigned transaction bytes
            inputs: ``(box_id, address_index)`` for each input, in order

        Returns:
            One proof per input, same order
        """
        if self._node is None:
            raise SigningError("No secret attached to signing context")

        message = self.message_for(tx_bytes)
        proofs = []
        for box_id, index in inputs:
            private_key = self._node.derive_private_key(index)
            try:
                signature = sign_digest(private_key, message)
            finally:
                for i in range(len(private_key)):
                    private_key[i] = 0
            proofs.append(
                SpendingProof(
                    box_id=box_id,
                    proof=signature.hex(),
                    public_key=self._node.derive_address(index).public_key,
                )
            )

        logger.debug(f"Signed {len(proofs)} inputs at height {self.height}")
        return proofs

    def wipe(self) -> None:
        """Forget the attached secret node."""
        if self._node is not None:
            self._node.forget()
            self._node = None

    def __enter__(self) -> "SigningContext":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.wipe()
        return False
