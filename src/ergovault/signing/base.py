"""Signature primitives for spending proofs.

Signing flow:
1. Serialize the unsigned transaction to canonical bytes
2. Bind the bytes to the recent chain state (SigningContext)
3. Sign the resulting digest once per input with the key of the input's address
4. Attach the proofs and submit
"""

import logging
from dataclasses import dataclass
from typing import Union

from ecdsa import SECP256k1, BadSignatureError, SigningKey, VerifyingKey
from ecdsa.errors import MalformedPointError
from ecdsa.util import sigdecode_string, sigencode_string

from ergovault.errors import SigningError

logger = logging.getLogger(__name__)


@dataclass
class SpendingProof:
    """Proof attached to one transaction input.

    Attributes:
        box_id: Id of the box being spent
        proof: Signature bytes as hex string (r || s)
        public_key: Compressed public key of the signer (hex)
    """
    box_id: str
    proof: str
    public_key: str

    def to_dict(self) -> dict:
        return {"boxId": self.box_id, "spendingProof": {"proofBytes": self.proof, "extension": {}}}


def sign_digest(private_key: Union[bytes, bytearray], digest: bytes) -> bytes:
    """Deterministic secp256k1 ECDSA signature over a 32-byte digest.

    Raises:
        SigningError: If the key or digest is malformed
    """
    if len(digest) != 32:
        raise SigningError("Digest must be 32 bytes")
    try:
        sk = SigningKey.from_string(bytes(private_key), curve=SECP256k1)
    except Exception as e:
        raise SigningError(f"Invalid private key: {e}") from e

    return sk.sign_digest_deterministic(digest, sigencode=sigencode_string)


def verify_proof(public_key: str, digest: bytes, proof: str) -> bool:
    """Check a proof against a compressed public key."""
    try:
        vk = VerifyingKey.from_string(bytes.fromhex(public_key), curve=SECP256k1)
        return vk.verify_digest(bytes.fromhex(proof), digest, sigdecode=sigdecode_string)
    except (BadSignatureError, MalformedPointError, ValueError):
        return False
