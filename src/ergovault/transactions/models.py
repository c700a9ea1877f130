"""Transaction data structures and canonical serialization.

Amounts are raw integers (nanoERG for ERG, smallest unit for tokens). The
signed bytes of a transaction are its canonical JSON form without proofs, so
the same unsigned transaction always produces the same id and digest.
"""

import copy
import json
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ergovault.chains import ERG_TOKEN_ID
from ergovault.explorer.contracts import Box
from ergovault.hdwallet.address import blake2b256, ergo_tree_from_address
from ergovault.signing.base import SpendingProof

# Mainnet miner fee contract
MINER_FEE_ERGO_TREE = (
    "1005040004000e36100204a00b08cd0279be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959"
    "f2815b16f81798ea02d192a39a8cc7a701730073011001020402d19683030193a38cc7b2a573000001"
    "93c2b2a57301007473027303830108cdeeac93b1a57304"
)


class TransactionState(str, Enum):
    """Lifecycle of a transaction being built."""

    DRAFT = "draft"
    INPUTS_SELECTED = "inputs_selected"
    BUILT = "built"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    FAILED = "failed"


@dataclass
class TransferAsset:
    """Requested amount of one asset; ERG uses the all-zero token id."""
    token_id: str
    amount: int

    @property
    def is_erg(self) -> bool:
        return self.token_id == ERG_TOKEN_ID


@dataclass
class OutputCandidate:
    """A box to be created by the transaction."""
    address: str
    value: int
    creation_height: int
    tokens: dict[str, int] = field(default_factory=dict)
    ergo_tree: str = ""

    def __post_init__(self):
        if not self.ergo_tree:
            self.ergo_tree = ergo_tree_from_address(self.address)

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": str(self.value),
            "ergoTree": self.ergo_tree,
            "creationHeight": self.creation_height,
            "assets": [
                {"tokenId": token_id, "amount": str(amount)}
                for token_id, amount in self.tokens.items()
            ],
            "additionalRegisters": {},
        }


def box_totals(boxes: list[Box]) -> dict[str, int]:
    """Sum ERG and token amounts held by boxes, keyed by token id."""
    totals: dict[str, int] = defaultdict(int)
    for box in boxes:
        totals[ERG_TOKEN_ID] += box.value
        for token in box.assets:
            totals[token.token_id] += token.amount
    return dict(totals)


def canonical_bytes(tx: dict[str, Any]) -> bytes:
    """Serialize a transaction dict for hashing and signing.

    Input proofs and the id are excluded, so signing does not change the
    signed bytes.
    """
    body = {
        "inputs": [{"boxId": i["boxId"], "extension": i.get("extension") or {}} for i in tx.get("inputs", [])],
        "dataInputs": [{"boxId": d["boxId"]} for d in tx.get("dataInputs", [])],
        "outputs": tx.get("outputs", []),
    }
    return json.dumps(body, sort_keys=True, separators=(",", ":")).encode()


def transaction_id(tx: dict[str, Any]) -> str:
    return blake2b256(canonical_bytes(tx)).hex()


def attach_proofs(tx: dict[str, Any], proofs: list[SpendingProof]) -> dict[str, Any]:
    """Return a copy of ``tx`` with proofs set on the matching inputs."""
    by_box = {p.box_id: p for p in proofs}
    signed = copy.deepcopy(tx)
    for tx_input in signed.get("inputs", []):
        proof = by_box.get(tx_input["boxId"])
        if proof is not None:
            tx_input["spendingProof"] = proof.to_dict()["spendingProof"]
    signed["id"] = transaction_id(tx)
    return signed


@dataclass
class UnsignedTransaction:
    """Selected inputs and the outputs they fund."""
    inputs: list[Box]
    outputs: list[OutputCandidate]
    fee: int

    @property
    def fee_output(self) -> OutputCandidate:
        height = self.outputs[0].creation_height if self.outputs else 0
        return OutputCandidate(
            address="", value=self.fee, creation_height=height, ergo_tree=MINER_FEE_ERGO_TREE
        )

    def to_dict(self) -> dict[str, Any]:
        outputs = [o.to_dict() for o in self.outputs]
        if self.fee:
            outputs.append(self.fee_output.to_dict())
        return {
            "inputs": [{"boxId": box.box_id, "extension": {}} for box in self.inputs],
            "dataInputs": [],
            "outputs": outputs,
        }

    def to_bytes(self) -> bytes:
        return canonical_bytes(self.to_dict())

    @property
    def id(self) -> str:
        return transaction_id(self.to_dict())

    def output_totals(self) -> dict[str, int]:
        totals: dict[str, int] = defaultdict(int)
        for output in self.outputs:
            totals[ERG_TOKEN_ID] += output.value
            for token_id, amount in output.tokens.items():
                totals[token_id] += amount
        return dict(totals)

    def is_balanced(self) -> bool:
        """Inputs equal outputs per token, with the fee paid in ERG."""
        inputs = box_totals(self.inputs)
        outputs = self.output_totals()
        outputs[ERG_TOKEN_ID] = outputs.get(ERG_TOKEN_ID, 0) + self.fee

        token_ids = set(inputs) | set(outputs)
        return all(inputs.get(t, 0) == outputs.get(t, 0) for t in token_ids)


@dataclass
class SignedTransaction:
    """Unsigned transaction plus one proof per input."""
    unsigned: UnsignedTransaction
    proofs: list[SpendingProof]

    @property
    def id(self) -> str:
        return self.unsigned.id

    def to_dict(self) -> dict[str, Any]:
        return attach_proofs(self.unsigned.to_dict(), self.proofs)
