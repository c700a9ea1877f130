"""Transaction builder: draft, select inputs, build, sign, submit.

Each builder instance drives one transaction through
DRAFT -> INPUTS_SELECTED -> BUILT -> SIGNED -> SUBMITTED. A failing step
moves it to FAILED and re-raises; nothing outside the builder is written
before the transaction is signed.
"""

import logging
from contextlib import contextmanager
from typing import Any, Optional

from ergovault.chains import ERG_TOKEN_ID, SIGNING_HEADER_COUNT
from ergovault.errors import (
    InsufficientFundsError,
    InvalidAddressError,
    SigningError,
    TransactionStateError,
)
from ergovault.explorer.base import ChainExplorer
from ergovault.explorer.contracts import Box
from ergovault.hdwallet.address import PAYABLE_TYPES, address_from_ergo_tree, validate_address
from ergovault.hdwallet.ergo import ErgoHDNode
from ergovault.signing.context import SigningContext
from ergovault.transactions.models import (
    OutputCandidate,
    SignedTransaction,
    TransactionState,
    TransferAsset,
    UnsignedTransaction,
    attach_proofs,
    box_totals,
    canonical_bytes,
)

logger = logging.getLogger(__name__)


class TransactionBuilder:
    """Builds and signs a payment from a wallet's boxes.

    Example:
        builder = TransactionBuilder(explorer, recipient, [TransferAsset(ERG_TOKEN_ID, 5)], fee=1)
        await builder.select_inputs(funding_addresses)
        await builder.build(change_address)
        builder.sign(node, address_indexes)
        tx_id = await builder.submit()
    """

    def __init__(
        self,
        explorer: ChainExplorer,
        recipient: str,
        assets: list[TransferAsset],
        fee: int,
        network_prefix: int = 0x00,
        header_count: int = SIGNING_HEADER_COUNT,
    ):
        if not validate_address(recipient, network_prefix, PAYABLE_TYPES):
            raise InvalidAddressError(f"Invalid or unsupported recipient address: {recipient}")
        if fee < 0:
            raise ValueError("Fee must be non-negative")
        if any(a.amount <= 0 for a in assets):
            raise ValueError("Transfer amounts must be positive")

        self.explorer = explorer
        self.recipient = recipient
        self.fee = fee
        self.network_prefix = network_prefix
        self.header_count = header_count

        # Merge duplicates so each token id appears once
        self.requested: dict[str, int] = {}
        for asset in assets:
            self.requested[asset.token_id] = self.requested.get(asset.token_id, 0) + asset.amount

        self.state = TransactionState.DRAFT
        self.inputs: list[Box] = []
        self.unsigned: Optional[UnsignedTransaction] = None
        self.signed: Optional[SignedTransaction] = None
        self.context: Optional[SigningContext] = None
        self.tx_id: Optional[str] = None

    @contextmanager
    def _step(self, expected: TransactionState, target: TransactionState):
        if self.state != expected:
            raise TransactionStateError(
                f"Cannot move to {target.value} from {self.state.value}"
            )
        try:
            yield
        except Exception:
            self.state = TransactionState.FAILED
            raise
        self.state = target

    @property
    def targets(self) -> dict[str, int]:
        """Amounts the inputs must cover, fee included."""
        targets = dict(self.requested)
        targets[ERG_TOKEN_ID] = targets.get(ERG_TOKEN_ID, 0) + self.fee
        return targets

    @staticmethod
    def choose_boxes(boxes: list[Box], targets: dict[str, int]) -> list[Box]:
        """Greedy selection: boxes carrying requested tokens first, then ERG.

        Raises:
            InsufficientFundsError: If all boxes together cannot cover a target
        """
        selected: list[Box] = []
        chosen: set[str] = set()
        covered: dict[str, int] = {}

        def take(box: Box) -> None:
            selected.append(box)
            chosen.add(box.box_id)
            for token_id, amount in box_totals([box]).items():
                covered[token_id] = covered.get(token_id, 0) + amount

        token_targets = [t for t in targets if t != ERG_TOKEN_ID]
        for token_id in token_targets:
            for box in boxes:
                if covered.get(token_id, 0) >= targets[token_id]:
                    break
                if box.box_id in chosen:
                    continue
                if any(a.token_id == token_id for a in box.assets):
                    take(box)

        for box in boxes:
            if covered.get(ERG_TOKEN_ID, 0) >= targets.get(ERG_TOKEN_ID, 0):
                break
            if box.box_id not in chosen:
                take(box)

        available = box_totals(boxes)
        for token_id, required in targets.items():
            if covered.get(token_id, 0) < required:
                raise InsufficientFundsError(token_id, required, available.get(token_id, 0))

        return selected

    async def select_inputs(self, funding_addresses: list[str]) -> list[Box]:
        """Fetch unspent boxes of the funding addresses and pick inputs."""
        with self._step(TransactionState.DRAFT, TransactionState.INPUTS_SELECTED):
            if not funding_addresses:
                raise InsufficientFundsError(
                    ERG_TOKEN_ID, self.targets[ERG_TOKEN_ID], 0
                )
            boxes = await self.explorer.get_unspent_boxes(funding_addresses)
            self.inputs = self.choose_boxes(boxes, self.targets)
            logger.info(
                f"Selected {len(self.inputs)} of {len(boxes)} boxes from "
                f"{len(funding_addresses)} addresses"
            )
        return self.inputs

    async def build(self, change_address: str) -> UnsignedTransaction:
        """Create outputs, sending any surplus to ``change_address``.

        Also fetches the recent headers that bind the signing context; new
        boxes are created at the height after the newest header.
        """
        with self._step(TransactionState.INPUTS_SELECTED, TransactionState.BUILT):
            headers = await self.explorer.get_recent_block_headers(self.header_count)
            self.context = SigningContext.from_block_headers(headers, self.header_count)
            height = self.context.height + 1

            totals = box_totals(self.inputs)
            outputs = [
                OutputCandidate(
                    address=self.recipient,
                    value=self.requested.get(ERG_TOKEN_ID, 0),
                    creation_height=height,
                    tokens={t: a for t, a in self.requested.items() if t != ERG_TOKEN_ID},
                )
            ]

            change_value = totals.get(ERG_TOKEN_ID, 0) - self.targets[ERG_TOKEN_ID]
            change_tokens = {
                token_id: amount - self.requested.get(token_id, 0)
                for token_id, amount in totals.items()
                if token_id != ERG_TOKEN_ID and amount - self.requested.get(token_id, 0) > 0
            }
            if change_value > 0 or change_tokens:
                outputs.append(
                    OutputCandidate(
                        address=change_address,
                        value=change_value,
                        creation_height=height,
                        tokens=change_tokens,
                    )
                )

            unsigned = UnsignedTransaction(inputs=self.inputs, outputs=outputs, fee=self.fee)
            if not unsigned.is_balanced():
                raise TransactionStateError("Transaction inputs and outputs do not balance")
            self.unsigned = unsigned

        logger.info(f"Built transaction {self.unsigned.id} with {len(self.unsigned.outputs)} outputs")
        return self.unsigned

    def sign(self, node: ErgoHDNode, address_indexes: dict[str, int]) -> SignedTransaction:
        """Sign every input with the key of the address that owns it.

        The node's key material is forgotten when this returns.

        Args:
            node: Signing-capable account node from the decrypted mnemonic
            address_indexes: Wallet address -> derivation index
        """
        try:
            with self._step(TransactionState.BUILT, TransactionState.SIGNED):
                inputs = []
                for box in self.unsigned.inputs:
                    if box.address not in address_indexes:
                        raise SigningError(f"Input {box.box_id} is not owned by this wallet")
                    inputs.append((box.box_id, address_indexes[box.address]))

                with self.context.with_secret(node):
                    proofs = self.context.sign(self.unsigned.to_bytes(), inputs)
                self.signed = SignedTransaction(unsigned=self.unsigned, proofs=proofs)
        finally:
            node.forget()
        return self.signed

    async def submit(self) -> str:
        """Submit the signed transaction; returns the network's id."""
        with self._step(TransactionState.SIGNED, TransactionState.SUBMITTED):
            self.tx_id = await self.explorer.submit_transaction(self.signed.to_dict())
        return self.tx_id

    @staticmethod
    def input_addresses(tx: dict[str, Any], network_prefix: int = 0x00) -> dict[str, str]:
        """Map box id -> address for every input of an external transaction.

        The address is taken from the input itself when present, otherwise it
        is derived from the input's ErgoTree.

        Raises:
            SigningError: If an input has no box id or a malformed ErgoTree
        """
        result = {}
        for position, tx_input in enumerate(tx.get("inputs", [])):
            box_id = tx_input.get("boxId")
            if not box_id:
                raise SigningError(f"Input {position} has no box id")

            address = tx_input.get("address")
            if not address and tx_input.get("ergoTree"):
                try:
                    address = address_from_ergo_tree(tx_input["ergoTree"], network_prefix)
                except InvalidAddressError as e:
                    raise SigningError(f"Input {box_id} has a malformed ErgoTree") from e
            if address:
                result[box_id] = address
        return result

    @classmethod
    async def sign_external(
        cls,
        explorer: ChainExplorer,
        tx: dict[str, Any],
        node: ErgoHDNode,
        address_indexes: dict[str, int],
        network_prefix: int = 0x00,
        header_count: int = SIGNING_HEADER_COUNT,
    ) -> dict[str, Any]:
        """Sign the inputs of an externally built transaction that this wallet owns.

        Inputs guarded by other addresses are left untouched.

        Raises:
            SigningError: If no input belongs to the wallet
        """
        try:
            owned = [
                (box_id, address_indexes[address])
                for box_id, address in cls.input_addresses(tx, network_prefix).items()
                if address in address_indexes
            ]
            if not owned:
                raise SigningError("None of the transaction inputs belong to this wallet")

            try:
                tx_bytes = canonical_bytes(tx)
            except (KeyError, TypeError) as e:
                raise SigningError(f"Malformed transaction: {e}") from e

            headers = await explorer.get_recent_block_headers(header_count)
            context = SigningContext.from_block_headers(headers, header_count)
            with context.with_secret(node):
                proofs = context.sign(tx_bytes, owned)
        finally:
            node.forget()

        logger.info(f"Signed {len(proofs)} of {len(tx.get('inputs', []))} external inputs")
        return attach_proofs(tx, proofs)
