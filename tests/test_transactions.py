"""Tests for transaction building, signing and submission."""

import pytest

from ergovault.chains import ERG_TOKEN_ID
from ergovault.errors import (
    InsufficientFundsError,
    InvalidAddressError,
    NetworkError,
    SigningError,
    TransactionStateError,
)
from ergovault.hdwallet.address import P2SH_TYPE, encode_address, ergo_tree_from_address
from ergovault.hdwallet.ergo import ErgoHDNode
from ergovault.signing.base import verify_proof
from ergovault.transactions.builder import TransactionBuilder
from ergovault.transactions.models import (
    MINER_FEE_ERGO_TREE,
    TransactionState,
    TransferAsset,
    canonical_bytes,
)

from conftest import TEST_MNEMONIC, make_box, make_headers

TOKEN_A = "aa" * 32


def fresh_node() -> ErgoHDNode:
    """A signing node that tests may let the builder forget."""
    return ErgoHDNode.from_mnemonic(TEST_MNEMONIC)


def erg(amount: int) -> TransferAsset:
    return TransferAsset(token_id=ERG_TOKEN_ID, amount=amount)


@pytest.fixture
def indexes(test_scripts) -> dict[str, int]:
    return {script: i for i, script in enumerate(test_scripts[:10])}


class TestBoxSelection:
    """Tests for greedy input selection."""

    def test_tokens_first_then_erg(self, test_scripts):
        boxes = [
            make_box("b1", test_scripts[0], 100),
            make_box("b2", test_scripts[1], 2, tokens={TOKEN_A: 10}),
            make_box("b3", test_scripts[2], 50),
        ]

        selected = TransactionBuilder.choose_boxes(boxes, {TOKEN_A: 5, ERG_TOKEN_ID: 30})

        assert [b.box_id for b in selected] == ["b2", "b1"]

    def test_shortfall(self, test_scripts):
        boxes = [make_box("b1", test_scripts[0], 5, tokens={TOKEN_A: 1})]

        with pytest.raises(InsufficientFundsError) as exc_info:
            TransactionBuilder.choose_boxes(boxes, {TOKEN_A: 2, ERG_TOKEN_ID: 1})

        assert exc_info.value.token_id == TOKEN_A
        assert exc_info.value.required == 2
        assert exc_info.value.available == 1


class TestTransactionBuilder:
    """Tests for the build/sign/submit state machine."""

    @pytest.mark.asyncio
    async def test_change_output_scenario(self, explorer, test_scripts, foreign_address, indexes):
        """Test that sending 5 with fee 1 from 10 returns 4 as change."""
        explorer.boxes = {
            test_scripts[0]: [make_box("b1", test_scripts[0], 3)],
            test_scripts[1]: [make_box("b2", test_scripts[1], 7)],
        }
        builder = TransactionBuilder(explorer, foreign_address, [erg(5)], fee=1)

        await builder.select_inputs(test_scripts[:2])
        unsigned = await builder.build(change_address=test_scripts[4])

        assert builder.state == TransactionState.BUILT
        assert [o.value for o in unsigned.outputs] == [5, 4]
        assert unsigned.outputs[0].address == foreign_address
        assert unsigned.outputs[1].address == test_scripts[4]
        assert unsigned.is_balanced()

        tx = unsigned.to_dict()
        assert tx["outputs"][-1]["ergoTree"] == MINER_FEE_ERGO_TREE
        assert tx["outputs"][-1]["value"] == "1"
        assert tx["outputs"][1]["ergoTree"] == ergo_tree_from_address(test_scripts[4])
        assert {o["creationHeight"] for o in tx["outputs"]} == {1_000_001}
        assert tx["dataInputs"] == []

    @pytest.mark.asyncio
    async def test_exact_amount_has_no_change(self, explorer, test_scripts, foreign_address):
        explorer.boxes = {test_scripts[0]: [make_box("b1", test_scripts[0], 6)]}
        builder = TransactionBuilder(explorer, foreign_address, [erg(5)], fee=1)

        await builder.select_inputs(test_scripts[:1])
        unsigned = await builder.build(change_address=test_scripts[1])

        assert len(unsigned.outputs) == 1

    @pytest.mark.asyncio
    async def test_token_change_conserved(self, explorer, test_scripts, foreign_address):
        """Test that unrequested token surplus goes to change."""
        explorer.boxes = {
            test_scripts[0]: [make_box("b1", test_scripts[0], 2, tokens={TOKEN_A: 10})],
            test_scripts[1]: [make_box("b2", test_scripts[1], 5)],
        }
        builder = TransactionBuilder(
            explorer, foreign_address, [TransferAsset(TOKEN_A, 4)], fee=1
        )

        await builder.select_inputs(test_scripts[:2])
        unsigned = await builder.build(change_address=test_scripts[2])

        recipient, change = unsigned.outputs
        assert recipient.tokens == {TOKEN_A: 4}
        assert recipient.value == 0
        assert change.tokens == {TOKEN_A: 6}
        assert change.value == 1
        assert unsigned.is_balanced()

    @pytest.mark.asyncio
    async def test_insufficient_funds_fails_machine(self, explorer, test_scripts, foreign_address):
        explorer.boxes = {test_scripts[0]: [make_box("b1", test_scripts[0], 5)]}
        builder = TransactionBuilder(explorer, foreign_address, [erg(5)], fee=1)

        with pytest.raises(InsufficientFundsError):
            await builder.select_inputs(test_scripts[:1])
        assert builder.state == TransactionState.FAILED

    @pytest.mark.asyncio
    async def test_no_funding_addresses(self, explorer, foreign_address):
        builder = TransactionBuilder(explorer, foreign_address, [erg(5)], fee=1)

        with pytest.raises(InsufficientFundsError):
            await builder.select_inputs([])

    @pytest.mark.asyncio
    async def test_steps_out_of_order(self, explorer, test_scripts, foreign_address):
        builder = TransactionBuilder(explorer, foreign_address, [erg(5)], fee=1)

        with pytest.raises(TransactionStateError):
            await builder.build(change_address=test_scripts[0])
        with pytest.raises(TransactionStateError):
            await builder.submit()
        assert builder.state == TransactionState.DRAFT

    @pytest.mark.asyncio
    async def test_too_few_headers(self, explorer, test_scripts, foreign_address):
        explorer.boxes = {test_scripts[0]: [make_box("b1", test_scripts[0], 10)]}
        explorer.headers = make_headers(5)
        builder = TransactionBuilder(explorer, foreign_address, [erg(5)], fee=1)

        await builder.select_inputs(test_scripts[:1])
        with pytest.raises(SigningError):
            await builder.build(change_address=test_scripts[1])
        assert builder.state == TransactionState.FAILED

    def test_invalid_recipient(self, explorer):
        with pytest.raises(InvalidAddressError):
            TransactionBuilder(explorer, "9notanaddress", [erg(5)], fee=1)

    @pytest.mark.asyncio
    async def test_p2sh_recipient_rejected_before_fetching(self, explorer, test_scripts):
        """Test that a recipient without an encodable ErgoTree fails in draft."""
        explorer.boxes = {test_scripts[0]: [make_box("b1", test_scripts[0], 10)]}
        recipient = encode_address(0x00, P2SH_TYPE, b"\x11" * 24)

        with pytest.raises(InvalidAddressError):
            TransactionBuilder(explorer, recipient, [erg(5)], fee=1)

    def test_non_positive_amount(self, explorer, foreign_address):
        with pytest.raises(ValueError):
            TransactionBuilder(explorer, foreign_address, [erg(0)], fee=1)

    @pytest.mark.asyncio
    async def test_sign_and_submit(self, explorer, test_scripts, foreign_address, indexes):
        explorer.boxes = {
            test_scripts[0]: [make_box("b1", test_scripts[0], 3)],
            test_scripts[3]: [make_box("b2", test_scripts[3], 7)],
        }
        builder = TransactionBuilder(explorer, foreign_address, [erg(5)], fee=1)
        await builder.select_inputs([test_scripts[0], test_scripts[3]])
        unsigned = await builder.build(change_address=test_scripts[4])

        node = fresh_node()
        signed = builder.sign(node, indexes)

        assert builder.state == TransactionState.SIGNED
        assert "wiped" in repr(node)

        message = builder.context.message_for(unsigned.to_bytes())
        proofs = {p.box_id: p for p in signed.proofs}
        assert proofs["b1"].public_key != proofs["b2"].public_key
        for proof in signed.proofs:
            assert verify_proof(proof.public_key, message, proof.proof)

        tx_id = await builder.submit()

        assert builder.state == TransactionState.SUBMITTED
        assert tx_id == unsigned.id
        submitted = explorer.submitted[0]
        assert submitted["id"] == unsigned.id
        assert all("spendingProof" in i for i in submitted["inputs"])

    @pytest.mark.asyncio
    async def test_sign_rejects_foreign_input(self, explorer, test_scripts, foreign_address):
        explorer.boxes = {test_scripts[0]: [make_box("b1", test_scripts[0], 10)]}
        builder = TransactionBuilder(explorer, foreign_address, [erg(5)], fee=1)
        await builder.select_inputs(test_scripts[:1])
        await builder.build(change_address=test_scripts[1])

        node = fresh_node()
        with pytest.raises(SigningError):
            builder.sign(node, {test_scripts[5]: 5})

        assert builder.state == TransactionState.FAILED
        assert "wiped" in repr(node)

    @pytest.mark.asyncio
    async def test_submit_network_failure_not_retried(
        self, explorer, test_scripts, foreign_address, indexes
    ):
        explorer.boxes = {test_scripts[0]: [make_box("b1", test_scripts[0], 10)]}
        explorer.fail_submit = True
        builder = TransactionBuilder(explorer, foreign_address, [erg(5)], fee=1)
        await builder.select_inputs(test_scripts[:1])
        await builder.build(change_address=test_scripts[1])
        builder.sign(fresh_node(), indexes)

        with pytest.raises(NetworkError):
            await builder.submit()

        assert builder.state == TransactionState.FAILED
        assert explorer.submitted == []


class TestSignExternal:
    """Tests for signing transactions built by a connected dApp."""

    def external_tx(self, test_scripts, foreign_address):
        return {
            "inputs": [
                {"boxId": "in0", "address": test_scripts[0]},
                {"boxId": "in1", "ergoTree": ergo_tree_from_address(test_scripts[2])},
                {"boxId": "in2", "address": foreign_address},
            ],
            "dataInputs": [],
            "outputs": [{"value": "1000", "ergoTree": "00", "assets": []}],
        }

    @pytest.mark.asyncio
    async def test_signs_only_owned_inputs(self, explorer, test_scripts, foreign_address, indexes):
        tx = self.external_tx(test_scripts, foreign_address)
        node = fresh_node()

        signed = await TransactionBuilder.sign_external(explorer, tx, node, indexes)

        inputs = {i["boxId"]: i for i in signed["inputs"]}
        assert "spendingProof" in inputs["in0"]
        assert "spendingProof" in inputs["in1"]
        assert "spendingProof" not in inputs["in2"]
        assert signed["id"]
        assert "wiped" in repr(node)
        # Original is left untouched and nothing is submitted
        assert "spendingProof" not in tx["inputs"][0]
        assert explorer.submitted == []

    @pytest.mark.asyncio
    async def test_input_addresses_inferred(self, test_scripts, foreign_address):
        tx = self.external_tx(test_scripts, foreign_address)

        assert TransactionBuilder.input_addresses(tx) == {
            "in0": test_scripts[0],
            "in1": test_scripts[2],
            "in2": foreign_address,
        }

    @pytest.mark.asyncio
    async def test_no_owned_inputs(self, explorer, test_scripts, foreign_address):
        tx = {"inputs": [{"boxId": "x", "address": foreign_address}], "outputs": []}
        node = fresh_node()

        with pytest.raises(SigningError):
            await TransactionBuilder.sign_external(explorer, tx, node, {test_scripts[0]: 0})
        assert "wiped" in repr(node)

    @pytest.mark.asyncio
    async def test_malformed_ergo_tree(self, explorer, indexes):
        tx = {"inputs": [{"boxId": "a", "ergoTree": "zz"}], "outputs": []}
        node = fresh_node()

        with pytest.raises(SigningError):
            await TransactionBuilder.sign_external(explorer, tx, node, indexes)
        assert "wiped" in repr(node)

    @pytest.mark.asyncio
    async def test_missing_box_id(self, explorer, test_scripts, indexes):
        tx = {"inputs": [{"address": test_scripts[0]}], "outputs": []}

        with pytest.raises(SigningError):
            await TransactionBuilder.sign_external(explorer, tx, fresh_node(), indexes)

    @pytest.mark.asyncio
    async def test_malformed_data_input(self, explorer, test_scripts, indexes):
        tx = {
            "inputs": [{"boxId": "a", "address": test_scripts[0]}],
            "dataInputs": [{"id": "d"}],
            "outputs": [],
        }

        with pytest.raises(SigningError):
            await TransactionBuilder.sign_external(explorer, tx, fresh_node(), indexes)


class TestCanonicalBytes:
    def test_proofs_do_not_change_signed_bytes(self):
        tx = {"inputs": [{"boxId": "a"}], "outputs": [{"value": "1"}]}
        signed = {
            "id": "x",
            "inputs": [{"boxId": "a", "spendingProof": {"proofBytes": "ff"}}],
            "outputs": [{"value": "1"}],
        }

        assert canonical_bytes(tx) == canonical_bytes(signed)
