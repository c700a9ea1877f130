"""Tests for HD derivation, the address codec and the derivation pool."""

import pytest

from ergovault.chains import ACCOUNT_DERIVATION_PATH, TESTNET
from ergovault.errors import InvalidAddressError, KeyNotFoundError, NotFoundError, SigningError
from ergovault.hdwallet.address import (
    P2PK_TYPE,
    P2SH_TYPE,
    P2S_TYPE,
    PAYABLE_TYPES,
    address_from_ergo_tree,
    decode_address,
    encode_address,
    ergo_tree_from_address,
    validate_address,
)
from ergovault.hdwallet.ergo import ErgoHDNode
from ergovault.hdwallet.pool import KeyDerivationPool

from conftest import TEST_MNEMONIC


class TestErgoHDNode:
    """Tests for account node derivation."""

    def test_mainnet_addresses_start_with_9(self, public_node):
        address = public_node.derive_address(0)

        assert address.script.startswith("9")
        assert address.index == 0
        assert address.derivation_path == f"{ACCOUNT_DERIVATION_PATH}/0"
        assert len(bytes.fromhex(address.public_key)) == 33

    def test_derivation_is_deterministic(self, master_node):
        again = ErgoHDNode.from_mnemonic(TEST_MNEMONIC)
        assert again.derive_address(5) == master_node.derive_address(5)

    def test_neutered_node_derives_same_addresses(self, master_node, public_node):
        """Test that public-only derivation matches private derivation."""
        assert public_node.is_public_only
        assert not master_node.is_public_only
        for index in (0, 1, 19, 20):
            assert public_node.derive_address(index) == master_node.derive_address(index)

    def test_rebuild_from_stored_columns(self, master_node):
        node = ErgoHDNode.from_public_key(master_node.public_key_hex, master_node.chain_code.hex())

        assert node.is_public_only
        assert node.derive_address(3).script == master_node.derive_address(3).script

    def test_from_extended_key_hex(self, master_node):
        node = ErgoHDNode.from_extended_key(master_node.extended_public_key_hex)
        assert node.derive_address(0) == master_node.derive_address(0)

    def test_from_extended_key_xpub(self, master_node):
        node = ErgoHDNode.from_extended_key(master_node.extended_public_key)
        assert node.is_public_only
        assert node.derive_address(2).script == master_node.derive_address(2).script

    def test_testnet_prefix(self):
        node = ErgoHDNode.from_mnemonic(TEST_MNEMONIC, network_prefix=TESTNET.prefix)
        address = node.derive_address(0).script

        assert address.startswith("3")
        assert validate_address(address, TESTNET.prefix)
        assert not validate_address(address, 0x00)

    def test_invalid_mnemonic_rejected(self):
        with pytest.raises(ValueError):
            ErgoHDNode.from_mnemonic("abandon " * 11 + "abandon")

    def test_public_node_cannot_derive_private_keys(self, public_node):
        with pytest.raises(SigningError):
            public_node.derive_private_key(0)

    def test_private_key_is_mutable_buffer(self, master_node):
        key = master_node.derive_private_key(0)
        assert isinstance(key, bytearray)
        assert len(key) == 32

    def test_forget_wipes_node(self):
        node = ErgoHDNode.from_mnemonic(TEST_MNEMONIC)
        node.forget()

        with pytest.raises(SigningError):
            node.derive_address(0)
        assert "wiped" in repr(node)

    def test_negative_index_rejected(self, public_node):
        with pytest.raises(ValueError):
            public_node.derive_address(-1)


class TestAddressCodec:
    """Tests for Ergo address encoding."""

    def test_decode_p2pk(self, public_node):
        derived = public_node.derive_address(0)
        prefix, address_type, content = decode_address(derived.script)

        assert prefix == 0x00
        assert address_type == P2PK_TYPE
        assert content.hex() == derived.public_key

    def test_checksum_mismatch_detected(self, public_node):
        script = public_node.derive_address(0).script
        tampered = script[:-1] + ("2" if script[-1] != "2" else "3")

        assert not validate_address(tampered)
        with pytest.raises(InvalidAddressError):
            decode_address(tampered)

    def test_garbage_rejected(self):
        assert not validate_address("not-an-address-0OIl")

    def test_p2pk_ergo_tree(self, public_node):
        derived = public_node.derive_address(1)
        tree = ergo_tree_from_address(derived.script)

        assert tree == "0008cd" + derived.public_key
        assert address_from_ergo_tree(tree) == derived.script

    def test_p2s_ergo_tree(self):
        tree = "100204a00b08cd"
        address = encode_address(0x00, P2S_TYPE, bytes.fromhex(tree))

        assert ergo_tree_from_address(address) == tree
        assert address_from_ergo_tree(tree) == address

    def test_p2sh_is_valid_but_not_payable(self):
        address = encode_address(0x00, P2SH_TYPE, b"\x11" * 24)

        assert validate_address(address, 0x00)
        assert not validate_address(address, 0x00, PAYABLE_TYPES)
        with pytest.raises(InvalidAddressError):
            ergo_tree_from_address(address)

    def test_malformed_ergo_tree(self):
        with pytest.raises(InvalidAddressError):
            address_from_ergo_tree("zz")


class TestKeyDerivationPool:
    """Tests for the derivation pool."""

    def test_allocate_stores_public_only_copy(self, master_node):
        pool = KeyDerivationPool()
        stored = pool.allocate(master_node, master_node.public_key_hex)

        assert stored.is_public_only
        assert master_node.public_key_hex in pool
        assert not master_node.is_public_only

    def test_allocate_is_idempotent(self, master_node, public_node):
        """Test that a second allocate keeps the first entry."""
        pool = KeyDerivationPool()
        first = pool.allocate(public_node, "pk")
        second = pool.allocate(master_node, "pk")

        assert first is second
        assert pool.get("pk") is first
        assert len(pool) == 1

    def test_get_missing_raises_not_found(self):
        pool = KeyDerivationPool()

        with pytest.raises(KeyNotFoundError) as exc_info:
            pool.get("ab" * 33)
        assert isinstance(exc_info.value, NotFoundError)

    def test_derive_range(self, public_node):
        addresses = KeyDerivationPool.derive_range(public_node, 5, start_index=10)

        assert [a.index for a in addresses] == [10, 11, 12, 13, 14]
        assert addresses[0] == KeyDerivationPool.derive_child(public_node, 10)
        assert len({a.script for a in addresses}) == 5

    def test_clear(self, public_node):
        pool = KeyDerivationPool()
        pool.allocate(public_node, "pk")
        pool.clear()

        assert "pk" not in pool
        assert list(pool) == []
