"""Ergo address encoding.

Layout: base58(head || content || checksum) where head = network prefix +
address type and checksum is the first 4 bytes of blake2b256(head || content).
P2PK content is the 33-byte compressed public key, P2S content is the
serialized ErgoTree.
"""

import hashlib
from typing import Optional

from bip_utils import Base58Decoder, Base58Encoder

from ergovault.errors import InvalidAddressError

P2PK_TYPE = 0x01
P2SH_TYPE = 0x02
P2S_TYPE = 0x03

# Types that ergo_tree_from_address can turn into an output guard
PAYABLE_TYPES = (P2PK_TYPE, P2S_TYPE)

CHECKSUM_LENGTH = 4
P2PK_TREE_PREFIX = bytes.fromhex("0008cd")
COMPRESSED_PUBKEY_LENGTH = 33


def blake2b256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


def encode_address(network_prefix: int, address_type: int, content: bytes) -> str:
    """Encode raw address content into a base58 Ergo address."""
    body = bytes([network_prefix + address_type]) + content
    return Base58Encoder.Encode(body + blake2b256(body)[:CHECKSUM_LENGTH])


def decode_address(address: str) -> tuple[int, int, bytes]:
    """Decode an Ergo address.

    Returns:
        Tuple of (network prefix, address type, content bytes)

    Raises:
        InvalidAddressError: On bad base58 or checksum mismatch
    """
    try:
        raw = Base58Decoder.Decode(address)
    except ValueError as e:
        raise InvalidAddressError(f"Invalid address encoding: {address}") from e

    if len(raw) <= CHECKSUM_LENGTH + 1:
        raise InvalidAddressError(f"Address too short: {address}")

    body, checksum = raw[:-CHECKSUM_LENGTH], raw[-CHECKSUM_LENGTH:]
    if blake2b256(body)[:CHECKSUM_LENGTH] != checksum:
        raise InvalidAddressError(f"Address checksum mismatch: {address}")

    head = body[0]
    return head & 0xF0, head & 0x0F, body[1:]


def address_from_public_key(public_key: bytes, network_prefix: int = 0x00) -> str:
    """Build a P2PK address from a compressed secp256k1 public key."""
    if len(public_key) != COMPRESSED_PUBKEY_LENGTH:
        raise ValueError("P2PK addresses require a 33-byte compressed public key")
    return encode_address(network_prefix, P2PK_TYPE, public_key)


def validate_address(
    address: str,
    network_prefix: Optional[int] = None,
    address_types: tuple[int, ...] = (P2PK_TYPE, P2SH_TYPE, P2S_TYPE),
) -> bool:
    """Check address checksum, type and (optionally) network."""
    try:
        prefix, address_type, _ = decode_address(address)
    except InvalidAddressError:
        return False

    if address_type not in address_types:
        return False
    return network_prefix is None or prefix == network_prefix


def ergo_tree_from_address(address: str) -> str:
    """Get the hex ErgoTree guarding boxes sent to an address."""
    _, address_type, content = decode_address(address)
    if address_type == P2PK_TYPE:
        return (P2PK_TREE_PREFIX + content).hex()
    if address_type == P2S_TYPE:
        return content.hex()
    raise InvalidAddressError(f"Unsupported address type {address_type} for {address}")


def address_from_ergo_tree(ergo_tree: str, network_prefix: int = 0x00) -> str:
    """Inverse of ``ergo_tree_from_address`` for P2PK and P2S trees.

    Raises:
        InvalidAddressError: If the tree is not valid hex
    """
    try:
        tree = bytes.fromhex(ergo_tree)
    except ValueError as e:
        raise InvalidAddressError(f"ErgoTree is not valid hex: {ergo_tree[:32]}") from e
    if not tree:
        raise InvalidAddressError("Empty ErgoTree")
    if (
        tree.startswith(P2PK_TREE_PREFIX)
        and len(tree) == len(P2PK_TREE_PREFIX) + COMPRESSED_PUBKEY_LENGTH
    ):
        return encode_address(network_prefix, P2PK_TYPE, tree[len(P2PK_TREE_PREFIX):])
    return encode_address(network_prefix, P2S_TYPE, tree)
