"""Ergo HD node using BIP32 over secp256k1.

Derivation path: m/44'/429'/0'/0/index
Address format: P2PK (base58, starts with '9' on mainnet)

Wallets are stored as the account node's public key and chain code, which is
all that is needed to derive receiving addresses.
"""

import logging
from typing import Optional, Union

from bip_utils import (
    Bip32KeyData,
    Bip32Secp256k1,
    Bip39MnemonicValidator,
    Bip39SeedGenerator,
)

from ergovault.chains import ACCOUNT_DERIVATION_PATH
from ergovault.errors import SigningError
from ergovault.hdwallet.address import address_from_public_key
from ergovault.hdwallet.base import DerivedAddress, HDNode

logger = logging.getLogger(__name__)

PUBLIC_KEY_LENGTH = 33
CHAIN_CODE_LENGTH = 32


def _to_bytes(value: Union[str, bytes]) -> bytes:
    return bytes.fromhex(value) if isinstance(value, str) else value


class ErgoHDNode(HDNode):
    """Account-level Ergo derivation node.

    Example:
        node = ErgoHDNode.from_mnemonic("abandon ... about")
        addr = node.derive_address(0)
        # DerivedAddress(script="9...", index=0, ...)
    """

    def __init__(self, bip32_ctx: Bip32Secp256k1, network_prefix: int = 0x00):
        self._ctx: Optional[Bip32Secp256k1] = bip32_ctx
        self._network_prefix = network_prefix

    @classmethod
    def from_mnemonic(
        cls, mnemonic: str, passphrase: str = "", network_prefix: int = 0x00
    ) -> "ErgoHDNode":
        """Build a signing-capable node from a BIP39 mnemonic.

        Raises:
            ValueError: If the mnemonic is not a valid BIP39 phrase
        """
        if not Bip39MnemonicValidator().IsValid(mnemonic):
            raise ValueError("Invalid mnemonic phrase")

        seed = Bip39SeedGenerator(mnemonic).Generate(passphrase)
        ctx = Bip32Secp256k1.FromSeedAndPath(seed, ACCOUNT_DERIVATION_PATH)
        return cls(ctx, network_prefix)

    @classmethod
    def from_public_key(
        cls,
        public_key: Union[str, bytes],
        chain_code: Union[str, bytes],
        network_prefix: int = 0x00,
    ) -> "ErgoHDNode":
        """Rebuild a public-only node from stored wallet columns."""
        pub = _to_bytes(public_key)
        code = _to_bytes(chain_code)
        if len(pub) != PUBLIC_KEY_LENGTH or len(code) != CHAIN_CODE_LENGTH:
            raise ValueError("Expected a 33-byte public key and a 32-byte chain code")

        ctx = Bip32Secp256k1.FromPublicKey(pub, Bip32KeyData(chain_code=code))
        return cls(ctx, network_prefix)

    @classmethod
    def from_extended_key(cls, extended_key: str, network_prefix: int = 0x00) -> "ErgoHDNode":
        """Import a read-only wallet from an extended public key.

        Accepts a base58 ``xpub``/``tpub`` string or the hex export
        ``public key || chain code``.
        """
        key = extended_key.strip()
        if key.startswith(("xpub", "tpub")):
            try:
                ctx = Bip32Secp256k1.FromExtendedKey(key)
            except Exception as e:
                raise ValueError(f"Invalid extended public key: {e}") from e
            if not ctx.IsPublicOnly():
                ctx.ConvertToPublic()
            return cls(ctx, network_prefix)

        try:
            raw = bytes.fromhex(key)
        except ValueError as e:
            raise ValueError("Extended public key must be base58 xpub or hex") from e

        return cls.from_public_key(
            raw[:PUBLIC_KEY_LENGTH], raw[PUBLIC_KEY_LENGTH:], network_prefix
        )

    @property
    def ctx(self) -> Bip32Secp256k1:
        if self._ctx is None:
            raise SigningError("Derivation node has been wiped")
        return self._ctx

    @property
    def network_prefix(self) -> int:
        return self._network_prefix

    @property
    def public_key(self) -> bytes:
        return self.ctx.PublicKey().RawCompressed().ToBytes()

    @property
    def chain_code(self) -> bytes:
        return self.ctx.ChainCode().ToBytes()

    @property
    def extended_public_key(self) -> str:
        """Base58 extended public key (xpub)."""
        return self.ctx.PublicKey().ToExtended()

    @property
    def extended_public_key_hex(self) -> str:
        return (self.public_key + self.chain_code).hex()

    @property
    def is_public_only(self) -> bool:
        return self.ctx.IsPublicOnly()

    def neutered(self) -> "ErgoHDNode":
        ctx = self.ctx
        key_data = Bip32KeyData(
            depth=ctx.Depth(),
            index=ctx.Index(),
            chain_code=ctx.ChainCode(),
            parent_fprint=ctx.ParentFingerPrint(),
        )
        public_ctx = Bip32Secp256k1.FromPublicKey(self.public_key, key_data)
        return ErgoHDNode(public_ctx, self._network_prefix)

    def derive_address(self, index: int) -> DerivedAddress:
        if index < 0:
            raise ValueError("Address index must be non-negative")

        child = self.ctx.ChildKey(index)
        pubkey = child.PublicKey().RawCompressed().ToBytes()

        return DerivedAddress(
            script=address_from_public_key(pubkey, self._network_prefix),
            index=index,
            derivation_path=self.get_derivation_path(index),
            public_key=pubkey.hex(),
        )

    def derive_private_key(self, index: int) -> bytearray:
        if self.is_public_only:
            raise SigningError("Cannot derive private keys from a public-only node")
        child = self.ctx.ChildKey(index)
        return bytearray(child.PrivateKey().Raw().ToBytes())

    def forget(self) -> None:
        """Drop the reference to the underlying key material."""
        self._ctx = None

    def __repr__(self) -> str:
        if self._ctx is None:
            return "ErgoHDNode(<wiped>)"
        kind = "public" if self.is_public_only else "private"
        return f"ErgoHDNode({kind}, pk={self.public_key_hex[:16]}...)"
