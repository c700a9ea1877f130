"""Cryptographic utilities for mnemonic storage.

Two storage formats are supported:

- legacy: OpenSSL/CryptoJS compatible ``Salted__`` AES-256-CBC with an
  EVP_BytesToKey (MD5) key. This is the format existing wallets were written
  in; it has no integrity check, so a wrong password is detected through
  padding, UTF-8 and BIP39 checksum failures.
- fernet: Fernet (AES-128-CBC with HMAC) keyed by PBKDF2-HMAC-SHA256 over the
  password, stored as ``fernet$<salt>$<token>``.

Decryption auto-detects the format, so wallets can move to the fernet format
by re-importing without breaking existing rows.
"""

import base64
import hashlib
import logging
import os
from typing import Optional, Union

from bip_utils import Bip39MnemonicValidator
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ergovault.errors import DecryptionError

logger = logging.getLogger(__name__)

LEGACY_CIPHER = "legacy"
FERNET_CIPHER = "fernet"

_SALTED_PREFIX = b"Salted__"
_FERNET_PREFIX = "fernet$"


class SecretBuffer:
    """Mutable holder for secret bytes that can be zeroed after use.

    CPython strings are immutable, so any ``str`` produced by ``reveal()``
    cannot be scrubbed; callers should keep that window as short as possible
    and call ``wipe()`` (or use the buffer as a context manager) right after.
    """

    def __init__(self, data: Union[bytes, bytearray]):
        self._buf = bytearray(data)
        self._wiped = False

    def reveal(self) -> str:
        if self._wiped:
            raise ValueError("Secret has already been wiped")
        return self._buf.decode("utf-8")

    def wipe(self) -> None:
        """Overwrite the secret with zeros and drop it."""
        for i in range(len(self._buf)):
            self._buf[i] = 0
        self._buf = bytearray()
        self._wiped = True

    @property
    def wiped(self) -> bool:
        return self._wiped

    def __len__(self) -> int:
        return len(self._buf)

    def __enter__(self) -> "SecretBuffer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.wipe()
        return False

    def __repr__(self) -> str:
        return "SecretBuffer(***)" if not self._wiped else "SecretBuffer(<wiped>)"


def _evp_bytes_to_key(password: bytes, salt: bytes, key_len: int = 32, iv_len: int = 16) -> tuple[bytes, bytes]:
    """OpenSSL EVP_BytesToKey with MD5 and a single iteration."""
    derived = b""
    block = b""
    while len(derived) < key_len + iv_len:
        block = hashlib.md5(block + password + salt).digest()
        derived += block
    return derived[:key_len], derived[key_len:key_len + iv_len]


def derive_key_from_password(password: str, salt: Optional[bytes] = None, iterations: int = 100000) -> tuple[str, bytes]:
    """Derive a Fernet key from a password using PBKDF2.

    Returns:
        Tuple of (base64-encoded key, salt)
    """
    if salt is None:
        salt = os.urandom(16)

    key = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode(),
        salt,
        iterations,
        dklen=32,
    )

    fernet_key = base64.urlsafe_b64encode(key)
    return fernet_key.decode(), salt


def encrypt_legacy(plaintext: str, password: str) -> str:
    """Encrypt in the CryptoJS ``AES.encrypt(text, password)`` format."""
    salt = os.urandom(8)
    key, iv = _evp_bytes_to_key(password.encode(), salt)

    padder = padding.PKCS7(128).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()

    return base64.b64encode(_SALTED_PREFIX + salt + ciphertext).decode()


def decrypt_legacy(encrypted: str, password: str) -> SecretBuffer:
    """Decrypt a CryptoJS/OpenSSL ``Salted__`` payload.

    Raises:
        DecryptionError: On malformed input or a wrong password
    """
    try:
        raw = base64.b64decode(encrypted, validate=True)
    except ValueError as e:
        raise DecryptionError("Encrypted mnemonic is not valid base64") from e

    if not raw.startswith(_SALTED_PREFIX) or len(raw) < 32 or (len(raw) - 16) % 16:
        raise DecryptionError("Unsupported encrypted mnemonic format")

    salt = raw[8:16]
    key, iv = _evp_bytes_to_key(password.encode(), salt)

    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = bytearray(decryptor.update(raw[16:]) + decryptor.finalize())

    try:
        unpadder = padding.PKCS7(128).unpadder()
        plain = bytearray(unpadder.update(bytes(padded)) + unpadder.finalize())
    except ValueError as e:
        raise DecryptionError("Wrong password") from e
    finally:
        for i in range(len(padded)):
            padded[i] = 0

    secret = SecretBuffer(plain)
    for i in range(len(plain)):
        plain[i] = 0

    try:
        secret.reveal()
    except UnicodeDecodeError as e:
        secret.wipe()
        raise DecryptionError("Wrong password") from e

    return secret


def encrypt_fernet(plaintext: str, password: str, iterations: int = 100000) -> str:
    """Encrypt with an authenticated Fernet token keyed by PBKDF2."""
    key, salt = derive_key_from_password(password, iterations=iterations)
    token = Fernet(key.encode()).encrypt(plaintext.encode("utf-8")).decode()
    salt_b64 = base64.urlsafe_b64encode(salt).decode()
    return f"{_FERNET_PREFIX}{salt_b64}${token}"


def decrypt_fernet(encrypted: str, password: str, iterations: int = 100000) -> SecretBuffer:
    """Decrypt a ``fernet$<salt>$<token>`` payload.

    Raises:
        DecryptionError: On malformed input or a wrong password
    """
    try:
        _, salt_b64, token = encrypted.split("$", 2)
        salt = base64.urlsafe_b64decode(salt_b64.encode())
    except ValueError as e:
        raise DecryptionError("Unsupported encrypted mnemonic format") from e

    key, _ = derive_key_from_password(password, salt=salt, iterations=iterations)
    try:
        plain = Fernet(key.encode()).decrypt(token.encode())
    except InvalidToken as e:
        raise DecryptionError("Wrong password") from e

    return SecretBuffer(plain)


def is_fernet_payload(encrypted: str) -> bool:
    return encrypted.startswith(_FERNET_PREFIX)


def encrypt_mnemonic(
    mnemonic: str,
    password: str,
    cipher: str = LEGACY_CIPHER,
    iterations: int = 100000,
) -> str:
    """Encrypt a mnemonic phrase for storage.

    Args:
        mnemonic: BIP39 mnemonic phrase
        password: Spending password chosen by the user
        cipher: ``legacy`` or ``fernet``
        iterations: PBKDF2 iterations (fernet only)

    Returns:
        Encrypted text suitable for the wallets table
    """
    if cipher == FERNET_CIPHER:
        return encrypt_fernet(mnemonic, password, iterations=iterations)
    if cipher == LEGACY_CIPHER:
        return encrypt_legacy(mnemonic, password)
    raise ValueError(f"Unknown mnemonic cipher: {cipher}")


def decrypt_mnemonic(encrypted: str, password: str, iterations: int = 100000) -> SecretBuffer:
    """Decrypt a stored mnemonic and check it is a valid BIP39 phrase.

    The legacy format has no MAC, so a wrong password occasionally yields
    valid padding and valid UTF-8; the BIP39 checksum catches those cases.

    Raises:
        DecryptionError: If the password is wrong or the payload is corrupted
    """
    if is_fernet_payload(encrypted):
        secret = decrypt_fernet(encrypted, password, iterations=iterations)
    else:
        secret = decrypt_legacy(encrypted, password)

    try:
        valid = Bip39MnemonicValidator().IsValid(secret.reveal())
    except UnicodeDecodeError:
        valid = False

    if not valid:
        secret.wipe()
        raise DecryptionError("Wrong password")

    logger.debug("Mnemonic decrypted")
    return secret
