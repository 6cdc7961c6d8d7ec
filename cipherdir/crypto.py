from argon2.low_level import hash_secret_raw, Type
from nacl.bindings import (
    crypto_aead_xchacha20poly1305_ietf_encrypt,
    crypto_aead_xchacha20poly1305_ietf_decrypt,
    crypto_aead_xchacha20poly1305_ietf_KEYBYTES,
    crypto_aead_xchacha20poly1305_ietf_NPUBBYTES,
    crypto_aead_xchacha20poly1305_ietf_ABYTES,
)
from nacl.exceptions import CryptoError
import os

from .errors import IncorrectPassword
from .models import KdfParams

NONCE_SIZE = crypto_aead_xchacha20poly1305_ietf_NPUBBYTES
KEY_SIZE = crypto_aead_xchacha20poly1305_ietf_KEYBYTES
TAG_SIZE = crypto_aead_xchacha20poly1305_ietf_ABYTES
SALT_SIZE = 16

KDF_NAME = "argon2id"
AEAD_NAME = "xchacha20poly1305"


def derive_key(password: str, salt: bytes, params: KdfParams) -> bytes:
    """Derive a 32-byte key from the user-supplied password using Argon2id."""
    if not isinstance(salt, (bytes, bytearray)) or len(salt) != SALT_SIZE:
        raise ValueError(f"salt must be exactly {SALT_SIZE} bytes")
    password_bytes = bytearray(password.encode("utf-8"))
    try:
        return hash_secret_raw(
            bytes(password_bytes),
            bytes(salt),
            time_cost=params.time_cost,
            memory_cost=params.memory_cost,
            parallelism=params.parallelism,
            hash_len=KEY_SIZE,
            type=Type.ID,
        )
    finally:
        zero_bytes(password_bytes)


def gen_salt() -> bytes:
    """Return a fresh random salt; os.urandom raises rather than degrade when no source exists."""
    return os.urandom(SALT_SIZE)


def gen_nonce() -> bytes:
    """Return a cryptographically-random 24-byte nonce for XChaCha20-Poly1305."""
    return os.urandom(NONCE_SIZE)


def aead_encrypt(key: bytes, nonce: bytes, plaintext: bytes, ad: bytes) -> bytes:
    """Encrypt `plaintext` with XChaCha20-Poly1305 using the supplied nonce and AD."""
    return crypto_aead_xchacha20poly1305_ietf_encrypt(plaintext, ad, nonce, key)


def aead_decrypt(key: bytes, nonce: bytes, ciphertext: bytes, ad: bytes) -> bytes:
    """Decrypt a ciphertext produced by `aead_encrypt`, raising IncorrectPassword on tag failure."""
    try:
        return crypto_aead_xchacha20poly1305_ietf_decrypt(ciphertext, ad, nonce, key)
    except CryptoError as exc:
        raise IncorrectPassword("incorrect password or corrupt data") from exc


def zero_bytes(b):
    """Best-effort zeroization for mutable buffers that held sensitive information."""
    if isinstance(b, bytearray):
        for i in range(len(b)):
            b[i] = 0
    elif isinstance(b, memoryview) and not b.readonly:
        b[:] = b"\x00" * len(b)
