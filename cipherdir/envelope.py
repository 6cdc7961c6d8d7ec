"""
Password-based envelope codec.

An envelope is the unit of persisted ciphertext: a fresh 16-byte salt, a
fresh 24-byte XChaCha20-Poly1305 nonce and the ciphertext with its trailing
Poly1305 tag. The key is re-derived from the password and the envelope's own
salt on every call, so two seals of the same payload share nothing.

Wire form is a small JSON object (see `EnvelopeRecord`), with base64 fields
named after the layout the folder has always used: `salt`, `iv`, `data`.
"""
import base64, binascii
from dataclasses import dataclass

from pydantic import ValidationError

from .crypto import (
    derive_key,
    gen_salt,
    gen_nonce,
    aead_encrypt,
    aead_decrypt,
    zero_bytes,
    SALT_SIZE,
    NONCE_SIZE,
    TAG_SIZE,
    KDF_NAME,
    AEAD_NAME,
)
from .errors import MalformedEnvelope
from .models import EnvelopeRecord, KdfParams

ENVELOPE_VERSION = 1
ENVELOPE_AD = b"cipherdir-envelope-v1"


def b64e(b: bytes) -> str: return base64.b64encode(b).decode("ascii")


def b64d(s: str) -> bytes:
    try:
        return base64.b64decode(s.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise MalformedEnvelope("envelope field is not valid base64") from exc


@dataclass(frozen=True)
class Envelope:
    salt: bytes
    nonce: bytes
    ciphertext: bytes
    kdf_params: KdfParams

    def __post_init__(self):
        if len(self.salt) != SALT_SIZE:
            raise MalformedEnvelope(f"salt must be {SALT_SIZE} bytes, got {len(self.salt)}")
        if len(self.nonce) != NONCE_SIZE:
            raise MalformedEnvelope(f"nonce must be {NONCE_SIZE} bytes, got {len(self.nonce)}")
        if len(self.ciphertext) < TAG_SIZE:
            raise MalformedEnvelope("ciphertext is shorter than the authentication tag")


def seal(plaintext: bytes, password: str, params: KdfParams = KdfParams()) -> Envelope:
    """Encrypt `plaintext` under a key derived from `password` and a fresh salt."""
    salt = gen_salt()
    nonce = gen_nonce()
    key = bytearray(derive_key(password, salt, params))
    try:
        ct = aead_encrypt(bytes(key), nonce, bytes(plaintext), ENVELOPE_AD)
    finally:
        zero_bytes(key)
    return Envelope(salt=salt, nonce=nonce, ciphertext=ct, kdf_params=params)


def open_envelope(envelope: Envelope, password: str) -> bytes:
    """Decrypt an envelope; a failed tag raises IncorrectPassword."""
    key = bytearray(derive_key(password, envelope.salt, envelope.kdf_params))
    try:
        return aead_decrypt(bytes(key), envelope.nonce, envelope.ciphertext, ENVELOPE_AD)
    finally:
        zero_bytes(key)


def encode(envelope: Envelope) -> bytes:
    record = EnvelopeRecord(
        version=ENVELOPE_VERSION,
        kdf=KDF_NAME,
        kdf_params=envelope.kdf_params,
        aead=AEAD_NAME,
        salt=b64e(envelope.salt),
        iv=b64e(envelope.nonce),
        data=b64e(envelope.ciphertext),
    )
    return record.model_dump_json().encode("utf-8")


def decode(raw: bytes) -> Envelope:
    """Parse wire bytes into an Envelope, raising MalformedEnvelope on any structural problem."""
    try:
        record = EnvelopeRecord.model_validate_json(raw)
    except (ValidationError, ValueError) as exc:
        raise MalformedEnvelope("envelope is not a valid record") from exc
    if record.version != ENVELOPE_VERSION:
        raise MalformedEnvelope(f"unsupported envelope version {record.version}")
    if record.kdf != KDF_NAME or record.aead != AEAD_NAME:
        raise MalformedEnvelope(f"unsupported algorithms {record.kdf}/{record.aead}")
    return Envelope(
        salt=b64d(record.salt),
        nonce=b64d(record.iv),
        ciphertext=b64d(record.data),
        kdf_params=record.kdf_params,
    )


def seal_bytes(plaintext: bytes, password: str, params: KdfParams = KdfParams()) -> bytes:
    return encode(seal(plaintext, password, params))


def open_bytes(raw: bytes, password: str) -> bytes:
    return open_envelope(decode(raw), password)
