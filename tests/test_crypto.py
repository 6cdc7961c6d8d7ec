import unittest

from pydantic import ValidationError

from cipherdir.crypto import (
    derive_key,
    gen_salt,
    gen_nonce,
    aead_encrypt,
    aead_decrypt,
    zero_bytes,
    KEY_SIZE,
    NONCE_SIZE,
    SALT_SIZE,
)
from cipherdir.errors import IncorrectPassword
from cipherdir.models import KdfParams

from support import FAST_KDF


class KeyDerivationTests(unittest.TestCase):
    def test_same_inputs_same_key(self):
        salt = b"\x01" * SALT_SIZE
        self.assertEqual(derive_key("p@ss", salt, FAST_KDF), derive_key("p@ss", salt, FAST_KDF))

    def test_key_length(self):
        self.assertEqual(len(derive_key("p@ss", gen_salt(), FAST_KDF)), KEY_SIZE)

    def test_salt_and_password_change_key(self):
        salt = b"\x01" * SALT_SIZE
        base = derive_key("p@ss", salt, FAST_KDF)
        self.assertNotEqual(base, derive_key("p@ss", b"\x02" * SALT_SIZE, FAST_KDF))
        self.assertNotEqual(base, derive_key("wrong", salt, FAST_KDF))

    def test_cost_parameters_change_key(self):
        salt = b"\x01" * SALT_SIZE
        slower = KdfParams(time_cost=2, memory_cost=8, parallelism=1)
        self.assertNotEqual(derive_key("p@ss", salt, FAST_KDF), derive_key("p@ss", salt, slower))

    def test_rejects_bad_salt(self):
        with self.assertRaises(ValueError):
            derive_key("p@ss", b"", FAST_KDF)
        with self.assertRaises(ValueError):
            derive_key("p@ss", b"\x00" * (SALT_SIZE - 1), FAST_KDF)

    def test_unicode_password(self):
        salt = gen_salt()
        self.assertEqual(derive_key("pässwörd", salt, FAST_KDF), derive_key("pässwörd", salt, FAST_KDF))


class KdfParamsTests(unittest.TestCase):
    def test_defaults_are_slow(self):
        params = KdfParams()
        self.assertEqual(params.time_cost, 3)
        self.assertEqual(params.memory_cost, 256 * 1024)

    def test_rejects_out_of_range(self):
        with self.assertRaises(ValidationError):
            KdfParams(time_cost=0)
        with self.assertRaises(ValidationError):
            KdfParams(memory_cost=1 << 40)
        with self.assertRaises(ValidationError):
            KdfParams(memory_cost=8, parallelism=2)


class AeadTests(unittest.TestCase):
    def test_roundtrip_and_wrong_key(self):
        key = b"\x07" * KEY_SIZE
        nonce = gen_nonce()
        ct = aead_encrypt(key, nonce, b"hello", b"ad")
        self.assertEqual(aead_decrypt(key, nonce, ct, b"ad"), b"hello")
        with self.assertRaises(IncorrectPassword):
            aead_decrypt(b"\x08" * KEY_SIZE, nonce, ct, b"ad")
        with self.assertRaises(IncorrectPassword):
            aead_decrypt(key, nonce, ct, b"other-ad")

    def test_random_sizes(self):
        self.assertEqual(len(gen_nonce()), NONCE_SIZE)
        self.assertEqual(len(gen_salt()), SALT_SIZE)
        self.assertNotEqual(gen_salt(), gen_salt())


class HelperTests(unittest.TestCase):
    def test_zero_bytes(self):
        buf = bytearray(b"secret")
        zero_bytes(buf)
        self.assertEqual(buf, bytearray(6))


if __name__ == "__main__":
    unittest.main()
