from cipherdir.models import KdfParams

# Minimal Argon2id costs so each seal/open takes microseconds in tests.
FAST_KDF = KdfParams(time_cost=1, memory_cost=8, parallelism=1)


def flip_bit(data: bytes, index: int, bit: int = 0) -> bytes:
    buf = bytearray(data)
    buf[index] ^= 1 << bit
    return bytes(buf)
