# splitflags/engine/hashing.py
"""Deterministic bucketing of keys for percentage rollouts.

Two hash functions are supported, selected per split through its ``algo``
field. Both must stay bit-exact with the server side and with every other
client, so they are kept as two separate functions:

- ``legacy_hash``: Java ``String.hashCode`` style accumulation over UTF-16
  code units with 32-bit signed overflow, XOR-ed with the seed.
- ``murmur32_hash``: MurmurHash3 (x86, 32-bit) over the UTF-8 bytes of the
  key, seeded with the split seed taken as an unsigned 32-bit integer.

``get_bucket`` reduces either hash to a bucket in ``[0, 99]``.
"""


from __future__ import annotations

from splitflags.engine.models import HashAlgorithm


_MASK_32 = 0xFFFFFFFF

_C1 = 0xCC9E2D51
_C2 = 0x1B873593


def _to_int32(value: int) -> int:
    value &= _MASK_32
    return value - 0x100000000 if value & 0x80000000 else value


def _rotl32(value: int, shift: int) -> int:
    return ((value << shift) | (value >> (32 - shift))) & _MASK_32


def _utf16_code_units(key: str):
    data = key.encode("utf-16-be", "surrogatepass")
    for i in range(0, len(data), 2):
        yield (data[i] << 8) | data[i + 1]


def legacy_hash(key: str, seed: int) -> int:
    """Return the legacy signed 32-bit hash of ``key`` for ``seed``.

    Args:
        key: The bucketing key.
        seed: The split (or traffic allocation) seed.

    Returns:
        int: A signed 32-bit integer.
    """
    h = 0
    for unit in _utf16_code_units(key):
        h = (31 * h + unit) & _MASK_32
    return _to_int32(h ^ (seed & _MASK_32))


def murmur32_hash(key: str, seed: int) -> int:
    """Return the MurmurHash3 x86 32-bit hash of ``key`` for ``seed``.

    Args:
        key: The bucketing key, hashed as UTF-8.
        seed: The split seed; negative seeds wrap to unsigned 32-bit.

    Returns:
        int: An unsigned 32-bit integer.
    """
    data = key.encode("utf-8")
    length = len(data)
    h1 = seed & _MASK_32
    rounded_end = length & ~0x3

    for i in range(0, rounded_end, 4):
        k1 = int.from_bytes(data[i:i + 4], "little")
        k1 = (k1 * _C1) & _MASK_32
        k1 = _rotl32(k1, 15)
        k1 = (k1 * _C2) & _MASK_32

        h1 ^= k1
        h1 = _rotl32(h1, 13)
        h1 = (h1 * 5 + 0xE6546B64) & _MASK_32

    # Tail
    k1 = 0
    tail = length & 0x3
    if tail == 3:
        k1 ^= data[rounded_end + 2] << 16
    if tail >= 2:
        k1 ^= data[rounded_end + 1] << 8
    if tail >= 1:
        k1 ^= data[rounded_end]
        k1 = (k1 * _C1) & _MASK_32
        k1 = _rotl32(k1, 15)
        k1 = (k1 * _C2) & _MASK_32
        h1 ^= k1

    # Finalization mix
    h1 ^= length
    h1 ^= h1 >> 16
    h1 = (h1 * 0x85EBCA6B) & _MASK_32
    h1 ^= h1 >> 13
    h1 = (h1 * 0xC2B2AE35) & _MASK_32
    h1 ^= h1 >> 16
    return h1


def get_hash(key: str, seed: int, algo: HashAlgorithm) -> int:
    """Hash ``key`` with the function selected by ``algo``."""
    if algo is HashAlgorithm.MURMUR:
        return murmur32_hash(key, seed)
    return legacy_hash(key, seed)


def get_bucket(seed: int, key: str, algo: HashAlgorithm = HashAlgorithm.LEGACY) -> int:
    """Map ``(seed, key)`` to a bucket in ``[0, 99]``.

    The reduction is ``abs(hash) % 100``, which equals the absolute value of
    a truncating remainder. Reference clients report ``bucket + 1``.

    Args:
        seed: The split (or traffic allocation) seed.
        key: The bucketing key.
        algo: Which hash function the split was configured with.

    Returns:
        int: The bucket, between 0 and 99 inclusive.
    """
    return abs(get_hash(key, seed, algo)) % 100
