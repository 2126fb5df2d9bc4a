from __future__ import annotations

import sys
from collections.abc import Iterator


class seq(Iterator):
    """Auto-incrementing sequence with an optional maximum size"""

    def __init__(self, size: int | None = None):
        self.size = size
        self.value = 0

    def __next__(self) -> int:
        value = self.value
        self.value = self.value + 1
        if self.size:
            self.value = self.value % self.size
        return value

    def reset(self, value: int = 0) -> None:
        self.value = value


def xor(a: bytes, b: bytes) -> bytes:
    """XOR two byte strings, truncating to the shorter of the two"""
    a, b = a[: len(b)], b[: len(a)]
    int_b = int.from_bytes(b, sys.byteorder)
    int_a = int.from_bytes(a, sys.byteorder)
    int_enc = int_b ^ int_a
    return int_enc.to_bytes(len(b), sys.byteorder)


def xor_repeat(data: bytes, key: bytes) -> bytes:
    """XOR `data` with `key` repeated to the length of `data`"""
    if not key:
        return data
    reps = len(data) // len(key) + 1
    return xor(data, (key * reps)[: len(data)])
