"""Constant-time comparison of byte strings."""

from __future__ import annotations

from typing import Union

BytesLike = Union[bytes, bytearray, memoryview]


def memneq_bits(a: BytesLike, b: BytesLike) -> int:
    """Return the OR of the XOR of every byte pair; zero means equal.

    Every byte is visited regardless of where a difference occurs.
    """
    left = bytes(a)
    right = bytes(b)
    if len(left) != len(right):
        raise ValueError(
            f"cannot compare buffers of different sizes ({len(left)} and {len(right)})"
        )
    neq = 0
    for x, y in zip(left, right):
        neq |= x ^ y
    return neq


def crypto_memneq(a: BytesLike, b: BytesLike) -> bool:
    """Return True if the buffers differ, without leaking where they differ."""
    return memneq_bits(a, b) != 0