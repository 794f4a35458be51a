"""Arithmetic over GF(p) with the Mersenne prime p = 2^61 - 1.

Every function takes and returns canonical elements in ``[0, p)``.  Products
are formed at full width (up to 122 bits) and folded back with the Mersenne
identity ``2^61 = 1 (mod p)``; nothing relies on fixed-width wraparound.
"""

from __future__ import annotations

import secrets

from .errors import DomainError

FIELD_BITS = 61
FIELD_PRIME = (1 << FIELD_BITS) - 1


def is_canonical(value: int) -> bool:
    return 0 <= value < FIELD_PRIME


def reduce(value: int) -> int:
    """Reduce a non-negative integer of any width into ``[0, p)``."""
    if value < 0:
        raise DomainError(f"cannot reduce negative value {value}")
    while value >> FIELD_BITS:
        value = (value & FIELD_PRIME) + (value >> FIELD_BITS)
    # value now fits in 61 bits; p itself is the only non-canonical survivor
    return 0 if value == FIELD_PRIME else value


def add(a: int, b: int) -> int:
    s = a + b
    return s - FIELD_PRIME if s >= FIELD_PRIME else s


def sub(a: int, b: int) -> int:
    return a - b if a >= b else a + FIELD_PRIME - b


def neg(a: int) -> int:
    return 0 if a == 0 else FIELD_PRIME - a


def mul(a: int, b: int) -> int:
    """Multiply via the full 122-bit product, then fold twice."""
    wide = a * b
    folded = (wide & FIELD_PRIME) + (wide >> FIELD_BITS)
    folded = (folded & FIELD_PRIME) + (folded >> FIELD_BITS)
    return folded - FIELD_PRIME if folded >= FIELD_PRIME else folded


def power(base: int, exponent: int) -> int:
    """Square-and-multiply exponentiation."""
    if exponent < 0:
        raise DomainError("negative exponents are not supported; use inverse()")
    result = 1
    while exponent:
        if exponent & 1:
            result = mul(result, base)
        base = mul(base, base)
        exponent >>= 1
    return result


def inverse(a: int) -> int:
    """Multiplicative inverse by Fermat's little theorem, ``a^(p-2)``."""
    if a % FIELD_PRIME == 0:
        raise DomainError("zero has no multiplicative inverse in GF(2^61 - 1)")
    return power(a, FIELD_PRIME - 2)


def div(a: int, b: int) -> int:
    return mul(a, inverse(b))


def random_element() -> int:
    """Uniform element of ``[0, p)`` from the OS CSPRNG."""
    return secrets.randbelow(FIELD_PRIME)
