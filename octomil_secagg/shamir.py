"""Shamir secret sharing of field-element vectors over GF(2^61 - 1).

Every element of a secret gets its own random polynomial of degree
``threshold - 1`` whose constant term is the element.  Participant ``i``
(1-based, never 0) receives the evaluation of every polynomial at ``x = i``,
so one :class:`Share` carries a full vector of points for that participant.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field as dataclass_field
from typing import Callable, List, Optional, Sequence

from . import field
from .errors import DomainError

logger = logging.getLogger(__name__)


@dataclass
class Share:
    """Points ``(index, f_k(index))`` for every secret element ``k``."""

    index: int
    values: List[int] = dataclass_field(default_factory=list)


def _evaluate_polynomial(coefficients: Sequence[int], x: int) -> int:
    """Evaluate polynomial at *x* using Horner's method in GF(p)."""
    result = coefficients[-1]
    for i in range(len(coefficients) - 2, -1, -1):
        result = field.add(field.mul(result, x), coefficients[i])
    return result


def generate_shares(
    secret: Sequence[int],
    threshold: int,
    total_shares: int,
    random_source: Optional[Callable[[], int]] = None,
) -> List[Share]:
    """Split *secret* into *total_shares* shares, one per participant.

    Any *threshold* of the returned shares reconstruct the secret.  The
    result is ordered by participant index ``1..total_shares``.
    """
    if threshold < 1:
        raise ValueError("threshold must be >= 1")
    if threshold > total_shares:
        raise ValueError("threshold must be <= total_shares")
    for value in secret:
        if not field.is_canonical(value):
            raise DomainError(f"secret element {value} is outside [0, p)")

    draw = random_source or field.random_element
    shares = [Share(index=i) for i in range(1, total_shares + 1)]

    for value in secret:
        # Constant term is the secret; threshold == 1 draws nothing.
        coefficients = [value]
        for _ in range(threshold - 1):
            coefficients.append(draw())
        for share in shares:
            share.values.append(_evaluate_polynomial(coefficients, share.index))

    return shares


def lagrange_coefficients(indices: Sequence[int]) -> List[int]:
    """Lagrange basis values at ``x = 0`` for the given evaluation points.

    Coincident indices produce a zero denominator and raise
    :class:`~octomil_secagg.errors.DomainError`.
    """
    coefficients: List[int] = []
    for j, x_j in enumerate(indices):
        numerator = 1
        denominator = 1
        for k, x_k in enumerate(indices):
            if j == k:
                continue
            numerator = field.mul(numerator, field.neg(x_k % field.FIELD_PRIME))
            denominator = field.mul(
                denominator,
                field.sub(x_j % field.FIELD_PRIME, x_k % field.FIELD_PRIME),
            )
        coefficients.append(field.mul(numerator, field.inverse(denominator)))
    return coefficients


def reconstruct_secret(shares: Sequence[Share], threshold: int) -> List[int]:
    """Recover the secret vector by Lagrange interpolation at ``x = 0``.

    Only the first *threshold* shares are used; any size-*threshold* subset of
    one sharing gives the same answer.  With fewer than *threshold* shares an
    empty list is returned rather than raising, so callers must check the
    length before trusting the result.
    """
    if threshold < 1:
        raise ValueError("threshold must be >= 1")
    if len(shares) < threshold:
        logger.debug(
            "Shamir: %d share(s) supplied, %d required; returning empty secret",
            len(shares),
            threshold,
        )
        return []

    used = list(shares[:threshold])
    width = len(used[0].values)
    if any(len(s.values) != width for s in used):
        raise ValueError("shares disagree on the number of secret elements")

    basis = lagrange_coefficients([s.index for s in used])

    secret: List[int] = []
    for position in range(width):
        acc = 0
        for share, coeff in zip(used, basis):
            acc = field.add(acc, field.mul(share.values[position], coeff))
        secret.append(acc)
    return secret
