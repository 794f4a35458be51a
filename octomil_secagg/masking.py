"""Pseudorandom mask derivation from a client's seed material.

The seed is bound to the client's participant index through HKDF-SHA256
(``info = "secagg-self-mask" || index``).  The resulting 32-byte key drives a
SHA-256 counter-mode PRG whose output words are mapped uniformly onto
``[1, p)`` by rejection, so no mask element is zero.

An update of ``n`` bytes is masked as ``n // 8`` full 8-byte words, each a
field element added mod p, plus a tail of ``n % 8`` bytes.  The tail is too
short to carry a field element, so it is masked in the ring of
``n % 8``-byte integers with a non-zero addend drawn from a separate PRG
stream.  A non-empty update therefore never masks to itself, and every mask
is reproducible from the seed alone.

Requires the ``cryptography`` package.
"""

from __future__ import annotations

import hashlib
import struct
from typing import List, Sequence

from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from . import field
from .serialization import WORD_BYTES, bytes_to_field_elements, field_elements_to_bytes

# Standardized HKDF info string shared with the other SDKs.
HKDF_INFO_SELF_MASK = b"secagg-self-mask"

MASK_KEY_BYTES = 32

_TAIL_STREAM = b"tail"


def derive_mask_key(seed: bytes, client_index: int) -> bytes:
    """Derive the 32-byte PRG key for *client_index* from raw *seed* bytes."""
    return HKDF(
        algorithm=SHA256(),
        length=MASK_KEY_BYTES,
        salt=None,
        info=HKDF_INFO_SELF_MASK + struct.pack(">I", client_index),
    ).derive(seed)


def derive_mask_elements(key: bytes, count: int) -> List[int]:
    """Expand *key* into *count* uniform non-zero field elements."""
    elements: List[int] = []
    counter = 0
    while len(elements) < count:
        digest = hashlib.sha256(key + struct.pack(">I", counter)).digest()
        for (word,) in struct.iter_unpack(">Q", digest):
            candidate = word & field.FIELD_PRIME
            # 0 would leave a word unmasked; all-ones is p itself.
            if candidate == 0 or candidate == field.FIELD_PRIME:
                continue
            elements.append(candidate)
            if len(elements) == count:
                break
        counter += 1
    return elements


def derive_tail_mask(key: bytes, width: int) -> int:
    """Uniform non-zero addend for a *width*-byte tail (``1 <= width < 8``)."""
    if not 1 <= width < WORD_BYTES:
        raise ValueError(f"tail width must be in [1, {WORD_BYTES - 1}], got {width}")
    bits = (1 << (8 * width)) - 1
    counter = 0
    while True:
        digest = hashlib.sha256(key + _TAIL_STREAM + struct.pack(">I", counter)).digest()
        for (word,) in struct.iter_unpack(">Q", digest):
            candidate = word & bits
            if candidate:
                return candidate
        counter += 1


def mask_element_count(size: int) -> int:
    """Mask entries needed for a *size*-byte update: full words plus the tail."""
    return -(-size // WORD_BYTES)


def derive_mask(seed: Sequence[int], client_index: int, size: int) -> List[int]:
    """Mask a client with seed material *seed* adds to a *size*-byte update.

    One field element per full 8-byte word, followed by the tail addend when
    *size* is not a multiple of 8.
    """
    if size == 0:
        return []
    key = derive_mask_key(field_elements_to_bytes(seed), client_index)
    full, tail = divmod(size, WORD_BYTES)
    mask = derive_mask_elements(key, full)
    if tail:
        mask.append(derive_tail_mask(key, tail))
    return mask


def apply_mask(elements: Sequence[int], mask: Sequence[int]) -> List[int]:
    if len(elements) != len(mask):
        raise ValueError(f"mask covers {len(mask)} element(s), update has {len(elements)}")
    return [field.add(e, m) for e, m in zip(elements, mask)]


def remove_mask(elements: Sequence[int], mask: Sequence[int]) -> List[int]:
    if len(elements) != len(mask):
        raise ValueError(f"mask covers {len(mask)} element(s), update has {len(elements)}")
    return [field.sub(e, m) for e, m in zip(elements, mask)]


def _split_update(data: bytes, mask: Sequence[int]):
    if len(mask) != mask_element_count(len(data)):
        raise ValueError(
            f"mask has {len(mask)} entries, a {len(data)}-byte update needs "
            f"{mask_element_count(len(data))}"
        )
    full, tail = divmod(len(data), WORD_BYTES)
    cut = full * WORD_BYTES
    # Full words must already be field elements; nothing is wrapped.
    return bytes_to_field_elements(data[:cut]), data[cut:], tail


def mask_update(data: bytes, mask: Sequence[int]) -> bytes:
    """Mask raw update bytes, keeping their length.

    Raises :class:`~octomil_secagg.errors.DecodingError` when a full 8-byte
    word is not below p.
    """
    elements, tail_bytes, tail = _split_update(data, mask)
    out = field_elements_to_bytes(apply_mask(elements, mask[: len(elements)]))
    if tail:
        modulus = 1 << (8 * tail)
        value = (int.from_bytes(tail_bytes, "big") + mask[-1]) % modulus
        out += value.to_bytes(tail, "big")
    return out


def unmask_update(masked: bytes, mask: Sequence[int]) -> bytes:
    """Inverse of :func:`mask_update`."""
    elements, tail_bytes, tail = _split_update(masked, mask)
    out = field_elements_to_bytes(remove_mask(elements, mask[: len(elements)]))
    if tail:
        modulus = 1 << (8 * tail)
        value = (int.from_bytes(tail_bytes, "big") - mask[-1]) % modulus
        out += value.to_bytes(tail, "big")
    return out
