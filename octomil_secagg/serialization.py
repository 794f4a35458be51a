"""Byte encodings for field elements, share bundles and unmasking payloads.

All integers on the wire are big-endian.  Share-bundle payload::

    >I bundle_count
    repeated bundle_count times:
        >I index  >I value_count  value_count x >Q value

Unmasking payload::

    >I sender_index  >I entry_count
    repeated entry_count times:
        >I owner_index  <one bundle as above>
"""

from __future__ import annotations

import base64
import binascii
import struct
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from . import field
from .errors import DecodingError, DomainError
from .shamir import Share

WORD_BYTES = 8

_U32 = struct.Struct(">I")
_U64 = struct.Struct(">Q")
_BUNDLE_HEADER = struct.Struct(">II")


# ---------------------------------------------------------------------------
# Field elements <-> bytes
# ---------------------------------------------------------------------------


def split_words(data: bytes) -> List[int]:
    """Split into 8-byte big-endian words, zero-padding the final one."""
    words: List[int] = []
    for i in range(0, len(data), WORD_BYTES):
        chunk = data[i : i + WORD_BYTES]
        if len(chunk) < WORD_BYTES:
            chunk = chunk + b"\x00" * (WORD_BYTES - len(chunk))
        words.append(_U64.unpack(chunk)[0])
    return words


def bytes_to_field_elements(data: bytes) -> List[int]:
    """Convert raw bytes into field elements, one per 8-byte group.

    A group whose value is not below p is rejected rather than wrapped.
    """
    elements = split_words(data)
    for position, value in enumerate(elements):
        if value >= field.FIELD_PRIME:
            raise DecodingError(
                f"8-byte group {position} encodes {value:#x}, which is not below p"
            )
    return elements


def field_elements_to_bytes(elements: Sequence[int]) -> bytes:
    """Encode each element as 8 big-endian bytes and concatenate."""
    parts: List[bytes] = []
    for value in elements:
        if not field.is_canonical(value):
            raise DomainError(f"{value} is not a canonical field element")
        parts.append(_U64.pack(value))
    return b"".join(parts)


# ---------------------------------------------------------------------------
# Share bundles
# ---------------------------------------------------------------------------


def _pack_bundle(share: Share) -> bytes:
    return _BUNDLE_HEADER.pack(share.index, len(share.values)) + field_elements_to_bytes(
        share.values
    )


def serialize_share_bundles(shares: Sequence[Share]) -> bytes:
    """Serialize one bundle per recipient for relay through the server."""
    buf = bytearray(_U32.pack(len(shares)))
    for share in shares:
        buf += _pack_bundle(share)
    return bytes(buf)


class _Reader:
    """Bounds-checked cursor over a payload."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.offset = 0

    def take(self, size: int, what: str) -> bytes:
        end = self.offset + size
        if end > len(self.data):
            raise DecodingError(
                f"truncated payload: {what} needs {size} byte(s) at offset "
                f"{self.offset}, only {len(self.data) - self.offset} left"
            )
        chunk = self.data[self.offset : end]
        self.offset = end
        return chunk

    def u32(self, what: str) -> int:
        return _U32.unpack(self.take(4, what))[0]

    def bundle(self, total_clients: int) -> Share:
        index, count = _BUNDLE_HEADER.unpack(self.take(_BUNDLE_HEADER.size, "bundle header"))
        if not 1 <= index <= total_clients:
            raise DecodingError(f"share index {index} outside [1, {total_clients}]")
        raw = self.take(count * WORD_BYTES, f"values of share {index}")
        values = [v for (v,) in _U64.iter_unpack(raw)]
        for value in values:
            if value >= field.FIELD_PRIME:
                raise DecodingError(f"share {index} carries non-canonical value {value:#x}")
        return Share(index=index, values=values)

    def finish(self) -> None:
        if self.offset != len(self.data):
            raise DecodingError(f"{len(self.data) - self.offset} trailing byte(s) after payload")


def deserialize_share_bundles(data: bytes, total_clients: Optional[int] = None) -> List[Share]:
    """Parse a payload produced by :func:`serialize_share_bundles`.

    Every index must lie in ``[1, total_clients]``; when *total_clients* is not
    given the bundle count from the header is used.
    """
    reader = _Reader(data)
    count = reader.u32("bundle count")
    limit = total_clients if total_clients is not None else count

    shares: List[Share] = []
    seen = set()
    for _ in range(count):
        share = reader.bundle(limit)
        if share.index in seen:
            raise DecodingError(f"duplicate share index {share.index}")
        seen.add(share.index)
        shares.append(share)
    reader.finish()
    return shares


# ---------------------------------------------------------------------------
# Unmasking payloads
# ---------------------------------------------------------------------------


def serialize_unmasking_shares(sender_index: int, shares_by_owner: Mapping[int, Share]) -> bytes:
    """Serialize the shares *sender_index* holds of the listed owners' seeds."""
    buf = bytearray(_BUNDLE_HEADER.pack(sender_index, len(shares_by_owner)))
    for owner in sorted(shares_by_owner):
        buf += _U32.pack(owner)
        buf += _pack_bundle(shares_by_owner[owner])
    return bytes(buf)


def deserialize_unmasking_shares(
    data: bytes, total_clients: Optional[int] = None
) -> Tuple[int, Dict[int, Share]]:
    """Parse an unmasking payload into ``(sender_index, {owner_index: share})``."""
    reader = _Reader(data)
    sender, count = _BUNDLE_HEADER.unpack(reader.take(_BUNDLE_HEADER.size, "unmask header"))
    limit = total_clients if total_clients is not None else (1 << 32) - 1
    if not 1 <= sender <= limit:
        raise DecodingError(f"sender index {sender} outside [1, {limit}]")

    entries: Dict[int, Share] = {}
    for _ in range(count):
        owner = reader.u32("owner index")
        if not 1 <= owner <= limit:
            raise DecodingError(f"owner index {owner} outside [1, {limit}]")
        if owner in entries:
            raise DecodingError(f"duplicate owner index {owner}")
        share = reader.bundle(limit)
        if share.index != sender:
            raise DecodingError(
                f"share for owner {owner} is tagged {share.index}, expected sender {sender}"
            )
        entries[owner] = share
    reader.finish()
    return sender, entries


# ---------------------------------------------------------------------------
# JSON transport helpers
# ---------------------------------------------------------------------------


def encode_payload(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_payload(text: str) -> bytes:
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError, AttributeError) as exc:
        raise DecodingError(f"invalid base64 payload: {exc}") from exc
