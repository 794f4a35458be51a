"""
Octomil secure aggregation core.

Client-side SecAgg for federated learning: Shamir secret sharing over
GF(2^61 - 1), seed-derived additive masking, a strict per-client session
state machine, and dropout recovery.  The core never performs I/O; it produces
and consumes opaque byte payloads that a transport relays to the server.

Usage::

    from octomil_secagg import SecAggConfiguration, SecAggSession

    session = SecAggSession()
    session.begin_session("sess-1", client_index=1,
                          configuration=SecAggConfiguration(threshold=2, total_clients=3))
    shares = session.generate_key_shares()
"""

from __future__ import annotations

__version__ = "1.0.0"

from .errors import (
    DecodingError,
    DomainError,
    InsufficientSharesError,
    SecAggClientError,
    SecAggError,
    WrongPhaseError,
)
from .field import FIELD_PRIME
from .masking import HKDF_INFO_SELF_MASK, derive_mask, mask_update, unmask_update
from .models import (
    MetadataKind,
    MetadataValue,
    SecAggConfiguration,
    SecAggMaskedInputRequest,
    SecAggSessionResponse,
    SecAggShareKeysRequest,
    SecAggUnmaskRequest,
    SecAggUnmaskResponse,
)
from .recovery import collect_unmasking_shares, recover_dropped_masks, recover_seed
from .serialization import (
    bytes_to_field_elements,
    deserialize_share_bundles,
    deserialize_unmasking_shares,
    field_elements_to_bytes,
    serialize_share_bundles,
    serialize_unmasking_shares,
)
from .session import SecAggPhase, SecAggSession
from .shamir import Share, generate_shares, reconstruct_secret

__all__ = [
    "FIELD_PRIME",
    "HKDF_INFO_SELF_MASK",
    "DecodingError",
    "DomainError",
    "InsufficientSharesError",
    "MetadataKind",
    "MetadataValue",
    "SecAggClientError",
    "SecAggConfiguration",
    "SecAggError",
    "SecAggMaskedInputRequest",
    "SecAggPhase",
    "SecAggSession",
    "SecAggSessionResponse",
    "SecAggShareKeysRequest",
    "SecAggUnmaskRequest",
    "SecAggUnmaskResponse",
    "Share",
    "WrongPhaseError",
    "bytes_to_field_elements",
    "collect_unmasking_shares",
    "derive_mask",
    "deserialize_share_bundles",
    "deserialize_unmasking_shares",
    "field_elements_to_bytes",
    "generate_shares",
    "mask_update",
    "reconstruct_secret",
    "recover_dropped_masks",
    "recover_seed",
    "serialize_share_bundles",
    "serialize_unmasking_shares",
    "unmask_update",
]
