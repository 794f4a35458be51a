"""Client-side SecAgg session state machine.

One :class:`SecAggSession` drives a single client through a round::

    idle --begin_session--> share_keys --generate_key_shares--> masked_input
         --mask_model_update--> unmasking --provide_unmasking_shares--> completed

``reset()`` returns to ``idle`` from any phase and discards all key material.
Every public operation holds the session lock, and every failure is detected
before anything is mutated, so a failed call never advances or corrupts the
session.

Typical usage::

    session = SecAggSession()
    session.begin_session("sess-1", client_index=2, configuration=config)
    shares = session.generate_key_shares()
    # ... relay shares; hand peers' payloads to receive_peer_shares() ...
    masked = session.mask_model_update(update_bytes)
    # ... upload masked; server reports dropouts ...
    unmask = session.provide_unmasking_shares([3])
    session.reset()
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field as dataclass_field
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional

from . import field
from .errors import DecodingError, SecAggError, WrongPhaseError
from .masking import derive_mask, mask_update
from .models import (
    MetadataValue,
    SecAggConfiguration,
    SecAggMaskedInputRequest,
    SecAggShareKeysRequest,
    SecAggUnmaskRequest,
)
from .serialization import (
    deserialize_share_bundles,
    serialize_share_bundles,
    serialize_unmasking_shares,
)
from .shamir import Share, generate_shares

logger = logging.getLogger(__name__)


class SecAggPhase(str, Enum):
    """Phases of the SecAgg protocol as seen by the client."""

    IDLE = "idle"
    SHARE_KEYS = "shareKeys"
    MASKED_INPUT = "maskedInput"
    UNMASKING = "unmasking"
    COMPLETED = "completed"


@dataclass
class _SessionState:
    session_id: str
    client_index: int
    configuration: SecAggConfiguration
    seed: List[int]
    outgoing_shares: List[Share] = dataclass_field(default_factory=list)
    # sender index -> the sender's share addressed to this client
    received_shares: Dict[int, Share] = dataclass_field(default_factory=dict)
    masked_buffer: Optional[bytes] = None


def seed_element_count(key_length: int) -> int:
    """Field elements needed to carry *key_length* bits of seed entropy."""
    return math.ceil(key_length / field.FIELD_BITS)


class SecAggSession:
    """Per-client secure aggregation session, safe to share across threads."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._phase = SecAggPhase.IDLE
        self._state: Optional[_SessionState] = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def current_phase(self) -> SecAggPhase:
        with self._lock:
            return self._phase

    @property
    def session_id(self) -> Optional[str]:
        with self._lock:
            return self._state.session_id if self._state else None

    @property
    def client_index(self) -> Optional[int]:
        with self._lock:
            return self._state.client_index if self._state else None

    @property
    def configuration(self) -> Optional[SecAggConfiguration]:
        with self._lock:
            return self._state.configuration if self._state else None

    def _require_phase(self, operation: str, *allowed: SecAggPhase) -> _SessionState:
        if self._phase not in allowed:
            raise WrongPhaseError(operation, allowed, self._phase)
        if self._state is None:
            raise SecAggError(f"SecAgg: no session state in phase {self._phase.value}")
        return self._state

    def _advance(self, phase: SecAggPhase) -> None:
        self._phase = phase
        logger.info(
            "SecAgg: session %s entered %s",
            self._state.session_id if self._state else "-",
            phase.value,
        )

    # ------------------------------------------------------------------
    # idle -> share_keys
    # ------------------------------------------------------------------

    def begin_session(
        self,
        session_id: str,
        client_index: int,
        configuration: SecAggConfiguration,
    ) -> None:
        """Start a session and draw fresh seed material for masking."""
        with self._lock:
            if self._phase is not SecAggPhase.IDLE:
                raise WrongPhaseError("begin_session", (SecAggPhase.IDLE,), self._phase)
            if not 1 <= client_index <= configuration.total_clients:
                raise ValueError(
                    f"client_index must be in [1, {configuration.total_clients}], "
                    f"got {client_index}"
                )
            seed = [
                field.random_element()
                for _ in range(seed_element_count(configuration.key_length))
            ]
            self._state = _SessionState(
                session_id=session_id,
                client_index=client_index,
                configuration=configuration,
                seed=seed,
            )
            self._advance(SecAggPhase.SHARE_KEYS)

    # ------------------------------------------------------------------
    # share_keys -> masked_input
    # ------------------------------------------------------------------

    def generate_key_shares(self) -> bytes:
        """Shamir-split the seed into one bundle per participant.

        Returns the serialized bundles for relay through the server.  The
        bundle addressed to this client is kept locally.
        """
        with self._lock:
            state = self._require_phase("generate_key_shares", SecAggPhase.SHARE_KEYS)
            config = state.configuration
            shares = generate_shares(
                state.seed,
                threshold=config.threshold,
                total_shares=config.total_clients,
            )
            payload = serialize_share_bundles(shares)

            state.outgoing_shares = shares
            state.received_shares[state.client_index] = shares[state.client_index - 1]
            self._advance(SecAggPhase.MASKED_INPUT)
            return payload

    def receive_peer_shares(self, sender_index: int, payload: bytes) -> None:
        """Store the share *sender_index* addressed to this client.

        *payload* is the sender's ``generate_key_shares`` output as relayed by
        the server.  Does not change the phase.
        """
        with self._lock:
            state = self._require_phase(
                "receive_peer_shares", SecAggPhase.MASKED_INPUT, SecAggPhase.UNMASKING
            )
            total = state.configuration.total_clients
            if not 1 <= sender_index <= total:
                raise ValueError(f"sender_index must be in [1, {total}], got {sender_index}")
            if sender_index == state.client_index:
                raise ValueError("a client cannot receive shares from itself")

            bundles = deserialize_share_bundles(payload, total_clients=total)
            mine = next((b for b in bundles if b.index == state.client_index), None)
            if mine is None:
                raise DecodingError(
                    f"payload from {sender_index} has no bundle for index {state.client_index}"
                )
            state.received_shares[sender_index] = mine

    # ------------------------------------------------------------------
    # masked_input -> unmasking
    # ------------------------------------------------------------------

    def mask_model_update(self, weights: bytes) -> bytes:
        """Add the seed-derived mask to *weights*, keeping their length.

        Full 8-byte big-endian words must already be field elements and are
        masked mod p; a word that is not below p raises
        :class:`~octomil_secagg.errors.DecodingError` and leaves the session
        untouched.  A trailing partial word is masked with a non-zero addend
        of its own width, so any non-empty update changes.
        """
        with self._lock:
            state = self._require_phase("mask_model_update", SecAggPhase.MASKED_INPUT)
            mask = derive_mask(state.seed, state.client_index, len(weights))
            masked = mask_update(weights, mask)

            state.masked_buffer = masked
            self._advance(SecAggPhase.UNMASKING)
            return masked

    # ------------------------------------------------------------------
    # unmasking -> completed
    # ------------------------------------------------------------------

    def provide_unmasking_shares(self, dropped_client_indices: Iterable[int]) -> bytes:
        """Reveal this client's shares of the dropped participants' seeds.

        Only shares whose owner is listed in *dropped_client_indices* are
        emitted; nothing about a surviving participant's seed leaves the
        session.
        """
        with self._lock:
            state = self._require_phase("provide_unmasking_shares", SecAggPhase.UNMASKING)
            total = state.configuration.total_clients
            dropped = sorted(set(dropped_client_indices))
            for idx in dropped:
                if not 1 <= idx <= total:
                    raise ValueError(f"dropped index {idx} outside [1, {total}]")
                if idx == state.client_index:
                    raise ValueError("this client is reported as dropped but is still active")

            revealed: Dict[int, Share] = {}
            for idx in dropped:
                share = state.received_shares.get(idx)
                if share is None:
                    logger.warning(
                        "SecAgg: no share held for dropped client %d in session %s, skipping",
                        idx,
                        state.session_id,
                    )
                    continue
                revealed[idx] = share

            payload = serialize_unmasking_shares(state.client_index, revealed)
            self._advance(SecAggPhase.COMPLETED)
            return payload

    # ------------------------------------------------------------------
    # any -> idle
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Abandon or finish the round, discarding seed, shares and buffers."""
        with self._lock:
            if self._state is not None:
                logger.info(
                    "SecAgg: session %s reset from %s",
                    self._state.session_id,
                    self._phase.value,
                )
            self._state = None
            self._phase = SecAggPhase.IDLE

    # ------------------------------------------------------------------
    # Request builders (no I/O)
    # ------------------------------------------------------------------

    def _current_session_id(self) -> str:
        with self._lock:
            if self._state is None:
                raise WrongPhaseError(
                    "build request",
                    [p for p in SecAggPhase if p is not SecAggPhase.IDLE],
                    self._phase,
                )
            return self._state.session_id

    def share_keys_request(self, device_id: str, shares: bytes) -> SecAggShareKeysRequest:
        return SecAggShareKeysRequest.from_bytes(self._current_session_id(), device_id, shares)

    def masked_input_request(
        self,
        device_id: str,
        masked: bytes,
        sample_count: int,
        metrics: Optional[Mapping[str, float]] = None,
        metadata: Optional[Mapping[str, MetadataValue]] = None,
    ) -> SecAggMaskedInputRequest:
        return SecAggMaskedInputRequest.from_bytes(
            self._current_session_id(),
            device_id,
            masked,
            sample_count,
            metrics=metrics,
            metadata=metadata,
        )

    def unmask_request(self, device_id: str, unmask_data: bytes) -> SecAggUnmaskRequest:
        return SecAggUnmaskRequest.from_bytes(self._current_session_id(), device_id, unmask_data)

