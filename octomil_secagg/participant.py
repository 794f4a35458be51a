"""Drive one client's SecAgg round against the aggregation server."""

from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional

from .api_client import SecAggApiClient
from .errors import SecAggError
from .models import MetadataValue, SecAggSessionResponse
from .session import SecAggPhase, SecAggSession

logger = logging.getLogger(__name__)


class SecAggParticipant:
    """Relays a :class:`SecAggSession`'s payloads through :class:`SecAggApiClient`.

    Typical usage::

        participant = SecAggParticipant(api, device_id="dev-1")
        participant.run_round("round-7", weights_bytes, sample_count=128)
    """

    def __init__(
        self,
        api: SecAggApiClient,
        device_id: str,
        session: Optional[SecAggSession] = None,
    ) -> None:
        self.api = api
        self.device_id = device_id
        self.session = session or SecAggSession()
        self.session_info: Optional[SecAggSessionResponse] = None

    def _session_id(self) -> str:
        if self.session_info is None:
            raise SecAggError("join() must be called before this step")
        return self.session_info.session_id

    def join(self, round_id: str) -> SecAggSessionResponse:
        info = self.api.join_session(self.device_id, round_id)
        self.session.begin_session(info.session_id, info.client_index, info.configuration)
        self.session_info = info
        logger.info(
            "SecAgg: joined round %s as client %d of %d",
            round_id,
            info.client_index,
            info.total_clients,
        )
        return info

    def share_keys(self) -> None:
        shares = self.session.generate_key_shares()
        self.api.submit_shares(self.session.share_keys_request(self.device_id, shares))

    def collect_peer_shares(self) -> int:
        """Pull the peers' bundles from the relay; returns how many were stored."""
        peers = self.api.fetch_peer_shares(self._session_id(), self.device_id)
        for sender, payload in peers:
            self.session.receive_peer_shares(sender, payload)
        return len(peers)

    def submit_masked_update(
        self,
        weights: bytes,
        sample_count: int,
        metrics: Optional[Mapping[str, float]] = None,
        metadata: Optional[Mapping[str, MetadataValue]] = None,
    ) -> bytes:
        masked = self.session.mask_model_update(weights)
        request = self.session.masked_input_request(
            self.device_id,
            masked,
            sample_count,
            metrics=metrics,
            metadata=metadata,
        )
        self.api.submit_masked_input(request)
        return masked

    def finish(self) -> None:
        """Answer the server's unmask request, revealing only dropped peers' shares."""
        info = self.api.get_unmask_info(self._session_id(), self.device_id)
        payload = self.session.provide_unmasking_shares(
            info.dropped_client_indices if info.unmasking_required else []
        )
        if info.unmasking_required:
            self.api.submit_unmask(self.session.unmask_request(self.device_id, payload))
        else:
            logger.info("SecAgg: no dropouts in session %s", self._session_id())

    def run_round(
        self,
        round_id: str,
        weights: bytes,
        sample_count: int,
        metrics: Optional[Mapping[str, float]] = None,
    ) -> Dict[str, object]:
        """Run every client step of a round, always resetting the session after."""
        try:
            info = self.join(round_id)
            self.share_keys()
            received = self.collect_peer_shares()
            self.submit_masked_update(weights, sample_count, metrics=metrics)
            self.finish()
            return {
                "session_id": info.session_id,
                "client_index": info.client_index,
                "peer_shares": received,
                "phase": SecAggPhase.COMPLETED.value,
            }
        finally:
            self.session.reset()
            self.session_info = None
