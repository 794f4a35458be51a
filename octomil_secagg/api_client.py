from __future__ import annotations

import logging
import time
from typing import Any, Callable, List, Optional, Tuple

import httpx

from .config import get_api_base, get_api_key
from .errors import DecodingError, SecAggClientError
from .models import (
    SecAggMaskedInputRequest,
    SecAggSessionResponse,
    SecAggShareKeysRequest,
    SecAggUnmaskRequest,
    SecAggUnmaskResponse,
)
from .serialization import decode_payload

logger = logging.getLogger(__name__)

# Status codes that are safe to retry (server-side transient errors).
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}


class SecAggApiClient:
    """HTTP relay for SecAgg payloads.

    The session core never touches the network; this client only moves the
    byte payloads it produces to and from the aggregation server.
    """

    def __init__(
        self,
        auth_token_provider: Callable[[], str],
        api_base: str,
        timeout: float = 20.0,
        max_retries: int = 3,
        backoff_base: float = 0.5,
    ):
        self.auth_token_provider = auth_token_provider
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self._client: Optional[httpx.Client] = None

    @classmethod
    def from_env(cls, **kwargs: Any) -> "SecAggApiClient":
        """Build a client from ``OCTOMIL_API_KEY`` / ``OCTOMIL_API_BASE`` or the config file."""
        return cls(auth_token_provider=get_api_key, api_base=get_api_base(), **kwargs)

    def _get_client(self) -> httpx.Client:
        """Return a shared httpx.Client, creating one if needed."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def __enter__(self) -> "SecAggApiClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _headers(self) -> dict[str, str]:
        token = self.auth_token_provider()
        if not token:
            raise SecAggClientError("auth_token_provider returned an empty token")
        return {"Authorization": f"Bearer {token}"}

    def _request_with_retry(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Execute an HTTP request with exponential backoff retry.

        Retries on connection errors and retryable HTTP status codes
        (502, 503, 504, 429).  Non-retryable errors (4xx except 429)
        are raised immediately.
        """
        for attempt in range(self.max_retries):
            try:
                res = self._get_client().request(method, url, **kwargs)

                if res.status_code < 400:
                    return res

                if res.status_code in _RETRYABLE_STATUS_CODES and attempt < self.max_retries - 1:
                    wait = self.backoff_base * (2**attempt)
                    logger.warning(
                        "Retryable HTTP %d on %s %s (attempt %d/%d, waiting %.1fs)",
                        res.status_code,
                        method,
                        url,
                        attempt + 1,
                        self.max_retries,
                        wait,
                    )
                    time.sleep(wait)
                    continue

                raise SecAggClientError(f"HTTP {res.status_code} on {method} {url}: {res.text}")

            except (httpx.ConnectError, httpx.TimeoutException, httpx.RemoteProtocolError) as exc:
                if attempt < self.max_retries - 1:
                    wait = self.backoff_base * (2**attempt)
                    logger.warning(
                        "Connection error on %s %s: %s (attempt %d/%d, waiting %.1fs)",
                        method,
                        url,
                        exc,
                        attempt + 1,
                        self.max_retries,
                        wait,
                    )
                    # Start the next attempt on a fresh socket.
                    self.close()
                    time.sleep(wait)
                else:
                    raise SecAggClientError(
                        f"Request failed after {self.max_retries} attempts: {exc}"
                    ) from exc

        raise SecAggClientError(f"Request failed after {self.max_retries} attempts")

    def get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        res = self._request_with_retry(
            "GET",
            f"{self.api_base}{path}",
            params=params,
            headers=self._headers(),
        )
        return res.json()

    def post(self, path: str, payload: Optional[dict[str, Any]] = None) -> Any:
        res = self._request_with_retry(
            "POST",
            f"{self.api_base}{path}",
            json=payload or {},
            headers=self._headers(),
        )
        return res.json() if res.text else {}

    # ------------------------------------------------------------------
    # SecAgg endpoints
    # ------------------------------------------------------------------

    def join_session(self, device_id: str, round_id: str) -> SecAggSessionResponse:
        """Join the SecAgg session for *round_id* and learn this client's index."""
        data = self.post(
            "/secagg/sessions/join",
            {"device_id": device_id, "round_id": round_id},
        )
        return SecAggSessionResponse.from_dict(data)

    def submit_shares(self, request: SecAggShareKeysRequest) -> None:
        """Upload this client's Shamir share bundles (phase 1)."""
        self.post("/secagg/shares", request.to_dict())

    def fetch_peer_shares(self, session_id: str, device_id: str) -> List[Tuple[int, bytes]]:
        """Fetch the peers' share payloads relayed to this client."""
        data = self.get(
            "/secagg/shares",
            params={"session_id": session_id, "device_id": device_id},
        )
        entries = data.get("shares", []) if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise DecodingError("peer share response must contain a 'shares' list")
        peers: List[Tuple[int, bytes]] = []
        for entry in entries:
            try:
                sender = entry["sender_index"]
                payload = decode_payload(entry["shares_data"])
            except (KeyError, TypeError) as exc:
                raise DecodingError(f"malformed peer share entry: {exc}") from exc
            if isinstance(sender, bool) or not isinstance(sender, int):
                raise DecodingError("sender_index must be an integer")
            peers.append((sender, payload))
        return peers

    def submit_masked_input(self, request: SecAggMaskedInputRequest) -> None:
        """Upload the masked model update (phase 2)."""
        self.post("/secagg/masked-input", request.to_dict())

    def get_unmask_info(self, session_id: str, device_id: str) -> SecAggUnmaskResponse:
        """Ask the server which participants dropped out."""
        data = self.get(
            "/secagg/unmask",
            params={"session_id": session_id, "device_id": device_id},
        )
        return SecAggUnmaskResponse.from_dict(data)

    def submit_unmask(self, request: SecAggUnmaskRequest) -> None:
        """Upload this client's unmasking shares (phase 3)."""
        self.post("/secagg/unmask", request.to_dict())
