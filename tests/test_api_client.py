import unittest
from unittest.mock import patch

import httpx

from octomil_secagg.api_client import SecAggApiClient
from octomil_secagg.errors import DecodingError, SecAggClientError
from octomil_secagg.models import SecAggShareKeysRequest, SecAggUnmaskRequest
from octomil_secagg.serialization import encode_payload


class _FakeResponse:
    def __init__(self, status_code: int, json_data=None, text_data: str = ""):
        self.status_code = status_code
        self._json_data = json_data if json_data is not None else {}
        if text_data:
            self.text = text_data
        elif json_data is not None:
            self.text = str(json_data)
        else:
            self.text = ""

    def json(self):
        return self._json_data


class _FakeHttpxClient:
    """Fake httpx.Client that replays responses and records requests."""

    def __init__(self, responses, calls, *args, **kwargs):
        self._responses = responses
        self._calls = calls
        self._closed = False

    @property
    def is_closed(self):
        return self._closed

    def close(self):
        self._closed = True

    def request(self, method, url, **kwargs):
        self._calls.append((method, url, kwargs))
        response = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def _patch_httpx(*responses, calls=None):
    """Patch httpx.Client so every client replays *responses* in order."""
    queue = list(responses)
    recorded = calls if calls is not None else []
    return patch(
        "octomil_secagg.api_client.httpx.Client",
        lambda **kwargs: _FakeHttpxClient(queue, recorded, **kwargs),
    )


class ApiClientTests(unittest.TestCase):
    def _make_client(self, **kwargs):
        client = SecAggApiClient(
            auth_token_provider=lambda: "token123",
            api_base="https://api.example.com",
            **kwargs,
        )
        client.close()
        return client

    def test_init(self):
        client = SecAggApiClient(
            auth_token_provider=lambda: "token123",
            api_base="https://api.example.com/",
            timeout=30.0,
        )
        self.assertEqual(client.api_base, "https://api.example.com")
        self.assertEqual(client.timeout, 30.0)
        self.assertEqual(client.max_retries, 3)
        self.assertEqual(client.backoff_base, 0.5)

    def test_headers_with_valid_token(self):
        client = self._make_client()
        self.assertEqual(client._headers()["Authorization"], "Bearer token123")

    def test_headers_with_empty_token_raises(self):
        client = SecAggApiClient(auth_token_provider=lambda: "", api_base="https://x")
        with self.assertRaises(SecAggClientError) as ctx:
            client._headers()
        self.assertIn("empty token", str(ctx.exception))

    def test_get_success(self):
        client = self._make_client()
        with _patch_httpx(_FakeResponse(200, {"result": "success"})):
            self.assertEqual(client.get("/path")["result"], "success")

    def test_post_empty_body(self):
        client = self._make_client()
        with _patch_httpx(_FakeResponse(204)):
            self.assertEqual(client.post("/path"), {})

    def test_client_error_not_retried(self):
        calls = []
        client = self._make_client()
        with _patch_httpx(_FakeResponse(400, text_data="Bad request"), calls=calls):
            with self.assertRaises(SecAggClientError) as ctx:
                client.post("/path", {})
        self.assertIn("Bad request", str(ctx.exception))
        self.assertEqual(len(calls), 1)

    @patch("octomil_secagg.api_client.time.sleep")
    def test_retries_on_503(self, mock_sleep):
        calls = []
        client = self._make_client()
        responses = (_FakeResponse(503, text_data="busy"), _FakeResponse(200, {"ok": True}))
        with _patch_httpx(*responses, calls=calls):
            self.assertEqual(client.get("/path"), {"ok": True})
        self.assertEqual(len(calls), 2)
        mock_sleep.assert_called_once_with(0.5)

    @patch("octomil_secagg.api_client.time.sleep")
    def test_gives_up_after_max_retries(self, mock_sleep):
        calls = []
        client = self._make_client(max_retries=3)
        with _patch_httpx(_FakeResponse(503, text_data="busy"), calls=calls):
            with self.assertRaises(SecAggClientError):
                client.get("/path")
        self.assertEqual(len(calls), 3)
        self.assertEqual([c.args[0] for c in mock_sleep.call_args_list], [0.5, 1.0])

    @patch("octomil_secagg.api_client.time.sleep")
    def test_connection_error_retried(self, mock_sleep):
        calls = []
        client = self._make_client()
        responses = (httpx.ConnectError("refused"), _FakeResponse(200, {"ok": True}))
        with _patch_httpx(*responses, calls=calls):
            self.assertEqual(client.get("/path"), {"ok": True})
        self.assertEqual(len(calls), 2)

    @patch("octomil_secagg.api_client.time.sleep")
    def test_connection_error_exhausted(self, mock_sleep):
        client = self._make_client(max_retries=2)
        with _patch_httpx(httpx.ConnectError("refused")):
            with self.assertRaises(SecAggClientError) as ctx:
                client.get("/path")
        self.assertIn("after 2 attempts", str(ctx.exception))

    def test_context_manager_closes(self):
        with _patch_httpx(_FakeResponse(200, {})):
            with self._make_client() as client:
                client.get("/path")
                pooled = client._client
            self.assertTrue(pooled.is_closed)
            self.assertIsNone(client._client)

    def test_from_env(self):
        with patch.dict(
            "os.environ",
            {"OCTOMIL_API_KEY": "env-key", "OCTOMIL_API_BASE": "https://env.example.com/"},
        ):
            client = SecAggApiClient.from_env(timeout=5.0)
            self.assertEqual(client.api_base, "https://env.example.com")
            self.assertEqual(client._headers()["Authorization"], "Bearer env-key")
            self.assertEqual(client.timeout, 5.0)


# ---------------------------------------------------------------------------
# SecAgg endpoints
# ---------------------------------------------------------------------------


class SecAggEndpointTests(unittest.TestCase):
    def _make_client(self):
        return SecAggApiClient(
            auth_token_provider=lambda: "token123",
            api_base="https://api.example.com",
        )

    def test_join_session(self):
        calls = []
        body = {
            "session_id": "sess-123",
            "round_id": "round-456",
            "client_index": 2,
            "threshold": 3,
            "total_clients": 5,
            "privacy_budget": 1.0,
            "key_length": 256,
        }
        with _patch_httpx(_FakeResponse(200, body), calls=calls):
            info = self._make_client().join_session("dev-1", "round-456")
        self.assertEqual(info.client_index, 2)
        method, url, kwargs = calls[0]
        self.assertEqual(method, "POST")
        self.assertEqual(url, "https://api.example.com/secagg/sessions/join")
        self.assertEqual(kwargs["json"], {"device_id": "dev-1", "round_id": "round-456"})
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer token123")

    def test_submit_shares(self):
        calls = []
        request = SecAggShareKeysRequest.from_bytes("sess-123", "dev-1", b"\x01")
        with _patch_httpx(_FakeResponse(200, {}), calls=calls):
            self._make_client().submit_shares(request)
        method, url, kwargs = calls[0]
        self.assertEqual((method, url), ("POST", "https://api.example.com/secagg/shares"))
        self.assertEqual(kwargs["json"]["shares_data"], "AQ==")

    def test_fetch_peer_shares(self):
        calls = []
        body = {
            "shares": [
                {"sender_index": 2, "shares_data": encode_payload(b"\x00\x01")},
                {"sender_index": 3, "shares_data": encode_payload(b"\x02")},
            ]
        }
        with _patch_httpx(_FakeResponse(200, body), calls=calls):
            peers = self._make_client().fetch_peer_shares("sess-123", "dev-1")
        self.assertEqual(peers, [(2, b"\x00\x01"), (3, b"\x02")])
        method, url, kwargs = calls[0]
        self.assertEqual(method, "GET")
        self.assertEqual(kwargs["params"], {"session_id": "sess-123", "device_id": "dev-1"})

    def test_fetch_peer_shares_malformed(self):
        bodies = (
            {"shares": [{"sender_index": 2}]},
            {"shares": "nope"},
            {"shares": [{"sender_index": "2", "shares_data": ""}]},
        )
        for body in bodies:
            with self.subTest(body=body):
                with _patch_httpx(_FakeResponse(200, body)):
                    with self.assertRaises(DecodingError):
                        self._make_client().fetch_peer_shares("sess-123", "dev-1")

    def test_get_unmask_info(self):
        body = {"dropped_client_indices": [4], "unmasking_required": True}
        with _patch_httpx(_FakeResponse(200, body)):
            info = self._make_client().get_unmask_info("sess-123", "dev-1")
        self.assertEqual(info.dropped_client_indices, [4])
        self.assertTrue(info.unmasking_required)

    def test_submit_unmask(self):
        calls = []
        request = SecAggUnmaskRequest.from_bytes("sess-123", "dev-1", b"\x00")
        with _patch_httpx(_FakeResponse(200, {}), calls=calls):
            self._make_client().submit_unmask(request)
        self.assertEqual(calls[0][1], "https://api.example.com/secagg/unmask")
        self.assertEqual(calls[0][2]["json"]["unmask_data"], "AA==")


if __name__ == "__main__":
    unittest.main()
