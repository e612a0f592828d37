"""Unit tests for the shared async API client."""

import asyncio
import json
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest

from microlesson_pipeline.services.api_client import ApiClient, ApiClientError, SseEvent

BASE_URL = "http://127.0.0.1:6904"


def _client(test_settings, handler) -> ApiClient:
    return ApiClient(test_settings, transport=httpx.MockTransport(handler))


def _sse(*events) -> bytes:
    return "".join(f"data: {json.dumps(e)}\n\n" for e in events).encode("utf-8")


class TestApiClient:
    """Test suite for ApiClient."""

    def test_post_json(self, test_settings) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"response": "ok"})

        client = _client(test_settings, handler)
        result = asyncio.run(client.post_json(BASE_URL + "/", "/api/generate", {"prompt": "hi"}))

        assert result == {"response": "ok"}
        assert seen["url"] == f"{BASE_URL}/api/generate"
        assert seen["body"] == {"prompt": "hi"}

    def test_get_json_with_params(self, test_settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["q"] == "python"
            return httpx.Response(200, json={"items": []})

        client = _client(test_settings, handler)
        assert asyncio.run(client.get_json(BASE_URL, "search", params={"q": "python"})) == {"items": []}

    def test_http_error_raises(self, test_settings) -> None:
        client = _client(test_settings, lambda request: httpx.Response(503, text="busy"))

        with pytest.raises(ApiClientError, match="HTTP 503"):
            asyncio.run(client.get_json(BASE_URL, "/health"))

    def test_connection_error_raises(self, test_settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = _client(test_settings, handler)
        with pytest.raises(ApiClientError, match="failed"):
            asyncio.run(client.get_json(BASE_URL, "/health"))

    def test_non_object_json_raises(self, test_settings) -> None:
        client = _client(test_settings, lambda request: httpx.Response(200, json=[1, 2]))

        with pytest.raises(ApiClientError, match="JSON object"):
            asyncio.run(client.get_json(BASE_URL, "/list"))

    def test_stream_sse_success(self, test_settings) -> None:
        body = _sse(
            {"status": "processing", "percent": 40, "message": "working"},
            {"status": "complete", "percent": 100, "message": "done"},
        )
        client = _client(test_settings, lambda request: httpx.Response(200, content=body))

        progress_callback = Mock()
        payload = asyncio.run(client.stream_sse(
            base_url=BASE_URL,
            path="/api/v1/task/stream",
            stage_name="stage",
            progress_callback=progress_callback,
        ))

        assert payload["status"] == "complete"
        progress_callback.on_stage_progress.assert_any_call("stage", 40, 100, "working")

    def test_stream_sse_error(self, test_settings) -> None:
        body = _sse({"status": "error", "message": "boom"})
        client = _client(test_settings, lambda request: httpx.Response(200, content=body))

        with pytest.raises(ApiClientError, match="boom"):
            asyncio.run(client.stream_sse(base_url=BASE_URL, path="/api/v1/task/stream"))

    def test_stream_sse_ends_without_final_event(self, test_settings) -> None:
        body = b": keep-alive\n\n" + _sse({"status": "processing", "percent": 10})
        client = _client(test_settings, lambda request: httpx.Response(200, content=body))

        with pytest.raises(ApiClientError, match="ended unexpectedly"):
            asyncio.run(client.stream_sse(base_url=BASE_URL, path="/api/v1/task/stream"))

    def test_poll_for_completion(self, test_settings) -> None:
        client = ApiClient(test_settings)

        with patch.object(client, "stream_sse", AsyncMock(return_value={"status": "complete"})), patch.object(
            client, "get_json", AsyncMock(return_value={"result": {"ok": True}})
        ) as get_json:
            result = asyncio.run(client.poll_for_completion(
                base_url=BASE_URL,
                task_id="task_1",
                stream_path="/api/v1/task/stream/",
                result_path="/api/v1/task/result",
            ))

        assert result["result"]["ok"] is True
        get_json.assert_awaited_once_with(BASE_URL, "/api/v1/task/result/task_1")

    def test_absolute_urls_pass_through(self, test_settings) -> None:
        client = ApiClient(test_settings)
        assert client._to_url(BASE_URL, "https://cdn.example.com/a.mp4") == "https://cdn.example.com/a.mp4"
        assert client._to_url(BASE_URL + "/", "files/1") == f"{BASE_URL}/files/1"


class TestSseEvent:
    """Parsing of task stream lines."""

    def test_progress_event(self) -> None:
        event = SseEvent.from_line('data: {"status": "Processing", "percent": 140, "message": "half"}')
        assert (event.status, event.percent, event.message) == ("processing", 100, "half")
        assert not event.finished

    def test_terminal_events(self) -> None:
        assert SseEvent.from_line('data: {"status": "completed"}').finished
        failed = SseEvent.from_line('data: {"status": "failed", "percent": "n/a"}')
        assert failed.failed and failed.percent == 0

    @pytest.mark.parametrize("line", ["", ": keep-alive", "event: ping", "data:", "data: [1, 2]", "data: {oops"])
    def test_ignored_lines(self, line) -> None:
        assert SseEvent.from_line(line) is None
