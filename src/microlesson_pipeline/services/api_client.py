"""
Async HTTP access to the pipeline's companion services.

Long-running work (speech-to-text) is submitted as a task, followed over a
server-sent event stream and then collected from a result endpoint. This
module owns that protocol so the services only deal with payloads.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from ..config import get_settings
from ..exceptions import ExternalServiceError
from ..logging_config import LoggerMixin

TERMINAL_OK = frozenset({"complete", "completed"})
TERMINAL_FAILED = frozenset({"error", "failed"})


class ApiClientError(ExternalServiceError):
    """Raised when an API interaction fails."""


@dataclass
class SseEvent:
    """One ``data:`` event from a task stream."""
    status: str
    percent: int = 0
    message: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def finished(self) -> bool:
        return self.status in TERMINAL_OK or self.failed

    @property
    def failed(self) -> bool:
        return self.status in TERMINAL_FAILED

    @classmethod
    def from_line(cls, line: str) -> Optional["SseEvent"]:
        """Parse a stream line; comments, keep-alives and non-object data give None."""
        line = (line or "").strip()
        if not line.startswith("data:"):
            return None
        try:
            payload = json.loads(line[5:].strip() or "null")
        except json.JSONDecodeError:
            return None
        if not isinstance(payload, dict):
            return None

        percent = payload.get("percent")
        message = payload.get("message")
        return cls(
            status=str(payload.get("status", "")).lower(),
            percent=max(0, min(100, int(percent))) if isinstance(percent, (int, float)) else 0,
            message=message if isinstance(message, str) else "",
            payload=payload,
        )


def join_url(base_url: str, path_or_url: str) -> str:
    if path_or_url.startswith(("http://", "https://")):
        return path_or_url
    return f"{base_url.rstrip('/')}/{path_or_url.lstrip('/')}"


class ApiClient(LoggerMixin):
    """Shared ``httpx.AsyncClient`` wrapper.

    ``transport`` replaces the network layer, which is how the tests plug in
    ``httpx.MockTransport``.
    """

    def __init__(self, settings=None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings or get_settings()
        self.timeout = float(self.settings.api_timeout)
        self._transport = transport or httpx.AsyncHTTPTransport(retries=self.settings.api_connect_retries)
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(transport=self._transport, timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    # ---------------------------
    # JSON endpoints
    # ---------------------------

    async def get_json(
        self,
        base_url: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        response = await self._send("GET", self._to_url(base_url, path), timeout, params=params)
        return self._json_object(response)

    async def post_json(
        self,
        base_url: str,
        path: str,
        payload: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        response = await self._send("POST", self._to_url(base_url, path), timeout, json=payload)
        return self._json_object(response)

    async def post_multipart(
        self,
        base_url: str,
        path: str,
        data: Optional[Dict[str, str]] = None,
        files: Optional[Any] = None,
    ) -> Dict[str, Any]:
        response = await self._send("POST", self._to_url(base_url, path), None, data=data or {}, files=files or {})
        return self._json_object(response)

    # ---------------------------
    # Task streams
    # ---------------------------

    async def stream_sse(
        self,
        base_url: str,
        path: str,
        method: str = "GET",
        json_payload: Optional[Dict[str, Any]] = None,
        stage_name: Optional[str] = None,
        progress_callback: Optional[Any] = None,
    ) -> Dict[str, Any]:
        """Follow an event stream until a terminal event and return its payload.

        Raises:
            ApiClientError: On transport failure, a failed terminal event, or a
                stream that closes before any terminal event
        """
        url = self._to_url(base_url, path)
        report = getattr(progress_callback, "on_stage_progress", None) if stage_name else None
        kwargs = {} if json_payload is None else {"json": json_payload}

        last: Optional[SseEvent] = None
        try:
            async with self.client.stream(method.upper(), url, **kwargs) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    event = SseEvent.from_line(line)
                    if event is None:
                        continue
                    if report is not None:
                        report(stage_name, event.percent, 100, event.message)
                    if event.finished:
                        last = event
                        break
        except httpx.HTTPError as e:
            raise ApiClientError(f"SSE request failed for {url}: {e}", service=base_url) from e

        if last is None:
            raise ApiClientError(f"SSE stream ended unexpectedly: {url}", service=base_url)
        if last.failed:
            raise ApiClientError(last.message or "Unknown API error", service=base_url)
        return last.payload

    async def poll_for_completion(
        self,
        base_url: str,
        task_id: str,
        stream_path: str,
        result_path: str,
        stage_name: Optional[str] = None,
        progress_callback: Optional[Any] = None,
    ) -> Dict[str, Any]:
        """Wait on ``<stream_path>/<task_id>``, then fetch ``<result_path>/<task_id>``."""
        await self.stream_sse(
            base_url=base_url,
            path=f"{stream_path.rstrip('/')}/{task_id}",
            stage_name=stage_name,
            progress_callback=progress_callback,
        )
        return await self.get_json(base_url, f"{result_path.rstrip('/')}/{task_id}")

    # ---------------------------
    # Internals
    # ---------------------------

    async def _send(self, method: str, url: str, timeout: Optional[float], **kwargs) -> httpx.Response:
        if timeout is not None:
            kwargs["timeout"] = timeout
        log = self.logger.bind(method=method, url=url)
        try:
            response = await self.client.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except httpx.TimeoutException as e:
            log.error("API request timed out")
            raise ApiClientError(f"Request to {url} timed out", service=url) from e
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            log.error("API request rejected", status=code)
            raise ApiClientError(f"{method} {url} returned HTTP {code}", service=url) from e
        except httpx.HTTPError as e:
            log.error("API request failed", error=str(e))
            raise ApiClientError(f"{method} {url} failed: {e}", service=url) from e

    @staticmethod
    def _to_url(base_url: str, path_or_url: str) -> str:
        return join_url(base_url, path_or_url)

    @staticmethod
    def _json_object(response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except json.JSONDecodeError as e:
            raise ApiClientError(f"Invalid JSON from {response.request.url}") from e
        if not isinstance(payload, dict):
            raise ApiClientError(f"Expected a JSON object from {response.request.url}")
        return payload
