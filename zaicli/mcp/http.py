"""
HTTP invoker - single request/response exchanges with vendor endpoints.

The same logical endpoint may answer with a plain JSON document, a JSON-RPC
envelope (``{"result": ...}``) or a one-shot Server-Sent-Events stream.
``decode_body`` folds all three into one payload so callers never need to
know which encoding came back.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional

import httpx

from zaicli.mcp.deadline import CALL_TIMEOUT_MS
from zaicli.mcp.errors import ConnectionFailed, HttpError, MalformedStream, Timeout
from zaicli.mcp.schema import HttpTransport, NormalizedResult

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json, text/event-stream",
}


def _unwrap(value: Any) -> Any:
    # JSON-RPC 2.0 responses carry the payload under "result"
    if isinstance(value, dict) and "result" in value:
        return value["result"]
    return value


def is_event_stream(text: str) -> bool:
    """True when any line carries SSE ``event:`` or ``data:`` framing."""
    return any(
        line.startswith("event:") or line.startswith("data:")
        for line in text.splitlines()
    )


def decode_body(text: str) -> Any:
    """Decode a response body that is either SSE or (possibly wrapped) JSON."""
    if is_event_stream(text):
        for line in text.splitlines():
            if line.startswith("data:"):
                data = line[5:].strip()
                try:
                    return _unwrap(json.loads(data))
                except json.JSONDecodeError:
                    return data
        raise MalformedStream(text)

    try:
        return _unwrap(json.loads(text))
    except json.JSONDecodeError:
        return text


def normalize(payload: Any) -> NormalizedResult:
    """Wrap a decoded payload in the transport-agnostic result shape."""
    if isinstance(payload, Mapping) and isinstance(payload.get("content"), list):
        return NormalizedResult(
            content=payload["content"],
            is_error=bool(payload.get("isError", False)),
        )
    return NormalizedResult(content=[payload], is_error=False)


def _error_detail(response: httpx.Response) -> Optional[str]:
    try:
        data = response.json()
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    error = data.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if data.get("message"):
        return str(data["message"])
    return None


class HttpInvoker:
    """
    Performs one HTTP exchange per ``invoke`` call.

    ``transport`` is passed through to ``httpx.AsyncClient``; tests inject an
    ``httpx.MockTransport`` here.
    """

    def __init__(
        self,
        timeout_ms: int = CALL_TIMEOUT_MS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout_ms = timeout_ms
        self._transport = transport

    async def invoke(self, descriptor: HttpTransport, body: Optional[Dict[str, Any]] = None) -> Any:
        """POST ``body`` (GET when absent) and return the decoded payload."""
        method = "POST" if body is not None else "GET"
        # descriptor headers replace defaults whatever their case
        headers = httpx.Headers(DEFAULT_HEADERS)
        headers.update(descriptor.headers)
        content = json.dumps(body) if body is not None else None

        logger.debug("%s %s", method, descriptor.url)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_ms / 1000,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                response = await client.request(
                    method,
                    descriptor.url,
                    headers=headers,
                    content=content,
                )
        except httpx.TimeoutException:
            raise Timeout(f"HTTP {method} {descriptor.url}", self.timeout_ms) from None
        except httpx.RequestError as exc:
            raise ConnectionFailed(f"HTTP request to {descriptor.url} failed: {exc}") from exc

        if not response.is_success:
            raise HttpError(response.status_code, response.reason_phrase, _error_detail(response))

        logger.debug("HTTP %d from %s (%d bytes)", response.status_code, descriptor.url, len(response.content))
        return decode_body(response.text)
