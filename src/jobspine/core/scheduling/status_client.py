"""HTTP client for the remote session status service.

One ``GET <base>/<sessionId>`` per poll, answered with a JSON object whose
``state`` and ``appId`` fields describe the remote session::

    GET http://livy:8998/batches/42
    200 {"id": 42, "state": "running", "appId": "application_1_0042", ...}

Failures are reported as two distinct errors because the reconciler
handles them differently:

    RemoteStatusUnavailable   timeout, connection error, non-2xx status
    MalformedRemoteResponse   empty body, invalid JSON, non-object JSON
"""

from __future__ import annotations

import json
from typing import Any

import httpx

from jobspine.core.errors import MalformedRemoteResponse, RemoteStatusUnavailable

DEFAULT_TIMEOUT_SECONDS = 10.0


class StatusClient:
    """Blocking status poller over a shared ``httpx.Client``.

    Args:
        base_uri: Collection URL; the session id is appended as a path segment.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_uri: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_uri = base_uri.rstrip("/")
        self.timeout = timeout
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def url_for(self, session_id: str) -> str:
        return f"{self.base_uri}/{session_id}"

    def fetch(self, session_id: str) -> dict[str, Any]:
        """Fetch the status document of one remote session."""
        url = self.url_for(session_id)
        try:
            response = self._client.get(url)
        except httpx.HTTPError as e:
            raise RemoteStatusUnavailable(
                f"Status request failed: {type(e).__name__}", cause=e
            ).with_context(session_id=session_id, url=url) from e

        if not response.is_success:
            raise RemoteStatusUnavailable(
                f"Status request returned HTTP {response.status_code}"
            ).with_context(session_id=session_id, url=url, http_status=response.status_code)

        body = response.text
        if not body or not body.strip():
            raise MalformedRemoteResponse("Empty status response").with_context(
                session_id=session_id, url=url
            )
        try:
            document = json.loads(body)
        except ValueError as e:
            raise MalformedRemoteResponse("Status response is not JSON", cause=e).with_context(
                session_id=session_id, url=url
            ) from e
        if not isinstance(document, dict):
            raise MalformedRemoteResponse(
                f"Status response is a JSON {type(document).__name__}, not an object"
            ).with_context(session_id=session_id, url=url)
        return document

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> StatusClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
