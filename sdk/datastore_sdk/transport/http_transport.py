"""
HTTP transport for the Datastore SDK.

Each method is a POST of the encoded request to
``{endpoint}/datastore/v1beta2/datasets/{dataset_id}/{method}``.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from ..errors import RemoteRejectedError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://www.googleapis.com"
API_PATH = "datastore/v1beta2/datasets"

# Client errors that are about the connection rather than the request
TRANSPORT_STATUSES = frozenset({401, 403, 408, 429})


def _error_status(response: httpx.Response) -> str | None:
    """Status name from a structured error body, if any."""
    try:
        body = response.json()
    except (json.JSONDecodeError, ValueError):
        return None
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("status") or None
    return None


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except (json.JSONDecodeError, ValueError):
        return response.text or response.reason_phrase
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return response.text or response.reason_phrase


class HttpTransport:
    """HTTP transport backed by ``httpx.AsyncClient``.

    Example:
        >>> async with HttpTransport("my-project", access_token=token) as transport:
        ...     response = await transport.invoke("lookup", payload)
    """

    def __init__(
        self,
        dataset_id: str,
        endpoint: str = DEFAULT_ENDPOINT,
        *,
        access_token: str | None = None,
        timeout: float | None = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the HTTP transport.

        Args:
            dataset_id: Dataset (project) to address
            endpoint: API base URL
            access_token: Optional bearer token
            timeout: Request timeout in seconds
            client: Optional preconfigured client (not closed by close())
        """
        self._dataset_id = dataset_id
        self._endpoint = endpoint.rstrip("/")
        self._access_token = access_token
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    def url_for(self, method: str) -> str:
        return f"{self._endpoint}/{API_PATH}/{self._dataset_id}/{method}"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            logger.info(f"Opened HTTP client for {self._endpoint}")
        return self._client

    async def close(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
            logger.debug("Closed HTTP client")

    async def __aenter__(self) -> HttpTransport:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def invoke(self, method: str, payload: bytes) -> bytes:
        """POST one request.

        Raises:
            TransportError: Network failure, auth failure or server error
            RemoteRejectedError: Server refused the request
        """
        headers = {"Content-Type": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"

        try:
            response = await self._get_client().post(
                self.url_for(method),
                content=payload,
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"{method} failed: {e}", method=method) from e

        if response.is_success:
            return response.content

        status = _error_status(response) or str(response.status_code)
        message = f"{method} failed ({response.status_code}): {_error_message(response)}"
        if 400 <= response.status_code < 500 and response.status_code not in TRANSPORT_STATUSES:
            raise RemoteRejectedError(message, method=method, status=status)
        raise TransportError(message, method=method, status=status)
