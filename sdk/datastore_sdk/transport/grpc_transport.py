"""
gRPC transport for the Datastore SDK.

Requests are sent as generic unary calls carrying the encoded message
bytes unchanged, so no generated stubs are needed.

Invariants:
    - Payloads are the SDK's JSON messages, not protobuf; the server
      (or a gateway in front of it) must accept JSON request bodies
      under the configured service name
"""

from __future__ import annotations

import logging
from typing import Any

import grpc
from grpc import aio as grpc_aio

from ..errors import RemoteRejectedError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_SERVICE = "datastore.v1beta2.DatastoreService"

# Status codes that mean the server understood and refused the request
REJECTED_CODES = frozenset(
    {
        grpc.StatusCode.ABORTED,
        grpc.StatusCode.FAILED_PRECONDITION,
        grpc.StatusCode.INVALID_ARGUMENT,
        grpc.StatusCode.NOT_FOUND,
        grpc.StatusCode.ALREADY_EXISTS,
        grpc.StatusCode.OUT_OF_RANGE,
    }
)


def error_from_rpc(method: str, error: grpc.RpcError) -> Exception:
    """Map a failed RPC to an SDK error."""
    code = error.code() if hasattr(error, "code") else None
    details = error.details() if hasattr(error, "details") else None
    status = code.name if code is not None else None
    message = f"{method} failed: {details or status or error}"

    if code in REJECTED_CODES:
        return RemoteRejectedError(message, method=method, status=status)
    return TransportError(message, method=method, status=status)


def _rpc_name(method: str) -> str:
    return method[:1].upper() + method[1:]


class GrpcTransport:
    """gRPC transport.

    Manages the channel lifecycle and sends one unary call per
    operation. The channel is opened on first use if connect() was not
    called.

    Calls carry JSON message bytes. ``service`` names the endpoint
    that accepts them; the default uses the datastore method layout
    but must point at a JSON-speaking server or gateway.

    Example:
        >>> transport = GrpcTransport("my-project", host="localhost", port=8081)
        >>> await transport.connect()
        >>> response = await transport.invoke("lookup", payload)
    """

    def __init__(
        self,
        dataset_id: str,
        host: str = "localhost",
        port: int = 8081,
        *,
        secure: bool = False,
        credentials: grpc.ChannelCredentials | None = None,
        access_token: str | None = None,
        timeout: float | None = 30.0,
        max_message_size: int = 50 * 1024 * 1024,
        service: str = DEFAULT_SERVICE,
    ) -> None:
        """Initialize the gRPC transport.

        Args:
            dataset_id: Dataset (project) requests are routed to
            host: Server hostname
            port: Server port
            secure: Whether to use TLS
            credentials: Optional TLS credentials
            access_token: Optional bearer token
            timeout: Per-call deadline in seconds
            max_message_size: Maximum message size in bytes
            service: Fully qualified service name
        """
        self._dataset_id = dataset_id
        self._host = host
        self._port = port
        self._secure = secure
        self._credentials = credentials
        self._access_token = access_token
        self._timeout = timeout
        self._max_message_size = max_message_size
        self._service = service
        self._channel: grpc_aio.Channel | None = None

    @property
    def address(self) -> str:
        return f"{self._host}:{self._port}"

    async def connect(self) -> None:
        """Open the channel."""
        if self._channel is not None:
            return

        options = [
            ("grpc.max_send_message_length", self._max_message_size),
            ("grpc.max_receive_message_length", self._max_message_size),
        ]

        if self._secure:
            credentials = self._credentials or grpc.ssl_channel_credentials()
            if self._access_token:
                credentials = grpc.composite_channel_credentials(
                    credentials,
                    grpc.access_token_call_credentials(self._access_token),
                )
            self._channel = grpc_aio.secure_channel(self.address, credentials, options=options)
        else:
            self._channel = grpc_aio.insecure_channel(self.address, options=options)

        logger.info(f"Connected to datastore at {self.address}")

    async def close(self) -> None:
        """Close the channel."""
        if self._channel:
            await self._channel.close()
            self._channel = None
            logger.debug("Disconnected from datastore")

    async def __aenter__(self) -> GrpcTransport:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _metadata(self) -> list[tuple[str, str]]:
        metadata = [("x-goog-request-params", f"project_id={self._dataset_id}")]
        # Call credentials require TLS, so plaintext channels carry the token directly
        if self._access_token and not self._secure:
            metadata.append(("authorization", f"Bearer {self._access_token}"))
        return metadata

    async def invoke(self, method: str, payload: bytes) -> bytes:
        """Send one request.

        Raises:
            TransportError: Channel, deadline or authentication failure
            RemoteRejectedError: Server refused the request
        """
        await self.connect()
        channel = self._channel
        if channel is None:
            raise TransportError(f"{method} failed: channel is closed", method=method)

        call = channel.unary_unary(f"/{self._service}/{_rpc_name(method)}")
        try:
            return await call(payload, timeout=self._timeout, metadata=self._metadata())
        except grpc.RpcError as e:
            raise error_from_rpc(method, e) from e
