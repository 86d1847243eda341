"""
Transports for the Datastore SDK.

- GrpcTransport: gRPC channel to the datastore service
- HttpTransport: HTTPS JSON endpoint
- InMemoryTransport: in-process datastore for tests and local development
"""

from .base import METHODS, Transport
from .grpc_transport import GrpcTransport
from .http_transport import HttpTransport
from .memory import InMemoryTransport

__all__ = [
    "METHODS",
    "Transport",
    "GrpcTransport",
    "HttpTransport",
    "InMemoryTransport",
]
