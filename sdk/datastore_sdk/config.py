"""
Configuration for the Datastore SDK.

Uses pydantic-settings for environment variable loading.
"""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Client configuration loaded from environment."""

    # Target dataset
    dataset_id: str = Field(default="", description="Dataset (project) ID")
    namespace: Optional[str] = Field(default=None, description="Default namespace for keys and queries")

    # Transport selection
    transport: Literal["grpc", "http", "memory"] = Field(default="grpc", description="Transport to use")

    # gRPC connection
    host: str = Field(default="localhost", description="Datastore gRPC host")
    port: int = Field(default=8081, description="Datastore gRPC port")
    secure: bool = Field(default=False, description="Use TLS for gRPC")
    max_message_size: int = Field(default=50 * 1024 * 1024, description="Max gRPC message bytes")

    # HTTP connection
    api_endpoint: str = Field(default="https://www.googleapis.com", description="HTTP API base URL")

    # Shared
    access_token: Optional[str] = Field(default=None, description="Bearer token for requests")
    timeout: float = Field(default=30.0, description="Per-request timeout seconds")

    model_config = {"env_prefix": "DATASTORE_"}

    @property
    def grpc_target(self) -> str:
        """Full gRPC endpoint."""
        return f"{self.host}:{self.port}"
