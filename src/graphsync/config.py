"""Configuration management with validation.

The backend generation is chosen here, once, and every client built from
a Config targets that generation for the lifetime of the process.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from enum import Enum


class Generation(str, Enum):
    """Directory API generations the client can target."""

    AAD_GRAPH = "aadgraph"
    MS_GRAPH = "msgraph"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Per-generation defaults
DEFAULT_ENDPOINTS: dict[Generation, str] = {
    Generation.AAD_GRAPH: "https://graph.windows.net",
    Generation.MS_GRAPH: "https://graph.microsoft.com",
}
DEFAULT_API_VERSIONS: dict[Generation, str] = {
    Generation.AAD_GRAPH: "1.6",
    Generation.MS_GRAPH: "v1.0",
}
TOKEN_SCOPES: dict[Generation, str] = {
    Generation.AAD_GRAPH: "https://graph.windows.net/.default",
    Generation.MS_GRAPH: "https://graph.microsoft.com/.default",
}

# Configuration constants with documented bounds
DEFAULT_REQUEST_TIMEOUT_SECONDS = 60
MIN_REQUEST_TIMEOUT_SECONDS = 1
MAX_REQUEST_TIMEOUT_SECONDS = 300

DEFAULT_REPLICATION_TIMEOUT_SECONDS = 300
MIN_REPLICATION_TIMEOUT_SECONDS = 1
MAX_REPLICATION_TIMEOUT_SECONDS = 3600
DEFAULT_REPLICATION_INITIAL_DELAY_SECONDS = 1.0
DEFAULT_REPLICATION_MAX_DELAY_SECONDS = 30.0

USER_AGENT_PRODUCT = "graphsync/0.1.0"

# Input validation patterns
VALID_TENANT_ID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"
VALID_API_VERSION_PATTERN = r"^[A-Za-z0-9.\-]+$"


@dataclass(frozen=True)
class Config:
    """Directory client configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    tenant_id: str
    generation: Generation = Generation.MS_GRAPH
    endpoint: str | None = None
    api_version: str | None = None

    # Identity
    client_id: str | None = None
    user_agent: str | None = None

    # Timing
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS
    replication_timeout_seconds: int = DEFAULT_REPLICATION_TIMEOUT_SECONDS
    replication_initial_delay_seconds: float = DEFAULT_REPLICATION_INITIAL_DELAY_SECONDS
    replication_max_delay_seconds: float = DEFAULT_REPLICATION_MAX_DELAY_SECONDS

    def __post_init__(self) -> None:
        errors: list[str] = []

        if not self.tenant_id:
            errors.append("AZURE_TENANT_ID is required")
        elif not re.match(VALID_TENANT_ID_PATTERN, self.tenant_id.lower()):
            errors.append(f"AZURE_TENANT_ID must be a valid GUID: {self.tenant_id}")

        if self.endpoint is not None and not self.endpoint.startswith(("https://", "http://")):
            errors.append(f"DIRECTORY_ENDPOINT must be an absolute URI: {self.endpoint}")

        if self.api_version is not None and not re.match(
            VALID_API_VERSION_PATTERN, self.api_version
        ):
            errors.append(f"DIRECTORY_API_VERSION is not a valid version: {self.api_version}")

        if not (
            MIN_REQUEST_TIMEOUT_SECONDS
            <= self.request_timeout_seconds
            <= MAX_REQUEST_TIMEOUT_SECONDS
        ):
            errors.append(
                f"REQUEST_TIMEOUT must be between {MIN_REQUEST_TIMEOUT_SECONDS} "
                f"and {MAX_REQUEST_TIMEOUT_SECONDS} seconds"
            )

        if not (
            MIN_REPLICATION_TIMEOUT_SECONDS
            <= self.replication_timeout_seconds
            <= MAX_REPLICATION_TIMEOUT_SECONDS
        ):
            errors.append(
                f"REPLICATION_TIMEOUT must be between {MIN_REPLICATION_TIMEOUT_SECONDS} "
                f"and {MAX_REPLICATION_TIMEOUT_SECONDS} seconds"
            )

        if self.replication_initial_delay_seconds <= 0:
            errors.append("REPLICATION_INITIAL_DELAY must be positive")
        elif self.replication_max_delay_seconds < self.replication_initial_delay_seconds:
            errors.append("REPLICATION_MAX_DELAY must not be less than REPLICATION_INITIAL_DELAY")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def resolved_endpoint(self) -> str:
        return self.endpoint or DEFAULT_ENDPOINTS[self.generation]

    @property
    def resolved_api_version(self) -> str:
        return self.api_version or DEFAULT_API_VERSIONS[self.generation]

    @property
    def token_scope(self) -> str:
        if self.endpoint:
            return f"{self.endpoint.rstrip('/')}/.default"
        return TOKEN_SCOPES[self.generation]

    @property
    def resolved_user_agent(self) -> str:
        if self.user_agent:
            return f"{USER_AGENT_PRODUCT} {self.user_agent}"
        return USER_AGENT_PRODUCT

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            AZURE_TENANT_ID: Directory tenant (required)
            DIRECTORY_BACKEND: One of aadgraph, msgraph (default: msgraph)
            DIRECTORY_ENDPOINT: API root (default: per backend)
            DIRECTORY_API_VERSION: API version (default: 1.6 / v1.0)
            AZURE_CLIENT_ID: User-assigned managed identity client ID
            DIRECTORY_USER_AGENT: Extra user-agent product token
            REQUEST_TIMEOUT: Per-request timeout in seconds (default: 60)
            REPLICATION_TIMEOUT: Post-create consistency wait in seconds (default: 300)
            REPLICATION_INITIAL_DELAY: First backoff delay in seconds (default: 1)
            REPLICATION_MAX_DELAY: Backoff delay cap in seconds (default: 30)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_generation(value: str | None) -> Generation:
            if not value:
                return Generation.MS_GRAPH
            try:
                return Generation(value.lower())
            except ValueError as e:
                valid = [g.value for g in Generation]
                raise ConfigurationError(f"DIRECTORY_BACKEND must be one of {valid}: {value}") from e

        return cls(
            tenant_id=os.environ.get("AZURE_TENANT_ID", ""),
            generation=get_generation(os.environ.get("DIRECTORY_BACKEND")),
            endpoint=os.environ.get("DIRECTORY_ENDPOINT") or None,
            api_version=os.environ.get("DIRECTORY_API_VERSION") or None,
            client_id=os.environ.get("AZURE_CLIENT_ID") or None,
            user_agent=os.environ.get("DIRECTORY_USER_AGENT") or None,
            request_timeout_seconds=get_int("REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS),
            replication_timeout_seconds=get_int(
                "REPLICATION_TIMEOUT", DEFAULT_REPLICATION_TIMEOUT_SECONDS
            ),
            replication_initial_delay_seconds=get_float(
                "REPLICATION_INITIAL_DELAY", DEFAULT_REPLICATION_INITIAL_DELAY_SECONDS
            ),
            replication_max_delay_seconds=get_float(
                "REPLICATION_MAX_DELAY", DEFAULT_REPLICATION_MAX_DELAY_SECONDS
            ),
        )
