"""
Configuration management for the data source.

This module provides:
- Pydantic-based configuration validation
- Authentication configuration
- Retry and connection pool configuration
- Loading from environment variables (and an optional .env file)
"""

import os
import logging
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict

logger = logging.getLogger(__name__)


class AuthConfig(BaseModel):
    """Authentication configuration for ScyllaDB."""

    enabled: bool = Field(
        default=False,
        description="Enable authentication"
    )

    username: Optional[str] = Field(
        default=None,
        description="Database username"
    )

    password: Optional[str] = Field(
        default=None,
        description="Database password"
    )

    @model_validator(mode='after')
    def validate_auth_config(self):
        """Validate authentication configuration."""
        if self.enabled:
            if not self.username:
                raise ValueError("Authentication requires username")
            if not self.password:
                raise ValueError("Authentication requires password")
        return self


class RetryConfig(BaseModel):
    """Retry configuration for transient connectivity failures."""

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Total attempts per query, including the first one"
    )

    initial_delay: float = Field(
        default=0.0,
        ge=0.0,
        le=5.0,
        description="Delay before the first retry in seconds (0 retries immediately)"
    )

    backoff_factor: float = Field(
        default=2.0,
        ge=1.0,
        le=10.0,
        description="Exponential backoff multiplier"
    )

    max_delay: float = Field(
        default=10.0,
        ge=0.0,
        le=60.0,
        description="Maximum retry delay in seconds"
    )


class PoolConfig(BaseModel):
    """Connection pool and request settings passed to the driver."""

    protocol_version: int = Field(
        default=4,
        ge=3,
        le=5,
        description="CQL native protocol version"
    )

    connect_timeout: float = Field(
        default=5.0,
        gt=0.0,
        le=120.0,
        description="Time to establish a connection in seconds"
    )

    request_timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=300.0,
        description="Default request timeout in seconds"
    )


class ConnectionConfig(BaseModel):
    """
    Complete configuration for a ``DataSource``.

    Example usage:
        config = ConnectionConfig(
            contact_points=["scylla1.example.com", "scylla2.example.com"],
            keyspace="hr",
            auth=AuthConfig(enabled=True, username="app", password="secret"),
        )

        async with DataSource(config) as data_source:
            employees = data_source.get_repository(Employee)
    """

    contact_points: list[str] = Field(
        description="ScyllaDB contact points (hostnames or IPs)"
    )

    keyspace: Optional[str] = Field(
        default=None,
        description="Keyspace to use after connecting"
    )

    port: int = Field(
        default=9042,
        ge=1,
        le=65535,
        description="ScyllaDB native transport port"
    )

    local_datacenter: Optional[str] = Field(
        default=None,
        description="Local datacenter for DC-aware load balancing"
    )

    auth: AuthConfig = Field(
        default_factory=AuthConfig,
        description="Authentication configuration"
    )

    retry: RetryConfig = Field(
        default_factory=RetryConfig,
        description="Retry configuration"
    )

    pool: PoolConfig = Field(
        default_factory=PoolConfig,
        description="Connection pool configuration"
    )

    model_config = ConfigDict(
        validate_assignment=True
    )

    @field_validator('contact_points')
    @classmethod
    def validate_contact_points(cls, v):
        """Validate contact points."""
        if not v:
            raise ValueError("At least one contact point required")
        return v

    @field_validator('keyspace')
    @classmethod
    def validate_keyspace(cls, v):
        """Validate keyspace name."""
        if v is not None and (not v or not v.replace('_', '').isalnum()):
            raise ValueError(
                "Keyspace must be alphanumeric with optional underscores"
            )
        return v


def load_config_from_env(dotenv_path: Optional[str] = None) -> ConnectionConfig:
    """
    Load configuration from environment variables.

    Values from a .env file are loaded first without overriding variables
    already set in the environment.

    Environment variables:
        SCYLLADB_CONTACT_POINTS: Comma-separated list of contact points
        SCYLLADB_KEYSPACE: Keyspace name
        SCYLLADB_PORT: Port (default: 9042)
        SCYLLADB_LOCAL_DC: Local datacenter name
        SCYLLADB_AUTH_ENABLED: Enable authentication (true/false)
        SCYLLADB_USERNAME: Database username
        SCYLLADB_PASSWORD: Database password
        SCYLLADB_MAX_ATTEMPTS: Attempts per query on connectivity failures
        SCYLLADB_REQUEST_TIMEOUT: Request timeout in seconds

    Returns:
        Validated configuration
    """
    load_dotenv(dotenv_path)

    contact_points_str = os.getenv("SCYLLADB_CONTACT_POINTS", "127.0.0.1")
    contact_points = [cp.strip() for cp in contact_points_str.split(",") if cp.strip()]

    config = ConnectionConfig(
        contact_points=contact_points,
        keyspace=os.getenv("SCYLLADB_KEYSPACE") or None,
        port=int(os.getenv("SCYLLADB_PORT", "9042")),
        local_datacenter=os.getenv("SCYLLADB_LOCAL_DC") or None,
        auth=AuthConfig(
            enabled=os.getenv("SCYLLADB_AUTH_ENABLED", "false").lower() == "true",
            username=os.getenv("SCYLLADB_USERNAME"),
            password=os.getenv("SCYLLADB_PASSWORD"),
        ),
        retry=RetryConfig(
            max_attempts=int(os.getenv("SCYLLADB_MAX_ATTEMPTS", "3")),
        ),
        pool=PoolConfig(
            request_timeout=float(os.getenv("SCYLLADB_REQUEST_TIMEOUT", "10.0")),
        ),
    )

    logger.debug(f"Loaded connection config for {config.contact_points}")
    return config
