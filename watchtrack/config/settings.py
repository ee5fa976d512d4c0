"""watchtrack configuration.

Every field can be set from the environment (case-insensitive, e.g.
``CASSANDRA_HOSTS='["db1","db2"]'``) or from a local ``.env`` file.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for the API, the rollup job and telemetry."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service
    app_name: str = Field(default="watchtrack", description="Service name in logs")
    app_version: str = Field(default="0.1.0", description="Reported service version")
    environment: Literal["development", "staging", "production", "testing"] = Field(
        default="development", description="Deployment environment"
    )
    debug: bool = Field(default=True, description="Reported on /health")
    api_host: str = Field(default="0.0.0.0", description="Bind address for uvicorn")
    api_port: int = Field(default=8000, description="Bind port for uvicorn")

    # Identity provider (tokens are issued elsewhere, only verified here)
    auth_secret_key: str = Field(
        default="dev-jwt-secret-key-change-in-production-32chars!",
        description="Shared key used to verify identity provider JWTs",
    )
    auth_algorithm: str = Field(default="HS256", description="Token signature algorithm")
    auth_issuer: str | None = Field(default=None, description="Expected JWT issuer")
    auth_audience: str | None = Field(
        default=None, description="Expected JWT audience"
    )
    auth_org_claim: str = Field(
        default="org_id", description="Claim carrying the caller's organization"
    )

    # Redis (optional, backs hourly telemetry counters only)
    redis_url: str = Field(default="redis://localhost:6379/0")
    redis_max_connections: int = Field(default=10, description="Pool size")
    redis_socket_timeout: float = Field(default=5.0, description="Seconds per command")
    redis_socket_connect_timeout: float = Field(
        default=5.0, description="Seconds to establish a connection"
    )

    # Cassandra (progress rows, lesson catalog, daily summaries)
    cassandra_hosts: list[str] = Field(
        default=["localhost"], description="Contact points"
    )
    cassandra_port: int = Field(default=9042)
    cassandra_keyspace: str = Field(default="watchtrack")
    cassandra_username: str | None = Field(default=None)
    cassandra_password: str | None = Field(default=None)
    cassandra_protocol_version: int = Field(default=4)
    cassandra_connect_timeout: float = Field(
        default=10.0, description="Seconds to reach a contact point"
    )
    cassandra_request_timeout: float = Field(
        default=10.0, description="Seconds before a query is abandoned"
    )
    cassandra_local_dc: str | None = Field(
        default=None,
        description="Local datacenter; enables NetworkTopologyStrategy when set",
    )
    cassandra_replication_factor: int = Field(
        default=1, ge=1, description="Keyspace replication factor"
    )
    cassandra_consistency: Literal["ONE", "LOCAL_ONE", "LOCAL_QUORUM", "QUORUM"] = (
        Field(default="LOCAL_QUORUM", description="Consistency of every query")
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", description="Console renderer; files are always JSON"
    )
    log_include_caller_info: bool = Field(
        default=False, description="Add module, function and line to each entry"
    )
    log_to_file: bool = Field(default=True, description="Also write rotating files")
    log_dir: str = Field(default="logs")
    log_file_max_bytes: int = Field(
        default=10 * 1024 * 1024, description="Rotate after this many bytes"
    )
    log_file_backup_count: int = Field(default=5, description="Rotated files kept")
    log_requests: bool = Field(
        default=True, description="Log one line per finished request"
    )
    log_exclude_paths: list[str] = Field(
        default=["/health", "/health/live", "/health/ready"],
        description="Path prefixes never logged by the request middleware",
    )

    # CORS (the player is embedded in the course frontend)
    cors_origins: list[str] = Field(default=["http://localhost:3000"])
    cors_allow_credentials: bool = Field(default=True)
    cors_allow_methods: list[str] = Field(default=["GET", "POST"])
    cors_allow_headers: list[str] = Field(
        default=["Authorization", "Content-Type", "X-Request-ID", "X-API-Key"]
    )

    # Watch-time reconciliation policy
    progress_completion_threshold: float = Field(
        default=0.92,
        gt=0,
        le=1,
        description="Fraction of the lesson that must be uniquely watched",
    )
    progress_segment_padding_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Seconds credited behind each reported playback position",
    )
    progress_backdate_tolerance_seconds: float = Field(
        default=5.0,
        ge=0,
        description="How far behind the last accepted tick a heartbeat may arrive",
    )
    progress_max_jump_seconds: float = Field(
        default=2 * 60 * 60,
        gt=0,
        description="Largest forward jump accepted as continuous playback",
    )

    # Daily rollup
    rollup_scheduler_enabled: bool = Field(
        default=False, description="Run the daily rollup inside the API process"
    )
    rollup_interval_seconds: int = Field(
        default=3600, ge=60, description="Interval between scheduled rollup runs"
    )
    rollup_max_batch_rows: int = Field(
        default=100, ge=1, description="Most summary rows per logged batch"
    )
    jobs_api_key: str | None = Field(
        default=None, description="Shared secret required by the job trigger endpoint"
    )

    # Telemetry
    telemetry_enabled: bool = Field(default=True, description="Emit analytics events")
    posthog_api_key: str | None = Field(default=None, description="PostHog project key")
    posthog_host: str = Field(
        default="https://us.i.posthog.com", description="PostHog ingestion host"
    )
    telemetry_queue_size: int = Field(default=10000, description="Max queued events")
    telemetry_batch_size: int = Field(default=100, description="Events per delivery")
    telemetry_flush_interval_seconds: float = Field(
        default=1.0, description="Max seconds between deliveries"
    )
    telemetry_timeout_seconds: float = Field(
        default=5.0, description="HTTP timeout for event delivery"
    )

    @property
    def is_development(self) -> bool:
        """Interactive docs are only served in development."""
        return self.environment == "development"

    @property
    def posthog_configured(self) -> bool:
        return bool(self.telemetry_enabled and self.posthog_api_key)


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, read once."""
    return Settings()
