"""
Centralized Configuration System for the Vendor Bridge

Type-safe settings built on Pydantic Settings. Every service (ingestion gateway,
command worker, feedback notifier) reads its configuration from here instead of
calling os.getenv() directly.

Features:
- Environment variable binding with defaults (one prefix per section)
- Hierarchical configuration structure
- Test-friendly reload via reload_settings()
"""

import os
from enum import Enum
from typing import Annotated, List, Optional

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _env_file() -> Optional[str]:
    return ".env" if not os.getenv("DOCKER_CONTAINER") else None


class Environment(str, Enum):
    """Application environment types"""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class ApproverFallbackPolicy(str, Enum):
    """What the worker does when an Approver's individual credential cannot be resolved"""
    FAIL = "fail"
    SYSTEM_ACCOUNT = "system_account"


class KafkaSettings(BaseSettings):
    """Kafka topics and connection settings"""

    model_config = SettingsConfigDict(
        env_prefix="KAFKA_",
        env_file=_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    bootstrap_servers: str = Field(
        default="localhost:9092",
        description="Kafka bootstrap servers"
    )
    command_topic: str = Field(
        default="vendor_commands",
        description="Durable command queue topic"
    )
    status_topic: str = Field(
        default="vendor_status_events",
        description="Outcome (StatusEvent) stream topic"
    )
    dead_letter_topic: str = Field(
        default="vendor_commands_dlq",
        description="Dead-letter destination for exhausted or undecodable commands"
    )
    worker_group: str = Field(
        default="vendor-command-worker-group",
        description="Consumer group shared by all worker instances"
    )
    notifier_group_prefix: str = Field(
        default="vendor-feedback-notifier",
        description="Prefix of the per-instance notifier consumer group"
    )
    topic_partitions: int = Field(
        default=6,
        description="Partition count used when topics are created"
    )
    replication_factor: int = Field(
        default=1,
        description="Replication factor used when topics are created"
    )
    status_retention_ms: int = Field(
        default=3600000,
        description="Status topic retention (outcome events are perishable)"
    )
    produce_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Max seconds to wait for broker acknowledgement of a produce"
    )
    poll_timeout_seconds: float = Field(
        default=1.0,
        description="Consumer poll timeout"
    )


class RedisSettings(BaseSettings):
    """Redis configuration (enqueue dedup window + outcome cache)"""

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        env_file=_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: Optional[str] = Field(default=None, description="Redis password")
    db: int = Field(default=0, description="Redis database index")
    max_connections: int = Field(default=50, description="Connection pool size")

    @property
    def url(self) -> str:
        """Construct Redis URL"""
        if not self.password:
            return f"redis://{self.host}:{self.port}/{self.db}"
        return f"redis://:{self.password}@{self.host}:{self.port}/{self.db}"


class PostgresSettings(BaseSettings):
    """PostgreSQL configuration (delivery registry + vendor mapping store)"""

    model_config = SettingsConfigDict(
        env_prefix="POSTGRES_",
        env_file=_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    host: str = Field(default="localhost", description="PostgreSQL host")
    port: int = Field(default=5432, description="PostgreSQL port")
    user: str = Field(default="bridge", description="PostgreSQL username")
    password: str = Field(default="bridge", description="PostgreSQL password")
    db: str = Field(default="vendor_bridge", description="PostgreSQL database name")
    dsn: Optional[str] = Field(default=None, description="Full DSN (overrides host/port/user)")
    schema_name: str = Field(default="vendor_bridge", description="Schema holding bridge tables")
    pool_min: int = Field(default=1, description="Minimum pool size")
    pool_max: int = Field(default=5, description="Maximum pool size")
    command_timeout: int = Field(default=30, description="Statement timeout in seconds")

    @property
    def url(self) -> str:
        """Construct PostgreSQL connection URL"""
        if self.dsn:
            return self.dsn
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.db}"


class LegacySystemSettings(BaseSettings):
    """Legacy ERP RPC gateway settings"""

    model_config = SettingsConfigDict(
        env_prefix="LEGACY_",
        env_file=_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    gateway_url: str = Field(
        default="http://localhost:8300",
        description="Base URL of the legacy RPC gateway"
    )
    timeout_seconds: float = Field(
        default=30.0,
        description="Per-call timeout towards the legacy gateway"
    )
    verify_ssl: bool = Field(default=True, description="Verify the gateway's TLS certificate")
    ca_bundle: Optional[str] = Field(default=None, description="CA bundle used for mutual TLS")
    create_function: str = Field(default="BAPI_VENDOR_CREATE", description="RPC function for Create")
    update_function: str = Field(default="BAPI_VENDOR_EDIT", description="RPC function for Update")
    delete_function: str = Field(default="BAPI_VENDOR_DELETE", description="RPC function for Delete")
    record_id_field: str = Field(
        default="VENDOR",
        description="Export parameter carrying the legacy vendor number"
    )
    system_user: Optional[str] = Field(default=None, description="Shared system account user")
    system_password: Optional[SecretStr] = Field(default=None, description="Shared system account password")


class CredentialSettings(BaseSettings):
    """Identity propagation (Approver) credential settings"""

    model_config = SettingsConfigDict(
        env_prefix="CREDENTIAL_",
        env_file=_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    certificate_dir: str = Field(
        default="/run/secrets/approver-certificates",
        description="Directory holding <principal>.crt / <principal>.key pairs"
    )
    identity_token_key: Optional[SecretStr] = Field(
        default=None,
        description="Key used to verify strong identity tokens"
    )
    identity_token_algorithms: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["RS256"],
        description="Accepted identity token algorithms"
    )
    identity_token_audience: Optional[str] = Field(default=None, description="Expected token audience")
    identity_token_issuer: Optional[str] = Field(default=None, description="Expected token issuer")
    approver_fallback: ApproverFallbackPolicy = Field(
        default=ApproverFallbackPolicy.FAIL,
        description="Policy when an Approver credential cannot be resolved"
    )

    @field_validator("identity_token_algorithms", mode="before")
    @classmethod
    def split_algorithms(cls, v):
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v


class WorkerSettings(BaseSettings):
    """Command worker (orchestrator) settings"""

    model_config = SettingsConfigDict(
        env_prefix="WORKER_",
        env_file=_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    max_delivery_attempts: int = Field(default=5, ge=1, description="Deliveries before dead-lettering")
    execution_timeout_seconds: float = Field(default=30.0, gt=0, description="Adapter call timeout")
    lock_duration_seconds: int = Field(default=60, ge=1, description="Visibility lock (lease) duration")
    lock_renewal_interval_seconds: float = Field(default=20.0, gt=0, description="Lease renewal period")
    redelivery_backoff_seconds: float = Field(default=1.0, ge=0, description="Base redelivery backoff")
    redelivery_backoff_max_seconds: float = Field(default=60.0, ge=0, description="Redelivery backoff cap")
    outcome_cache_ttl_seconds: int = Field(
        default=86400,
        description="Outcome cache retention; must cover the duplicate-detection window"
    )
    metrics_port: Optional[int] = Field(default=9108, description="Prometheus port (None disables)")

    @model_validator(mode="after")
    def check_lease_timing(self) -> "WorkerSettings":
        # A lease that lapses under a running call lets a second worker reclaim it
        if self.lock_renewal_interval_seconds >= self.lock_duration_seconds:
            raise ValueError("WORKER_LOCK_RENEWAL_INTERVAL_SECONDS must be < WORKER_LOCK_DURATION_SECONDS")
        if self.execution_timeout_seconds >= self.lock_duration_seconds:
            raise ValueError("WORKER_EXECUTION_TIMEOUT_SECONDS must be < WORKER_LOCK_DURATION_SECONDS")
        return self


class IngestionSettings(BaseSettings):
    """Ingestion gateway settings"""

    model_config = SettingsConfigDict(
        env_prefix="INGESTION_",
        env_file=_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8010, description="Bind port")
    duplicate_detection_window_seconds: int = Field(
        default=600,
        ge=1,
        description="Window within which a repeated correlation id is collapsed"
    )
    enqueue_max_attempts: int = Field(default=3, ge=1, description="Bounded enqueue retries")
    enqueue_retry_delay_seconds: float = Field(default=0.5, ge=0, description="Initial enqueue retry delay")


class NotifierSettings(BaseSettings):
    """Feedback notifier settings"""

    model_config = SettingsConfigDict(
        env_prefix="NOTIFIER_",
        env_file=_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8011, description="Bind port")
    recent_event_window: int = Field(
        default=10000,
        ge=0,
        description="How many event ids are remembered to drop re-emissions"
    )
    ping_interval_seconds: float = Field(default=30.0, gt=0, description="WebSocket keepalive period")


class ApplicationSettings(BaseSettings):
    """Main application settings - aggregates all other settings"""

    model_config = SettingsConfigDict(
        env_file=_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment"
    )
    log_level: str = Field(default="INFO", description="Root log level")
    log_format: str = Field(default="text", description="'text' or 'json'")

    kafka: KafkaSettings = Field(default_factory=KafkaSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    postgres: PostgresSettings = Field(default_factory=PostgresSettings)
    legacy: LegacySystemSettings = Field(default_factory=LegacySystemSettings)
    credentials: CredentialSettings = Field(default_factory=CredentialSettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)
    ingestion: IngestionSettings = Field(default_factory=IngestionSettings)
    notifier: NotifierSettings = Field(default_factory=NotifierSettings)

    @model_validator(mode="after")
    def check_outcome_retention(self) -> "ApplicationSettings":
        # Cached outcomes must outlive the enqueue duplicate-detection window
        if self.worker.outcome_cache_ttl_seconds < self.ingestion.duplicate_detection_window_seconds:
            raise ValueError(
                "WORKER_OUTCOME_CACHE_TTL_SECONDS must be >= INGESTION_DUPLICATE_DETECTION_WINDOW_SECONDS"
            )
        return self


settings = ApplicationSettings()


def get_settings() -> ApplicationSettings:
    """
    Get the global settings instance

    Usable with FastAPI's Depends() for dependency injection.
    """
    return settings


def reload_settings() -> ApplicationSettings:
    """
    Reload settings from environment (useful for testing)
    """
    global settings
    settings = ApplicationSettings()
    return settings
