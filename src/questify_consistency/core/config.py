"""
Consistency Layer Configuration

Centralized settings for the outbox dispatcher, event consumers,
and the export job coordinator. Values come from the environment
(optionally a .env file) with production defaults.
"""

import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load environment variables from .env file
load_dotenv()


DEFAULT_EXPORT_SERVICES = [
    "user-service",
    "quest-service",
    "submission-service",
    "proof-service",
]


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class OutboxSettings(BaseModel):
    """Outbox dispatcher tuning."""

    enabled: bool = True
    batch_size: int = Field(default=50, ge=1)
    max_attempts: int = Field(default=10, ge=1)
    base_retry_seconds: float = Field(default=5.0, gt=0)
    send_timeout_seconds: float = Field(default=10.0, gt=0)
    dispatch_interval_seconds: float = Field(default=1.0, gt=0)

    @classmethod
    def from_env(cls) -> "OutboxSettings":
        return cls(
            enabled=_env_bool("OUTBOX_ENABLED", "true"),
            batch_size=int(os.getenv("OUTBOX_BATCH_SIZE", "50")),
            max_attempts=int(os.getenv("OUTBOX_MAX_ATTEMPTS", "10")),
            base_retry_seconds=float(os.getenv("OUTBOX_BASE_RETRY_SECONDS", "5")),
            send_timeout_seconds=float(os.getenv("OUTBOX_SEND_TIMEOUT_SECONDS", "10")),
            dispatch_interval_seconds=float(
                os.getenv("OUTBOX_DISPATCH_INTERVAL_SECONDS", "1.0")
            ),
        )


class ConsumerSettings(BaseModel):
    """Consumer-side retry and dead-letter settings."""

    initial_interval_seconds: float = 1.0
    multiplier: float = 2.0
    max_interval_seconds: float = 30.0
    max_retries: int = Field(default=5, ge=0)
    dlq_suffix: str = ".dlq"

    @classmethod
    def from_env(cls) -> "ConsumerSettings":
        return cls(
            initial_interval_seconds=float(os.getenv("CONSUMER_RETRY_INITIAL_SECONDS", "1.0")),
            multiplier=float(os.getenv("CONSUMER_RETRY_MULTIPLIER", "2.0")),
            max_interval_seconds=float(os.getenv("CONSUMER_RETRY_MAX_SECONDS", "30")),
            max_retries=int(os.getenv("CONSUMER_MAX_RETRIES", "5")),
            dlq_suffix=os.getenv("CONSUMER_DLQ_SUFFIX", ".dlq"),
        )


class ExportSettings(BaseModel):
    """Export job coordinator settings."""

    ttl_hours: float = 24
    cleanup_interval_seconds: float = 3600
    presign_ttl_seconds: int = 900
    expected_services: List[str] = Field(default_factory=lambda: list(DEFAULT_EXPORT_SERVICES))
    requests_topic: str = "questify.users"
    audit_topic: str = ""
    local_service: str = "user-service"
    source_service: str = "user-service"
    part_timeout_seconds: float = 15.0
    blob_read_timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> "ExportSettings":
        return cls(
            ttl_hours=float(os.getenv("EXPORT_TTL_HOURS", "24")),
            cleanup_interval_seconds=float(os.getenv("EXPORT_CLEANUP_INTERVAL_SECONDS", "3600")),
            presign_ttl_seconds=int(os.getenv("EXPORT_PRESIGN_TTL_SECONDS", "900")),
            expected_services=_env_list("EXPORT_EXPECTED_SERVICES", DEFAULT_EXPORT_SERVICES),
            requests_topic=os.getenv("EXPORT_REQUESTS_TOPIC", "questify.users"),
            audit_topic=os.getenv("EXPORT_AUDIT_TOPIC", ""),
            local_service=os.getenv("EXPORT_LOCAL_SERVICE", "user-service"),
            source_service=os.getenv("SERVICE_NAME", "user-service"),
            part_timeout_seconds=float(os.getenv("EXPORT_PART_TIMEOUT_SECONDS", "15")),
            blob_read_timeout_seconds=float(os.getenv("EXPORT_BLOB_READ_TIMEOUT_SECONDS", "30")),
        )


class ServiceSettings(BaseModel):
    """Process-wide service identity and wiring."""

    service_name: str = "user-service"
    internal_token: str = ""
    user_service_base: str = "http://localhost:8081"
    transport_backend: str = "memory"
    kafka_bootstrap_servers: str = "localhost:9092"
    otlp_endpoint: Optional[str] = None
    log_level: str = "INFO"
    structured_logs: bool = True

    outbox: OutboxSettings = Field(default_factory=OutboxSettings)
    consumer: ConsumerSettings = Field(default_factory=ConsumerSettings)
    export: ExportSettings = Field(default_factory=ExportSettings)

    @classmethod
    def from_env(cls) -> "ServiceSettings":
        return cls(
            service_name=os.getenv("SERVICE_NAME", "user-service"),
            internal_token=os.getenv("INTERNAL_TOKEN", ""),
            user_service_base=os.getenv("USER_SERVICE_BASE", "http://localhost:8081"),
            transport_backend=os.getenv("TRANSPORT_BACKEND", "memory").lower(),
            kafka_bootstrap_servers=os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092"),
            otlp_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            structured_logs=_env_bool("LOG_STRUCTURED", "true"),
            outbox=OutboxSettings.from_env(),
            consumer=ConsumerSettings.from_env(),
            export=ExportSettings.from_env(),
        )

    def validate_settings(self) -> List[str]:
        """Return a list of configuration issues worth logging at startup."""
        issues = []
        if not self.internal_token:
            issues.append("WARNING: No internal token configured (INTERNAL_TOKEN)")
        if self.export.local_service not in self.export.expected_services:
            issues.append(
                f"ERROR: EXPORT_LOCAL_SERVICE '{self.export.local_service}' "
                "is not one of EXPORT_EXPECTED_SERVICES"
            )
        if not self.outbox.enabled:
            issues.append("WARNING: OUTBOX_ENABLED=false, events are published directly")
        return issues


_settings: Optional[ServiceSettings] = None


def get_settings() -> ServiceSettings:
    """Get the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = ServiceSettings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop cached settings (for testing)."""
    global _settings
    _settings = None
