"""
Configuration management (SSOT).

This module defines ALL configuration for the statement pipeline.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Every external call has an explicit timeout, and the job budget caps them
- Retry ceilings are configured once and shared by every route
- Object keys never embed the bucket name (the bucket lives in StorageConfig)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class StorageConfig:
    """Object storage (S3-compatible) configuration.

    Documents are downloaded through short-lived signed URLs, never with
    the storage credentials directly.
    """

    bucket: str = "statements"
    # Custom endpoint for S3-compatible stores (MinIO, R2, Supabase storage)
    endpoint_url: str | None = None
    region: str | None = None
    access_key: str | None = None
    secret_key: str | None = None
    # Signed URL lifetime (seconds)
    signed_url_ttl_seconds: int = 600
    # Download timeout (seconds); expiry is reported as "file too complex"
    fetch_timeout_seconds: float = 15.0
    # Adapter-level retries for connection errors and 5xx
    fetch_max_retries: int = 2


@dataclass
class ExtractionConfig:
    """Extraction service (Ollama-compatible chat endpoint) configuration.

    SSOT for extraction settings:
    - base_url: Can be localhost, LAN IP, or remote URL
    - auth_header: Optional auth header for proxied deployments
    - model_text / model_vision: text route vs scanned/image route
    """

    base_url: str = "http://localhost:11434"
    auth_header: str | None = None
    model_text: str = "qwen2.5:7b-instruct"
    model_vision: str = "qwen2.5vl:7b"
    # Per-call timeout (seconds), always clamped to the remaining job budget
    timeout_seconds: float = 120.0
    # Retry ceiling for 429/5xx/transport failures (total attempts)
    max_attempts: int = 4
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 8.0
    # Native PDF text shorter than this is treated as a scanned document
    min_text_chars: int = 50
    # Text sent to the service is truncated to this many characters
    max_text_chars: int = 50_000
    # Page limits for native text and rasterization
    max_pages: int = 20
    raster_resolution: int = 150
    # Currency assumed when the statement does not state one
    default_currency: str = "SGD"


@dataclass
class PipelineConfig:
    """Job coordination settings."""

    # Hard wall-clock budget for one job run (seconds of active compute)
    job_timeout_seconds: float = 150.0
    # Liveness refresh while a stage is in flight
    heartbeat_interval_seconds: float = 10.0
    # Scheduled re-queues for "service overloaded" failures
    max_requeue_attempts: int = 8
    requeue_base_delay_seconds: float = 5.0
    requeue_max_delay_seconds: float = 120.0
    # HTTP statuses treated as "overloaded" (re-queue instead of fail)
    requeue_statuses: list[int] = field(default_factory=lambda: [429])
    # Rows per INSERT batch
    transaction_batch_size: int = 500
    # Transactions a typical monthly statement carries (completeness scoring)
    expected_transactions: int = 15
    # Processing jobs without a heartbeat for this long are re-queued
    stale_after_seconds: float = 300.0


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.storage.bucket:
            errors.append("storage.bucket is required")
        if self.storage.signed_url_ttl_seconds <= 0:
            errors.append("storage.signed_url_ttl_seconds must be positive")
        if self.storage.fetch_timeout_seconds <= 0:
            errors.append("storage.fetch_timeout_seconds must be positive")

        if not self.extraction.base_url:
            errors.append("extraction.base_url is required")
        if self.extraction.max_attempts < 1:
            errors.append("extraction.max_attempts must be at least 1")
        if self.extraction.backoff_max_seconds < self.extraction.backoff_base_seconds:
            errors.append("extraction.backoff_max_seconds must be >= backoff_base_seconds")
        if self.extraction.timeout_seconds <= 0:
            errors.append("extraction.timeout_seconds must be positive")

        if self.pipeline.job_timeout_seconds <= 0:
            errors.append("pipeline.job_timeout_seconds must be positive")
        if self.pipeline.heartbeat_interval_seconds <= 0:
            errors.append("pipeline.heartbeat_interval_seconds must be positive")
        if not 1 <= self.pipeline.transaction_batch_size <= 500:
            errors.append("pipeline.transaction_batch_size must be between 1 and 500")
        if self.pipeline.expected_transactions < 1:
            errors.append("pipeline.expected_transactions must be at least 1")

        return errors


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name, "")
    if not value:
        return float(default)
    try:
        return float(value)
    except ValueError:
        return float(default)


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - STATEMENT_BUCKET
    - S3_ENDPOINT_URL, S3_REGION, S3_ACCESS_KEY, S3_SECRET_KEY
    - EXTRACTION_URL
    - EXTRACTION_AUTH_HEADER
    - EXTRACTION_MODEL_TEXT, EXTRACTION_MODEL_VISION
    - EXTRACTION_TIMEOUT (per-call timeout in seconds)
    - PIPELINE_JOB_TIMEOUT (job budget in seconds)
    - STATE_DB_PATH
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Storage config
    storage_data = data.get("storage", {})
    storage = StorageConfig(
        bucket=os.environ.get("STATEMENT_BUCKET", storage_data.get("bucket", "statements")),
        endpoint_url=os.environ.get("S3_ENDPOINT_URL", storage_data.get("endpoint_url")),
        region=os.environ.get("S3_REGION", storage_data.get("region")),
        access_key=os.environ.get("S3_ACCESS_KEY", storage_data.get("access_key")),
        secret_key=os.environ.get("S3_SECRET_KEY", storage_data.get("secret_key")),
        signed_url_ttl_seconds=int(storage_data.get("signed_url_ttl_seconds", 600)),
        fetch_timeout_seconds=float(storage_data.get("fetch_timeout_seconds", 15.0)),
        fetch_max_retries=int(storage_data.get("fetch_max_retries", 2)),
    )

    # Extraction config
    extraction_data = data.get("extraction", {})
    extraction = ExtractionConfig(
        base_url=os.environ.get(
            "EXTRACTION_URL", extraction_data.get("base_url", "http://localhost:11434")
        ),
        auth_header=os.environ.get("EXTRACTION_AUTH_HEADER", extraction_data.get("auth_header")),
        model_text=os.environ.get(
            "EXTRACTION_MODEL_TEXT", extraction_data.get("model_text", "qwen2.5:7b-instruct")
        ),
        model_vision=os.environ.get(
            "EXTRACTION_MODEL_VISION", extraction_data.get("model_vision", "qwen2.5vl:7b")
        ),
        timeout_seconds=_env_float(
            "EXTRACTION_TIMEOUT", extraction_data.get("timeout_seconds", 120.0)
        ),
        max_attempts=int(extraction_data.get("max_attempts", 4)),
        backoff_base_seconds=float(extraction_data.get("backoff_base_seconds", 0.5)),
        backoff_max_seconds=float(extraction_data.get("backoff_max_seconds", 8.0)),
        min_text_chars=int(extraction_data.get("min_text_chars", 50)),
        max_text_chars=int(extraction_data.get("max_text_chars", 50_000)),
        max_pages=int(extraction_data.get("max_pages", 20)),
        raster_resolution=int(extraction_data.get("raster_resolution", 150)),
        default_currency=extraction_data.get("default_currency", "SGD"),
    )

    # Pipeline config
    pipeline_data = data.get("pipeline", {})
    pipeline = PipelineConfig(
        job_timeout_seconds=_env_float(
            "PIPELINE_JOB_TIMEOUT", pipeline_data.get("job_timeout_seconds", 150.0)
        ),
        heartbeat_interval_seconds=float(pipeline_data.get("heartbeat_interval_seconds", 10.0)),
        max_requeue_attempts=int(pipeline_data.get("max_requeue_attempts", 8)),
        requeue_base_delay_seconds=float(pipeline_data.get("requeue_base_delay_seconds", 5.0)),
        requeue_max_delay_seconds=float(pipeline_data.get("requeue_max_delay_seconds", 120.0)),
        requeue_statuses=[int(s) for s in pipeline_data.get("requeue_statuses", [429])],
        transaction_batch_size=int(pipeline_data.get("transaction_batch_size", 500)),
        expected_transactions=int(pipeline_data.get("expected_transactions", 15)),
        stale_after_seconds=float(pipeline_data.get("stale_after_seconds", 300.0)),
    )

    # State DB
    state_db = os.environ.get("STATE_DB_PATH", data.get("state_db_path", "data/state.db"))

    return Config(
        storage=storage,
        extraction=extraction,
        pipeline=pipeline,
        state_db_path=Path(state_db),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Statement Pipeline Configuration
#
# Every value below can be omitted; defaults are shown.
# Secrets are better supplied through environment variables
# (S3_ACCESS_KEY, S3_SECRET_KEY, EXTRACTION_AUTH_HEADER).

storage:
  bucket: "statements"
  endpoint_url: null                  # Set for MinIO / R2 / other S3-compatible stores
  region: null
  signed_url_ttl_seconds: 600
  fetch_timeout_seconds: 15
  fetch_max_retries: 2

extraction:
  base_url: "http://localhost:11434"  # Ollama-compatible /api/chat endpoint
  auth_header: null                   # "Bearer <token>" or "Header-Name: value"
  model_text: "qwen2.5:7b-instruct"   # Native-text PDFs
  model_vision: "qwen2.5vl:7b"        # Scanned PDFs and photos
  timeout_seconds: 120
  max_attempts: 4
  backoff_base_seconds: 0.5
  backoff_max_seconds: 8
  min_text_chars: 50
  max_text_chars: 50000
  max_pages: 20
  raster_resolution: 150
  default_currency: "SGD"

pipeline:
  job_timeout_seconds: 150            # Hard budget per job run
  heartbeat_interval_seconds: 10
  max_requeue_attempts: 8
  requeue_base_delay_seconds: 5
  requeue_max_delay_seconds: 120
  requeue_statuses: [429]
  transaction_batch_size: 500
  expected_transactions: 15
  stale_after_seconds: 300

state_db_path: "data/state.db"
"""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
