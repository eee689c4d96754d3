"""
Configuration management (SSOT).

This module defines ALL configuration for the document import pipeline.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- API keys are never written to logs
- Backends without an API key are "not configured" (a local vision server
  excepted), not disabled silently
- Upload limits are enforced before anything is stored
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

DEFAULT_ALLOWED_EXTENSIONS = ["pdf", "xml", "csv", "jpg", "jpeg", "png", "heic", "webp"]


@dataclass
class StorageConfig:
    """Object storage configuration."""

    # Root directory of the filesystem object store
    root_dir: Path = field(default_factory=lambda: Path("data/objects"))


@dataclass
class UploadConfig:
    """Upload validation limits."""

    # Maximum file size in bytes (20 MB)
    max_bytes: int = 20 * 1024 * 1024
    allowed_extensions: list[str] = field(
        default_factory=lambda: list(DEFAULT_ALLOWED_EXTENSIONS)
    )


@dataclass
class TextBackendConfig:
    """Text extraction backend (OpenAI-compatible chat completions).

    Used for PDFs: the text layer is sent with a fixed output schema.
    """

    base_url: str = "https://api.deepseek.com"
    api_key: str | None = None
    model: str = "deepseek-chat"
    # Request timeout (seconds)
    timeout_seconds: int = 60
    # Retries for 429/5xx responses
    max_retries: int = 2
    # Response cache TTL (seconds); 0 disables caching
    cache_ttl_seconds: int = 3600

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)


@dataclass
class VisionBackendConfig:
    """Vision extraction backend (Ollama-compatible chat completions).

    Used for images: the file is sent base64-encoded with the same schema.
    """

    base_url: str = "https://ollama.com"
    api_key: str | None = None
    model: str = "qwen3-vl:235b-instruct"
    # Request timeout (seconds)
    timeout_seconds: int = 120
    # Maximum concurrent vision requests (semaphore)
    max_concurrent: int = 2
    cache_ttl_seconds: int = 3600

    def is_remote(self) -> bool:
        """Check if the server URL is remote (not localhost)."""
        url_lower = self.base_url.lower()
        return not any(
            local in url_lower
            for local in ["localhost", "127.0.0.1", "::1", "host.docker.internal"]
        )

    @property
    def is_configured(self) -> bool:
        # A local Ollama server needs no key
        return bool(self.api_key) or not self.is_remote()


@dataclass
class PipelineConfig:
    """Job orchestration settings."""

    # Worker threads for extraction attempts
    max_workers: int = 4
    # Hard bound on one extraction attempt (seconds)
    attempt_timeout_seconds: float = 180.0
    # Recommended client polling interval while a job is active
    poll_interval_seconds: float = 2.0
    # Tolerance for balance / totals checks
    arithmetic_tolerance: str = "0.01"
    # PROCESSING jobs older than this are considered abandoned (minutes)
    stale_processing_minutes: int = 15
    # Start extraction right after upload
    auto_start: bool = True


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    upload: UploadConfig = field(default_factory=UploadConfig)
    text_backend: TextBackendConfig = field(default_factory=TextBackendConfig)
    vision_backend: VisionBackendConfig = field(default_factory=VisionBackendConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if self.upload.max_bytes <= 0:
            errors.append("upload.max_bytes must be positive")
        if not self.upload.allowed_extensions:
            errors.append("upload.allowed_extensions must not be empty")

        if not self.text_backend.base_url:
            errors.append("text_backend.base_url is required")
        if not self.vision_backend.base_url:
            errors.append("vision_backend.base_url is required")
        if self.vision_backend.max_concurrent < 1:
            errors.append("vision_backend.max_concurrent must be >= 1")

        if self.pipeline.max_workers < 1:
            errors.append("pipeline.max_workers must be >= 1")
        if self.pipeline.attempt_timeout_seconds <= 0:
            errors.append("pipeline.attempt_timeout_seconds must be positive")
        if self.pipeline.poll_interval_seconds <= 0:
            errors.append("pipeline.poll_interval_seconds must be positive")

        return errors


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name, "")
    if not value:
        return int(default)
    try:
        return int(value)
    except ValueError:
        return int(default)  # Keep default


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - IMPORT_STATE_DB
    - IMPORT_STORAGE_ROOT
    - IMPORT_MAX_WORKERS
    - TEXT_BACKEND_URL / TEXT_BACKEND_API_KEY / TEXT_BACKEND_MODEL / TEXT_BACKEND_TIMEOUT
    - VISION_BACKEND_URL / VISION_BACKEND_API_KEY / VISION_BACKEND_MODEL /
      VISION_BACKEND_TIMEOUT
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    storage_data = data.get("storage", {})
    storage = StorageConfig(
        root_dir=Path(
            os.environ.get("IMPORT_STORAGE_ROOT", storage_data.get("root_dir", "data/objects"))
        ),
    )

    upload_data = data.get("upload", {})
    upload = UploadConfig(
        max_bytes=upload_data.get("max_bytes", 20 * 1024 * 1024),
        allowed_extensions=[
            ext.lower().lstrip(".")
            for ext in upload_data.get("allowed_extensions", DEFAULT_ALLOWED_EXTENSIONS)
        ],
    )

    text_data = data.get("text_backend", {})
    text_backend = TextBackendConfig(
        base_url=os.environ.get(
            "TEXT_BACKEND_URL", text_data.get("base_url", "https://api.deepseek.com")
        ),
        api_key=os.environ.get("TEXT_BACKEND_API_KEY", text_data.get("api_key")),
        model=os.environ.get("TEXT_BACKEND_MODEL", text_data.get("model", "deepseek-chat")),
        timeout_seconds=_env_int("TEXT_BACKEND_TIMEOUT", text_data.get("timeout_seconds", 60)),
        max_retries=text_data.get("max_retries", 2),
        cache_ttl_seconds=text_data.get("cache_ttl_seconds", 3600),
    )

    vision_data = data.get("vision_backend", {})
    vision_backend = VisionBackendConfig(
        base_url=os.environ.get(
            "VISION_BACKEND_URL", vision_data.get("base_url", "https://ollama.com")
        ),
        api_key=os.environ.get("VISION_BACKEND_API_KEY", vision_data.get("api_key")),
        model=os.environ.get(
            "VISION_BACKEND_MODEL", vision_data.get("model", "qwen3-vl:235b-instruct")
        ),
        timeout_seconds=_env_int(
            "VISION_BACKEND_TIMEOUT", vision_data.get("timeout_seconds", 120)
        ),
        max_concurrent=vision_data.get("max_concurrent", 2),
        cache_ttl_seconds=vision_data.get("cache_ttl_seconds", 3600),
    )

    pipeline_data = data.get("pipeline", {})
    pipeline = PipelineConfig(
        max_workers=_env_int("IMPORT_MAX_WORKERS", pipeline_data.get("max_workers", 4)),
        attempt_timeout_seconds=float(pipeline_data.get("attempt_timeout_seconds", 180.0)),
        poll_interval_seconds=float(pipeline_data.get("poll_interval_seconds", 2.0)),
        arithmetic_tolerance=str(pipeline_data.get("arithmetic_tolerance", "0.01")),
        stale_processing_minutes=pipeline_data.get("stale_processing_minutes", 15),
        auto_start=pipeline_data.get("auto_start", True),
    )

    state_db = os.environ.get("IMPORT_STATE_DB", data.get("state_db_path", "data/state.db"))

    return Config(
        storage=storage,
        upload=upload,
        text_backend=text_backend,
        vision_backend=vision_backend,
        pipeline=pipeline,
        state_db_path=Path(state_db),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Document Import Pipeline Configuration
#
# API keys may also be supplied via environment variables:
#   TEXT_BACKEND_API_KEY, VISION_BACKEND_API_KEY

state_db_path: "data/state.db"

storage:
  root_dir: "data/objects"               # Filesystem object store root

upload:
  max_bytes: 20971520                     # 20 MB
  allowed_extensions: [pdf, xml, csv, jpg, jpeg, png, heic, webp]

# Text backend for PDFs (OpenAI-compatible /chat/completions)
text_backend:
  base_url: "https://api.deepseek.com"
  api_key: null
  model: "deepseek-chat"
  timeout_seconds: 60
  max_retries: 2
  cache_ttl_seconds: 3600

# Vision backend for images (Ollama-compatible /v1/chat/completions)
vision_backend:
  base_url: "https://ollama.com"
  api_key: null                           # Not needed for a local server (http://localhost:11434)
  model: "qwen3-vl:235b-instruct"
  timeout_seconds: 120
  max_concurrent: 2
  cache_ttl_seconds: 3600

pipeline:
  max_workers: 4
  attempt_timeout_seconds: 180
  poll_interval_seconds: 2.0
  arithmetic_tolerance: "0.01"
  stale_processing_minutes: 15
  auto_start: true
"""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
