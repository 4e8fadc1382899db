"""Configuration management for the video assembly service.

All configuration is read from environment variables exactly once and frozen
into a ``Settings`` object. The object is built at process start (HTTP server
lifespan or CLI entrypoint) and handed to the gateway, engine and orchestrator
explicitly. Nothing below this module reads ``os.environ``.

Environment Variables:
    SUPABASE_URL: Platform base URL (required for the supabase backend)
    SUPABASE_SERVICE_ROLE_KEY: Service role key (required for the supabase backend)
    GATEWAY_BACKEND: "supabase" (default) or "database"
    DATABASE_URL: PostgreSQL URL for the database backend
    FFMPEG_PATH: Encoder executable (default: "ffmpeg")
    ENCODE_MODE: "transcode" (default) or "copy"
    ENCODE_TIMEOUT_SECONDS: Encoder wall-clock limit (default: 900)
    HTTP_TIMEOUT_SECONDS: Network timeout for storage/table calls (default: 60)
    DOWNLOAD_CONCURRENCY: Parallel clip downloads (default: 4, clamped 1-8)
    REQUIRE_VALIDATED_CLIPS: Refuse to process while any clip is not "validated" (default: false)
    PROCESS_VIDEO_API_TOKEN: Bearer token required by the trigger when set

Usage:
    from gregaplay.config import get_settings

    settings = get_settings()
    gateway = build_gateway(settings)
"""

import os
import tempfile
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

from gregaplay.exceptions import ConfigurationError
from gregaplay.utils.logging import get_logger

log = get_logger(__name__)

ENCODE_MODES = ("transcode", "copy")
GATEWAY_BACKENDS = ("supabase", "database")

DEFAULT_ENCODE_TIMEOUT_SECONDS = 900
DEFAULT_HTTP_TIMEOUT_SECONDS = 60.0
DEFAULT_DOWNLOAD_CONCURRENCY = 4
MAX_DOWNLOAD_CONCURRENCY = 8
DEFAULT_METADATA_RETRY_ATTEMPTS = 3


def _get_int(name: str, default: int, minimum: int, maximum: int | None = None) -> int:
    """Read an integer variable, clamping it and falling back on bad input."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        log.warning("invalid_integer_setting", name=name, value=raw, using_default=default)
        return default
    value = max(minimum, value)
    if maximum is not None:
        value = min(maximum, value)
    return value


def _get_float(name: str, default: float, minimum: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return max(minimum, float(raw))
    except ValueError:
        log.warning("invalid_float_setting", name=name, value=raw, using_default=default)
        return default


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _get_choice(name: str, default: str, choices: tuple[str, ...]) -> str:
    value = os.getenv(name, default).strip().lower()
    if value not in choices:
        log.warning("invalid_choice_setting", name=name, value=value, using_default=default)
        return default
    return value


def _normalize_database_url(url: str | None) -> str | None:
    """Convert postgresql:// to postgresql+asyncpg:// for async SQLAlchemy."""
    if url and url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


@dataclass(frozen=True)
class Settings:
    """Immutable process configuration.

    Attributes:
        supabase_url: Platform base URL, without trailing slash
        supabase_service_key: Service role key used for storage and table calls
        storage_bucket: Bucket holding participant clips and final videos
        clips_table: Table listing clips (one row per submitted video)
        events_table: Table holding event rows
        gateway_backend: Which gateway implementation to build
        database_url: Async SQLAlchemy URL for the database backend
        local_storage_root: Object root for the database backend
        public_base_url: Public URL prefix for objects in the database backend
        ffmpeg_path: Encoder executable
        encode_mode: "transcode" (robust default) or "copy" (stream copy)
        encode_timeout_seconds: Encoder wall-clock limit
        http_timeout_seconds: Timeout for every network call
        download_concurrency: Bounded parallelism for clip downloads
        metadata_retry_attempts: Attempts for list/read/update operations
        staging_root: Parent directory for per-run staging directories
        require_validated_clips: Refuse runs while any clip is not validated
        api_token: Bearer token required by the HTTP trigger, if any
        cors_allow_origins: Origins allowed to call the HTTP trigger
    """

    supabase_url: str | None = None
    supabase_service_key: str | None = field(default=None, repr=False)
    storage_bucket: str = "videos"
    clips_table: str = "videos"
    events_table: str = "events"
    gateway_backend: str = "supabase"
    database_url: str | None = None
    local_storage_root: Path = Path("storage")
    public_base_url: str = "http://localhost:4000/storage"
    ffmpeg_path: str = "ffmpeg"
    encode_mode: str = "transcode"
    encode_timeout_seconds: int = DEFAULT_ENCODE_TIMEOUT_SECONDS
    http_timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS
    download_concurrency: int = DEFAULT_DOWNLOAD_CONCURRENCY
    metadata_retry_attempts: int = DEFAULT_METADATA_RETRY_ATTEMPTS
    staging_root: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    require_validated_clips: bool = False
    api_token: str | None = field(default=None, repr=False)
    cors_allow_origins: tuple[str, ...] = ("*",)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the current environment.

        Returns:
            Settings populated from environment variables with defaults applied.
        """
        supabase_url = os.getenv("SUPABASE_URL")
        origins = os.getenv("CORS_ALLOW_ORIGINS", "*")
        staging_root = os.getenv("STAGING_ROOT")

        return cls(
            supabase_url=supabase_url.rstrip("/") if supabase_url else None,
            supabase_service_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY"),
            storage_bucket=os.getenv("STORAGE_BUCKET", "videos"),
            clips_table=os.getenv("CLIPS_TABLE", "videos"),
            events_table=os.getenv("EVENTS_TABLE", "events"),
            gateway_backend=_get_choice("GATEWAY_BACKEND", "supabase", GATEWAY_BACKENDS),
            database_url=_normalize_database_url(os.getenv("DATABASE_URL")),
            local_storage_root=Path(os.getenv("LOCAL_STORAGE_ROOT", "storage")),
            public_base_url=os.getenv(
                "PUBLIC_BASE_URL", "http://localhost:4000/storage"
            ).rstrip("/"),
            ffmpeg_path=os.getenv("FFMPEG_PATH", "ffmpeg"),
            encode_mode=_get_choice("ENCODE_MODE", "transcode", ENCODE_MODES),
            encode_timeout_seconds=_get_int(
                "ENCODE_TIMEOUT_SECONDS", DEFAULT_ENCODE_TIMEOUT_SECONDS, minimum=10
            ),
            http_timeout_seconds=_get_float(
                "HTTP_TIMEOUT_SECONDS", DEFAULT_HTTP_TIMEOUT_SECONDS, minimum=1.0
            ),
            download_concurrency=_get_int(
                "DOWNLOAD_CONCURRENCY",
                DEFAULT_DOWNLOAD_CONCURRENCY,
                minimum=1,
                maximum=MAX_DOWNLOAD_CONCURRENCY,
            ),
            metadata_retry_attempts=_get_int(
                "METADATA_RETRY_ATTEMPTS", DEFAULT_METADATA_RETRY_ATTEMPTS, minimum=1, maximum=10
            ),
            staging_root=Path(staging_root) if staging_root else Path(tempfile.gettempdir()),
            require_validated_clips=_get_bool("REQUIRE_VALIDATED_CLIPS", False),
            api_token=os.getenv("PROCESS_VIDEO_API_TOKEN") or None,
            cors_allow_origins=tuple(
                origin.strip() for origin in origins.split(",") if origin.strip()
            )
            or ("*",),
        )

    def require_supabase(self) -> tuple[str, str]:
        """Return (url, service_key) or raise if either is missing.

        Raises:
            ConfigurationError: If SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY is unset.
        """
        if not self.supabase_url or not self.supabase_service_key:
            raise ConfigurationError(
                "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required for the supabase backend"
            )
        return self.supabase_url, self.supabase_service_key

    def require_database_url(self) -> str:
        """Return the async database URL or raise if unset."""
        if not self.database_url:
            raise ConfigurationError("DATABASE_URL is required for the database backend")
        return self.database_url


@lru_cache
def get_settings() -> Settings:
    """Load ``.env`` (if present) and build the process-wide settings once."""
    load_dotenv()
    settings = Settings.from_env()
    log.info(
        "settings_loaded",
        gateway_backend=settings.gateway_backend,
        encode_mode=settings.encode_mode,
        encode_timeout_seconds=settings.encode_timeout_seconds,
        download_concurrency=settings.download_concurrency,
        require_validated_clips=settings.require_validated_clips,
        auth_enforced=settings.api_token is not None,
    )
    return settings
