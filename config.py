"""Configuration management for the media scanner.

All settings are loaded from environment variables with sensible defaults.

Environment Variables:
    Required:
        GEMINI_API_KEY: Google Gemini API key for the AI agents

    Models (PydanticAI format - provider:model):
        CLASSIFIER_MODEL: Model scoring article relevance against topics
        GENERATOR_MODEL: Model drafting social posts
        SUMMARY_MODEL: Model writing the daily digest

    Storage:
        DB_PATH: SQLite database file path (articles, sources, jobs)
        REDIS_URL: Dedup cache URL (empty = in-process cache)
        DEDUP_CACHE_TTL_DAYS: Lifetime of dedup cache marks
        DEDUP_BATCH_SIZE: Max hashes per store lookup

    Fetching:
        FETCH_TIMEOUT_SECONDS: Hard timeout per feed request
        FETCH_MAX_ATTEMPTS: Retry attempts for transient failures
        FETCH_RETRY_INITIAL_DELAY / FETCH_RETRY_MAX_DELAY: Backoff bounds
        SOURCE_RATE_CAPACITY / SOURCE_RATE_INTERVAL_SECONDS: Per-source bucket
        CIRCUIT_FAILURE_THRESHOLD / CIRCUIT_RESET_SECONDS: Per-source breaker
        MAX_ARTICLE_AGE_DAYS: Freshness horizon for feed items

    Orchestration:
        INCREMENTAL_BATCH_SIZE: Max sources per incremental scan
        PRIORITY_CATEGORY: Source category fetched first on full scans
        ARTICLE_RETENTION_DAYS / SCAN_LOG_RETENTION_DAYS / SUMMARY_RETENTION_DAYS

    Queues:
        FETCH_CONCURRENCY, FETCH_JOBS_PER_MINUTE
        ANALYSIS_CONCURRENCY, ANALYSIS_JOBS_PER_MINUTE
        GENERATION_CONCURRENCY, GENERATION_JOBS_PER_MINUTE
        JOB_TIMEOUT_SECONDS: Hard timeout per job attempt
        QUEUE_POLL_SECONDS: Worker idle poll interval

    Output:
        LANGUAGE: Output language for AI text ('fr' or 'en')
        GENERATION_THRESHOLD: Best topic score that triggers post drafting

    Optional Features:
        ENABLE_LOGFIRE: Enable Logfire/OpenTelemetry tracing

    Logging:
        LOG_LEVEL, LOG_DIR, LOG_BACKUP_COUNT, LOG_MAX_BYTES, LOG_FORMAT
"""

import os
from dataclasses import dataclass, field
from pathlib import Path


def _env(key: str, default: str = "") -> str:
    """Get string environment variable with optional default."""
    return os.environ.get(key, default)


def _env_int(key: str, default: int) -> int:
    """Get integer environment variable with default.

    Args:
        key: Environment variable name
        default: Value to return if not set

    Returns:
        Parsed integer or default value

    Raises:
        ValueError: If value is set but cannot be parsed as integer
    """
    val = os.environ.get(key)
    if not val:
        return default
    try:
        return int(val)
    except ValueError:
        raise ValueError(f"Invalid integer value for {key}: '{val}'")


def _env_float(key: str, default: float) -> float:
    """Get float environment variable with default.

    Raises:
        ValueError: If value is set but cannot be parsed as float
    """
    val = os.environ.get(key)
    if not val:
        return default
    try:
        return float(val)
    except ValueError:
        raise ValueError(f"Invalid float value for {key}: '{val}'")


def _env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable with default.

    Recognizes truthy values: '1', 'true', 'yes', 'on'
    Recognizes falsy values: '0', 'false', 'no', 'off'
    """
    val = os.environ.get(key, "").lower()
    if val in ("1", "true", "yes", "on"):
        return True
    if val in ("0", "false", "no", "off"):
        return False
    return default


DEFAULT_MODEL = "google-gla:gemini-3-flash-preview"


@dataclass
class Config:
    """Application configuration loaded from environment variables.

    Example:
        >>> config = Config.load()
        >>> if error := config.validate():
        ...     print(f"Config error: {error}")
    """

    # === Required ===
    gemini_api_key: str = ""  # GEMINI_API_KEY

    # === AI Models ===
    classifier_model: str = DEFAULT_MODEL  # CLASSIFIER_MODEL
    generator_model: str = DEFAULT_MODEL  # GENERATOR_MODEL
    summary_model: str = DEFAULT_MODEL  # SUMMARY_MODEL
    language: str = "fr"  # LANGUAGE - 'fr' or 'en'
    generation_threshold: float = 0.6  # GENERATION_THRESHOLD

    # === Storage ===
    db_path: Path = field(default_factory=lambda: Path("scanner.db"))  # DB_PATH
    redis_url: str = ""  # REDIS_URL - empty selects the in-process cache
    dedup_cache_ttl_days: int = 7  # DEDUP_CACHE_TTL_DAYS
    dedup_batch_size: int = 100  # DEDUP_BATCH_SIZE

    # === Fetching ===
    fetch_timeout_seconds: int = 30  # FETCH_TIMEOUT_SECONDS
    fetch_max_attempts: int = 3  # FETCH_MAX_ATTEMPTS
    fetch_retry_initial_delay: float = 2.0  # FETCH_RETRY_INITIAL_DELAY
    fetch_retry_max_delay: float = 15.0  # FETCH_RETRY_MAX_DELAY
    source_rate_capacity: int = 10  # SOURCE_RATE_CAPACITY
    source_rate_interval_seconds: float = 60.0  # SOURCE_RATE_INTERVAL_SECONDS
    circuit_failure_threshold: int = 5  # CIRCUIT_FAILURE_THRESHOLD
    circuit_reset_seconds: float = 300.0  # CIRCUIT_RESET_SECONDS
    max_article_age_days: int = 7  # MAX_ARTICLE_AGE_DAYS

    # === Orchestration ===
    incremental_batch_size: int = 20  # INCREMENTAL_BATCH_SIZE
    priority_category: str = "national"  # PRIORITY_CATEGORY
    article_retention_days: int = 90  # ARTICLE_RETENTION_DAYS
    scan_log_retention_days: int = 30  # SCAN_LOG_RETENTION_DAYS
    summary_retention_days: int = 90  # SUMMARY_RETENTION_DAYS

    # === Queues ===
    fetch_concurrency: int = 5  # FETCH_CONCURRENCY
    fetch_jobs_per_minute: int = 20  # FETCH_JOBS_PER_MINUTE
    analysis_concurrency: int = 3  # ANALYSIS_CONCURRENCY
    analysis_jobs_per_minute: int = 30  # ANALYSIS_JOBS_PER_MINUTE
    generation_concurrency: int = 2  # GENERATION_CONCURRENCY
    generation_jobs_per_minute: int = 20  # GENERATION_JOBS_PER_MINUTE
    job_timeout_seconds: int = 300  # JOB_TIMEOUT_SECONDS
    queue_poll_seconds: float = 1.0  # QUEUE_POLL_SECONDS

    # === Logging Configuration ===
    log_dir: Path = field(default_factory=lambda: Path("log"))  # LOG_DIR
    log_level: str = "INFO"  # LOG_LEVEL
    log_backup_count: int = 30  # LOG_BACKUP_COUNT
    log_max_bytes: int = 0  # LOG_MAX_BYTES - 0 = time-based rotation
    log_format: str = "text"  # LOG_FORMAT - 'text' or 'json'

    # === Optional: Observability ===
    enable_logfire: bool = False  # ENABLE_LOGFIRE
    logfire_token: str = ""  # LOGFIRE_TOKEN

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls(
            gemini_api_key=_env("GEMINI_API_KEY"),
            classifier_model=_env("CLASSIFIER_MODEL", DEFAULT_MODEL),
            generator_model=_env("GENERATOR_MODEL", DEFAULT_MODEL),
            summary_model=_env("SUMMARY_MODEL", DEFAULT_MODEL),
            language=_env("LANGUAGE", "fr").lower(),
            generation_threshold=_env_float("GENERATION_THRESHOLD", 0.6),
            db_path=Path(_env("DB_PATH", "scanner.db")),
            redis_url=_env("REDIS_URL"),
            dedup_cache_ttl_days=_env_int("DEDUP_CACHE_TTL_DAYS", 7),
            dedup_batch_size=_env_int("DEDUP_BATCH_SIZE", 100),
            fetch_timeout_seconds=_env_int("FETCH_TIMEOUT_SECONDS", 30),
            fetch_max_attempts=_env_int("FETCH_MAX_ATTEMPTS", 3),
            fetch_retry_initial_delay=_env_float("FETCH_RETRY_INITIAL_DELAY", 2.0),
            fetch_retry_max_delay=_env_float("FETCH_RETRY_MAX_DELAY", 15.0),
            source_rate_capacity=_env_int("SOURCE_RATE_CAPACITY", 10),
            source_rate_interval_seconds=_env_float("SOURCE_RATE_INTERVAL_SECONDS", 60.0),
            circuit_failure_threshold=_env_int("CIRCUIT_FAILURE_THRESHOLD", 5),
            circuit_reset_seconds=_env_float("CIRCUIT_RESET_SECONDS", 300.0),
            max_article_age_days=_env_int("MAX_ARTICLE_AGE_DAYS", 7),
            incremental_batch_size=_env_int("INCREMENTAL_BATCH_SIZE", 20),
            priority_category=_env("PRIORITY_CATEGORY", "national"),
            article_retention_days=_env_int("ARTICLE_RETENTION_DAYS", 90),
            scan_log_retention_days=_env_int("SCAN_LOG_RETENTION_DAYS", 30),
            summary_retention_days=_env_int("SUMMARY_RETENTION_DAYS", 90),
            fetch_concurrency=_env_int("FETCH_CONCURRENCY", 5),
            fetch_jobs_per_minute=_env_int("FETCH_JOBS_PER_MINUTE", 20),
            analysis_concurrency=_env_int("ANALYSIS_CONCURRENCY", 3),
            analysis_jobs_per_minute=_env_int("ANALYSIS_JOBS_PER_MINUTE", 30),
            generation_concurrency=_env_int("GENERATION_CONCURRENCY", 2),
            generation_jobs_per_minute=_env_int("GENERATION_JOBS_PER_MINUTE", 20),
            job_timeout_seconds=_env_int("JOB_TIMEOUT_SECONDS", 300),
            queue_poll_seconds=_env_float("QUEUE_POLL_SECONDS", 1.0),
            log_dir=Path(_env("LOG_DIR", "log")),
            log_level=_env("LOG_LEVEL", "INFO").upper(),
            log_backup_count=_env_int("LOG_BACKUP_COUNT", 30),
            log_max_bytes=_env_int("LOG_MAX_BYTES", 0),
            log_format=_env("LOG_FORMAT", "text").lower(),
            enable_logfire=_env_bool("ENABLE_LOGFIRE", False),
            logfire_token=_env("LOGFIRE_TOKEN"),
        )

    def validate(self, require_api_key: bool = True) -> str | None:
        """Validate configuration for required fields and valid values.

        Args:
            require_api_key: Whether GEMINI_API_KEY must be set. Commands that
                only touch the store or enqueue jobs pass False.

        Returns:
            Error message string if invalid, None if valid.
        """
        if require_api_key and not self.gemini_api_key:
            return "GEMINI_API_KEY environment variable is required"
        if self.language not in ("fr", "en"):
            return f"Invalid LANGUAGE '{self.language}' - must be 'fr' or 'en'"
        if not 0.0 <= self.generation_threshold <= 1.0:
            return "GENERATION_THRESHOLD must be between 0 and 1"
        positive = {
            "DEDUP_CACHE_TTL_DAYS": self.dedup_cache_ttl_days,
            "DEDUP_BATCH_SIZE": self.dedup_batch_size,
            "FETCH_TIMEOUT_SECONDS": self.fetch_timeout_seconds,
            "FETCH_MAX_ATTEMPTS": self.fetch_max_attempts,
            "SOURCE_RATE_CAPACITY": self.source_rate_capacity,
            "SOURCE_RATE_INTERVAL_SECONDS": self.source_rate_interval_seconds,
            "CIRCUIT_FAILURE_THRESHOLD": self.circuit_failure_threshold,
            "MAX_ARTICLE_AGE_DAYS": self.max_article_age_days,
            "INCREMENTAL_BATCH_SIZE": self.incremental_batch_size,
            "FETCH_CONCURRENCY": self.fetch_concurrency,
            "ANALYSIS_CONCURRENCY": self.analysis_concurrency,
            "GENERATION_CONCURRENCY": self.generation_concurrency,
            "JOB_TIMEOUT_SECONDS": self.job_timeout_seconds,
        }
        for name, value in positive.items():
            if value <= 0:
                return f"{name} must be positive"
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            return f"Invalid LOG_LEVEL '{self.log_level}' - must be DEBUG, INFO, WARNING, ERROR, or CRITICAL"
        if self.log_format not in ("text", "json"):
            return f"Invalid LOG_FORMAT '{self.log_format}' - must be 'text' or 'json'"
        if self.log_backup_count < 0:
            return "LOG_BACKUP_COUNT must be non-negative"
        if self.log_max_bytes < 0:
            return "LOG_MAX_BYTES must be non-negative"
        return None
