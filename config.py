"""Configuration management for the Compass scan pipeline.

One Config object feeds the scheduler, orchestrator, adapters, agents and
API. Every field can be set from an environment variable.

Environment Variables:
    Credentials (all optional, missing ones disable a capability):
        OPENAI_API_KEY: Generative stages and agentic source search
        EXA_API_KEY: Exa web search adapter
        PUBMED_API_KEY: NCBI E-utilities key (higher rate limit)
        PATENTSVIEW_API_KEY: PatentsView adapter
        SEC_USER_AGENT: Contact header required by SEC EDGAR
        SCAN_SECRET: Bearer secret accepted by POST /scan

    Models (OpenAI model names, or provider:model strings):
        RELEVANCE_MODEL: Relevance filter model
        ENRICHMENT_MODEL: One-sentence summary model
        SEARCH_MODEL: Model driving agentic source search
        DIGEST_MODEL: Digest synthesis model
        LLM_BASE_URL: Optional OpenAI-compatible endpoint

    Pipeline:
        DB_PATH: SQLite database file path
        REPORTS_DIR: Directory for digest markdown reports
        SAVE_DIGEST_REPORTS: Write each persisted digest to REPORTS_DIR
        RSS_URLS: Comma-separated feed list (overrides the default list)
        REQUEST_TIMEOUT_SECONDS: Timeout for one outbound HTTP request
        SOURCE_TIMEOUT_SECONDS: Wall-clock budget for one source adapter
        RETRIES_429_503: Retries for 429/503 responses
        RETRIES_5XX: Retries for other 5xx responses and timeouts
        RETRY_INITIAL_BACKOFF: Initial backoff in seconds (doubles per attempt)

    Scheduling:
        SCHEDULE_TOLERANCE_MINUTES: Allowed distance from the configured slot
        SCHEDULER_INTERVAL_SECONDS: Tick interval for the scheduler loop

    Trigger endpoint:
        APP_URL: Origin treated as same-origin for POST /scan
        API_HOST / API_PORT: Bind address for `main.py serve`

    Optional Features:
        ENABLE_LOGFIRE: Enable Logfire/OpenTelemetry tracing

    Logging:
        LOG_LEVEL: Logging verbosity (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        LOG_BACKUP_COUNT: Number of rotated log files to keep
        LOG_MAX_BYTES: Max log file size in bytes (0 = time-based rotation)
        LOG_FORMAT: Log format ('text' or 'json' for structured logging)
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


def _env_list(key: str, default: list[str]) -> list[str]:
    """Get comma-separated list environment variable with default."""
    val = os.environ.get(key, "")
    items = [part.strip() for part in val.split(",") if part.strip()]
    return items or default.copy()


# Biopharma trade press feeds scanned by the RSS adapter
DEFAULT_RSS_URLS = [
    "https://www.fiercebiotech.com/rss/xml",       # Fierce Biotech
    "https://www.fiercepharma.com/rss/xml",        # Fierce Pharma
    "https://endpts.com/feed/",                    # Endpoints News
    "https://www.biopharmadive.com/feeds/news/",   # BioPharma Dive
    "https://www.statnews.com/feed/",              # STAT
    "https://www.fda.gov/about-fda/contact-fda/stay-informed/rss-feeds/press-releases/rss.xml",  # FDA press
]


@dataclass
class Config:
    """Application configuration loaded from environment variables.

    Use Config.load() to create an instance with values from the environment.

    Example:
        >>> config = Config.load()
        >>> if error := config.validate():
        ...     print(f"Config error: {error}")
    """

    # === Credentials ===
    openai_api_key: str = ""  # OPENAI_API_KEY - generative stages + agentic search
    exa_api_key: str = ""  # EXA_API_KEY
    pubmed_api_key: str = ""  # PUBMED_API_KEY - optional NCBI key
    patentsview_api_key: str = ""  # PATENTSVIEW_API_KEY
    sec_user_agent: str = ""  # SEC_USER_AGENT - e.g. "Acme Research ops@acme.com"
    scan_secret: str = ""  # SCAN_SECRET - bearer secret for POST /scan

    # === AI Models ===
    relevance_model: str = "gpt-4o-mini"  # RELEVANCE_MODEL
    enrichment_model: str = "gpt-4o-mini"  # ENRICHMENT_MODEL
    search_model: str = "gpt-4o-mini"  # SEARCH_MODEL - agentic source search
    digest_model: str = "gpt-4o"  # DIGEST_MODEL
    llm_base_url: str = ""  # LLM_BASE_URL - OpenAI-compatible endpoint

    # === RSS Sources ===
    rss_urls: list[str] = field(default_factory=lambda: DEFAULT_RSS_URLS.copy())

    # === Database / Output ===
    db_path: Path = field(default_factory=lambda: Path("compass.db"))  # DB_PATH
    reports_dir: Path = field(default_factory=lambda: Path("reports"))  # REPORTS_DIR
    save_digest_reports: bool = False  # SAVE_DIGEST_REPORTS

    # === HTTP / Retry Behavior ===
    request_timeout_seconds: float = 30.0  # REQUEST_TIMEOUT_SECONDS
    source_timeout_seconds: float = 300.0  # SOURCE_TIMEOUT_SECONDS
    retries_429_503: int = 3  # RETRIES_429_503
    retries_5xx: int = 1  # RETRIES_5XX
    retry_initial_backoff: float = 2.0  # RETRY_INITIAL_BACKOFF

    # === Scheduling ===
    schedule_tolerance_minutes: int = 20  # SCHEDULE_TOLERANCE_MINUTES
    scheduler_interval_seconds: int = 900  # SCHEDULER_INTERVAL_SECONDS

    # === Trigger Endpoint ===
    app_url: str = "http://localhost:3000"  # APP_URL
    api_host: str = "127.0.0.1"  # API_HOST
    api_port: int = 8000  # API_PORT

    # === Output Directories ===
    log_dir: Path = field(default_factory=lambda: Path("log"))  # LOG_DIR

    # === Logging Configuration ===
    log_level: str = "INFO"  # LOG_LEVEL
    log_backup_count: int = 30  # LOG_BACKUP_COUNT
    log_max_bytes: int = 0  # LOG_MAX_BYTES - 0 = time-based rotation
    log_format: str = "text"  # LOG_FORMAT - 'text' or 'json'

    # === Optional: Observability ===
    # Requires: pip install logfire
    enable_logfire: bool = False  # ENABLE_LOGFIRE
    logfire_token: str = ""  # LOGFIRE_TOKEN

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls(
            openai_api_key=_env("OPENAI_API_KEY"),
            exa_api_key=_env("EXA_API_KEY"),
            pubmed_api_key=_env("PUBMED_API_KEY"),
            patentsview_api_key=_env("PATENTSVIEW_API_KEY"),
            sec_user_agent=_env("SEC_USER_AGENT"),
            scan_secret=_env("SCAN_SECRET"),
            relevance_model=_env("RELEVANCE_MODEL", "gpt-4o-mini"),
            enrichment_model=_env("ENRICHMENT_MODEL", "gpt-4o-mini"),
            search_model=_env("SEARCH_MODEL", "gpt-4o-mini"),
            digest_model=_env("DIGEST_MODEL", "gpt-4o"),
            llm_base_url=_env("LLM_BASE_URL"),
            rss_urls=_env_list("RSS_URLS", DEFAULT_RSS_URLS),
            db_path=Path(_env("DB_PATH", "compass.db")),
            reports_dir=Path(_env("REPORTS_DIR", "reports")),
            save_digest_reports=_env_bool("SAVE_DIGEST_REPORTS", False),
            request_timeout_seconds=_env_float("REQUEST_TIMEOUT_SECONDS", 30.0),
            source_timeout_seconds=_env_float("SOURCE_TIMEOUT_SECONDS", 300.0),
            retries_429_503=_env_int("RETRIES_429_503", 3),
            retries_5xx=_env_int("RETRIES_5XX", 1),
            retry_initial_backoff=_env_float("RETRY_INITIAL_BACKOFF", 2.0),
            schedule_tolerance_minutes=_env_int("SCHEDULE_TOLERANCE_MINUTES", 20),
            scheduler_interval_seconds=_env_int("SCHEDULER_INTERVAL_SECONDS", 900),
            app_url=_env("APP_URL", "http://localhost:3000"),
            api_host=_env("API_HOST", "127.0.0.1"),
            api_port=_env_int("API_PORT", 8000),
            log_dir=Path(_env("LOG_DIR", "log")),
            enable_logfire=_env_bool("ENABLE_LOGFIRE", False),
            logfire_token=_env("LOGFIRE_TOKEN"),
            log_level=_env("LOG_LEVEL", "INFO").upper(),
            log_backup_count=_env_int("LOG_BACKUP_COUNT", 30),
            log_max_bytes=_env_int("LOG_MAX_BYTES", 0),
            log_format=_env("LOG_FORMAT", "text").lower(),
        )

    @property
    def llm_enabled(self) -> bool:
        """True when a generative-model credential is configured."""
        return bool(self.openai_api_key)

    def validate(self) -> str | None:
        """Validate configuration values.

        Credentials are optional: a missing key disables the capability
        that needs it rather than failing the run.

        Returns:
            Error message string if invalid, None if valid.
        """
        if self.request_timeout_seconds <= 0:
            return "REQUEST_TIMEOUT_SECONDS must be positive"
        if self.source_timeout_seconds <= 0:
            return "SOURCE_TIMEOUT_SECONDS must be positive"
        if self.retries_429_503 < 0 or self.retries_5xx < 0:
            return "RETRIES_429_503 and RETRIES_5XX must be non-negative"
        if self.retry_initial_backoff < 0:
            return "RETRY_INITIAL_BACKOFF must be non-negative"
        if not 0 < self.schedule_tolerance_minutes <= 720:
            return "SCHEDULE_TOLERANCE_MINUTES must be between 1 and 720"
        if self.scheduler_interval_seconds <= 0:
            return "SCHEDULER_INTERVAL_SECONDS must be positive"
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            return f"Invalid LOG_LEVEL '{self.log_level}' - must be DEBUG, INFO, WARNING, ERROR, or CRITICAL"
        if self.log_format not in ("text", "json"):
            return f"Invalid LOG_FORMAT '{self.log_format}' - must be 'text' or 'json'"
        if self.log_backup_count < 0:
            return "LOG_BACKUP_COUNT must be non-negative"
        if self.log_max_bytes < 0:
            return "LOG_MAX_BYTES must be non-negative"
        return None
