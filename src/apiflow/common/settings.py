from typing import List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Load environment variables from .env into os.environ
load_dotenv()


class Settings(BaseSettings):
    """Application configuration settings backed by environment variables."""

    config_store_path: str = Field(
        default="data/apiflow.db",
        validation_alias="CONFIG_STORE_PATH",
        description="SQLite file holding connections, endpoints, API keys and plans."
    )
    seed_config_path: Optional[str] = Field(
        default=None,
        validation_alias="SEED_CONFIG",
        description="Optional YAML file loaded into the config store at startup."
    )

    redis_url: Optional[str] = Field(
        default=None,
        validation_alias="REDIS_URL",
        description="Redis URL for the response cache and usage counters. In-process stores are used when unset."
    )
    cache_ttl_seconds: int = Field(
        default=60,
        validation_alias="CACHE_TTL_SECONDS",
        description="TTL applied to every cached GET response."
    )
    cache_max_entries: int = Field(
        default=10_000,
        validation_alias="CACHE_MAX_ENTRIES",
        description="LRU bound for the in-process cache."
    )
    public_cache_before_auth: bool = Field(
        default=True,
        validation_alias="PUBLIC_CACHE_BEFORE_AUTH",
        description="Serve public GET cache hits before verifying the API key."
    )

    statement_timeout_ms: int = Field(
        default=15000,
        validation_alias="STATEMENT_TIMEOUT_MS",
        description="Per-operation timeout handed to engine drivers that support one."
    )

    adapter_idle_timeout_sec: int = Field(
        default=900,
        validation_alias="ADAPTER_IDLE_TIMEOUT_SEC",
        description="Adapters unused for longer than this are disconnected by the sweeper."
    )
    adapter_sweep_interval_sec: int = Field(
        default=60,
        validation_alias="ADAPTER_SWEEP_INTERVAL_SEC",
    )
    connect_breaker_fail_max: int = Field(
        default=3,
        validation_alias="CONNECT_BREAKER_FAIL_MAX",
        description="Consecutive connect failures before a connection's breaker opens."
    )
    connect_breaker_reset_sec: int = Field(
        default=30,
        validation_alias="CONNECT_BREAKER_RESET_SEC",
    )

    session_token_secret: Optional[str] = Field(default=None, validation_alias="SESSION_TOKEN_SECRET")
    session_token_algorithms: List[str] = Field(
        default_factory=lambda: ["HS256"],
        validation_alias="SESSION_TOKEN_ALGORITHMS",
    )
    cron_secret: Optional[str] = Field(default=None, validation_alias="CRON_SECRET")

    analytics_log_path: str = Field(
        default="logs/api_requests.log",
        validation_alias="ANALYTICS_LOG_PATH",
        description="Path to the request analytics log file."
    )
    analytics_workers: int = Field(default=2, validation_alias="ANALYTICS_WORKERS")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_json: bool = Field(default=False, validation_alias="LOG_JSON")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    def configure_env(self, env: str) -> None:
        """Loads environment-specific variables and reloads settings."""
        if not env:
            return

        load_dotenv(f".env.{env}", override=True)
        new_settings = Settings()
        self.__dict__.update(new_settings.__dict__)


settings = Settings()

# Configure logging during import
from apiflow.common.logger import configure_logging
configure_logging(
    level=settings.log_level,
    json_format=settings.log_json
)
