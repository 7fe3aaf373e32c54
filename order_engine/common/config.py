"""Configuration management for the order execution engine."""

from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .types import Venue


class ServerConfig(BaseModel):
    """HTTP / WebSocket server configuration."""

    host: str = "0.0.0.0"
    port: int = 3000


class RedisConfig(BaseModel):
    """Redis configuration (ephemeral order store)."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None

    # Connection pool settings
    max_connections: int = 20
    retry_on_timeout: bool = True
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0

    # Order snapshots
    order_ttl_seconds: int = 24 * 60 * 60
    order_key_prefix: str = "order:"
    active_orders_key: str = "orders:active"


class DuckDBConfig(BaseModel):
    """DuckDB configuration (durable order history)."""

    database_path: str = "data/order_engine.db"
    memory_limit: str = "1GB"
    threads: int = 4


class VenueProfile(BaseModel):
    """Sampling bands for a simulated venue."""

    rate_min: float
    rate_max: float
    fee_min: float  # fraction of input amount
    fee_max: float
    liquidity_min: float
    liquidity_max: float


def _default_venue_profiles() -> Dict[Venue, VenueProfile]:
    return {
        # Tighter band, lower fee, deeper liquidity
        Venue.RAYDIUM: VenueProfile(
            rate_min=95.0, rate_max=105.0,
            fee_min=0.0025, fee_max=0.003,
            liquidity_min=1_000_000.0, liquidity_max=5_000_000.0,
        ),
        # Wider band, higher fee, shallower liquidity
        Venue.METEORA: VenueProfile(
            rate_min=97.0, rate_max=108.0,
            fee_min=0.003, fee_max=0.005,
            liquidity_min=500_000.0, liquidity_max=3_000_000.0,
        ),
    }


class QuoteConfig(BaseModel):
    """Quote engine and routing configuration."""

    latency_seconds: float = 0.2
    venues: Dict[Venue, VenueProfile] = Field(default_factory=_default_venue_profiles)
    primary_venue: Venue = Venue.RAYDIUM
    seed: Optional[int] = None


class ExecutionConfig(BaseModel):
    """Settlement simulation configuration."""

    min_delay_seconds: float = 2.0
    max_delay_seconds: float = 3.0
    max_slippage_pct: float = 0.005
    seed: Optional[int] = None


class WorkerConfig(BaseModel):
    """Order worker state machine configuration."""

    build_delay_seconds: float = 0.5
    max_attempts: int = 3
    backoff_base_seconds: float = 2.0
    backoff_max_seconds: float = 8.0


class QueueConfig(BaseModel):
    """Job queue configuration."""

    concurrency: int = 10
    rate_limit_max: int = 100  # admissions per window
    rate_limit_window_seconds: float = 60.0


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # File settings
    log_file: str = "logs/order_engine.log"
    max_file_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5

    # Structured logging
    use_json: bool = True
    add_caller_info: bool = False


class MonitoringConfig(BaseModel):
    """Monitoring and metrics configuration."""

    prometheus_port: int = 9090

    # Health checks
    redis_health_timeout: float = 1.0
    duckdb_health_timeout: float = 2.0


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    # Environment
    environment: str = "development"
    debug: bool = False

    # Component configurations
    server: ServerConfig = Field(default_factory=ServerConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    duckdb: DuckDBConfig = Field(default_factory=DuckDBConfig)
    quotes: QuoteConfig = Field(default_factory=QuoteConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    def ensure_directories(self) -> None:
        """Create necessary directories."""
        directories = [
            Path(self.logging.log_file).parent,
        ]
        if self.duckdb.database_path != ":memory:":
            directories.append(Path(self.duckdb.database_path).parent)

        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)


# Global settings instance
settings = Settings()
