"""Database connections and schema for Redis and DuckDB."""

from typing import Optional

import duckdb
from redis.asyncio import Redis
from redis.asyncio.connection import ConnectionPool

from .config import DuckDBConfig, RedisConfig
from .logging import get_logger

logger = get_logger(__name__)

ORDERS_TABLE_DDL = """
    CREATE TABLE IF NOT EXISTS orders (
        order_id VARCHAR PRIMARY KEY,
        token_in VARCHAR NOT NULL,
        token_out VARCHAR NOT NULL,
        amount DECIMAL(20, 8) NOT NULL,
        order_type VARCHAR NOT NULL,
        status VARCHAR NOT NULL,
        submitted_at TIMESTAMP NOT NULL,
        completed_at TIMESTAMP,
        failed_at TIMESTAMP,
        failure_reason VARCHAR,
        venue_id VARCHAR,
        execution_price DECIMAL(20, 8),
        execution_amount DECIMAL(20, 8),
        routing_decision JSON,
        settlement_ref VARCHAR,
        attempts INTEGER DEFAULT 0,
        created_at TIMESTAMP DEFAULT current_timestamp,
        updated_at TIMESTAMP DEFAULT current_timestamp
    )
"""


async def init_redis(config: Optional[RedisConfig] = None) -> Redis:
    """Create a Redis client backed by its own connection pool."""
    config = config or RedisConfig()

    try:
        pool = ConnectionPool(
            host=config.host,
            port=config.port,
            db=config.db,
            password=config.password,
            max_connections=config.max_connections,
            retry_on_timeout=config.retry_on_timeout,
            socket_timeout=config.socket_timeout,
            socket_connect_timeout=config.socket_connect_timeout,
            decode_responses=True,
        )

        client = Redis(connection_pool=pool)

        # Test connection
        await client.ping()
        logger.info("Redis connection established", host=config.host, port=config.port, db=config.db)

        return client

    except Exception as e:
        logger.error("Failed to initialize Redis", exception=e)
        raise


async def close_redis(client: Optional[Redis]) -> None:
    """Close Redis client and its pool."""
    if client is None:
        return

    await client.aclose()
    await client.connection_pool.aclose()
    logger.info("Redis connection closed")


def init_duckdb(config: Optional[DuckDBConfig] = None) -> duckdb.DuckDBPyConnection:
    """Open the DuckDB database and ensure the orders table exists."""
    config = config or DuckDBConfig()

    try:
        conn = duckdb.connect(
            database=config.database_path,
            config={
                "memory_limit": config.memory_limit,
                "threads": config.threads,
            }
        )

        ensure_schema(conn)

        # Test connection
        conn.execute("SELECT 1")
        logger.info("DuckDB connection established", database=config.database_path)

        return conn

    except Exception as e:
        logger.error("Failed to initialize DuckDB", exception=e)
        raise


def ensure_schema(conn: duckdb.DuckDBPyConnection) -> None:
    """Create the orders table if missing."""
    conn.execute(ORDERS_TABLE_DDL)
    logger.info("DuckDB tables created/verified")


def close_duckdb(conn: Optional[duckdb.DuckDBPyConnection]) -> None:
    """Close DuckDB connection."""
    if conn is None:
        return

    conn.close()
    logger.info("DuckDB connection closed")
