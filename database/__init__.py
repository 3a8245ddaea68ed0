"""Database module for managing connections to the version store.

This module handles:
- Database connection pool creation
- Schema management
- Connection lifecycle
- Retry policy for readers that collide with a version cutover

The store is any PostgreSQL-compatible server (CockroachDB or PostgreSQL).
There is no module-level pool: callers own the pool returned by
``create_pool`` and hand it to the components that need it.
"""

import logging
import ssl
from typing import Dict, Any
from urllib.parse import urlparse, parse_qs

import asyncpg
import backoff

from .exceptions import DatabaseError, DatabaseSchemaError
from .lib.schema_manager import SchemaManager

logger = logging.getLogger(__name__)

# Errors a reader may hit while a writer commits; the read is simply retried.
RETRYABLE_READ_ERRORS = (
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.DeadlockDetectedError,
)

CONNECT_ERRORS = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.CannotConnectNowError,
    OSError,
)

retry_on_conflict = backoff.on_exception(
    backoff.expo,
    RETRYABLE_READ_ERRORS,
    max_tries=5,
    factor=0.05,
    logger=logger,
)


def _get_ssl_context() -> ssl.SSLContext:
    """Create SSL context for hosted CockroachDB/PostgreSQL connections."""
    ssl_context = ssl.create_default_context()
    ssl_context.verify_mode = ssl.CERT_REQUIRED
    ssl_context.check_hostname = True
    return ssl_context


def _get_connection_kwargs(db_url: str) -> Dict[str, Any]:
    """Get connection kwargs from database URL.

    Args:
        db_url: Database connection URL

    Returns:
        Dict of connection parameters
    """
    parsed = urlparse(db_url)
    params = parse_qs(parsed.query)

    sslmode = params.get('sslmode', ['require'])[0]
    kwargs: Dict[str, Any] = {
        'ssl': False if sslmode == 'disable' else _get_ssl_context(),
        'server_settings': {
            'application_name': 'drifellascape',
            'statement_timeout': '300000',  # 5 minutes
        }
    }
    return kwargs


def _strip_query(db_url: str) -> str:
    """Drop query parameters; asyncpg receives them as keyword arguments instead."""
    return db_url.split('?', 1)[0]


def _database_name(db_url: str) -> str:
    parsed = urlparse(db_url)
    db_name = parsed.path.strip('/')
    if not db_name:
        params = parse_qs(parsed.query)
        db_name = params.get('database', ['defaultdb'])[0]
    return db_name


@backoff.on_exception(backoff.expo, CONNECT_ERRORS, max_tries=5, logger=logger)
async def create_database_if_not_exists(db_url: str) -> None:
    """Create the database if it doesn't exist.

    Args:
        db_url: Database connection URL

    Raises:
        Exception: If database creation fails after retries
    """
    db_name = _database_name(db_url)
    maintenance_db = 'postgres' if db_name == 'defaultdb' else 'defaultdb'
    parsed = urlparse(_strip_query(db_url))
    base_url = parsed._replace(path=f'/{maintenance_db}').geturl()
    logger.info(f"Connecting to {maintenance_db} to create {db_name} if needed")

    try:
        conn = await asyncpg.connect(base_url, **_get_connection_kwargs(db_url))
    except (asyncpg.exceptions.InvalidCatalogNameError,
            asyncpg.exceptions.InsufficientPrivilegeError,
            asyncpg.exceptions.InvalidAuthorizationSpecificationError):
        # No usable maintenance database; assume the target exists.
        logger.debug(f"Maintenance database {maintenance_db} not available")
        return

    try:
        exists = await conn.fetchval(
            'SELECT EXISTS(SELECT 1 FROM pg_database WHERE datname = $1)',
            db_name
        )
        if not exists:
            await conn.execute(f'CREATE DATABASE "{db_name}"')
            logger.info(f"Created database {db_name}")
    finally:
        await conn.close()


@backoff.on_exception(backoff.expo, CONNECT_ERRORS, max_tries=5, logger=logger)
async def create_pool(db_url: str, force_recreate: bool = False,
                      min_size: int = 2, max_size: int = 20) -> asyncpg.Pool:
    """Create a connection pool and bring the schema up to date.

    Args:
        db_url: Database URL
        force_recreate: If True, drop and recreate all tables
        min_size: Minimum idle connections
        max_size: Maximum connections

    Returns:
        The initialized connection pool

    Raises:
        ValueError: If database URL is not provided
        DatabaseSchemaError: If the schema cannot be applied
    """
    if not db_url:
        raise ValueError("Database URL not provided")

    await create_database_if_not_exists(db_url)

    pool = await asyncpg.create_pool(
        _strip_query(db_url),
        min_size=min_size,
        max_size=max_size,
        max_queries=10000,
        max_inactive_connection_lifetime=300.0,
        command_timeout=60.0,
        **_get_connection_kwargs(db_url)
    )

    try:
        schema_manager = SchemaManager(pool)
        if force_recreate:
            logger.info("Force recreate requested. Resetting schema version...")
            await schema_manager.reset()
        await schema_manager.initialize()
    except Exception:
        await pool.close()
        raise

    return pool


async def close_pool(pool: asyncpg.Pool) -> None:
    """Close a connection pool created by ``create_pool``."""
    if pool is not None:
        await pool.close()


__all__ = [
    'create_pool', 'close_pool', 'retry_on_conflict',
    'RETRYABLE_READ_ERRORS', 'DatabaseError', 'DatabaseSchemaError',
]
