"""
Database and cache connection management for linkgate.

SQLAlchemy engine/session factory for the page store and the Redis client used
by the holdings cache, rate limiter and click analytics.
"""

import logging
from contextlib import contextmanager
from typing import Any, Generator, Mapping, Optional

import redis
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

from linkgate.errors import ConfigurationError
from linkgate.models import Base
from linkgate.storage import MemoryStore

logger = logging.getLogger(__name__)

# Global database engine and session factory
_engine = None
_SessionFactory = None
_redis_client = None


def init_database(db_url: str, echo: bool = False, create_tables: bool = False) -> scoped_session:
    """
    Initialize database engine and session factory.

    Args:
        db_url: SQLAlchemy database URL
        echo: If True, log all SQL statements
        create_tables: If True, create all tables (SQLite URLs always do)

    Returns:
        Scoped session factory
    """
    global _engine, _SessionFactory

    if _engine is not None:
        close_database()

    engine_kwargs = {"echo": echo, "pool_pre_ping": True}

    if db_url.startswith("sqlite"):
        # SQLite (especially in-memory) doesn't support the same pooling args
        # as PostgreSQL. In-memory databases must share one connection.
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in db_url or db_url in ("sqlite://", "sqlite:///"):
            engine_kwargs["poolclass"] = StaticPool
        create_tables = True
    else:
        engine_kwargs.update(
            {
                "pool_size": 10,
                "max_overflow": 20,
                "pool_recycle": 3600,
                "connect_args": {"connect_timeout": 10},
            }
        )

    _engine = create_engine(db_url, **engine_kwargs)
    _SessionFactory = scoped_session(sessionmaker(bind=_engine, expire_on_commit=False))

    if create_tables:
        Base.metadata.create_all(_engine)

    logger.info(f"Database initialized: {db_url.split('@')[1] if '@' in db_url else db_url.split(':')[0]}")
    return _SessionFactory


@contextmanager
def session_scope(session_factory) -> Generator[Session, None, None]:
    """
    Provide a transactional scope for database operations.

    Usage:
        with session_scope(factory) as session:
            page = session.query(Page).filter_by(slug=slug).first()
            # Automatically commits on success, rolls back on error
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Database transaction failed: {e}")
        raise
    finally:
        session.close()


def close_database() -> None:
    """
    Close database connections and clean up.
    """
    global _engine, _SessionFactory

    if _SessionFactory:
        _SessionFactory.remove()
        _SessionFactory = None

    if _engine:
        _engine.dispose()
        _engine = None

    logger.info("Database connections closed")


def check_database_health() -> dict:
    """
    Check database connection health.
    """
    if _engine is None:
        return {"status": "unavailable", "connected": False, "error": "Database not initialized"}
    try:
        with _engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return {"status": "healthy", "connected": True}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {"status": "unhealthy", "connected": False, "error": str(e)}


# ============================================================================
# Redis Connection Management
# ============================================================================


def build_redis_client(cfg: Mapping[str, Any]) -> redis.Redis:
    """Create a Redis client from configuration without connecting."""
    common = {
        "decode_responses": True,  # Return strings instead of bytes
        "socket_connect_timeout": 5,
        "socket_timeout": 5,
        "health_check_interval": 30,
    }
    if cfg.get("REDIS_URL"):
        return redis.Redis.from_url(str(cfg["REDIS_URL"]), **common)

    return redis.Redis(
        host=cfg.get("REDIS_HOST", "localhost"),
        port=cfg.get("REDIS_PORT", 6379),
        password=cfg.get("REDIS_PASSWORD"),
        db=cfg.get("REDIS_DB", 0),
        max_connections=50,
        **common,
    )


def init_redis(cfg: Mapping[str, Any]):
    """
    Initialize the shared key-value store for holdings and rate limits.

    Returns a ``redis.Redis`` client, or a process-local ``MemoryStore`` when
    ``CACHE_BACKEND=memory`` or Redis is unreachable outside production.

    Raises:
        ConfigurationError: Redis is configured but unreachable in production,
            where workers must share one counter per wallet.
    """
    global _redis_client

    if str(cfg.get("CACHE_BACKEND", "redis")).lower() == "memory":
        logger.info("Using in-memory holdings cache (CACHE_BACKEND=memory)")
        _redis_client = MemoryStore()
        return _redis_client

    try:
        client = build_redis_client(cfg)
        client.ping()
        _redis_client = client
        logger.info(f"Redis initialized: {cfg.get('REDIS_URL') and 'REDIS_URL' or cfg.get('REDIS_HOST')}")
    except redis.RedisError as e:
        logger.error(f"Failed to initialize Redis: {e}")
        if cfg.get("FLASK_ENV") == "production":
            raise ConfigurationError(f"Redis is unreachable: {e}") from e
        logger.warning("Falling back to in-memory holdings cache; rate limits are per process")
        _redis_client = MemoryStore()

    return _redis_client


def get_redis() -> Optional[Any]:
    """
    Get the key-value store instance, or None before initialization.
    """
    return _redis_client


def close_redis() -> None:
    """
    Close Redis connection.
    """
    global _redis_client

    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None
        logger.info("Redis connection closed")


def check_redis_health(client: Optional[Any] = None, configured_backend: Optional[str] = None) -> dict:
    """
    Check key-value store health.

    A ``MemoryStore`` standing in for a configured Redis reports ``degraded``:
    each worker then keeps its own holdings cache and rate-limit counters.
    """
    client = client if client is not None else _redis_client
    if client is None:
        return {"status": "unavailable", "cache": "redis", "connected": False, "error": "Redis not initialized"}

    backend = "memory" if isinstance(client, MemoryStore) else "redis"
    try:
        client.ping()
        if backend == "memory" and str(configured_backend or "").lower() == "redis":
            return {
                "status": "degraded",
                "cache": backend,
                "connected": False,
                "error": "Redis unreachable; holdings cache and rate limits are per process",
            }
        return {"status": "healthy", "cache": backend, "connected": True}
    except redis.RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        return {"status": "unhealthy", "cache": backend, "connected": False, "error": str(e)}


def close_all() -> None:
    """
    Close all connections.
    """
    close_database()
    close_redis()

    logger.info("All connections closed")
