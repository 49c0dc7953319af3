"""
Database connection and session management for Sim.

SQLAlchemy engine with pooling plus an optional Redis client.
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

import redis
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import Session, scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

from sim.config import get_config
from sim.models import Base

logger = logging.getLogger(__name__)

# Global database engine and session factory
_engine = None
_SessionFactory = None
_redis_client = None


def get_database_url() -> str:
    """
    Get database URL from configuration.

    Returns:
        Database connection URL
    """
    config = get_config()
    db_url = config.get("DATABASE_URL")

    if not db_url:
        db_host = config.get("DB_HOST", "localhost")
        db_port = config.get("DB_PORT", 5432)
        db_user = config.get("DB_USER", "sim")
        db_password = config.get("DB_PASSWORD") or "sim"
        db_name = config.get("DB_NAME", "sim")

        db_url = f"postgresql://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"

    return db_url


def init_database(db_url: Optional[str] = None, echo: bool = False, create_tables: bool = False) -> None:
    """
    Initialize database engine and session factory.

    Args:
        db_url: Explicit database URL, defaults to the environment configuration
        echo: If True, log all SQL statements
        create_tables: If True, create all tables (use migrations in production)
    """
    global _engine, _SessionFactory

    if _engine is not None:
        logger.warning("Database already initialized")
        return

    db_url = db_url or get_database_url()

    engine_kwargs = {
        "echo": echo,
        "pool_pre_ping": True,
    }

    if db_url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in db_url or db_url == "sqlite://":
            # One shared connection, otherwise every checkout sees an empty database
            engine_kwargs["poolclass"] = StaticPool
    else:
        engine_kwargs.update(
            {
                "pool_size": 10,
                "max_overflow": 20,
                "pool_recycle": 3600,
                "connect_args": {"connect_timeout": 10, "options": "-c timezone=utc"},
            }
        )

    _engine = create_engine(db_url, **engine_kwargs)

    @event.listens_for(_engine, "connect")
    def receive_connect(dbapi_conn, connection_record):
        logger.debug("New database connection established")

    session_factory = sessionmaker(bind=_engine, expire_on_commit=False)
    _SessionFactory = scoped_session(session_factory)

    if create_tables:
        logger.info("Creating database tables")
        Base.metadata.create_all(_engine)

    logger.info(f"Database initialized: {db_url.split('@')[1] if '@' in db_url else db_url.split(':')[0]}")


def get_session() -> Session:
    """
    Get a database session.

    Raises:
        RuntimeError: If database not initialized
    """
    if _SessionFactory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    return _SessionFactory()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Provide a transactional scope for database operations.

    Usage:
        with session_scope() as session:
            advisor = session.query(Advisor).filter_by(id=advisor_id).first()
            session.add(new_object)
            # Automatically commits on success, rolls back on error
    """
    session = get_session()
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

    Returns:
        Dictionary with health status
    """
    try:
        with session_scope() as session:
            session.execute(text("SELECT 1"))

        return {"status": "healthy", "connected": True, "dialect": _engine.dialect.name}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {"status": "unhealthy", "connected": False, "error": str(e)}


# ============================================================================
# Redis Connection Management
# ============================================================================


def init_redis(redis_url: Optional[str] = None) -> None:
    """
    Initialize Redis for wallet challenges and rate limiting.

    Redis is optional: without a URL the in-memory storage backend is used.
    """
    global _redis_client

    if _redis_client is not None:
        logger.warning("Redis already initialized")
        return

    redis_url = redis_url or get_config().get("REDIS_URL")
    if not redis_url:
        logger.info("REDIS_URL not set - using in-memory challenge storage")
        return

    try:
        _redis_client = redis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            health_check_interval=30,
        )
        _redis_client.ping()
        logger.info("Redis initialized")
    except redis.RedisError as e:
        logger.error(f"Failed to initialize Redis: {e}")
        logger.warning("Falling back to in-memory challenge storage")
        _redis_client = None


def get_redis() -> Optional[redis.Redis]:
    """
    Get Redis client instance.

    Returns:
        Redis client or None if not available
    """
    return _redis_client


def close_redis() -> None:
    """
    Close Redis connection.
    """
    global _redis_client

    if _redis_client:
        _redis_client.close()
        _redis_client = None
        logger.info("Redis connection closed")


def check_redis_health() -> dict:
    """
    Check Redis connection health.
    """
    if _redis_client is None:
        return {"status": "unavailable", "connected": False, "error": "Redis not initialized"}

    try:
        _redis_client.ping()
        info = _redis_client.info()

        return {
            "status": "healthy",
            "connected": True,
            "version": info.get("redis_version"),
            "connected_clients": info.get("connected_clients"),
        }
    except redis.RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        return {"status": "unhealthy", "connected": False, "error": str(e)}


# ============================================================================
# Initialization Helper
# ============================================================================


def init_all(db_url: Optional[str] = None, redis_url: Optional[str] = None, echo: bool = False, create_tables: bool = False) -> None:
    """
    Initialize both database and Redis.

    SQLite databases always get their tables created on start-up.
    """
    db_url = db_url or get_database_url()
    if db_url.startswith("sqlite"):
        create_tables = True

    init_database(db_url=db_url, echo=echo, create_tables=create_tables)
    init_redis(redis_url)

    logger.info("All database connections initialized")


def close_all() -> None:
    """
    Close all database connections.
    """
    close_database()
    close_redis()

    logger.info("All database connections closed")


def get_health_status() -> dict:
    """
    Get health status of all database connections.
    """
    return {"database": check_database_health(), "redis": check_redis_health()}
