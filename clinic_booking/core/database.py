from sqlalchemy import create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator
import logging
import redis
from .config import settings

database_url = settings.get_database_url

if database_url.startswith("sqlite"):
    # SQLite is used for local runs and tests; sessions cross threads in TestClient
    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False},
    )
else:
    # PostgreSQL database setup with appropriate connection pool settings
    engine = create_engine(
        database_url,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=1800,  # Recycle connections after 30 minutes
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# Redis client; the connection is opened lazily on first command
redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)

logger = logging.getLogger(__name__)

# Database dependency
def get_db() -> Generator[Session, None, None]:
    """Request-scoped session; uncommitted work is rolled back on error."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

# Redis dependency
def get_redis():
    """Get Redis client."""
    return redis_client

def check_db_connection() -> bool:
    """Run a trivial query to confirm the database is reachable."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False

def check_redis_connection(client) -> bool:
    try:
        return bool(client.ping())
    except redis.RedisError as e:
        logger.error(f"Redis connection check failed: {e}")
        return False

# Database initialization
def init_db():
    """Create the booking tables if they do not exist."""
    # Import models so their tables are registered on Base.metadata
    from ..models import appointment, clinic, doctor, patient  # noqa: F401

    Base.metadata.create_all(bind=engine)
