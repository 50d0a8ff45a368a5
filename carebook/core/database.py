from contextlib import contextmanager
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker, Session
from typing import Generator, Iterator
import redis
from .config import settings
from .exceptions import TransientStoreError

def build_engine(database_url: str):
    """Create an engine with connection settings suited to the backend."""
    if database_url.startswith("sqlite"):
        # Busy timeout bounds how long a writer waits on a locked database
        return create_engine(
            database_url,
            connect_args={
                "check_same_thread": False,
                "timeout": settings.BOOKING_TIMEOUT_SECONDS,
            },
        )

    return create_engine(
        database_url,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=1800,  # Recycle connections after 30 minutes
        pool_pre_ping=True,
    )

engine = build_engine(settings.get_database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)

# Database dependency
def get_db() -> Generator[Session, None, None]:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

# Redis dependency
def get_redis():
    """Get Redis client."""
    return redis_client

def apply_statement_timeout(db: Session, seconds: float) -> None:
    """Bound every statement of the current transaction.

    Only PostgreSQL supports a per-transaction statement timeout; SQLite
    sessions rely on the busy timeout configured in ``build_engine``.
    """
    if db.get_bind().dialect.name == "postgresql":
        db.execute(text(f"SET LOCAL statement_timeout = {int(seconds * 1000)}"))

@contextmanager
def store_errors(db: Session, operation: str) -> Iterator[None]:
    """Roll back and surface store outages as TransientStoreError."""
    try:
        yield
    except OperationalError as exc:
        db.rollback()
        raise TransientStoreError(
            f"Storage unavailable during {operation}. Please retry.",
            details={"operation": operation},
        ) from exc

# Database initialization
def init_db():
    """Initialize database tables."""
    from ..models import appointment, doctor, patient, schedule  # noqa: F401

    Base.metadata.create_all(bind=engine)
