"""
Database Configuration and Session Management
"""

from sqlalchemy import JSON, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker
from app.config import settings
import logging

logger = logging.getLogger(__name__)

# Create SQLAlchemy engine
engine = None
SessionLocal = None

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def normalize_database_url(url: str) -> str:
    """Use the psycopg3 driver for plain postgresql:// URLs (as issued by hosting providers)."""
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def init_db():
    """Initialize database connection"""
    global engine, SessionLocal

    if not settings.database_url:
        logger.warning("DATABASE_URL not configured - database features disabled")
        return

    logger.info("Connecting to database...")
    url = normalize_database_url(settings.database_url)
    if url.startswith("sqlite"):
        engine = create_engine(url, connect_args={"check_same_thread": False})
    else:
        engine = create_engine(
            url,
            pool_pre_ping=True,  # Verify connections before using them
            pool_size=5,
            max_overflow=10
        )

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    logger.info("Database connection established")


def get_session_factory():
    """Return the configured sessionmaker, or None when no database is configured."""
    return SessionLocal


def get_db():
    """
    Dependency for getting database session
    Usage: db: Session = Depends(get_db)

    Returns None if the database is not configured
    """
    if SessionLocal is None:
        logger.warning("Database not configured")
        yield None
        return

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Base class for all models
Base = declarative_base()
