"""Database connection and session management"""

import logging

from sqlalchemy import create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker

from ephemail.config import settings

logger = logging.getLogger(__name__)

# Create database engine with appropriate settings for the database type
engine_kwargs = {
    "echo": False,  # Set to True for SQL debugging
}

# SQLite (used in tests) doesn't support pool settings
if not settings.DATABASE_URL.startswith('sqlite'):
    engine_kwargs.update({
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_pre_ping": True,  # Verify connections before using them
    })

engine = create_engine(settings.DATABASE_URL, **engine_kwargs)

# Create session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)

# Base class for SQLAlchemy models
Base = declarative_base()


def check_db_connection(session_factory=SessionLocal) -> bool:
    """Check if database connection is working"""
    try:
        db = session_factory()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
        return True
    except Exception as e:
        logger.error(f"Database connection error: {e}")
        return False
