"""
Engine and session factory for Grantscout

Every service opens its own short-lived session from SessionLocal and
closes it before returning, so background threads never share one.
"""
import os
import sys
import time
from urllib.parse import urlsplit

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from dotenv import load_dotenv

load_dotenv()

Base = declarative_base()

# Pool settings (PostgreSQL only)
POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))
POOL_RECYCLE_SECONDS = int(os.getenv("DB_POOL_RECYCLE_SECONDS", "3600"))
CONNECT_TIMEOUT_SECONDS = int(os.getenv("DB_CONNECT_TIMEOUT_SECONDS", "30"))


def _log_db(msg: str):
    """Log database progress with immediate flush."""
    print(f"DATABASE: {msg}", file=sys.stdout, flush=True)


def _redact(database_url: str) -> str:
    parts = urlsplit(database_url)
    if parts.password:
        return database_url.replace(f":{parts.password}@", ":***@", 1)
    return database_url


def create_db_engine(database_url=None):
    """
    Build the engine for DATABASE_URL (or the given URL).

    SQLite URLs share a single connection so an in-memory database is
    visible to every session.

    Raises:
        ValueError: no database URL configured
    """
    database_url = database_url or os.getenv("DATABASE_URL")
    if not database_url:
        raise ValueError("DATABASE_URL environment variable not set")

    _log_db(f"Connecting to: {_redact(database_url)}")
    started = time.time()

    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(
            database_url,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_pre_ping=True,
            pool_recycle=POOL_RECYCLE_SECONDS,
            connect_args={"connect_timeout": CONNECT_TIMEOUT_SECONDS},
            echo=os.getenv("FLASK_DEBUG", "False") == "True",
        )

    _log_db(f"Engine ready in {time.time() - started:.1f}s")
    return engine


engine = create_db_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None):
    """Create missing tables (tests and local development; production uses Alembic)."""
    # Models register themselves on Base.metadata at import
    from grantscout import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
