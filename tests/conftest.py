"""
Root pytest configuration for Grantscout tests

Adds project root to Python path, points the package at an in-memory
SQLite database and provides common fixtures
"""
import sys
import os

import pytest
from dotenv import load_dotenv

# Add project root to Python path so tests can import grantscout
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

# Load environment variables, then pin the ones tests depend on.
# grantscout.database builds its engine at import time.
load_dotenv()
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['BACKGROUND_TASKS_EAGER'] = 'true'
os.environ['MATCH_REVIEW_ENABLED'] = 'false'

from grantscout.database import Base, SessionLocal, engine, init_db  # noqa: E402
from grantscout.services.embeddings import set_embedding_client  # noqa: E402

from tests.fixtures.fakes import FakeEmbeddingClient  # noqa: E402


@pytest.fixture(scope="function", autouse=True)
def database():
    """
    Fresh schema for every test.

    The in-memory database lives on one shared connection, so dropping and
    recreating the tables is enough to isolate tests.
    """
    init_db(engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function", autouse=True)
def embedding_client():
    """Deterministic embedding client installed as the process-wide default."""
    client = FakeEmbeddingClient()
    set_embedding_client(client)
    yield client
    set_embedding_client(None)


@pytest.fixture(scope="function")
def db_session():
    """
    Provides a database session for tests.

    Session is automatically closed after each test.
    """
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
