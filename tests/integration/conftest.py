"""
Pytest configuration for integration tests

Provides a seeded user, fake upstream clients and extractor options that
keep discovery runs fully in-process
"""
import pytest

from tests.fixtures.fakes import FakeClock, FakeExtractClient, FakeSearchClient, scholarship_urls
from tests.fixtures.sample_data import create_user, persist


@pytest.fixture
def user(db_session):
    """A masters-seeking biology student from Kenya."""
    return persist(db_session, create_user())


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def extractor_options(fake_clock):
    """BatchExtractor options that never wait or touch the network."""
    return {
        'clock': fake_clock,
        'poll_interval': 1,
        'poll_max_attempts': 5,
        'image_resolver': None,
    }


@pytest.fixture
def search_client():
    return FakeSearchClient(scholarship_urls(5))


@pytest.fixture
def extract_client():
    return FakeExtractClient()
