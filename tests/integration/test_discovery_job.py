"""
Integration tests for discovery job orchestration.

Runs whole discovery jobs against fake search and extraction services,
verifying that:
- Extracted opportunities are persisted with embedding text and a valid deadline
- Embeddings are generated on save and the backfill picks up the rest
- The job record reaches completed or failed with the right details
- Work saved before a failure is kept
"""

import re
import threading
from datetime import date
from uuid import uuid4

import pytest

from grantscout.errors import NotFound, UpstreamUnavailable
from grantscout.models import DiscoveryJob, DiscoveryJobKind, DiscoveryJobStatus, Opportunity, SourceKind
from grantscout.services.deadline import is_within_window
from grantscout.services.discovery import (
    JOB_TIMEOUT_SECONDS,
    discovery_timeout,
    run_discovery_job,
    start_general_search,
    start_profile_search,
)
from grantscout.services.embeddings import batch_generate_opportunity_embeddings, get_opportunities_without_embeddings
from grantscout.services.job_tracker import create_job
from grantscout.services.query_builder import build_profile_query
from tests.fixtures.fakes import FakeClock, FakeExtractClient, FakeSearchClient, partial_batches, scholarship_urls


def general_job(db_session, query="scholarships for masters students"):
    return create_job(db_session, DiscoveryJobKind.GENERAL, query)


def reload_job(db_session, job_id):
    db_session.expire_all()
    return db_session.get(DiscoveryJob, job_id)


class TestRunDiscoveryJob:
    """Integration tests for run_discovery_job"""

    def test_general_discovery_persists_opportunities(self, db_session, search_client, extract_client, extractor_options):
        """Limit 5: five rows, each with embedding text and a windowed deadline."""
        job = general_job(db_session)

        stats = run_discovery_job(
            job.id, 5, search_client=search_client, extract_client=extract_client, **extractor_options
        )

        assert stats['status'] == 'completed'
        assert stats['urls_found'] == 5
        assert stats['created'] == 5
        assert search_client.queries == [("scholarships for masters students", 5)]

        opportunities = db_session.query(Opportunity).all()
        assert len(opportunities) == 5
        for opportunity in opportunities:
            assert opportunity.embedding_text
            assert re.fullmatch(r'\d{4}-\d{2}-\d{2}', opportunity.deadline)
            assert is_within_window(date.fromisoformat(opportunity.deadline))
            assert opportunity.source_type == SourceKind.GENERAL_SEARCH
            assert opportunity.tags == []
            assert opportunity.award_amount == 5000.0

    def test_embeddings_generated_on_save(self, db_session, search_client, extract_client, extractor_options):
        job = general_job(db_session)
        run_discovery_job(job.id, 5, search_client=search_client, extract_client=extract_client, **extractor_options)

        assert get_opportunities_without_embeddings(limit=5) == []
        assert batch_generate_opportunity_embeddings(limit=5, delay=0) == {'processed': 0, 'errors': []}

    def test_backfill_embeds_what_save_could_not(
        self, db_session, search_client, extract_client, extractor_options, embedding_client
    ):
        """Embedding failures on save leave rows for the backfill to pick up."""
        embedding_client.fail = True
        job = general_job(db_session)
        stats = run_discovery_job(
            job.id, 5, search_client=search_client, extract_client=extract_client, **extractor_options
        )
        assert stats['status'] == 'completed'
        assert len(get_opportunities_without_embeddings(limit=50)) == 5

        embedding_client.fail = False
        result = batch_generate_opportunity_embeddings(limit=5, delay=0)

        assert result == {'processed': 5, 'errors': []}
        assert get_opportunities_without_embeddings(limit=50) == []

    def test_job_record_completed(self, db_session, search_client, extract_client, extractor_options):
        job = general_job(db_session)
        run_discovery_job(job.id, 5, search_client=search_client, extract_client=extract_client, **extractor_options)

        job = reload_job(db_session, job.id)
        assert job.status == DiscoveryJobStatus.COMPLETED
        assert job.results_count == 5
        assert job.started_at is not None
        assert job.completed_at is not None
        assert job.error_message is None

    def test_rediscovery_updates_instead_of_duplicating(self, db_session, search_client, extractor_options):
        first = general_job(db_session)
        run_discovery_job(first.id, 5, search_client=search_client, extract_client=FakeExtractClient(), **extractor_options)

        second = general_job(db_session)
        stats = run_discovery_job(
            second.id, 5, search_client=search_client, extract_client=FakeExtractClient(), **extractor_options
        )

        assert stats['created'] == 0
        assert stats['updated'] == 5
        assert db_session.query(Opportunity).count() == 5

    def test_degraded_batches_counted(self, db_session, extractor_options):
        job = general_job(db_session)
        stats = run_discovery_job(
            job.id, 10,
            search_client=FakeSearchClient(scholarship_urls(10)),
            extract_client=FakeExtractClient(responder=partial_batches(6)),
            **extractor_options,
        )

        assert stats['degraded_batches'] == 1
        assert stats['created'] == 10

    def test_search_failure_fails_job(self, db_session, extract_client, extractor_options):
        job = general_job(db_session)
        search = FakeSearchClient([], error=UpstreamUnavailable('exa', 'service down'))

        stats = run_discovery_job(job.id, 5, search_client=search, extract_client=extract_client, **extractor_options)

        assert stats['status'] == 'failed'
        job = reload_job(db_session, job.id)
        assert job.status == DiscoveryJobStatus.FAILED
        assert 'exa unavailable' in job.error_message
        assert extract_client.submissions == []

    def test_no_search_results_fails_job(self, db_session, extract_client, extractor_options):
        job = general_job(db_session)
        run_discovery_job(job.id, 5, search_client=FakeSearchClient([]), extract_client=extract_client, **extractor_options)

        job = reload_job(db_session, job.id)
        assert job.status == DiscoveryJobStatus.FAILED
        assert 'Search returned no URLs' in job.error_message

    def test_timeout_message(self, db_session, search_client, extract_client, extractor_options):
        """A fired job timeout is reported as such on the job."""
        job = general_job(db_session)
        cancel = threading.Event()
        cancel.set()

        stats = run_discovery_job(
            job.id, 5, search_client=search_client, extract_client=extract_client,
            timeout=60, cancel_event=cancel, **extractor_options,
        )

        assert stats['status'] == 'failed'
        assert stats['error'].startswith('Discovery job timed out after 60s')
        assert reload_job(db_session, job.id).error_message.startswith('Discovery job timed out after 60s')

    def test_default_timeout_covers_slowest_extraction(
        self, db_session, search_client, extract_client, extractor_options
    ):
        """Without an explicit timeout the run gets one sized to its own poll ceiling."""
        job = general_job(db_session)

        stats = run_discovery_job(
            job.id, 5, search_client=search_client, extract_client=extract_client, **extractor_options
        )

        assert stats['status'] == 'completed'
        assert stats['timeout_seconds'] == discovery_timeout(5, poll_interval=1, poll_max_attempts=5)
        assert stats['timeout_seconds'] >= JOB_TIMEOUT_SECONDS

    def test_work_saved_before_failure_is_kept(self, db_session, extract_client, extractor_options):
        """First batch is persisted even though the run is cancelled before the second."""
        job = general_job(db_session)
        options = {**extractor_options, 'clock': FakeClock(cancel_on_sleep=True)}

        stats = run_discovery_job(
            job.id, 20, search_client=FakeSearchClient(scholarship_urls(20)),
            extract_client=extract_client, **options,
        )

        assert stats['status'] == 'failed'
        assert stats['created'] == 10
        assert db_session.query(Opportunity).count() == 10
        job = reload_job(db_session, job.id)
        assert job.status == DiscoveryJobStatus.FAILED
        assert job.results_count == 10

    def test_unknown_job(self):
        with pytest.raises(NotFound):
            run_discovery_job(uuid4())


class TestStartDiscovery:
    """Tests for the background entry points (run eagerly under test)"""

    def test_start_general_search(self, db_session, search_client, extract_client, extractor_options):
        job_id = start_general_search(
            'fellowships 2027', limit=5,
            search_client=search_client, extract_client=extract_client, **extractor_options,
        )

        job = reload_job(db_session, job_id)
        assert job.kind == DiscoveryJobKind.GENERAL
        assert job.status == DiscoveryJobStatus.COMPLETED
        assert job.search_query == 'fellowships 2027'

    def test_start_profile_search_uses_profile_query(
        self, db_session, user, search_client, extract_client, extractor_options
    ):
        job_id = start_profile_search(
            user.id, limit=3,
            search_client=search_client, extract_client=extract_client, **extractor_options,
        )

        job = reload_job(db_session, job_id)
        assert job.kind == DiscoveryJobKind.PROFILE
        assert job.user_id == user.id
        assert job.search_query == build_profile_query(user)
        assert job.results_count == 3
        assert {o.source_type for o in db_session.query(Opportunity).all()} == {SourceKind.PROFILE_SEARCH}

    def test_start_profile_search_unknown_user(self):
        with pytest.raises(NotFound):
            start_profile_search(uuid4())


class TestDiscoveryTimeout:
    """Tests for discovery_timeout sizing"""

    def test_weekly_run_outlasts_every_batch_at_poll_ceiling(self):
        """100 URLs in batches of 10, each batch degraded: 1 batch job plus 10 single-URL jobs."""
        timeout = discovery_timeout(100, batch_size=10, batch_delay=2, poll_interval=5, poll_max_attempts=60)

        assert timeout >= 10 * 11 * 5 * 60 + 9 * 2
        assert timeout > JOB_TIMEOUT_SECONDS

    def test_grows_with_limit(self):
        assert discovery_timeout(100) > discovery_timeout(50) > discovery_timeout(10)

    def test_small_runs_keep_the_floor(self):
        assert discovery_timeout(5, poll_interval=1, poll_max_attempts=5) == JOB_TIMEOUT_SECONDS
