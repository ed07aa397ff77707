"""
Integration tests for the discovery job lifecycle.
"""

from uuid import uuid4

import pytest

from grantscout.errors import InvalidJobTransition, NotFound
from grantscout.models import DiscoveryJobKind, DiscoveryJobStatus
from grantscout.services.job_tracker import (
    ERROR_MESSAGE_MAX_LENGTH,
    create_job,
    get_job,
    job_to_dict,
    mark_completed,
    mark_failed,
    mark_running,
)


class TestJobLifecycle:
    """Tests for pending → running → (completed | failed)"""

    def test_create_job_pending(self, db_session):
        job = create_job(db_session, DiscoveryJobKind.GENERAL, 'scholarships')

        assert job.status == DiscoveryJobStatus.PENDING
        assert job.scheduled_for is not None
        assert job.started_at is None
        assert not job.is_terminal

    def test_profile_job_requires_user(self, db_session):
        with pytest.raises(ValueError):
            create_job(db_session, DiscoveryJobKind.PROFILE, 'scholarships')

    def test_profile_job_with_user(self, db_session, user):
        job = create_job(db_session, DiscoveryJobKind.PROFILE, 'scholarships', user_id=user.id)
        assert job.user_id == user.id

    def test_run_to_completion(self, db_session):
        job = create_job(db_session, DiscoveryJobKind.GENERAL, 'scholarships')
        mark_running(db_session, job)
        assert job.started_at is not None

        mark_completed(db_session, job, 12)

        job = get_job(db_session, job.id)
        assert job.status == DiscoveryJobStatus.COMPLETED
        assert job.results_count == 12
        assert job.completed_at is not None
        assert job.is_terminal

    def test_pending_job_can_fail(self, db_session):
        job = create_job(db_session, DiscoveryJobKind.GENERAL, 'scholarships')
        mark_failed(db_session, job, 'worker crashed')
        assert job.status == DiscoveryJobStatus.FAILED
        assert job.error_message == 'worker crashed'

    def test_failed_keeps_partial_count(self, db_session):
        job = create_job(db_session, DiscoveryJobKind.GENERAL, 'scholarships')
        mark_running(db_session, job)
        mark_failed(db_session, job, 'timeout', results_count=7)
        assert job.results_count == 7

    def test_error_message_truncated(self, db_session):
        job = create_job(db_session, DiscoveryJobKind.GENERAL, 'scholarships')
        mark_failed(db_session, job, 'x' * 5000)
        assert len(job.error_message) == ERROR_MESSAGE_MAX_LENGTH

    @pytest.mark.parametrize("finish", ['completed', 'failed'])
    def test_terminal_jobs_never_reopen(self, db_session, finish):
        job = create_job(db_session, DiscoveryJobKind.GENERAL, 'scholarships')
        mark_running(db_session, job)
        if finish == 'completed':
            mark_completed(db_session, job, 1)
        else:
            mark_failed(db_session, job, 'boom')

        with pytest.raises(InvalidJobTransition):
            mark_running(db_session, job)
        with pytest.raises(InvalidJobTransition):
            mark_completed(db_session, job, 2)
        with pytest.raises(InvalidJobTransition):
            mark_failed(db_session, job, 'again')

    def test_pending_cannot_complete(self, db_session):
        job = create_job(db_session, DiscoveryJobKind.GENERAL, 'scholarships')
        with pytest.raises(InvalidJobTransition):
            mark_completed(db_session, job, 0)

    def test_get_unknown_job(self, db_session):
        with pytest.raises(NotFound):
            get_job(db_session, uuid4())

    def test_job_to_dict(self, db_session):
        job = create_job(db_session, DiscoveryJobKind.GENERAL, 'scholarships')
        data = job_to_dict(job)

        assert data['id'] == str(job.id)
        assert data['kind'] == 'general_search'
        assert data['status'] == 'pending'
        assert data['user_id'] is None
        assert data['completed_at'] is None
