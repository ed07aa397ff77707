"""
Discovery Job Tracker

Owns the DiscoveryJob lifecycle: pending → running → (completed | failed).
A job is mutated only by the run that owns it and is never reopened once
terminal.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from grantscout.errors import InvalidJobTransition, NotFound
from grantscout.models import DiscoveryJob, DiscoveryJobKind, DiscoveryJobStatus

logger = logging.getLogger(__name__)

ERROR_MESSAGE_MAX_LENGTH = 2000

_ALLOWED_TRANSITIONS = {
    DiscoveryJobStatus.PENDING: {DiscoveryJobStatus.RUNNING, DiscoveryJobStatus.FAILED},
    DiscoveryJobStatus.RUNNING: {DiscoveryJobStatus.COMPLETED, DiscoveryJobStatus.FAILED},
    DiscoveryJobStatus.COMPLETED: set(),
    DiscoveryJobStatus.FAILED: set(),
}


def create_job(
    session,
    kind: DiscoveryJobKind,
    search_query: str,
    user_id: Optional[UUID] = None,
) -> DiscoveryJob:
    """
    Create a pending DiscoveryJob record.

    Args:
        session: Database session
        kind: General or profile-scoped run
        search_query: Query the run will search for
        user_id: Owning user for profile-scoped runs

    Returns:
        Created DiscoveryJob instance
    """
    if kind == DiscoveryJobKind.PROFILE and user_id is None:
        raise ValueError("Profile discovery jobs require a user_id")

    job = DiscoveryJob(
        kind=kind,
        status=DiscoveryJobStatus.PENDING,
        search_query=search_query,
        user_id=user_id,
        scheduled_for=datetime.now(timezone.utc),
    )
    session.add(job)
    session.commit()
    session.refresh(job)
    logger.info(f"Created discovery job {job.id} ({kind.value})")
    return job


def get_job(session, job_id: UUID) -> DiscoveryJob:
    job = session.get(DiscoveryJob, job_id)
    if job is None:
        raise NotFound(f"Discovery job {job_id} not found")
    return job


def _transition(job: DiscoveryJob, status: DiscoveryJobStatus):
    if status not in _ALLOWED_TRANSITIONS[job.status]:
        raise InvalidJobTransition(
            f"Discovery job {job.id} cannot move from {job.status.value} to {status.value}"
        )
    job.status = status


def mark_running(session, job: DiscoveryJob) -> DiscoveryJob:
    _transition(job, DiscoveryJobStatus.RUNNING)
    job.started_at = datetime.now(timezone.utc)
    session.commit()
    logger.info(f"Discovery job {job.id} running")
    return job


def mark_completed(session, job: DiscoveryJob, results_count: int) -> DiscoveryJob:
    """Record a successful run and how many opportunities it saved."""
    _transition(job, DiscoveryJobStatus.COMPLETED)
    job.results_count = results_count
    job.completed_at = datetime.now(timezone.utc)
    session.commit()
    logger.info(f"Discovery job {job.id} completed: {results_count} opportunities")
    return job


def mark_failed(
    session,
    job: DiscoveryJob,
    error_message: str,
    results_count: Optional[int] = None,
) -> DiscoveryJob:
    """
    Record a failed run.

    results_count keeps the number of opportunities persisted before the
    failure so partial work stays visible on the job.
    """
    _transition(job, DiscoveryJobStatus.FAILED)
    job.error_message = (error_message or 'Unknown error')[:ERROR_MESSAGE_MAX_LENGTH]
    job.results_count = results_count
    job.completed_at = datetime.now(timezone.utc)
    session.commit()
    logger.error(f"Discovery job {job.id} failed: {job.error_message}")
    return job


def job_to_dict(job: DiscoveryJob) -> dict:
    return {
        'id': str(job.id),
        'kind': job.kind.value,
        'status': job.status.value,
        'search_query': job.search_query,
        'user_id': str(job.user_id) if job.user_id else None,
        'results_count': job.results_count,
        'error_message': job.error_message,
        'scheduled_for': job.scheduled_for.isoformat() if job.scheduled_for else None,
        'started_at': job.started_at.isoformat() if job.started_at else None,
        'completed_at': job.completed_at.isoformat() if job.completed_at else None,
    }
