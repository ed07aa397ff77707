"""
Discovery Service - Job Orchestration

Runs one discovery job end to end:

1. Mark the DiscoveryJob running and arm the job timeout
2. Search for candidate URLs
3. Extract opportunities batch by batch
4. Save each batch as it completes (embeddings are scheduled on save)
5. Mark the job completed, or failed with the error message

Also hosts the two flows built on top of discovery: the user-initiated
search (database first, live discovery when the database has too little)
and the daily matching workflow.
"""

import json
import logging
import math
import os
import sys
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from grantscout.database import SessionLocal
from grantscout.errors import EmbeddingFailure, NotFound, UpstreamUnavailable
from grantscout.models import DiscoveryJobKind, MatchKind, Opportunity, SourceKind, UserProfile
from grantscout.services.background import run_in_thread
from grantscout.services.batch_extractor import BATCH_DELAY_SECONDS, BATCH_SIZE, BatchExtractor, search_urls
from grantscout.services.embeddings import EmbeddingClient, generate_opportunity_embedding
from grantscout.services.extract_client import ExtractClient, get_extract_client
from grantscout.services.extraction_poller import POLL_INTERVAL_SECONDS, POLL_MAX_ATTEMPTS
from grantscout.services.image_resolver import FETCH_TIMEOUT
from grantscout.services.job_tracker import create_job, get_job, mark_completed, mark_failed, mark_running
from grantscout.services.match_reviewer import review_matches
from grantscout.services.match_store import get_match_writer, save_user_opportunity_matches
from grantscout.services.matching import hybrid_match, semantic_search_opportunities
from grantscout.services.persistence import (
    get_opportunities_by_ids,
    get_recent_opportunities,
    opportunity_to_dict,
    save_opportunities,
)
from grantscout.services.query_builder import (
    build_profile_query,
    combine_query_with_profile,
    general_search_query,
)
from grantscout.services.search_client import SearchClient, get_search_client

logger = logging.getLogger(__name__)

# Configuration
GENERAL_SEARCH_LIMIT = int(os.environ.get('GENERAL_SEARCH_LIMIT', '50'))
PROFILE_SEARCH_LIMIT = int(os.environ.get('PROFILE_SEARCH_LIMIT', '30'))
JOB_TIMEOUT_SECONDS = float(os.environ.get('DISCOVERY_JOB_TIMEOUT_SECONDS', '900'))

USER_SEARCH_MIN_MATCHES = 5
USER_SEARCH_MIN_SCORE = 30
USER_SEARCH_SEMANTIC_LIMIT = 30
USER_SEARCH_MAX_RESULTS = 50
DAILY_MATCHING_WINDOW_DAYS = 7

SOURCE_BY_JOB_KIND = {
    DiscoveryJobKind.GENERAL: SourceKind.GENERAL_SEARCH,
    DiscoveryJobKind.PROFILE: SourceKind.PROFILE_SEARCH,
}


def _log_progress(msg: str, start_time: float = None):
    """Log with timestamp and elapsed time, flush immediately."""
    elapsed = f"[{time.time() - start_time:.1f}s]" if start_time else ""
    full_msg = f"{elapsed} DISCOVERY: {msg}"
    logger.info(full_msg)
    print(full_msg, file=sys.stdout, flush=True)


def discovery_timeout(
    limit: int,
    batch_size: int = BATCH_SIZE,
    batch_delay: float = BATCH_DELAY_SECONDS,
    poll_interval: float = POLL_INTERVAL_SECONDS,
    poll_max_attempts: int = POLL_MAX_ATTEMPTS,
) -> float:
    """
    Job timeout for a run over `limit` URLs.

    Batches run one after another. In the worst case every batch is
    degraded: one batch extraction plus one extraction per URL, each
    polled up to its ceiling, then the image lookups and the delay before
    the next batch. JOB_TIMEOUT_SECONDS is the floor.
    """
    batches = max(1, math.ceil(limit / batch_size))
    per_batch = (1 + batch_size) * poll_interval * poll_max_attempts + FETCH_TIMEOUT
    worst_case = batches * per_batch + (batches - 1) * batch_delay
    return max(JOB_TIMEOUT_SECONDS, worst_case)


def run_discovery_job(
    job_id: UUID,
    limit: Optional[int] = None,
    search_client: Optional[SearchClient] = None,
    extract_client: Optional[ExtractClient] = None,
    timeout: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
    **extractor_options,
) -> dict:
    """
    Run one discovery job to a terminal state.

    Failures are recorded on the job (status failed, error message) rather
    than raised. Opportunities saved before a failure stay saved.

    Args:
        job_id: Pending DiscoveryJob to run
        limit: Number of search results to extract
        search_client: Search client (defaults to the configured provider)
        extract_client: Extract client (defaults to Firecrawl)
        timeout: Seconds before the run is cancelled (defaults to discovery_timeout)
        cancel_event: Externally controlled cancellation
        **extractor_options: Passed to BatchExtractor (batch_size, clock, ...)

    Returns:
        Stats dict with job results
    """
    job_start = time.time()
    start_time = datetime.now(timezone.utc)
    cancel_event = cancel_event or threading.Event()

    session = SessionLocal()
    try:
        job = get_job(session, job_id)
    except NotFound:
        session.close()
        raise
    if limit is None:
        limit = GENERAL_SEARCH_LIMIT if job.kind == DiscoveryJobKind.GENERAL else PROFILE_SEARCH_LIMIT
    if timeout is None:
        timeout = discovery_timeout(
            limit,
            batch_size=extractor_options.get('batch_size', BATCH_SIZE),
            batch_delay=extractor_options.get('batch_delay', BATCH_DELAY_SECONDS),
            poll_interval=extractor_options.get('poll_interval', POLL_INTERVAL_SECONDS),
            poll_max_attempts=extractor_options.get('poll_max_attempts', POLL_MAX_ATTEMPTS),
        )

    stats = {
        'job_id': str(job_id),
        'kind': job.kind.value,
        'start_time': start_time.isoformat(),
        'timeout_seconds': timeout,
        'urls_found': 0,
        'batches': 0,
        'degraded_batches': 0,
        'fallback_batches': 0,
        'items_extracted': 0,
        'created': 0,
        'updated': 0,
        'opportunity_ids': [],
        'status': None,
        'error': None,
    }

    logger.info(json.dumps({
        "event": "job_start",
        "job_id": str(job_id),
        "kind": job.kind.value,
        "timestamp": start_time.isoformat(),
    }))

    timer = threading.Timer(timeout, cancel_event.set)
    timer.daemon = True

    try:
        mark_running(session, job)
        timer.start()

        # Step 1: Search
        _log_progress(f"Step 1: Searching (limit {limit}) for '{job.search_query[:80]}'", job_start)
        search_client = search_client or get_search_client()
        urls = search_urls(search_client, job.search_query, limit)
        stats['urls_found'] = len(urls)
        _log_progress(f"Step 1: Search complete - {len(urls)} URLs", job_start)

        # Step 2: Extract and save batch by batch
        extractor = BatchExtractor(
            extract_client or get_extract_client(),
            cancel_event=cancel_event,
            **extractor_options,
        )
        source_type = SOURCE_BY_JOB_KIND[job.kind]

        for result in extractor.iter_batches(urls):
            stats['batches'] += 1
            stats['degraded_batches'] += int(result.degraded)
            stats['fallback_batches'] += int(result.fell_back)
            stats['items_extracted'] += len(result.items)

            if result.items:
                saved = save_opportunities(result.items, source_type)
                stats['created'] += saved['created']
                stats['updated'] += saved['updated']
                stats['opportunity_ids'].extend(str(opportunity_id) for opportunity_id in saved['ids'])

            _log_progress(
                f"Step 2: Batch {result.index} - {len(result.items)}/{len(result.urls)} extracted, "
                f"{stats['created']} created so far",
                job_start,
            )

        mark_completed(session, job, stats['created'] + stats['updated'])
        stats['status'] = 'completed'

    except Exception as e:
        message = str(e)
        if cancel_event.is_set():
            message = f"Discovery job timed out after {timeout:.0f}s: {e}"
        _log_progress(f"JOB FAILED: {message}", job_start)
        stats['status'] = 'failed'
        stats['error'] = message
        saved_so_far = stats['created'] + stats['updated']
        session.rollback()
        if not job.is_terminal:
            mark_failed(session, job, message, results_count=saved_so_far)

    finally:
        timer.cancel()
        session.close()

    end_time = datetime.now(timezone.utc)
    stats['end_time'] = end_time.isoformat()
    stats['duration_seconds'] = (end_time - start_time).total_seconds()

    _log_progress(
        f"JOB {stats['status'].upper()}: {stats['created']} created, {stats['updated']} updated, "
        f"{stats['duration_seconds']:.1f}s total",
        job_start,
    )
    logger.info(json.dumps({
        "event": "job_complete",
        **{key: value for key, value in stats.items() if key != 'opportunity_ids'},
    }))

    return stats


def start_general_search(search_query: Optional[str] = None, limit: int = GENERAL_SEARCH_LIMIT, **options) -> UUID:
    """
    Create a general discovery job and run it in the background.

    Returns:
        The new job's id
    """
    query = search_query or general_search_query()
    session = SessionLocal()
    try:
        job = create_job(session, DiscoveryJobKind.GENERAL, query)
        job_id = job.id
    finally:
        session.close()

    run_in_thread(run_discovery_job, job_id, limit, **options)
    return job_id


def start_profile_search(
    user_id: UUID,
    search_query: Optional[str] = None,
    limit: int = PROFILE_SEARCH_LIMIT,
    **options,
) -> UUID:
    """
    Create a profile-scoped discovery job and run it in the background.

    The query defaults to one built from the user's profile.
    """
    session = SessionLocal()
    try:
        user = session.get(UserProfile, user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        query = search_query or build_profile_query(user)
        job = create_job(session, DiscoveryJobKind.PROFILE, query, user_id=user_id)
        job_id = job.id
    finally:
        session.close()

    run_in_thread(run_discovery_job, job_id, limit, **options)
    return job_id


# ============================================================================
# User-initiated search
# ============================================================================

def _enhanced_database_query(search_query: str, user: UserProfile) -> str:
    level = user.intended_education_level or user.current_education_level or ''
    interests = ' '.join(user.academic_interests or [])
    return ' '.join(f"{search_query} {user.discipline or ''} {interests} {level}".split())


def search_database_opportunities(
    user: UserProfile,
    search_query: str,
    embedding_client: Optional[EmbeddingClient] = None,
) -> list[dict]:
    """Semantic search over the catalogue, keeping results scoring 30 or more."""
    query = _enhanced_database_query(search_query, user)
    try:
        results = semantic_search_opportunities(query, USER_SEARCH_SEMANTIC_LIMIT, embedding_client)
    except (EmbeddingFailure, UpstreamUnavailable) as e:
        logger.warning(f"Database search unavailable for user {user.id}: {e}")
        return []

    scored = {opportunity_id: round(similarity * 100) for opportunity_id, similarity in results}
    keep = [opportunity_id for opportunity_id, score in scored.items() if score >= USER_SEARCH_MIN_SCORE]
    if not keep:
        return []

    session = SessionLocal()
    try:
        rows = session.query(Opportunity).filter(Opportunity.id.in_(keep)).all()
        found = []
        for opportunity in rows:
            score = scored[opportunity.id]
            found.append({
                **opportunity_to_dict(opportunity),
                'match_score': score,
                'match_reasoning': f"Semantic similarity: {score}%",
            })
        return sorted(found, key=lambda o: o['match_score'], reverse=True)
    finally:
        session.close()


def _ensure_embeddings(opportunities: list[Opportunity], embedding_client: Optional[EmbeddingClient]):
    for opportunity in opportunities:
        if opportunity.embedding is not None:
            continue
        try:
            generate_opportunity_embedding(opportunity.id, embedding_client)
        except Exception as e:
            logger.warning(f"Could not embed opportunity {opportunity.id} before matching: {e}")


def search_opportunities(
    user_id: UUID,
    search_query: str,
    min_matches: int = USER_SEARCH_MIN_MATCHES,
    limit: int = PROFILE_SEARCH_LIMIT,
    embedding_client: Optional[EmbeddingClient] = None,
    **discovery_options,
) -> dict:
    """
    Search for opportunities on behalf of a user.

    The database is searched first. With at least `min_matches` results
    they are returned as-is. Otherwise a profile-scoped discovery runs
    inline, the opportunities it saved are hybrid-matched to the user and
    stored as user_search matches, and the union of both result sets is
    returned (top 50 by score).

    Returns:
        Dict with opportunities, source ('database' | 'search'),
        total_found and the discovery job id when one ran
    """
    if not search_query or not search_query.strip():
        raise ValueError("search_query is required")

    session = SessionLocal()
    try:
        user = session.get(UserProfile, user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        session.expunge(user)
    finally:
        session.close()

    database_results = search_database_opportunities(user, search_query, embedding_client)
    if len(database_results) >= min_matches:
        return {
            'opportunities': database_results,
            'source': 'database',
            'total_found': len(database_results),
            'job_id': None,
        }

    # Not enough in the catalogue: discover with the profile-enhanced query
    query = combine_query_with_profile(search_query, user)
    session = SessionLocal()
    try:
        job_id = create_job(session, DiscoveryJobKind.PROFILE, query, user_id=user_id).id
    finally:
        session.close()

    stats = run_discovery_job(job_id, limit, **discovery_options)
    saved_ids = [UUID(opportunity_id) for opportunity_id in dict.fromkeys(stats['opportunity_ids'])]
    new_opportunities = get_opportunities_by_ids(saved_ids)
    if not new_opportunities:
        return {
            'opportunities': database_results,
            'source': 'database',
            'total_found': len(database_results),
            'job_id': str(job_id),
        }

    _ensure_embeddings(new_opportunities, embedding_client)
    matches = hybrid_match(user_id, [opp.id for opp in new_opportunities], embedding_client)
    matches = review_matches(user, matches, min_score=USER_SEARCH_MIN_SCORE)
    save_user_opportunity_matches(user_id, matches, MatchKind.USER_SEARCH, USER_SEARCH_MIN_SCORE)

    by_id = {opp.id: opp for opp in new_opportunities}
    search_results = [
        {
            **opportunity_to_dict(by_id[match.opportunity_id]),
            'match_score': match.score,
            'match_reasoning': match.reasoning,
        }
        for match in matches
        if match.score >= USER_SEARCH_MIN_SCORE and match.opportunity_id in by_id
    ]

    unique = {}
    for result in database_results + search_results:
        unique.setdefault(result['id'], result)
    combined = sorted(unique.values(), key=lambda o: o['match_score'], reverse=True)

    return {
        'opportunities': combined[:USER_SEARCH_MAX_RESULTS],
        'source': 'search',
        'total_found': len(combined),
        'job_id': str(job_id),
    }


# ============================================================================
# Daily matching
# ============================================================================

def run_daily_matching_workflow(
    window_days: int = DAILY_MATCHING_WINDOW_DAYS,
    writer=None,
    embedding_client: Optional[EmbeddingClient] = None,
) -> dict:
    """
    Match recent opportunities to every user with profile data.

    Per-user failures are collected and the run carries on.

    Returns:
        Dict with users_processed, opportunities_matched and errors
    """
    job_start = time.time()
    writer = writer or get_match_writer()

    since = datetime.now(timezone.utc) - timedelta(days=window_days)
    opportunity_ids = [opp.id for opp in get_recent_opportunities(since)]
    if not opportunity_ids:
        return {
            'users_processed': 0,
            'opportunities_matched': 0,
            'errors': ['No recent opportunities found for matching'],
        }

    session = SessionLocal()
    try:
        users = [user for user in session.query(UserProfile).all() if user.has_profile_data]
        for user in users:
            session.expunge(user)
    finally:
        session.close()

    _log_progress(f"Daily matching: {len(users)} users, {len(opportunity_ids)} recent opportunities", job_start)

    users_processed = 0
    opportunities_matched = 0
    errors = []

    for user in users:
        try:
            matches = hybrid_match(user.id, opportunity_ids, embedding_client)
            matches = review_matches(user, matches)
            opportunities_matched += writer.write(user.id, matches, MatchKind.DAILY_AUTOMATED)
            users_processed += 1
        except Exception as e:
            error_msg = f"Error matching opportunities for user {user.id}: {e}"
            logger.error(error_msg)
            errors.append(error_msg)

    _log_progress(
        f"Daily matching complete: {users_processed} users, {opportunities_matched} matches, "
        f"{len(errors)} errors",
        job_start,
    )
    return {
        'users_processed': users_processed,
        'opportunities_matched': opportunities_matched,
        'errors': errors,
    }
