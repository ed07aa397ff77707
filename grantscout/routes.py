"""
Flask Routes for Grantscout

Trigger surface for the external scheduler and the application layer:
- Health check endpoint
- Start general / profile discovery jobs, read a job
- Embedding backfill
- User-initiated search, a user's matches
- Daily matching run
"""

import logging
from datetime import datetime, timezone
from uuid import UUID

from flask import Blueprint, jsonify, request

from grantscout.database import SessionLocal
from grantscout.errors import NotFound
from grantscout.services.discovery import (
    run_daily_matching_workflow,
    search_opportunities,
    start_general_search,
    start_profile_search,
)
from grantscout.services.embeddings import DEFAULT_BATCH_LIMIT, batch_generate_opportunity_embeddings
from grantscout.services.job_tracker import get_job, job_to_dict
from grantscout.services.match_store import DEFAULT_MATCH_LIMIT, get_user_matches

logger = logging.getLogger(__name__)

# Create blueprint
main = Blueprint('main', __name__)


def _parse_uuid(value: str, label: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        raise NotFound(f"Invalid {label} ID")


def _int_arg(payload: dict, key: str, default: int) -> int:
    value = payload.get(key, default)
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be an integer")
    if value < 1:
        raise ValueError(f"{key} must be positive")
    return value


@main.errorhandler(NotFound)
def handle_not_found(error):
    return jsonify({'error': str(error)}), 404


@main.errorhandler(ValueError)
def handle_bad_request(error):
    return jsonify({'error': str(error)}), 400


@main.route('/health')
def health_check():
    """Health check endpoint."""
    return {'status': 'healthy', 'timestamp': datetime.now(timezone.utc).isoformat()}


@main.route('/discovery/general', methods=['POST'])
def start_general_discovery():
    """Start a general discovery job; runs in the background."""
    payload = request.get_json(silent=True) or {}
    limit = _int_arg(payload, 'limit', 50)
    job_id = start_general_search(payload.get('search_query'), limit)
    return jsonify({'job_id': str(job_id)}), 202


@main.route('/discovery/users/<user_id>', methods=['POST'])
def start_profile_discovery(user_id: str):
    """Start a discovery job scoped to a user's profile."""
    payload = request.get_json(silent=True) or {}
    limit = _int_arg(payload, 'limit', 30)
    job_id = start_profile_search(_parse_uuid(user_id, 'user'), payload.get('search_query'), limit)
    return jsonify({'job_id': str(job_id)}), 202


@main.route('/discovery/jobs/<job_id>')
def discovery_job_status(job_id: str):
    session = SessionLocal()
    try:
        job = get_job(session, _parse_uuid(job_id, 'job'))
        return jsonify(job_to_dict(job))
    finally:
        session.close()


@main.route('/embeddings/backfill', methods=['POST'])
def embeddings_backfill():
    """Embed opportunities that have no embedding yet."""
    payload = request.get_json(silent=True) or {}
    limit = _int_arg(payload, 'limit', DEFAULT_BATCH_LIMIT)
    return jsonify(batch_generate_opportunity_embeddings(limit))


@main.route('/users/<user_id>/search', methods=['POST'])
def user_search(user_id: str):
    """
    User-initiated search. Blocks while live discovery runs when the
    catalogue holds too few matches.
    """
    payload = request.get_json(silent=True) or {}
    search_query = (payload.get('search_query') or '').strip()
    if not search_query:
        raise ValueError("search_query is required")

    result = search_opportunities(
        _parse_uuid(user_id, 'user'),
        search_query,
        min_matches=_int_arg(payload, 'min_matches', 5),
        limit=_int_arg(payload, 'limit', 30),
    )
    return jsonify(result)


@main.route('/users/<user_id>/matches')
def user_matches(user_id: str):
    limit = _int_arg(request.args, 'limit', DEFAULT_MATCH_LIMIT)
    return jsonify({'matches': get_user_matches(_parse_uuid(user_id, 'user'), limit)})


@main.route('/matching/daily', methods=['POST'])
def daily_matching():
    """Run the daily matching workflow synchronously."""
    return jsonify(run_daily_matching_workflow())
