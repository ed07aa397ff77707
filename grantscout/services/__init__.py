"""
Opportunity Discovery and Matching Services

This package contains the services for the discovery pipeline and matching:
- query_builder: Build search queries from user profiles
- search_client / extract_client: Search and structured extraction adapters
- extraction_poller / batch_extractor: Two-phase discovery over URL batches
- deadline / extraction_parsing: Normalize extracted records
- persistence / embeddings: Save opportunities and their vectors
- matching / match_store: Hybrid scoring and per-user match persistence
- discovery: Orchestrate discovery jobs, user search and daily matching
"""

from grantscout.services.query_builder import build_profile_query, combine_query_with_profile
from grantscout.services.deadline import normalize_deadline
from grantscout.services.similarity import cosine_similarity
from grantscout.services.matching import hybrid_match, keyword_match_opportunities
from grantscout.services.match_store import save_user_opportunity_matches, get_user_matches
from grantscout.services.embeddings import batch_generate_opportunity_embeddings
from grantscout.services.discovery import (
    run_discovery_job,
    run_daily_matching_workflow,
    search_opportunities,
    start_general_search,
    start_profile_search,
)

__all__ = [
    'build_profile_query',
    'combine_query_with_profile',
    'normalize_deadline',
    'cosine_similarity',
    'hybrid_match',
    'keyword_match_opportunities',
    'save_user_opportunity_matches',
    'get_user_matches',
    'batch_generate_opportunity_embeddings',
    'run_discovery_job',
    'run_daily_matching_workflow',
    'search_opportunities',
    'start_general_search',
    'start_profile_search',
]
