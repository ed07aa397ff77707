"""
Semantic, Keyword and Hybrid Matching

Semantic matching compares a user's profile embedding with opportunity
embeddings. Keyword matching applies additive rules over requirements,
description and region text. The hybrid score blends the two:

    final = semantic_similarity * 100 * 0.7 + keyword_score * 0.3
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence
from uuid import UUID

from grantscout.database import SessionLocal
from grantscout.errors import EmbeddingFailure, NotFound, UpstreamUnavailable
from grantscout.models import Opportunity, UserProfile
from grantscout.services.education import matching_level
from grantscout.services.embeddings import (
    EmbeddingClient,
    generate_embedding,
    generate_user_profile_embedding,
)
from grantscout.services.similarity import cosine_similarity, nearest_neighbors

logger = logging.getLogger(__name__)

# Keyword rule weights
INTENDED_LEVEL_POINTS = 35
CURRENT_LEVEL_POINTS = 25
LEGACY_LEVEL_POINTS = 20
DISCIPLINE_POINTS = 20
INTEREST_POINTS = 10
NATIONALITY_POINTS = 15

SEMANTIC_WEIGHT = 0.7
KEYWORD_WEIGHT = 0.3

DEFAULT_SEMANTIC_LIMIT = 20
HYBRID_SEMANTIC_LIMIT = 50


@dataclass
class MatchCandidate:
    """One scored opportunity for a user."""
    opportunity_id: UUID
    score: float
    reasoning: str = ''
    eligibility_factors: list[str] = field(default_factory=list)
    semantic_score: float = 0.0
    keyword_score: float = 0.0


# ============================================================================
# Keyword
# ============================================================================

def keyword_score(user, opportunity) -> tuple[int, list[str]]:
    """
    Rule-based score of one opportunity for one user.

    Education level counts once, checked in priority order intended (+35),
    current (+25, highschool checked as undergraduate), deprecated (+20).
    Discipline found in requirements adds 20, each academic interest found
    in the description adds 10, nationality found in region adds 15.

    Returns:
        Tuple of (score, eligibility factors that contributed)
    """
    score = 0
    factors = []

    requirements = [r for r in (opportunity.requirements or []) if r]
    requirements_text = ' '.join(requirements).lower()

    for level, points in (
        (user.intended_education_level, INTENDED_LEVEL_POINTS),
        (matching_level(user.current_education_level), CURRENT_LEVEL_POINTS),
        (user.education_level, LEGACY_LEVEL_POINTS),
    ):
        if level and level.lower() in requirements_text:
            score += points
            factors.append(f"Education level: {level}")
            break

    if user.discipline and user.discipline.lower() in requirements_text:
        score += DISCIPLINE_POINTS
        factors.append(f"Discipline: {user.discipline}")

    description = (opportunity.description or '').lower()
    for interest in user.academic_interests or []:
        if interest and interest.lower() in description:
            score += INTEREST_POINTS
            factors.append(f"Interest: {interest}")

    if user.nationality and opportunity.region:
        if user.nationality.lower() in opportunity.region.lower():
            score += NATIONALITY_POINTS
            factors.append(f"Region: {opportunity.region}")

    return score, factors


def keyword_match_opportunities(user, opportunities: Sequence) -> list[MatchCandidate]:
    """Keyword matches with a positive score, best first."""
    matches = []
    for opportunity in opportunities:
        score, factors = keyword_score(user, opportunity)
        if score > 0:
            matches.append(MatchCandidate(
                opportunity_id=opportunity.id,
                score=score,
                keyword_score=score,
                eligibility_factors=factors,
            ))
    return sorted(matches, key=lambda m: m.score, reverse=True)


# ============================================================================
# Semantic
# ============================================================================

def _embedded_opportunities(session, opportunity_ids: Optional[Sequence[UUID]] = None):
    query = session.query(Opportunity.id, Opportunity.embedding).filter(
        Opportunity.embedding.isnot(None)
    )
    if opportunity_ids is not None:
        query = query.filter(Opportunity.id.in_(list(opportunity_ids)))
    return [(row.id, row.embedding) for row in query.all()]


def find_similar_opportunities(
    user_id: UUID,
    limit: int = DEFAULT_SEMANTIC_LIMIT,
    opportunity_ids: Optional[Sequence[UUID]] = None,
    client: Optional[EmbeddingClient] = None,
) -> list[tuple[UUID, float]]:
    """
    Opportunities nearest to a user's profile embedding.

    The profile embedding is generated first when the user has none.

    Returns:
        List of (opportunity_id, similarity) best first
    """
    session = SessionLocal()
    try:
        user = session.get(UserProfile, user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        user_vector = user.profile_embedding
    finally:
        session.close()

    if not user_vector:
        user_vector = generate_user_profile_embedding(user_id, client)

    session = SessionLocal()
    try:
        candidates = _embedded_opportunities(session, opportunity_ids)
    finally:
        session.close()

    return nearest_neighbors(user_vector, candidates, limit)


def semantic_search_opportunities(
    query: str,
    limit: int = DEFAULT_SEMANTIC_LIMIT,
    client: Optional[EmbeddingClient] = None,
) -> list[tuple[UUID, float]]:
    """Opportunities nearest to a free-text query, best first."""
    query_vector = generate_embedding(query, client)

    session = SessionLocal()
    try:
        candidates = _embedded_opportunities(session)
    finally:
        session.close()

    return nearest_neighbors(query_vector, candidates, limit)


def semantic_similarity(text: str, embedding: Sequence[float], client: Optional[EmbeddingClient] = None) -> float:
    """Similarity between a text and an existing embedding."""
    return cosine_similarity(generate_embedding(text, client), embedding)


# ============================================================================
# Hybrid
# ============================================================================

def combine_scores(
    semantic_matches: Sequence[tuple[UUID, float]],
    keyword_matches: Sequence[MatchCandidate],
) -> list[MatchCandidate]:
    """
    Blend semantic similarities (0-1) and keyword scores per opportunity.

    A side with no match for an opportunity contributes 0. Only positive
    totals are returned, best first.
    """
    combined: dict[UUID, MatchCandidate] = {}

    for opportunity_id, similarity in semantic_matches:
        combined[opportunity_id] = MatchCandidate(
            opportunity_id=opportunity_id,
            score=0.0,
            semantic_score=similarity * 100,
        )

    for match in keyword_matches:
        candidate = combined.setdefault(
            match.opportunity_id,
            MatchCandidate(opportunity_id=match.opportunity_id, score=0.0),
        )
        candidate.keyword_score = match.keyword_score or match.score
        candidate.eligibility_factors = list(match.eligibility_factors)

    results = []
    for candidate in combined.values():
        total = candidate.semantic_score * SEMANTIC_WEIGHT + candidate.keyword_score * KEYWORD_WEIGHT
        if total <= 0:
            continue
        candidate.score = round(total, 2)
        candidate.reasoning = (
            f"Hybrid match: Semantic ({round(candidate.semantic_score)}%), "
            f"Keyword ({round(candidate.keyword_score)})"
        )
        results.append(candidate)

    return sorted(results, key=lambda m: m.score, reverse=True)


def hybrid_match(
    user_id: UUID,
    opportunity_ids: Optional[Sequence[UUID]] = None,
    client: Optional[EmbeddingClient] = None,
    semantic_limit: int = HYBRID_SEMANTIC_LIMIT,
) -> list[MatchCandidate]:
    """
    Hybrid matches for a user, optionally restricted to given opportunities.

    When the profile cannot be embedded the semantic side is empty and
    keyword scores alone decide.
    """
    try:
        semantic = find_similar_opportunities(user_id, semantic_limit, opportunity_ids, client)
    except (EmbeddingFailure, UpstreamUnavailable) as e:
        logger.warning(f"Semantic matching unavailable for user {user_id}, using keywords only: {e}")
        semantic = []

    session = SessionLocal()
    try:
        user = session.get(UserProfile, user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        query = session.query(Opportunity)
        if opportunity_ids is not None:
            query = query.filter(Opportunity.id.in_(list(opportunity_ids)))
        keyword = keyword_match_opportunities(user, query.all())
    finally:
        session.close()

    matches = combine_scores(semantic, keyword)
    logger.info(
        f"Hybrid matching for user {user_id}: {len(semantic)} semantic, "
        f"{len(keyword)} keyword, {len(matches)} combined"
    )
    return matches
