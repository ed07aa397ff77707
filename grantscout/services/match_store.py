"""
Match Persistence

Per-user match rows are authoritative. Each (user, opportunity) pair has at
most one row, and repeated matching passes merge into it:

    overwrite when new score > existing score
           or new kind is user_search and the existing kind is not
           or new kind is daily_automated and the existing kind is manual

Rows are never deleted here. The legacy path, which marks the shared
opportunity tag list with "For You", sits behind the same writer interface
and can be switched off with LEGACY_TAG_WRITER_ENABLED=false.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Optional, Protocol, Sequence
from uuid import UUID

from grantscout.database import SessionLocal
from grantscout.models import MatchKind, Opportunity, UserOpportunityMatch
from grantscout.services.matching import MatchCandidate

logger = logging.getLogger(__name__)

# Configuration
MIN_MATCH_SCORE = float(os.environ.get('MATCH_MIN_SCORE', '30'))
LEGACY_TAG_WRITER_ENABLED = os.environ.get('LEGACY_TAG_WRITER_ENABLED', 'true').lower() == 'true'

FOR_YOU_TAG = 'For You'
DEFAULT_MATCH_LIMIT = 20


def should_overwrite(
    existing_score: float,
    existing_kind: MatchKind,
    new_score: float,
    new_kind: MatchKind,
) -> bool:
    """Merge rule for a (user, opportunity) pair that already has a row."""
    if new_score > existing_score:
        return True
    if new_kind == MatchKind.USER_SEARCH and existing_kind != MatchKind.USER_SEARCH:
        return True
    if new_kind == MatchKind.DAILY_AUTOMATED and existing_kind == MatchKind.MANUAL:
        return True
    return False


def save_user_opportunity_matches(
    user_id: UUID,
    matches: Sequence[MatchCandidate],
    match_type: MatchKind,
    min_score: float = MIN_MATCH_SCORE,
) -> dict:
    """
    Insert or merge per-user match rows.

    Args:
        user_id: User the matches belong to
        matches: Scored candidates
        match_type: Provenance of this matching pass
        min_score: Candidates below this score are ignored

    Returns:
        Dict with inserted, updated and skipped counts
    """
    session = SessionLocal()
    inserted = 0
    updated = 0
    skipped = 0

    try:
        now = datetime.now(timezone.utc)
        eligible = [m for m in matches if m.score >= min_score]
        ids = [m.opportunity_id for m in eligible]

        existing_rows = {}
        if ids:
            rows = session.query(UserOpportunityMatch).filter(
                UserOpportunityMatch.user_id == user_id,
                UserOpportunityMatch.opportunity_id.in_(ids),
            ).all()
            existing_rows = {row.opportunity_id: row for row in rows}

        for match in eligible:
            existing = existing_rows.get(match.opportunity_id)

            if existing is None:
                row = UserOpportunityMatch(
                    user_id=user_id,
                    opportunity_id=match.opportunity_id,
                    match_score=match.score,
                    match_type=match_type,
                    reasoning=match.reasoning or None,
                    eligibility_factors=list(match.eligibility_factors) or None,
                    matched_at=now,
                )
                session.add(row)
                existing_rows[match.opportunity_id] = row
                inserted += 1
            elif should_overwrite(existing.match_score, existing.match_type, match.score, match_type):
                existing.match_score = match.score
                existing.match_type = match_type
                existing.reasoning = match.reasoning or None
                existing.eligibility_factors = list(match.eligibility_factors) or None
                existing.matched_at = now
                updated += 1
            else:
                skipped += 1

        session.commit()
        logger.info(
            f"Saved {match_type.value} matches for user {user_id}: "
            f"{inserted} inserted, {updated} updated, {skipped} kept existing"
        )
        return {'inserted': inserted, 'updated': updated, 'skipped': skipped, 'saved': inserted + updated}

    except Exception as e:
        logger.error(f"Error saving matches for user {user_id}: {e}")
        session.rollback()
        raise
    finally:
        session.close()


def tag_opportunities_from_matches(
    matches: Sequence[MatchCandidate],
    tag_threshold: float = MIN_MATCH_SCORE,
) -> int:
    """
    Legacy path: add the shared "For You" tag to matched opportunities.

    Returns:
        Number of opportunities tagged
    """
    ids = [m.opportunity_id for m in matches if m.score >= tag_threshold]
    if not ids:
        return 0

    session = SessionLocal()
    try:
        tagged = 0
        now = datetime.now(timezone.utc)
        for opportunity in session.query(Opportunity).filter(Opportunity.id.in_(ids)).all():
            tags = [tag for tag in (opportunity.tags or []) if tag != FOR_YOU_TAG]
            opportunity.tags = tags + [FOR_YOU_TAG]
            opportunity.last_updated = now
            tagged += 1
        session.commit()
        return tagged
    except Exception as e:
        logger.error(f"Error tagging opportunities: {e}")
        session.rollback()
        raise
    finally:
        session.close()


# ============================================================================
# Writers
# ============================================================================

class MatchWriter(Protocol):
    def write(self, user_id: UUID, matches: Sequence[MatchCandidate], match_type: MatchKind) -> int:
        ...


class UserMatchWriter:
    """Writes authoritative per-user match rows."""

    def __init__(self, min_score: float = MIN_MATCH_SCORE):
        self.min_score = min_score

    def write(self, user_id: UUID, matches: Sequence[MatchCandidate], match_type: MatchKind) -> int:
        return save_user_opportunity_matches(user_id, matches, match_type, self.min_score)['saved']


class LegacyTagWriter:
    """Marks matched opportunities with the shared "For You" tag."""

    def __init__(self, tag_threshold: float = MIN_MATCH_SCORE):
        self.tag_threshold = tag_threshold

    def write(self, user_id: UUID, matches: Sequence[MatchCandidate], match_type: MatchKind) -> int:
        return tag_opportunities_from_matches(matches, self.tag_threshold)


class DualMatchWriter:
    """
    Writes through a primary writer and any secondary writers.

    The primary's count is returned; secondary failures are logged so the
    legacy path can never break the authoritative one.
    """

    def __init__(self, primary: MatchWriter, secondaries: Sequence[MatchWriter] = ()):
        self.primary = primary
        self.secondaries = list(secondaries)

    def write(self, user_id: UUID, matches: Sequence[MatchCandidate], match_type: MatchKind) -> int:
        saved = self.primary.write(user_id, matches, match_type)
        for writer in self.secondaries:
            try:
                writer.write(user_id, matches, match_type)
            except Exception as e:
                logger.error(f"{type(writer).__name__} failed for user {user_id}: {e}")
        return saved


def get_match_writer(legacy_enabled: Optional[bool] = None) -> MatchWriter:
    """Per-user writer, dual-writing legacy tags while that path is enabled."""
    if legacy_enabled is None:
        legacy_enabled = LEGACY_TAG_WRITER_ENABLED
    primary = UserMatchWriter()
    if legacy_enabled:
        return DualMatchWriter(primary, [LegacyTagWriter()])
    return primary


# ============================================================================
# Reads
# ============================================================================

def get_user_matches(user_id: UUID, limit: int = DEFAULT_MATCH_LIMIT) -> list[dict]:
    """A user's matches with opportunity details, highest score first."""
    session = SessionLocal()
    try:
        rows = session.query(UserOpportunityMatch, Opportunity).join(
            Opportunity, UserOpportunityMatch.opportunity_id == Opportunity.id
        ).filter(
            UserOpportunityMatch.user_id == user_id
        ).order_by(
            UserOpportunityMatch.match_score.desc()
        ).limit(limit).all()

        return [
            {
                'opportunity_id': str(match.opportunity_id),
                'title': opportunity.title,
                'provider': opportunity.provider,
                'deadline': opportunity.deadline,
                'application_url': opportunity.application_url,
                'match_score': match.match_score,
                'match_type': match.match_type.value,
                'reasoning': match.reasoning,
                'eligibility_factors': match.eligibility_factors or [],
                'matched_at': match.matched_at.isoformat() if match.matched_at else None,
            }
            for match, opportunity in rows
        ]
    finally:
        session.close()
