"""
Claude Match Review with Structured Outputs

Optional pass over hybrid matches before they are saved: Claude reads the
user profile and each matched opportunity and writes reasoning text plus
eligibility factors. Scores are left untouched. Enabled with
MATCH_REVIEW_ENABLED=true.
"""

import json
import logging
import os
import sys
import time
from typing import Optional, Sequence

from anthropic import Anthropic

from grantscout.database import SessionLocal
from grantscout.models import Opportunity
from grantscout.services.education import format_education_levels
from grantscout.services.match_store import MIN_MATCH_SCORE
from grantscout.services.matching import MatchCandidate

logger = logging.getLogger(__name__)


def _log_claude(msg: str):
    """Log Claude progress with immediate flush."""
    full_msg = f"CLAUDE: {msg}"
    logger.info(full_msg)
    print(full_msg, file=sys.stdout, flush=True)

# Configuration
# NOTE: Model name is an Anthropic API identifier, not a date.
MODEL = os.environ.get("CLAUDE_MATCH_MODEL", "claude-sonnet-4-5")
MAX_TOKENS = 4096

# Anthropic beta API version identifier
STRUCTURED_OUTPUTS_BETA = os.environ.get("ANTHROPIC_STRUCTURED_OUTPUTS_BETA", "structured-outputs-2025-11-13")
TEMPERATURE = 0
REVIEW_ENABLED = os.environ.get('MATCH_REVIEW_ENABLED', 'false').lower() == 'true'
REVIEW_BATCH_SIZE = 20
MAX_RETRIES = 2
RETRY_BASE_DELAY = 2.0

REVIEW_RESULT_SCHEMA = {
    "type": "object",
    "properties": {
        "reviews": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "index": {"type": "integer"},
                    "reasoning": {"type": "string"},
                    "eligibility_factors": {
                        "type": "array",
                        "items": {"type": "string"}
                    }
                },
                "required": ["index", "reasoning", "eligibility_factors"],
                "additionalProperties": False
            }
        }
    },
    "required": ["reviews"],
    "additionalProperties": False
}

SYSTEM_PROMPT = """You are an expert scholarship matching advisor.
You receive a student profile and a numbered list of funding opportunities that were already matched to the student.

For each opportunity:
- reasoning: 1-2 sentences explaining why the opportunity suits this student, naming the specific requirements they meet
- eligibility_factors: short phrases for the concrete factors that make the student eligible (education level, discipline, nationality, interests)

Consider both the student's current and intended education levels.
Do not invent requirements that are not in the opportunity text."""


def get_anthropic_client() -> Anthropic:
    """Get Anthropic client with API key from environment."""
    api_key = os.environ.get('ANTHROPIC_API_KEY')
    if not api_key:
        raise ValueError("ANTHROPIC_API_KEY environment variable not set")
    return Anthropic(api_key=api_key)


def build_profile_summary(user) -> str:
    return '\n'.join([
        f"Education Levels: {format_education_levels(user)}",
        f"Subject: {user.subject or 'Not specified'}",
        f"Discipline: {user.discipline or 'Not specified'}",
        f"Nationality: {user.nationality or 'Not specified'}",
        f"Academic Interests: {', '.join(user.academic_interests or []) or 'Not specified'}",
        f"Career Interests: {', '.join(user.career_interests or []) or 'Not specified'}",
        f"GPA: {user.gpa if user.gpa is not None else 'Not specified'}",
    ])


def _opportunity_for_prompt(index: int, opportunity: Opportunity) -> dict:
    return {
        'index': index,
        'title': opportunity.title,
        'provider': opportunity.provider,
        'description': opportunity.description[:500],
        'requirements': (opportunity.requirements or [])[:8],
        'region': opportunity.region or 'Not specified',
        'deadline': opportunity.deadline,
    }


def review_batch(
    user,
    opportunities: Sequence[Opportunity],
    client: Optional[Anthropic] = None,
) -> list[dict]:
    """
    Ask Claude for reasoning and eligibility factors for one batch.

    Returns:
        List of review dicts keyed by index; empty if every attempt failed
    """
    client = client or get_anthropic_client()
    payload = [_opportunity_for_prompt(i, opp) for i, opp in enumerate(opportunities)]
    user_message = (
        f"STUDENT PROFILE:\n{build_profile_summary(user)}\n\n"
        f"MATCHED OPPORTUNITIES:\n{json.dumps(payload, indent=2)}"
    )

    for attempt in range(MAX_RETRIES):
        try:
            _log_claude(f"Reviewing {len(opportunities)} matches (attempt {attempt + 1}/{MAX_RETRIES})...")
            api_start = time.time()
            response = client.beta.messages.create(
                model=MODEL,
                max_tokens=MAX_TOKENS,
                temperature=TEMPERATURE,
                betas=[STRUCTURED_OUTPUTS_BETA],
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": user_message}],
                output_format={
                    "type": "json_schema",
                    "schema": REVIEW_RESULT_SCHEMA
                }
            )
            _log_claude(f"Claude API responded in {time.time() - api_start:.1f}s")

            parsed = json.loads(response.content[0].text)
            return parsed.get("reviews", [])

        except Exception as e:
            error_str = str(e).lower()
            logger.error(f"Claude API error (attempt {attempt + 1}/{MAX_RETRIES}): {e}")
            if attempt < MAX_RETRIES - 1:
                delay = RETRY_BASE_DELAY * (2 ** attempt)
                if '429' in error_str or 'rate limit' in error_str:
                    logger.warning(f"Claude rate limit, waiting {delay}s")
                time.sleep(delay)

    return []


def review_matches(
    user,
    matches: list[MatchCandidate],
    client: Optional[Anthropic] = None,
    enabled: Optional[bool] = None,
    min_score: float = MIN_MATCH_SCORE,
) -> list[MatchCandidate]:
    """
    Replace hybrid reasoning with Claude's review where available.

    Only matches scoring at least `min_score` are sent for review, since
    the rest are never stored. Matches Claude did not review keep their
    hybrid reasoning. The input list is returned (mutated in place) in its
    original order.
    """
    if enabled is None:
        enabled = REVIEW_ENABLED
    candidates = [m for m in matches if m.score >= min_score]
    if not enabled or not candidates:
        return matches

    session = SessionLocal()
    try:
        ids = [m.opportunity_id for m in candidates]
        opportunities = {
            opp.id: opp for opp in session.query(Opportunity).filter(Opportunity.id.in_(ids)).all()
        }
    finally:
        session.close()

    reviewable = [m for m in candidates if m.opportunity_id in opportunities]
    reviewed = 0
    for start in range(0, len(reviewable), REVIEW_BATCH_SIZE):
        batch = reviewable[start:start + REVIEW_BATCH_SIZE]
        reviews = review_batch(user, [opportunities[m.opportunity_id] for m in batch], client)

        for review in reviews:
            index = review.get('index')
            if not isinstance(index, int) or not 0 <= index < len(batch):
                continue
            match = batch[index]
            if review.get('reasoning'):
                match.reasoning = review['reasoning']
            if review.get('eligibility_factors'):
                match.eligibility_factors = list(review['eligibility_factors'])
            reviewed += 1

    logger.info(f"Claude reviewed {reviewed}/{len(matches)} matches")
    return matches
