"""
Search Query Builder

Turns a user profile (or a free-text query plus profile) into the search
string sent to the web search service. Pure functions, no I/O.
"""

from datetime import datetime, timezone
from typing import Optional

# Synonym groups per education level
LEVEL_SYNONYMS = {
    'undergraduate': 'undergraduate OR bachelors',
    'masters': 'masters OR graduate OR postgraduate',
    'phd': 'PhD OR doctoral OR doctorate',
}

BASE_TERMS = 'scholarships OR grants OR fellowships OR awards OR funding'
SITE_FILTERS = 'application open site:edu OR site:gov OR site:org'
MAX_INTEREST_TERMS = 3


def _level_group(level: Optional[str]) -> Optional[str]:
    if not level:
        return None
    # Highschool students search for undergraduate funding
    if level == 'highschool':
        level = 'undergraduate'
    return LEVEL_SYNONYMS.get(level)


def build_profile_query(user) -> str:
    """
    Build a weighted search string from a user profile.

    Education synonym groups come first (intended level, then the current
    level when it differs, falling back to the deprecated level), followed
    by discipline, subject, up to three academic interests OR-joined, and
    nationality. The result is wrapped in base funding terms and site filters.

    Args:
        user: Object with the UserProfile attributes

    Returns:
        Search query string
    """
    groups = []

    intended = getattr(user, 'intended_education_level', None)
    current = getattr(user, 'current_education_level', None)

    for level in (intended, current if current != intended else None):
        group = _level_group(level)
        if group and group not in groups:
            groups.append(group)

    if not groups:
        group = _level_group(getattr(user, 'education_level', None))
        if group:
            groups.append(group)

    parts = list(groups)

    if getattr(user, 'discipline', None):
        parts.append(user.discipline)
    if getattr(user, 'subject', None):
        parts.append(user.subject)

    interests = [i for i in (getattr(user, 'academic_interests', None) or []) if i]
    if interests:
        parts.append(' OR '.join(interests[:MAX_INTEREST_TERMS]))

    if getattr(user, 'nationality', None):
        parts.append(user.nationality)

    query = f"{BASE_TERMS} {' '.join(parts)}" if parts else BASE_TERMS
    return f"{query} {SITE_FILTERS}"


def combine_query_with_profile(search_query: str, user) -> str:
    """User's free text first, profile terms after it for context."""
    return f"{search_query.strip()} {build_profile_query(user)}".strip()


def general_search_query(now: Optional[datetime] = None) -> str:
    """The catalogue-wide query run by the weekly scheduler."""
    year = (now or datetime.now(timezone.utc)).year
    levels = ' OR '.join(LEVEL_SYNONYMS.values())
    return f"{year} {BASE_TERMS} {levels} {SITE_FILTERS}"
