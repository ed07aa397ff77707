"""
Education Level Helpers

A profile carries a current level (which may be highschool), an intended
level, and a deprecated single level kept for older profiles. Highschool
students are treated as seeking undergraduate opportunities.
"""

from typing import Optional

EDUCATION_LEVELS = ('undergraduate', 'masters', 'phd')
CURRENT_EDUCATION_LEVELS = ('highschool',) + EDUCATION_LEVELS


def matching_level(level: Optional[str]) -> Optional[str]:
    """Map a current education level onto the level used for matching."""
    if level == 'highschool':
        return 'undergraduate'
    return level


def get_effective_education_level(user) -> Optional[str]:
    """
    Level the user is seeking opportunities for.

    Priority: intended > current (highschool → undergraduate) > deprecated.
    """
    if user.intended_education_level:
        return user.intended_education_level
    if user.current_education_level:
        return matching_level(user.current_education_level)
    return user.education_level


def get_all_education_levels(user) -> list[str]:
    """All distinct matching levels for a user, current first."""
    levels = []
    for level in (
        matching_level(user.current_education_level),
        user.intended_education_level,
        user.education_level,
    ):
        if level and level not in levels:
            levels.append(level)
    return levels


def format_education_levels(user) -> str:
    """Human-readable summary for prompts and reasoning text."""
    parts = []
    if user.current_education_level:
        display = 'high school' if user.current_education_level == 'highschool' else user.current_education_level
        parts.append(f"Current: {display}")
    if user.intended_education_level:
        parts.append(f"Seeking: {user.intended_education_level}")
    if not parts and user.education_level:
        parts.append(f"Education Level: {user.education_level}")
    return ', '.join(parts) if parts else 'Not specified'
