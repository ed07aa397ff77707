"""
Embedding text builders.

The text an entity is embedded from is stored next to its vector so a
vector can always be traced back to (and regenerated from) its source.
"""

from grantscout.services.education import get_all_education_levels


def build_opportunity_text(
    title: str,
    provider: str,
    description: str,
    requirements: list[str] = None,
    region: str = None,
) -> str:
    """Title, provider, description, requirements and region, space-joined."""
    parts = [title, provider, description, ' '.join(requirements or []), region or '']
    return ' '.join(part.strip() for part in parts if part and part.strip())


def build_user_text(user) -> str:
    """
    Profile summary, e.g. "Education: masters. Discipline: Biology. ...".

    Returns '' for a user with no profile data.
    """
    parts = []
    levels = get_all_education_levels(user)
    if levels:
        parts.append(f"Education: {', '.join(levels)}")
    if user.discipline:
        parts.append(f"Discipline: {user.discipline}")
    if user.subject:
        parts.append(f"Subject: {user.subject}")
    if user.nationality:
        parts.append(f"Nationality: {user.nationality}")
    if user.academic_interests:
        parts.append(f"Academic Interests: {', '.join(user.academic_interests)}")
    if user.career_interests:
        parts.append(f"Career Interests: {', '.join(user.career_interests)}")
    if user.demographic_tags:
        parts.append(f"Demographics: {', '.join(user.demographic_tags)}")
    return '. '.join(parts)


def build_document_text(document) -> str:
    return f"{document.type} {document.name} {' '.join(document.tags or [])}".strip()


def build_file_text(user_file) -> str:
    return f"{user_file.file_type} {user_file.file_name} {' '.join(user_file.tags or [])}".strip()
