"""
Opportunity Persistence and Deduplication

Saves extracted opportunities keyed by normalized application URL: a URL
seen before updates its row, a new URL inserts one. Each saved row gets a
fresh embedding text, and embedding generation is scheduled without being
awaited.

Title/provider deduplication is advisory. It never blocks a write; callers
that want it pass candidate IDs to deduplicate_opportunities.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from grantscout.database import SessionLocal
from grantscout.errors import NotFound
from grantscout.models import Opportunity, SourceKind
from grantscout.services.embedding_text import build_opportunity_text
from grantscout.services.embeddings import schedule_opportunity_embedding
from grantscout.services.url_normalizer import normalize_url

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    'title', 'provider', 'description', 'requirements', 'award_amount', 'deadline',
    'region', 'required_documents', 'essay_prompts', 'contact_info',
)


def dedup_key(title: str, provider: str) -> str:
    return f"{(title or '').strip().lower()}-{(provider or '').strip().lower()}"


def save_opportunities(items: list[dict], source_type: SourceKind) -> dict:
    """
    Upsert extracted opportunities.

    Args:
        items: Normalized opportunity dicts (see extraction_parsing.normalize_item)
        source_type: How the opportunities were discovered

    Returns:
        Dict with created/updated counts and the saved IDs
    """
    session = SessionLocal()
    created_ids = []
    updated_ids = []
    needs_embedding = []

    try:
        now = datetime.now(timezone.utc)

        for item in items:
            application_url = normalize_url(item.get('application_url', ''))
            if not application_url:
                logger.warning(f"Skipping opportunity without application URL: {item.get('title', '')[:60]}")
                continue

            embedding_text = build_opportunity_text(
                item['title'], item['provider'], item['description'],
                item.get('requirements'), item.get('region'),
            )

            existing = session.query(Opportunity).filter(
                Opportunity.application_url == application_url
            ).first()

            if existing is None:
                opportunity = Opportunity(
                    application_url=application_url,
                    source_type=source_type,
                    image_url=item.get('image_url'),
                    embedding_text=embedding_text,
                    tags=[],
                    **{field: item.get(field) for field in UPDATABLE_FIELDS},
                )
                if opportunity.requirements is None:
                    opportunity.requirements = []
                if opportunity.required_documents is None:
                    opportunity.required_documents = []
                session.add(opportunity)
                session.flush()
                created_ids.append(opportunity.id)
                needs_embedding.append(opportunity.id)
            else:
                for field in UPDATABLE_FIELDS:
                    value = item.get(field)
                    if value is not None:
                        setattr(existing, field, value)
                if item.get('image_url'):
                    existing.image_url = item['image_url']
                if existing.embedding_text != embedding_text or existing.embedding is None:
                    existing.embedding_text = embedding_text
                    existing.embedding = None
                    needs_embedding.append(existing.id)
                existing.last_updated = now
                updated_ids.append(existing.id)

        session.commit()
        logger.info(f"Saved opportunities: {len(created_ids)} created, {len(updated_ids)} updated")

    except Exception as e:
        logger.error(f"Error saving opportunities: {e}")
        session.rollback()
        raise
    finally:
        session.close()

    for opportunity_id in needs_embedding:
        schedule_opportunity_embedding(opportunity_id)

    return {
        'created': len(created_ids),
        'updated': len(updated_ids),
        'ids': created_ids + updated_ids,
        'created_ids': created_ids,
    }


def deduplicate_opportunities(opportunity_ids: list[UUID]) -> dict:
    """
    Partition candidate IDs by title/provider key.

    The first ID seen for a key is unique; later ones are duplicates.

    Returns:
        Dict with 'unique' and 'duplicates' ID lists
    """
    if not opportunity_ids:
        return {'unique': [], 'duplicates': []}

    session = SessionLocal()
    try:
        rows = session.query(Opportunity.id, Opportunity.title, Opportunity.provider).filter(
            Opportunity.id.in_(opportunity_ids)
        ).all()
        by_id = {row.id: row for row in rows}

        seen = set()
        unique = []
        duplicates = []
        for opportunity_id in opportunity_ids:
            row = by_id.get(opportunity_id)
            if row is None:
                continue
            key = dedup_key(row.title, row.provider)
            if key in seen:
                duplicates.append(opportunity_id)
            else:
                seen.add(key)
                unique.append(opportunity_id)

        logger.info(f"Deduplication: {len(opportunity_ids)} → {len(unique)} ({len(duplicates)} duplicates)")
        return {'unique': unique, 'duplicates': duplicates}
    finally:
        session.close()


def tag_opportunity(opportunity_id: UUID, tags: list[str]) -> list[str]:
    """Add tags to an opportunity (set semantics, existing order kept)."""
    session = SessionLocal()
    try:
        opportunity = session.get(Opportunity, opportunity_id)
        if opportunity is None:
            raise NotFound(f"Opportunity {opportunity_id} not found")

        current = list(opportunity.tags or [])
        for tag in tags:
            if tag not in current:
                current.append(tag)
        opportunity.tags = current
        session.commit()
        return current
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def replace_tags(opportunity_id: UUID, tags: list[str]) -> list[str]:
    session = SessionLocal()
    try:
        opportunity = session.get(Opportunity, opportunity_id)
        if opportunity is None:
            raise NotFound(f"Opportunity {opportunity_id} not found")

        opportunity.tags = list(dict.fromkeys(tags))
        session.commit()
        return opportunity.tags
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_recent_opportunities(since: datetime, limit: Optional[int] = None) -> list[Opportunity]:
    """Opportunities created at or after `since`, newest first."""
    session = SessionLocal()
    try:
        query = session.query(Opportunity).filter(
            Opportunity.created_at >= since
        ).order_by(Opportunity.created_at.desc())
        if limit:
            query = query.limit(limit)
        return query.all()
    finally:
        session.close()


def get_opportunities_by_ids(opportunity_ids: list[UUID]) -> list[Opportunity]:
    """Opportunities with the given IDs, in the order given; unknown IDs are skipped."""
    if not opportunity_ids:
        return []
    session = SessionLocal()
    try:
        rows = session.query(Opportunity).filter(Opportunity.id.in_(opportunity_ids)).all()
    finally:
        session.close()
    by_id = {row.id: row for row in rows}
    return [by_id[opportunity_id] for opportunity_id in opportunity_ids if opportunity_id in by_id]


def opportunity_to_dict(opportunity: Opportunity) -> dict:
    return {
        'id': str(opportunity.id),
        'title': opportunity.title,
        'provider': opportunity.provider,
        'description': opportunity.description,
        'requirements': opportunity.requirements or [],
        'award_amount': opportunity.award_amount,
        'deadline': opportunity.deadline,
        'application_url': opportunity.application_url,
        'region': opportunity.region,
        'required_documents': opportunity.required_documents or [],
        'essay_prompts': opportunity.essay_prompts,
        'contact_info': opportunity.contact_info,
        'image_url': opportunity.image_url,
        'tags': opportunity.tags or [],
        'source_type': opportunity.source_type.value,
        'has_embedding': opportunity.embedding is not None,
    }
