"""
Embedding Generator

Converts text to fixed-length vectors with the OpenAI embeddings API and
stores vector plus source text on the owning entity (opportunity, user
profile, document or user file). Regenerating an embedding overwrites the
previous one, so scheduling it more than once is harmless.
"""

import logging
import os
import time
from typing import Optional, Protocol
from uuid import UUID

from openai import OpenAI

from grantscout.database import SessionLocal
from grantscout.errors import EmbeddingFailure, EmptyEmbeddingText, NotFound, UpstreamUnavailable
from grantscout.models import Document, Opportunity, UserFile, UserProfile
from grantscout.services.background import run_in_background
from grantscout.services.embedding_text import (
    build_document_text,
    build_file_text,
    build_opportunity_text,
    build_user_text,
)

logger = logging.getLogger(__name__)

# Configuration
EMBEDDING_MODEL = os.environ.get('EMBEDDING_MODEL', 'text-embedding-3-small')
EMBEDDING_DIMENSIONS = int(os.environ.get('EMBEDDING_DIMENSIONS', '1536'))
BATCH_DELAY_SECONDS = float(os.environ.get('EMBEDDING_BATCH_DELAY_SECONDS', '0.1'))
DEFAULT_BATCH_LIMIT = 50


class EmbeddingClient(Protocol):
    def embed(self, text: str) -> list[float]:
        ...


class OpenAIEmbeddingClient:
    """Embeddings via the OpenAI API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = EMBEDDING_MODEL,
        dimensions: int = EMBEDDING_DIMENSIONS,
        client: Optional[OpenAI] = None,
    ):
        if client is None:
            api_key = api_key or os.environ.get('OPENAI_API_KEY')
            if not api_key:
                raise ValueError("OPENAI_API_KEY environment variable not set")
            client = OpenAI(api_key=api_key)
        self.client = client
        self.model = model
        self.dimensions = dimensions

    def embed(self, text: str) -> list[float]:
        """
        Embed one text.

        Raises:
            EmptyEmbeddingText: text is empty or whitespace
            UpstreamUnavailable: the API call failed
            EmbeddingFailure: the response had no vector of the expected size
        """
        if not text or not text.strip():
            raise EmptyEmbeddingText("Cannot embed empty text")

        try:
            response = self.client.embeddings.create(model=self.model, input=text)
        except Exception as e:
            raise UpstreamUnavailable('openai-embeddings', str(e)) from e

        if not response.data:
            raise EmbeddingFailure("Embedding response contained no data")
        vector = list(response.data[0].embedding)
        if len(vector) != self.dimensions:
            raise EmbeddingFailure(f"Expected {self.dimensions} dimensions, got {len(vector)}")
        return vector


_default_client: Optional[EmbeddingClient] = None


def get_embedding_client() -> EmbeddingClient:
    global _default_client
    if _default_client is None:
        _default_client = OpenAIEmbeddingClient()
    return _default_client


def set_embedding_client(client: Optional[EmbeddingClient]):
    """Replace the process-wide embedding client (tests inject a fake)."""
    global _default_client
    _default_client = client


def generate_embedding(text: str, client: Optional[EmbeddingClient] = None) -> list[float]:
    if not text or not text.strip():
        raise EmptyEmbeddingText("Cannot embed empty text")
    return (client or get_embedding_client()).embed(text)


def generate_opportunity_embedding(opportunity_id: UUID, client: Optional[EmbeddingClient] = None) -> list[float]:
    """Embed an opportunity and store the vector with its source text."""
    session = SessionLocal()
    try:
        opportunity = session.get(Opportunity, opportunity_id)
        if opportunity is None:
            raise NotFound(f"Opportunity {opportunity_id} not found")

        text = opportunity.embedding_text or build_opportunity_text(
            opportunity.title,
            opportunity.provider,
            opportunity.description,
            opportunity.requirements,
            opportunity.region,
        )
        vector = generate_embedding(text, client)

        opportunity.embedding = vector
        opportunity.embedding_text = text
        session.commit()
        logger.debug(f"Stored embedding for opportunity {opportunity_id}")
        return vector
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def generate_user_profile_embedding(user_id: UUID, client: Optional[EmbeddingClient] = None) -> list[float]:
    """
    Embed a user's profile.

    Raises:
        EmptyEmbeddingText: the profile has no data to embed
    """
    session = SessionLocal()
    try:
        user = session.get(UserProfile, user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")

        text = build_user_text(user)
        if not text.strip():
            raise EmptyEmbeddingText(f"User {user_id} has no profile data to embed")
        vector = generate_embedding(text, client)

        user.profile_embedding = vector
        user.embedding_text = text
        session.commit()
        logger.info(f"Stored profile embedding for user {user_id}")
        return vector
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def generate_document_embedding(document_id: UUID, client: Optional[EmbeddingClient] = None) -> list[float]:
    session = SessionLocal()
    try:
        document = session.get(Document, document_id)
        if document is None:
            raise NotFound(f"Document {document_id} not found")

        text = build_document_text(document)
        vector = generate_embedding(text, client)

        document.embedding = vector
        document.embedding_text = text
        session.commit()
        return vector
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def generate_file_embedding(file_id: UUID, client: Optional[EmbeddingClient] = None) -> list[float]:
    session = SessionLocal()
    try:
        user_file = session.get(UserFile, file_id)
        if user_file is None:
            raise NotFound(f"File {file_id} not found")

        text = build_file_text(user_file)
        vector = generate_embedding(text, client)

        user_file.embedding = vector
        user_file.embedding_text = text
        session.commit()
        return vector
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_opportunities_without_embeddings(limit: int = DEFAULT_BATCH_LIMIT) -> list[UUID]:
    """IDs of the oldest opportunities that have no embedding yet."""
    session = SessionLocal()
    try:
        rows = session.query(Opportunity.id).filter(
            Opportunity.embedding.is_(None)
        ).order_by(Opportunity.created_at.asc()).limit(limit).all()
        return [row.id for row in rows]
    finally:
        session.close()


def batch_generate_opportunity_embeddings(
    limit: int = DEFAULT_BATCH_LIMIT,
    client: Optional[EmbeddingClient] = None,
    delay: float = BATCH_DELAY_SECONDS,
) -> dict:
    """
    Embed up to `limit` opportunities lacking an embedding, one at a time.

    Per-item failures are collected and the batch carries on; a failed
    opportunity stays embedding-less for the next batch.

    Returns:
        Dict with processed count and per-item errors
    """
    ids = get_opportunities_without_embeddings(limit)
    logger.info(f"Embedding batch: {len(ids)} opportunities without embeddings")

    processed = 0
    errors = []
    for index, opportunity_id in enumerate(ids):
        try:
            generate_opportunity_embedding(opportunity_id, client)
            processed += 1
        except Exception as e:
            logger.error(f"Failed to generate embedding for opportunity {opportunity_id}: {e}")
            errors.append({'opportunity_id': str(opportunity_id), 'error': str(e)})

        if delay > 0 and index < len(ids) - 1:
            time.sleep(delay)

    logger.info(f"Embedding batch complete: {processed} processed, {len(errors)} errors")
    return {'processed': processed, 'errors': errors}


def schedule_opportunity_embedding(opportunity_id: UUID):
    """Fire-and-forget embedding generation for a newly saved opportunity."""
    run_in_background(generate_opportunity_embedding, opportunity_id)
