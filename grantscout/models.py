"""
SQLAlchemy Models for the Grantscout Database Schema

The pipeline owns discovery_jobs, opportunities and user_opportunity_matches.
users, documents and user_files are owned by the application layer; this
package only reads their profile fields and writes their embedding columns.

All models use UUID primary keys. Lists and vectors are stored as JSON
(JSONB on PostgreSQL) so the schema also runs on SQLite for tests.
"""
import enum
from datetime import datetime, timezone
from uuid import UUID, uuid4
from typing import Optional

from sqlalchemy import (
    JSON, String, Text, Float, DateTime, Integer, Uuid,
    Enum as SAEnum, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship, Mapped, mapped_column
from sqlalchemy.sql import func

from grantscout.database import Base


JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# ============================================================================
# Enum Definitions
# ============================================================================

class DiscoveryJobKind(enum.Enum):
    """Scope of a discovery run"""
    GENERAL = "general_search"
    PROFILE = "profile_search"


class DiscoveryJobStatus(enum.Enum):
    """Discovery run lifecycle: pending → running → (completed | failed)"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SourceKind(enum.Enum):
    """How an opportunity entered the catalogue"""
    GENERAL_SEARCH = "general_search"
    PROFILE_SEARCH = "profile_search"
    CRAWL = "crawl"


class MatchKind(enum.Enum):
    """Provenance of a user/opportunity match"""
    DAILY_AUTOMATED = "daily_automated"
    USER_SEARCH = "user_search"
    MANUAL = "manual"


TERMINAL_JOB_STATUSES = {DiscoveryJobStatus.COMPLETED, DiscoveryJobStatus.FAILED}


# ============================================================================
# Pipeline-owned Models
# ============================================================================

class DiscoveryJob(Base):
    """
    Lifecycle record of one search-and-extract run

    Mutated only by the run that owns it. Terminal once completed or failed.
    """
    __tablename__ = "discovery_jobs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    kind: Mapped[DiscoveryJobKind] = mapped_column(
        SAEnum(DiscoveryJobKind, name="discovery_job_kind", values_callable=_enum_values),
        nullable=False
    )
    status: Mapped[DiscoveryJobStatus] = mapped_column(
        SAEnum(DiscoveryJobStatus, name="discovery_job_status", values_callable=_enum_values),
        nullable=False,
        default=DiscoveryJobStatus.PENDING
    )
    search_query: Mapped[str] = mapped_column(Text, nullable=False)
    user_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    # Outcome
    results_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timing
    scheduled_for: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now()
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    __table_args__ = (
        Index("ix_discovery_jobs_status", "status"),
        Index("ix_discovery_jobs_scheduled_for", "scheduled_for"),
        Index("ix_discovery_jobs_kind", "kind"),
    )


class Opportunity(Base):
    """
    Discovered funding listing (scholarship, grant, fellowship)

    Created by persistence, embedding filled asynchronously, tags mutated by
    matching. Never deleted by the pipeline.
    """
    __tablename__ = "opportunities"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Core Fields
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    provider: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    requirements: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    award_amount: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    deadline: Mapped[str] = mapped_column(String(10), nullable=False)  # YYYY-MM-DD
    application_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    region: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    required_documents: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    essay_prompts: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    contact_info: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    tags: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    source_type: Mapped[SourceKind] = mapped_column(
        SAEnum(SourceKind, name="source_kind", values_callable=_enum_values),
        nullable=False
    )

    # Embedding
    embedding: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    embedding_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now()
    )
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow
    )

    # Relationships
    matches: Mapped[list["UserOpportunityMatch"]] = relationship(
        "UserOpportunityMatch", back_populates="opportunity"
    )

    __table_args__ = (
        Index("ix_opportunities_application_url", "application_url"),
        Index("ix_opportunities_deadline", "deadline"),
        Index("ix_opportunities_source_type", "source_type"),
        Index("ix_opportunities_created_at", "created_at"),
    )


class UserOpportunityMatch(Base):
    """
    Per-user match of one opportunity

    At most one row per (user, opportunity); repeated matching passes merge
    into it by score and match kind priority.
    """
    __tablename__ = "user_opportunity_matches"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    opportunity_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("opportunities.id", ondelete="CASCADE"),
        nullable=False
    )

    match_score: Mapped[float] = mapped_column(Float, nullable=False)
    match_type: Mapped[MatchKind] = mapped_column(
        SAEnum(MatchKind, name="match_kind", values_callable=_enum_values),
        nullable=False
    )
    reasoning: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    eligibility_factors: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    matched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now()
    )

    # Relationships
    opportunity: Mapped["Opportunity"] = relationship("Opportunity", back_populates="matches")
    user: Mapped["UserProfile"] = relationship("UserProfile", back_populates="matches")

    __table_args__ = (
        UniqueConstraint("user_id", "opportunity_id", name="uq_user_opportunity_matches_user_opportunity"),
        Index("ix_user_opportunity_matches_user_id", "user_id"),
        Index("ix_user_opportunity_matches_opportunity_id", "opportunity_id"),
        Index("ix_user_opportunity_matches_user_type", "user_id", "match_type"),
        Index("ix_user_opportunity_matches_user_score", "user_id", "match_score"),
    )


# ============================================================================
# Collaborator Models (profile fields read, embedding columns written)
# ============================================================================

class UserProfile(Base):
    """
    Student profile used for query building and matching
    """
    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # highschool | undergraduate | masters | phd
    current_education_level: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    # undergraduate | masters | phd
    intended_education_level: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    # Deprecated single level, read only when the two fields above are unset
    education_level: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    subject: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    discipline: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    nationality: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    gpa: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    academic_interests: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    career_interests: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    demographic_tags: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    profile_embedding: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    embedding_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow
    )

    matches: Mapped[list["UserOpportunityMatch"]] = relationship(
        "UserOpportunityMatch", back_populates="user"
    )

    @property
    def has_profile_data(self) -> bool:
        return bool(
            self.current_education_level or self.intended_education_level or self.education_level
            or self.discipline or self.subject or self.academic_interests
        )


class Document(Base):
    """
    Platform-generated document (essay, cover letter, statement)
    """
    __tablename__ = "documents"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    opportunity_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("opportunities.id", ondelete="SET NULL"),
        nullable=True
    )
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tags: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    embedding: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    embedding_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now()
    )

    __table_args__ = (
        Index("ix_documents_user_id", "user_id"),
    )


class UserFile(Base):
    """
    User-uploaded file (CV, transcript, passport, ...)
    """
    __tablename__ = "user_files"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    file_name: Mapped[str] = mapped_column(String(300), nullable=False)
    file_type: Mapped[str] = mapped_column(String(50), nullable=False)
    content_type: Mapped[str] = mapped_column(String(100), nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    tags: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    embedding: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    embedding_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now()
    )

    __table_args__ = (
        Index("ix_user_files_user_id", "user_id"),
    )
