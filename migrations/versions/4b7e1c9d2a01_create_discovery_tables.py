"""Create discovery and matching tables

Revision ID: 4b7e1c9d2a01
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '4b7e1c9d2a01'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENUMS = {
    'discovery_job_kind': ('general_search', 'profile_search'),
    'discovery_job_status': ('pending', 'running', 'completed', 'failed'),
    'source_kind': ('general_search', 'profile_search', 'crawl'),
    'match_kind': ('daily_automated', 'user_search', 'manual'),
}


def _enum(name: str):
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _uuid_pk():
    return sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False)


def upgrade() -> None:
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(op.get_bind(), checkfirst=True)

    # Collaborator tables (profile fields read, embedding columns written)
    op.create_table(
        'users',
        _uuid_pk(),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(200), nullable=True),
        sa.Column('current_education_level', sa.String(20), nullable=True),
        sa.Column('intended_education_level', sa.String(20), nullable=True),
        sa.Column('education_level', sa.String(20), nullable=True),
        sa.Column('subject', sa.String(200), nullable=True),
        sa.Column('discipline', sa.String(200), nullable=True),
        sa.Column('nationality', sa.String(100), nullable=True),
        sa.Column('gpa', sa.Float(), nullable=True),
        sa.Column('academic_interests', postgresql.JSONB(), server_default='[]', nullable=False),
        sa.Column('career_interests', postgresql.JSONB(), server_default='[]', nullable=False),
        sa.Column('demographic_tags', postgresql.JSONB(), server_default='[]', nullable=False),
        sa.Column('profile_embedding', postgresql.JSONB(), nullable=True),
        sa.Column('embedding_text', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email')
    )

    op.create_table(
        'opportunities',
        _uuid_pk(),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('provider', sa.String(300), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('requirements', postgresql.JSONB(), server_default='[]', nullable=False),
        sa.Column('award_amount', sa.Float(), nullable=True),
        sa.Column('deadline', sa.String(10), nullable=False),
        sa.Column('application_url', sa.String(1000), nullable=False),
        sa.Column('region', sa.String(300), nullable=True),
        sa.Column('required_documents', postgresql.JSONB(), server_default='[]', nullable=False),
        sa.Column('essay_prompts', postgresql.JSONB(), nullable=True),
        sa.Column('contact_info', sa.Text(), nullable=True),
        sa.Column('image_url', sa.String(1000), nullable=True),
        sa.Column('tags', postgresql.JSONB(), server_default='[]', nullable=False),
        sa.Column('source_type', _enum('source_kind'), nullable=False),
        sa.Column('embedding', postgresql.JSONB(), nullable=True),
        sa.Column('embedding_text', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('last_updated', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_opportunities_application_url', 'opportunities', ['application_url'], unique=False)
    op.create_index('ix_opportunities_deadline', 'opportunities', ['deadline'], unique=False)
    op.create_index('ix_opportunities_source_type', 'opportunities', ['source_type'], unique=False)
    op.create_index('ix_opportunities_created_at', 'opportunities', ['created_at'], unique=False)

    op.create_table(
        'discovery_jobs',
        _uuid_pk(),
        sa.Column('kind', _enum('discovery_job_kind'), nullable=False),
        sa.Column('status', _enum('discovery_job_status'), nullable=False),
        sa.Column('search_query', sa.Text(), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('results_count', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('scheduled_for', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_discovery_jobs_status', 'discovery_jobs', ['status'], unique=False)
    op.create_index('ix_discovery_jobs_scheduled_for', 'discovery_jobs', ['scheduled_for'], unique=False)
    op.create_index('ix_discovery_jobs_kind', 'discovery_jobs', ['kind'], unique=False)

    op.create_table(
        'user_opportunity_matches',
        _uuid_pk(),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('opportunity_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('match_score', sa.Float(), nullable=False),
        sa.Column('match_type', _enum('match_kind'), nullable=False),
        sa.Column('reasoning', sa.Text(), nullable=True),
        sa.Column('eligibility_factors', postgresql.JSONB(), nullable=True),
        sa.Column('matched_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['opportunity_id'], ['opportunities.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'opportunity_id', name='uq_user_opportunity_matches_user_opportunity')
    )
    op.create_index('ix_user_opportunity_matches_user_id', 'user_opportunity_matches', ['user_id'], unique=False)
    op.create_index('ix_user_opportunity_matches_opportunity_id', 'user_opportunity_matches', ['opportunity_id'], unique=False)
    op.create_index('ix_user_opportunity_matches_user_type', 'user_opportunity_matches', ['user_id', 'match_type'], unique=False)
    op.create_index('ix_user_opportunity_matches_user_score', 'user_opportunity_matches', ['user_id', 'match_score'], unique=False)

    op.create_table(
        'documents',
        _uuid_pk(),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('opportunity_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('name', sa.String(300), nullable=False),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('tags', postgresql.JSONB(), server_default='[]', nullable=False),
        sa.Column('embedding', postgresql.JSONB(), nullable=True),
        sa.Column('embedding_text', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['opportunity_id'], ['opportunities.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_documents_user_id', 'documents', ['user_id'], unique=False)

    op.create_table(
        'user_files',
        _uuid_pk(),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('file_name', sa.String(300), nullable=False),
        sa.Column('file_type', sa.String(50), nullable=False),
        sa.Column('content_type', sa.String(100), nullable=False),
        sa.Column('size', sa.Integer(), nullable=False),
        sa.Column('tags', postgresql.JSONB(), server_default='[]', nullable=False),
        sa.Column('embedding', postgresql.JSONB(), nullable=True),
        sa.Column('embedding_text', sa.Text(), nullable=True),
        sa.Column('uploaded_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_user_files_user_id', 'user_files', ['user_id'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_user_files_user_id', table_name='user_files')
    op.drop_table('user_files')
    op.drop_index('ix_documents_user_id', table_name='documents')
    op.drop_table('documents')
    op.drop_index('ix_user_opportunity_matches_user_score', table_name='user_opportunity_matches')
    op.drop_index('ix_user_opportunity_matches_user_type', table_name='user_opportunity_matches')
    op.drop_index('ix_user_opportunity_matches_opportunity_id', table_name='user_opportunity_matches')
    op.drop_index('ix_user_opportunity_matches_user_id', table_name='user_opportunity_matches')
    op.drop_table('user_opportunity_matches')
    op.drop_index('ix_discovery_jobs_kind', table_name='discovery_jobs')
    op.drop_index('ix_discovery_jobs_scheduled_for', table_name='discovery_jobs')
    op.drop_index('ix_discovery_jobs_status', table_name='discovery_jobs')
    op.drop_table('discovery_jobs')
    op.drop_index('ix_opportunities_created_at', table_name='opportunities')
    op.drop_index('ix_opportunities_source_type', table_name='opportunities')
    op.drop_index('ix_opportunities_deadline', table_name='opportunities')
    op.drop_index('ix_opportunities_application_url', table_name='opportunities')
    op.drop_table('opportunities')
    op.drop_table('users')

    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(op.get_bind(), checkfirst=True)
