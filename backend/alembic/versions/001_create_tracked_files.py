"""Create tracked_files and provider_cache tables

Revision ID: 001_create_tracked_files
Revises:
Create Date: 2026-10-19 09:00:00.000000

tracked_files holds one row per source file under reconciliation.
provider_cache holds TMDb responses with an expiry date.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_create_tracked_files'
down_revision = None
branch_labels = None
depends_on = None

# SQLAlchemy stores enum member names
MEDIA_TYPES = ('MOVIES', 'TV_SHOWS', 'EXTRAS', 'UNKNOWN')
FILE_STATUSES = ('WORKING', 'SUCCESS', 'FAILED', 'DUPLICATE')


def table_exists(connection, table_name):
    """Check if a table exists."""
    inspector = sa.inspect(connection)
    return table_name in inspector.get_table_names()


def upgrade() -> None:
    """Create tracked_files and provider_cache tables."""
    connection = op.get_bind()

    if not table_exists(connection, 'tracked_files'):
        op.create_table(
            'tracked_files',
            sa.Column('id', sa.Integer(), nullable=False, primary_key=True, autoincrement=True),
            sa.Column('source_file', sa.String(1000), nullable=False, unique=True),
            sa.Column('dest_file', sa.String(1000), nullable=True),
            sa.Column('media_type', sa.Enum(*MEDIA_TYPES, name='mediatype'), nullable=True),
            sa.Column('tmdb_id', sa.Integer(), nullable=True),
            sa.Column('imdb_id', sa.String(20), nullable=True),
            sa.Column('season_number', sa.Integer(), nullable=True),
            sa.Column('episode_number', sa.Integer(), nullable=True),
            sa.Column('episode_number2', sa.Integer(), nullable=True),
            sa.Column('title', sa.String(500), nullable=True),
            sa.Column('year', sa.Integer(), nullable=True),
            sa.Column('genres', sa.JSON(), nullable=True),
            sa.Column('status', sa.Enum(*FILE_STATUSES, name='filestatus'), nullable=False),
            sa.Column('error_message', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
            sa.Column('detection_version', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('target_detection_version', sa.Integer(), nullable=False, server_default='1'),
        )

        op.create_index('idx_tracked_files_status', 'tracked_files', ['status'])
        op.create_index('idx_tracked_files_media_type', 'tracked_files', ['media_type'])

    if not table_exists(connection, 'provider_cache'):
        op.create_table(
            'provider_cache',
            sa.Column('id', sa.Integer(), nullable=False, primary_key=True, autoincrement=True),
            sa.Column('cache_key', sa.String(500), nullable=False, unique=True),
            sa.Column('payload', sa.JSON(), nullable=True),
            sa.Column('cached_at', sa.DateTime(), nullable=False),
            sa.Column('expires_at', sa.DateTime(), nullable=False),
        )

        op.create_index('idx_provider_cache_expires_at', 'provider_cache', ['expires_at'])


def downgrade() -> None:
    """Drop tracked_files and provider_cache tables."""
    connection = op.get_bind()

    if table_exists(connection, 'provider_cache'):
        op.drop_index('idx_provider_cache_expires_at', table_name='provider_cache')
        op.drop_table('provider_cache')

    if table_exists(connection, 'tracked_files'):
        op.drop_index('idx_tracked_files_media_type', table_name='tracked_files')
        op.drop_index('idx_tracked_files_status', table_name='tracked_files')
        op.drop_table('tracked_files')
