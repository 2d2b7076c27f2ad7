"""Document store table.

Creates the documents table that holds every collection (players, courses,
lessons, quests, teams, achievements, activities) as JSONB bodies keyed by
(collection, id).

Revision ID: 001_documents
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_documents"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS documents (
            collection VARCHAR(64) NOT NULL,
            id VARCHAR(64) NOT NULL,
            body JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            PRIMARY KEY (collection, id)
        )
    """)
    # Set membership lookups (completed_by @> '["player"]') and equality filters.
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_documents_body
        ON documents USING GIN (body jsonb_path_ops)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_documents_collection_created
        ON documents(collection, created_at)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_activities_player
        ON documents((body->>'player_id'), (body->>'created_at') DESC)
        WHERE collection = 'activities'
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_players_xp
        ON documents(((body->'xp')) DESC)
        WHERE collection = 'players'
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS documents CASCADE")
