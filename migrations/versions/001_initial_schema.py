"""Initial schema: the JSON document table behind every collection.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── documents ─────────────────────────────────────────────────────
    op.create_table(
        "documents",
        sa.Column("collection", sa.String(64), primary_key=True),
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("data", sa.JSON, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_documents_collection", "documents", ["collection"])
    op.create_index("idx_documents_updated", "documents", ["updated_at"])

    # Ride history and active-ride lookups filter on these JSON fields
    op.execute(
        "CREATE INDEX idx_rides_passenger ON documents "
        "((data->>'passengerId'), (data->>'createdAt')) "
        "WHERE collection = 'rides'"
    )
    op.execute(
        "CREATE INDEX idx_promos_code ON documents ((data->>'code')) "
        "WHERE collection = 'promos'"
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS idx_promos_code")
    op.execute("DROP INDEX IF EXISTS idx_rides_passenger")
    op.drop_table("documents")
