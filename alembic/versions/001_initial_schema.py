"""Initial schema for the custom vector corpus

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

Creates the vector_chunks table (one row per embedded chunk, keyed by the
content-addressed chunk id) and the singleton corpus_metadata row.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from pgvector.sqlalchemy import Vector

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EMBEDDING_DIMENSION = 768


def upgrade() -> None:
    """Create all tables and indexes."""

    # Enable extensions
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    # ========================================
    # Vector chunks table
    # ========================================
    op.create_table(
        "vector_chunks",
        sa.Column("chunk_id", sa.String(64), primary_key=True),
        sa.Column("document_id", sa.String(128), nullable=False),
        sa.Column("source", sa.Text(), nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("page_number", sa.Integer(), nullable=True),
        sa.Column("chunk_index", sa.Integer(), nullable=False),
        sa.Column("start_char", sa.Integer(), nullable=False),
        sa.Column("end_char", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("embedding", Vector(EMBEDDING_DIMENSION), nullable=False),
        sa.Column("embedding_dim", sa.Integer(), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True),
                  server_default=sa.text("NOW()"), nullable=False),
    )

    op.create_index(
        "idx_vector_chunks_document_id", "vector_chunks", ["document_id", "chunk_index"]
    )
    op.create_index("idx_vector_chunks_category", "vector_chunks", ["category"])

    # ========================================
    # Corpus metadata (singleton row, id = 1)
    # ========================================
    op.create_table(
        "corpus_metadata",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("embedding_model", sa.String(128), nullable=False),
        sa.Column("dimensions", sa.Integer(), nullable=False),
        sa.Column("total_documents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_chunks", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True),
                  server_default=sa.text("NOW()"), nullable=False),
        sa.CheckConstraint("id = 1", name="corpus_metadata_singleton"),
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("corpus_metadata")
    op.drop_index("idx_vector_chunks_category", table_name="vector_chunks")
    op.drop_index("idx_vector_chunks_document_id", table_name="vector_chunks")
    op.drop_table("vector_chunks")

    # Note: Extensions are not dropped to avoid affecting other databases
