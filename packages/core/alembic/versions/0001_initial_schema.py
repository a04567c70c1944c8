"""Initial judgment store and offense enrichment schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

CELL_COLUMNS = [f"h3_res{res}" for res in range(1, 9)]


def _cell_columns() -> list[sa.Column]:
    return [sa.Column(name, sa.String(length=16), nullable=True) for name in CELL_COLUMNS]


def _cell_indexes(table: str) -> None:
    for name in CELL_COLUMNS:
        op.create_index(f"ix_{table}_{name}", table, [name])


def upgrade() -> None:
    op.create_table(
        "article",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("code", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=512), nullable=False, server_default=""),
        sa.Column("text", sa.Text(), nullable=False),
    )

    op.create_table(
        "description_judgment",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("description", sa.Text(), nullable=False, unique=True),
        sa.Column("article_ids", sa.JSON(), nullable=False),
        sa.Column("article_codes", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "location_judgment",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("jurisdiction_id", sa.Integer(), nullable=False),
        sa.Column("location", sa.Text(), nullable=False),
        sa.Column("canonical_location", sa.Text(), nullable=True),
        sa.Column("lat", sa.Float(), nullable=False),
        sa.Column("lng", sa.Float(), nullable=False),
        sa.Column("is_electronic", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("method", sa.String(length=17), nullable=False, server_default="manual"),
        sa.Column("confidence", sa.String(length=18), nullable=False, server_default="exact"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        *_cell_columns(),
        sa.UniqueConstraint("jurisdiction_id", "location", name="uq_location_judgment_jurisdiction_location"),
    )
    _cell_indexes("location_judgment")

    op.create_table(
        "offense",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("jurisdiction_id", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("location", sa.Text(), nullable=True),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=True),
        sa.Column("amount", sa.Float(), nullable=True),
        sa.Column("article_ids", sa.JSON(), nullable=True),
        sa.Column("article_codes", sa.JSON(), nullable=True),
        sa.Column("canonical_location", sa.Text(), nullable=True),
        sa.Column("lat", sa.Float(), nullable=True),
        sa.Column("lng", sa.Float(), nullable=True),
        sa.Column("is_electronic", sa.Boolean(), nullable=True),
        *_cell_columns(),
    )
    op.create_index("ix_offense_jurisdiction_location", "offense", ["jurisdiction_id", "location"])
    op.create_index("ix_offense_description", "offense", ["description"])
    _cell_indexes("offense")


def downgrade() -> None:
    op.drop_table("offense")
    op.drop_table("location_judgment")
    op.drop_table("description_judgment")
    op.drop_table("article")
