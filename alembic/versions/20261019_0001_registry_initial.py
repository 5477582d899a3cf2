"""Initial rent registry tables.

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    """Upgrade schema."""

    op.create_table(
        "raw_listings",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("source_url", sa.Text(), nullable=False),
        sa.Column("source_listing_id", sa.String(), nullable=True),
        sa.Column("fetched_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("http_status", sa.Integer(), nullable=True),
        sa.Column("raw_content", sa.Text(), nullable=True),
        sa.Column(
            "extracted_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True
        ),
        sa.Column("parse_version", sa.String(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "source", "source_url", name="uq_raw_listings_source_url"
        ),
    )

    op.create_table(
        "normalized_listings",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("raw_listing_id", sa.Integer(), nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("source_url", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("unit", sa.String(), nullable=True),
        sa.Column("neighborhood", sa.String(), nullable=True),
        sa.Column("borough", sa.String(), nullable=True),
        sa.Column("lat", sa.Float(), nullable=True),
        sa.Column("lng", sa.Float(), nullable=True),
        sa.Column("rent_gross", sa.Integer(), nullable=True),
        sa.Column("rent_net_effective", sa.Integer(), nullable=True),
        sa.Column("bedrooms", sa.Float(), nullable=True),
        sa.Column("bathrooms", sa.Float(), nullable=True),
        sa.Column("broker_fee", sa.Boolean(), nullable=True),
        sa.Column("lease_term_months", sa.Integer(), nullable=True),
        sa.Column("move_in_cost_notes", sa.Text(), nullable=True),
        sa.Column("pet_policy", sa.String(), nullable=True),
        sa.Column("laundry", sa.String(), nullable=True),
        sa.Column("elevator", sa.Boolean(), nullable=True),
        sa.Column("doorman", sa.Boolean(), nullable=True),
        sa.Column(
            "images",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
        ),
        sa.Column(
            "first_seen_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "last_seen_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["raw_listing_id"], ["raw_listings.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("raw_listing_id"),
        sa.UniqueConstraint(
            "source", "source_url", name="uq_normalized_listings_source_url"
        ),
    )
    op.create_index(
        "idx_normalized_listings_area_rent",
        "normalized_listings",
        ["borough", "neighborhood", "rent_gross"],
        unique=False,
    )
    op.create_index(
        "idx_normalized_listings_last_seen",
        "normalized_listings",
        ["last_seen_at"],
        unique=False,
    )

    op.create_table(
        "canonical_units",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("canonical_address", sa.Text(), nullable=True),
        sa.Column("canonical_unit", sa.String(), nullable=True),
        sa.Column("neighborhood", sa.String(), nullable=True),
        sa.Column("borough", sa.String(), nullable=True),
        sa.Column("lat", sa.Float(), nullable=True),
        sa.Column("lng", sa.Float(), nullable=True),
        sa.Column("bedrooms", sa.Float(), nullable=True),
        sa.Column("bathrooms", sa.Float(), nullable=True),
        sa.Column("best_rent_gross", sa.Integer(), nullable=True),
        sa.Column("best_rent_net_effective", sa.Integer(), nullable=True),
        sa.Column("broker_fee", sa.Boolean(), nullable=True),
        sa.Column(
            "active_state", sa.String(), server_default="unknown", nullable=False
        ),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_canonical_units_area_rent",
        "canonical_units",
        ["borough", "neighborhood", "best_rent_gross"],
        unique=False,
    )
    op.create_index(
        "idx_canonical_units_address",
        "canonical_units",
        ["canonical_address"],
        unique=False,
    )
    op.create_index(
        "idx_canonical_units_geo", "canonical_units", ["lat", "lng"], unique=False
    )
    op.create_index(
        "idx_canonical_units_last_seen",
        "canonical_units",
        ["last_seen_at"],
        unique=False,
    )

    op.create_table(
        "unit_postings",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("canonical_unit_id", sa.Integer(), nullable=False),
        sa.Column("normalized_listing_id", sa.Integer(), nullable=False),
        sa.Column("match_score", sa.Float(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["canonical_unit_id"], ["canonical_units.id"]),
        sa.ForeignKeyConstraint(
            ["normalized_listing_id"], ["normalized_listings.id"]
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "canonical_unit_id",
            "normalized_listing_id",
            name="uq_unit_postings_unit_listing",
        ),
    )
    op.create_index(
        "idx_unit_postings_listing",
        "unit_postings",
        ["normalized_listing_id"],
        unique=False,
    )

    op.create_table(
        "change_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("canonical_unit_id", sa.Integer(), nullable=False),
        sa.Column("normalized_listing_id", sa.Integer(), nullable=True),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column(
            "payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["canonical_unit_id"], ["canonical_units.id"]),
        sa.ForeignKeyConstraint(
            ["normalized_listing_id"],
            ["normalized_listings.id"],
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_change_logs_unit", "change_logs", ["canonical_unit_id"], unique=False
    )
    op.create_index(
        "idx_change_logs_created", "change_logs", ["created_at"], unique=False
    )

    op.create_table(
        "saved_searches",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("max_rent", sa.Integer(), nullable=True),
        sa.Column("min_beds", sa.Float(), nullable=True),
        sa.Column("borough", sa.String(), nullable=True),
        sa.Column("neighborhood", sa.String(), nullable=True),
        sa.Column("no_fee_preferred", sa.Boolean(), nullable=True),
        sa.Column(
            "is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "scrape_jobs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("mode", sa.String(), nullable=False),
        sa.Column("query", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), server_default="active", nullable=False),
        sa.Column("target_count", sa.Integer(), server_default="200", nullable=False),
        sa.Column(
            "discovered_count", sa.Integer(), server_default="0", nullable=False
        ),
        sa.Column("ingested_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column(
            "canonical_added_count", sa.Integer(), server_default="0", nullable=False
        ),
        sa.Column("error_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column(
            "cursor_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_scrape_jobs_source_status",
        "scrape_jobs",
        ["source", "status"],
        unique=False,
    )


def downgrade() -> None:
    """Downgrade schema."""

    op.drop_index("idx_scrape_jobs_source_status", table_name="scrape_jobs")
    op.drop_table("scrape_jobs")
    op.drop_table("saved_searches")
    op.drop_index("idx_change_logs_created", table_name="change_logs")
    op.drop_index("idx_change_logs_unit", table_name="change_logs")
    op.drop_table("change_logs")
    op.drop_index("idx_unit_postings_listing", table_name="unit_postings")
    op.drop_table("unit_postings")
    op.drop_index("idx_canonical_units_last_seen", table_name="canonical_units")
    op.drop_index("idx_canonical_units_geo", table_name="canonical_units")
    op.drop_index("idx_canonical_units_address", table_name="canonical_units")
    op.drop_index("idx_canonical_units_area_rent", table_name="canonical_units")
    op.drop_table("canonical_units")
    op.drop_index(
        "idx_normalized_listings_last_seen", table_name="normalized_listings"
    )
    op.drop_index(
        "idx_normalized_listings_area_rent", table_name="normalized_listings"
    )
    op.drop_table("normalized_listings")
    op.drop_table("raw_listings")
