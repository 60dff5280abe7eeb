from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_create_listings"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "listings",
        sa.Column("id", sa.String(), primary_key=True),

        sa.Column("source", sa.String(length=80), nullable=False),
        sa.Column("external_id", sa.String(length=200), nullable=False),

        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("city", sa.String(length=120), nullable=True),
        sa.Column("state", sa.String(length=120), nullable=True),
        sa.Column("zip_code", sa.String(length=30), nullable=True),

        sa.Column("price", sa.Numeric(12, 2), nullable=True),
        sa.Column("bedrooms", sa.Integer(), nullable=True),
        sa.Column("bathrooms", sa.Numeric(5, 1), nullable=True),
        sa.Column("square_feet", sa.Integer(), nullable=True),

        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("images", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("property_type", sa.String(length=80), nullable=True),
        sa.Column("year_built", sa.Integer(), nullable=True),
        sa.Column("lot_size", sa.Integer(), nullable=True),
        sa.Column("listing_date", sa.Date(), nullable=True),

        sa.Column("raw_data", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),

        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),

        sa.UniqueConstraint("source", "external_id", name="uq_listing_source_external_id"),
    )

    op.create_index("ix_listings_source", "listings", ["source"])
    op.create_index("ix_listings_city", "listings", ["city"])
    op.create_index("ix_listings_state", "listings", ["state"])
    op.create_index("ix_listings_price", "listings", ["price"])
    op.create_index("ix_listings_active", "listings", ["active"])
    op.create_index("ix_listings_city_state", "listings", ["city", "state"])
    op.create_index("ix_listings_price_beds_baths", "listings", ["price", "bedrooms", "bathrooms"])
    op.create_index("ix_listings_updated_at", "listings", ["updated_at"])


def downgrade():
    op.drop_index("ix_listings_updated_at", table_name="listings")
    op.drop_index("ix_listings_price_beds_baths", table_name="listings")
    op.drop_index("ix_listings_city_state", table_name="listings")
    op.drop_index("ix_listings_active", table_name="listings")
    op.drop_index("ix_listings_price", table_name="listings")
    op.drop_index("ix_listings_state", table_name="listings")
    op.drop_index("ix_listings_city", table_name="listings")
    op.drop_index("ix_listings_source", table_name="listings")
    op.drop_table("listings")
