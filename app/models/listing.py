from datetime import date
from decimal import Decimal

from sqlalchemy import JSON, Boolean, Date, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.ids import gen_id

from app.models.base import Base, AuditMixin


# JSONB on Postgres, plain JSON elsewhere (sqlite in tests)
JsonType = JSON().with_variant(JSONB(), "postgresql")


class Listing(AuditMixin, Base):
    __tablename__ = "listings"
    __table_args__ = (
        # one record per upstream identity
        UniqueConstraint("source", "external_id", name="uq_listing_source_external_id"),
        Index("ix_listings_city_state", "city", "state"),
        Index("ix_listings_price_beds_baths", "price", "bedrooms", "bathrooms"),
        Index("ix_listings_updated_at", "updated_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("lst"))

    # which upstream produced it + its id there
    source: Mapped[str] = mapped_column(String(80), nullable=False, index=True)
    external_id: Mapped[str] = mapped_column(String(200), nullable=False)

    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    city: Mapped[str | None] = mapped_column(String(120), nullable=True, index=True)
    state: Mapped[str | None] = mapped_column(String(120), nullable=True, index=True)
    zip_code: Mapped[str | None] = mapped_column(String(30), nullable=True)

    price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True, index=True)
    bedrooms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bathrooms: Mapped[Decimal | None] = mapped_column(Numeric(5, 1), nullable=True)
    square_feet: Mapped[int | None] = mapped_column(Integer, nullable=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    images: Mapped[list] = mapped_column(JsonType, nullable=False, default=list)
    property_type: Mapped[str | None] = mapped_column(String(80), nullable=True)
    year_built: Mapped[int | None] = mapped_column(Integer, nullable=True)
    lot_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    listing_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # original upstream element, kept verbatim for audit/debugging
    raw_data: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)

    # soft delete
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
