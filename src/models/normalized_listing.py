"""Normalized listing table model."""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base
from src.models.raw_listing import JSONType


class NormalizedListing(Base):
    """One source's current view of one listing."""

    __tablename__ = "normalized_listings"
    __table_args__ = (
        UniqueConstraint(
            "source", "source_url", name="uq_normalized_listings_source_url"
        ),
        Index(
            "idx_normalized_listings_area_rent", "borough", "neighborhood", "rent_gross"
        ),
        Index("idx_normalized_listings_last_seen", "last_seen_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    raw_listing_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("raw_listings.id"), nullable=False, unique=True
    )
    source: Mapped[str] = mapped_column(nullable=False)
    source_url: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    unit: Mapped[str | None] = mapped_column(nullable=True)
    neighborhood: Mapped[str | None] = mapped_column(nullable=True)
    borough: Mapped[str | None] = mapped_column(nullable=True)
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    rent_gross: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rent_net_effective: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bedrooms: Mapped[float | None] = mapped_column(Float, nullable=True)
    bathrooms: Mapped[float | None] = mapped_column(Float, nullable=True)
    broker_fee: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    lease_term_months: Mapped[int | None] = mapped_column(Integer, nullable=True)
    move_in_cost_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    pet_policy: Mapped[str | None] = mapped_column(nullable=True)
    laundry: Mapped[str | None] = mapped_column(nullable=True)
    elevator: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    doorman: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    images: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    first_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    last_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
