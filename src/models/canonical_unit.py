"""Canonical (deduplicated) rental unit table model."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base

ACTIVE_STATES = ("active", "unknown", "stale")


class CanonicalUnit(Base):
    """One physical rental unit aggregated from many source postings."""

    __tablename__ = "canonical_units"
    __table_args__ = (
        Index(
            "idx_canonical_units_area_rent", "borough", "neighborhood", "best_rent_gross"
        ),
        Index("idx_canonical_units_address", "canonical_address"),
        Index("idx_canonical_units_geo", "lat", "lng"),
        Index("idx_canonical_units_last_seen", "last_seen_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    canonical_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    canonical_unit: Mapped[str | None] = mapped_column(nullable=True)
    neighborhood: Mapped[str | None] = mapped_column(nullable=True)
    borough: Mapped[str | None] = mapped_column(nullable=True)
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    bedrooms: Mapped[float | None] = mapped_column(Float, nullable=True)
    bathrooms: Mapped[float | None] = mapped_column(Float, nullable=True)
    best_rent_gross: Mapped[int | None] = mapped_column(Integer, nullable=True)
    best_rent_net_effective: Mapped[int | None] = mapped_column(
        Integer, nullable=True
    )
    broker_fee: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    active_state: Mapped[str] = mapped_column(
        nullable=False, default="unknown", server_default="unknown"
    )
    last_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
