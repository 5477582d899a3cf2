"""Canonical unit to normalized listing join table model."""

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base


class UnitPosting(Base):
    """Attachment of one source listing to one canonical unit."""

    __tablename__ = "unit_postings"
    __table_args__ = (
        UniqueConstraint(
            "canonical_unit_id",
            "normalized_listing_id",
            name="uq_unit_postings_unit_listing",
        ),
        Index("idx_unit_postings_listing", "normalized_listing_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    canonical_unit_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("canonical_units.id"), nullable=False
    )
    normalized_listing_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("normalized_listings.id"), nullable=False
    )
    match_score: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
