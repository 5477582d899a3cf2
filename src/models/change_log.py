"""Canonical unit change log table model."""

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Index, Integer, func
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base
from src.models.raw_listing import JSONType

CHANGE_KINDS = ("price_change", "field_change", "status_change")


class ChangeLog(Base):
    """Append-only record of a detected delta on a canonical unit."""

    __tablename__ = "change_logs"
    __table_args__ = (
        Index("idx_change_logs_unit", "canonical_unit_id"),
        Index("idx_change_logs_created", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    canonical_unit_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("canonical_units.id"), nullable=False
    )
    normalized_listing_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("normalized_listings.id", ondelete="SET NULL"), nullable=True
    )
    kind: Mapped[str] = mapped_column(nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
