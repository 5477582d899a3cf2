"""Raw listing fetch snapshot table model."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class RawListing(Base):
    """Latest unprocessed payload fetched for one (source, source_url)."""

    __tablename__ = "raw_listings"
    __table_args__ = (
        UniqueConstraint("source", "source_url", name="uq_raw_listings_source_url"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    source: Mapped[str] = mapped_column(nullable=False)
    source_url: Mapped[str] = mapped_column(Text, nullable=False)
    source_listing_id: Mapped[str | None] = mapped_column(nullable=True)
    fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    http_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    raw_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    extracted_json: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType, nullable=True
    )
    parse_version: Mapped[str] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
