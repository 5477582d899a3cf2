"""Crawl campaign bookkeeping table model."""

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Index, Integer, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base
from src.models.raw_listing import JSONType


class ScrapeJob(Base):
    """One logical crawl campaign, counters accumulate across runs."""

    __tablename__ = "scrape_jobs"
    __table_args__ = (Index("idx_scrape_jobs_source_status", "source", "status"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    source: Mapped[str] = mapped_column(nullable=False)
    mode: Mapped[str] = mapped_column(nullable=False)
    query: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        nullable=False, default="active", server_default="active"
    )
    target_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=200, server_default="200"
    )
    discovered_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    ingested_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    canonical_added_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    error_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    cursor_json: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType, nullable=True
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
