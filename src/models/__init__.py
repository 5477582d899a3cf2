"""SQLAlchemy ORM models."""

from src.models.base import Base
from src.models.canonical_unit import ACTIVE_STATES, CanonicalUnit
from src.models.change_log import CHANGE_KINDS, ChangeLog
from src.models.normalized_listing import NormalizedListing
from src.models.raw_listing import RawListing
from src.models.saved_search import SavedSearch
from src.models.scrape_job import ScrapeJob
from src.models.unit_posting import UnitPosting

__all__ = [
    "ACTIVE_STATES",
    "Base",
    "CHANGE_KINDS",
    "CanonicalUnit",
    "ChangeLog",
    "NormalizedListing",
    "RawListing",
    "SavedSearch",
    "ScrapeJob",
    "UnitPosting",
]
