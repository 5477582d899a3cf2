"""Domain helpers shared by adapters and the matching engine."""

from src.domain.normalize import (
    geo_bucket,
    geo_bucket_bounds,
    normalize_address,
    split_unit,
)
from src.domain.timestamps import as_utc, utcnow

__all__ = [
    "as_utc",
    "geo_bucket",
    "geo_bucket_bounds",
    "normalize_address",
    "split_unit",
    "utcnow",
]
