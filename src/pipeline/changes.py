"""Change detection between a canonical unit and an incoming listing."""

from __future__ import annotations

from src.db.repositories import ChangeLogCreate
from src.models.canonical_unit import CanonicalUnit
from src.models.normalized_listing import NormalizedListing


def detect_changes(
    unit: CanonicalUnit, listing: NormalizedListing
) -> list[ChangeLogCreate]:
    """Deltas between the unit's current beliefs and the listing.

    Must run before the unit is updated from the listing. A field is only
    compared when both sides have a value.
    """

    changes: list[ChangeLogCreate] = []

    old_rent = unit.best_rent_gross
    new_rent = listing.rent_gross
    if old_rent is not None and new_rent is not None and old_rent != new_rent:
        changes.append(
            ChangeLogCreate(
                canonical_unit_id=unit.id,
                normalized_listing_id=listing.id,
                kind="price_change",
                payload={"oldRentGross": old_rent, "newRentGross": new_rent},
            )
        )

    old_fee = unit.broker_fee
    new_fee = listing.broker_fee
    if old_fee is not None and new_fee is not None and old_fee != new_fee:
        changes.append(
            ChangeLogCreate(
                canonical_unit_id=unit.id,
                normalized_listing_id=listing.id,
                kind="field_change",
                payload={"field": "brokerFee", "oldValue": old_fee, "newValue": new_fee},
            )
        )

    return changes
