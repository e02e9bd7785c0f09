"""Deduplication and field-level merging of normalized listings."""
import logging
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Tuple

from processor.models import MERGE_FIELDS, PLACEHOLDER_TITLE, Listing

logger = logging.getLogger(__name__)


def merge_listings(base: Listing, incoming: Listing) -> Listing:
    """
    Merge two listings for the same sale field by field.

    Non-null incoming values win; a null never replaces a stored value.
    start_at/end_at are taken together so the pair stays consistent, and
    the placeholder title never replaces a real one.

    Args:
        base: Earlier (or stored) listing
        incoming: Later listing for the same natural key

    Returns:
        New merged Listing
    """
    changes: Dict[str, Any] = {}

    for name in MERGE_FIELDS:
        value = getattr(incoming, name)
        if value is not None:
            changes[name] = value

    if incoming.start_at is not None and incoming.end_at is not None:
        changes['start_at'] = incoming.start_at
        changes['end_at'] = incoming.end_at

    if incoming.title and incoming.title != PLACEHOLDER_TITLE:
        changes['title'] = incoming.title

    fallbacks = tuple(
        name for name in base.fallbacks
        if name in incoming.fallbacks or name not in changes
    )
    return replace(base, fallbacks=fallbacks, **changes)


def dedupe_listings(listings: Iterable[Listing]) -> List[Listing]:
    """
    Collapse listings sharing a natural key, keeping first-seen order.

    Args:
        listings: Listings in page-scan order

    Returns:
        At most one Listing per natural key
    """
    merged: Dict[Tuple, Listing] = {}
    total = 0

    for listing in listings:
        total += 1
        key = listing.natural_key()
        if key in merged:
            merged[key] = merge_listings(merged[key], listing)
        else:
            merged[key] = listing

    logger.info(f"Deduplicated {total} listings into {len(merged)}")
    return list(merged.values())
