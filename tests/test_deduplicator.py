"""Unit tests for listing deduplication and merging."""
from datetime import date, datetime

from processor.deduplicator import dedupe_listings, merge_listings
from processor.listing_normalizer import ListingNormalizer
from processor.models import PLACEHOLDER_TITLE, Listing, RawCandidate


START = datetime(2025, 11, 8, 9, 0)
END = datetime(2025, 11, 8, 15, 0)


class TestMergeListings:
    """Test cases for field-level merging."""

    def test_incoming_values_win(self):
        """Test that non-null later values replace earlier ones."""
        base = Listing(title="Sale", source_id="1", hours="call", distance_miles=3.0)
        incoming = Listing(title="Sale", source_id="1", hours={'generic': '9am-3pm'}, distance_miles=2.5)

        merged = merge_listings(base, incoming)

        assert merged.hours == {'generic': '9am-3pm'}
        assert merged.distance_miles == 2.5

    def test_null_never_overwrites(self):
        """Test that a later null keeps the earlier value."""
        base = Listing(
            title="Sale",
            address="1 Elm St",
            city="Palmdale",
            start_at=START,
            end_at=END,
            hours={'generic': '9am-3pm'},
            source_id="1"
        )
        incoming = Listing(title="Sale", source_id="1")

        merged = merge_listings(base, incoming)

        assert merged == base

    def test_dates_merge_as_pair(self):
        """Test that start_at and end_at are replaced together."""
        later_start = datetime(2025, 11, 9, 8, 0)
        later_end = datetime(2025, 11, 9, 14, 0)
        base = Listing(title="Sale", source_id="1", start_at=START, end_at=END)
        incoming = Listing(title="Sale", source_id="1", start_at=later_start, end_at=later_end)

        merged = merge_listings(base, incoming)

        assert (merged.start_at, merged.end_at) == (later_start, later_end)

    def test_placeholder_title_does_not_replace_real_title(self):
        """Test that a defaulted title never replaces a recovered one."""
        base = Listing(title="Vintage Estate Sale", source_id="1")
        incoming = Listing(title=PLACEHOLDER_TITLE, source_id="1", fallbacks=('title',))

        merged = merge_listings(base, incoming)

        assert merged.title == "Vintage Estate Sale"
        assert merged.fallbacks == ()

    def test_fallback_cleared_when_value_supplied(self):
        """Test that a low-confidence flag is dropped once a value arrives."""
        base = Listing(title=PLACEHOLDER_TITLE, source_id="1", fallbacks=('title', 'start_at'))
        incoming = Listing(title="Real Title", source_id="1", fallbacks=('start_at',))

        merged = merge_listings(base, incoming)

        assert merged.title == "Real Title"
        assert merged.fallbacks == ('start_at',)


class TestDedupeListings:
    """Test cases for run-level deduplication."""

    def test_same_source_id_merged_with_distance(self):
        """Test two pages listing the same sale keep the populated distance."""
        normalizer = ListingNormalizer(reference_date=date(2025, 10, 1))
        page_one = RawCandidate(
            title_text="Estate Sale A",
            detail_url="https://www.estatesales.net/CA/Palmdale/93550/4412345",
            distance_text="4.2 mi"
        )
        page_two = RawCandidate(
            title_text="Estate Sale A",
            detail_url="https://www.estatesales.net/CA/Palmdale/93550/4412345"
        )

        listings = dedupe_listings(normalizer.normalize_all([page_one, page_two]))

        assert len(listings) == 1
        assert listings[0].distance_miles == 4.2

    def test_first_seen_order_preserved(self):
        """Test output order follows the first appearance of each key."""
        listings = [
            Listing(title="B", source_id="2"),
            Listing(title="A", source_id="1"),
            Listing(title="B updated", source_id="2"),
            Listing(title="C", source_id="3"),
        ]

        result = dedupe_listings(listings)

        assert [listing.source_id for listing in result] == ["2", "1", "3"]
        assert result[0].title == "B updated"

    def test_different_keys_never_merged(self):
        """Test listings with distinct natural keys stay separate."""
        listings = [
            Listing(title="Estate Sale", source_id="1"),
            Listing(title="Estate Sale", source_id="2"),
            Listing(title="Estate Sale", address="1 Elm St", start_at=START, end_at=END),
            Listing(title="Estate Sale", address="2 Elm St", start_at=START, end_at=END),
        ]

        assert len(dedupe_listings(listings)) == 4

    def test_fallback_key_without_source_id(self):
        """Test listings without a source id match on title, address and start."""
        listings = [
            Listing(title="Sale", address="1 Elm St", start_at=START, end_at=END),
            Listing(title="Sale", address="1 Elm St", start_at=START, end_at=END,
                    hours={'generic': '9am-3pm'}),
        ]

        result = dedupe_listings(listings)

        assert len(result) == 1
        assert result[0].hours == {'generic': '9am-3pm'}

    def test_later_hours_merge_without_source_id(self):
        """Test hours that move the start time still match the earlier card."""
        normalizer = ListingNormalizer(reference_date=date(2025, 10, 1))
        candidates = [
            RawCandidate(title_text="Sale A", address_text="1 Elm St, Palmdale, CA 93550",
                         when_text="Nov 8"),
            RawCandidate(title_text="Sale A", address_text="1 Elm St, Palmdale, CA 93550",
                         when_text="Nov 8", hours_text="10am-4pm"),
        ]

        result = dedupe_listings(normalizer.normalize_all(candidates))

        assert len(result) == 1
        assert result[0].hours == {'generic': '10am-4pm'}
        assert result[0].start_at == datetime(2025, 11, 8, 10, 0)
        assert result[0].end_at == datetime(2025, 11, 8, 16, 0)

    def test_empty_input(self):
        """Test that no listings gives an empty list."""
        assert dedupe_listings([]) == []
