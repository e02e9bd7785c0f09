"""DynamoDB-backed listing store and synchronizer."""
import hashlib
import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from processor.deduplicator import merge_listings
from processor.models import Listing, SyncResult

logger = logging.getLogger(__name__)


STRATEGY_MERGE = 'merge'
STRATEGY_REPLACE = 'replace'
SYNC_STRATEGIES = (STRATEGY_MERGE, STRATEGY_REPLACE)

_INSERTED = 'inserted'
_MODIFIED = 'modified'
_UNCHANGED = 'unchanged'


class StoreUnavailable(Exception):
    """The listing table cannot be reached at the start of a run."""


class SyncItemError(Exception):
    """One listing could not be written to the store."""

    def __init__(self, listing_key: str, message: str):
        super().__init__(message)
        self.listing_key = listing_key
        self.message = message

    def __str__(self) -> str:
        return f"{self.listing_key}: {self.message}"


class ListingStore:
    """
    Synchronizes listings into a DynamoDB table.

    The table's hash key, listing_key, encodes the listing's natural key and
    is the only uniqueness constraint. Changing how it is derived requires
    migrating existing rows.
    """

    BATCH_SIZE = 25  # DynamoDB batch operation limit

    def __init__(self, table_name: str, region_name: Optional[str] = None):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the DynamoDB listing table
            region_name: AWS region (default: boto3 resolution)
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized ListingStore for table: {table_name}")

    @staticmethod
    def listing_key(listing: Listing) -> str:
        """
        Encode a listing's natural key as the table hash key.

        Args:
            listing: Normalized listing

        Returns:
            "<source_name>#<source_id>" when the source id is known,
            otherwise "<source_name>#" plus a SHA256 of title|address|start date
        """
        if listing.source_id:
            return f"{listing.source_name}#{listing.source_id}"

        start_date = listing.start_at.date().isoformat() if listing.start_at else ''
        composite = f"{listing.title}|{listing.address or ''}|{start_date}"
        digest = hashlib.sha256(composite.encode('utf-8')).hexdigest()
        return f"{listing.source_name}#{digest}"

    def check_available(self) -> None:
        """
        Verify the listing table exists and is reachable.

        Raises:
            StoreUnavailable: If the table cannot be described
        """
        try:
            self.table.load()
        except (ClientError, BotoCoreError) as e:
            raise StoreUnavailable(
                f"Listing table {self.table_name} is unavailable: {e}"
            ) from e

    def get_all_listings(self) -> Dict[str, Listing]:
        """
        Retrieve all listings from DynamoDB using Scan operation.

        Returns:
            Dictionary mapping listing_key to Listing objects
        """
        return {
            key: self._item_to_listing(item)
            for key, item in self._scan_items().items()
        }

    def sync_listings(
        self,
        listings: List[Listing],
        strategy: str = STRATEGY_MERGE
    ) -> SyncResult:
        """
        Synchronize deduplicated listings with DynamoDB.

        The merge strategy looks up each listing, inserts it when new and
        otherwise writes a field-level merge only if something changed; a
        stored value is never replaced by null. The replace strategy
        overwrites whole rows in batches and does not give that guarantee.

        Args:
            listings: Deduplicated listings from the current run
            strategy: 'merge' or 'replace'

        Returns:
            SyncResult with inserted, updated, modified counts and errors
        """
        if strategy not in SYNC_STRATEGIES:
            raise ValueError(f"Unknown sync strategy: {strategy}")

        logger.info(
            f"Starting {strategy} sync with {len(listings)} listings"
        )
        if strategy == STRATEGY_REPLACE:
            return self._sync_replace(listings)

        inserted = updated = modified = 0
        errors = []

        for listing in listings:
            try:
                outcome = self.upsert_listing(listing)
            except SyncItemError as e:
                logger.error(f"Failed to sync listing {e}")
                errors.append(str(e))
                continue

            if outcome == _INSERTED:
                inserted += 1
            else:
                updated += 1
                if outcome == _MODIFIED:
                    modified += 1

        logger.info(
            f"Sync complete: {inserted} inserted, {updated} updated "
            f"({modified} changed), {len(errors)} errors"
        )
        return SyncResult(
            inserted=inserted,
            updated=updated,
            modified=modified,
            errors=errors
        )

    def upsert_listing(self, listing: Listing) -> str:
        """
        Insert or merge a single listing.

        Args:
            listing: Normalized listing

        Returns:
            'inserted', 'modified' or 'unchanged'

        Raises:
            SyncItemError: If the listing could not be read or written
        """
        key = self.listing_key(listing)
        now = datetime.now().isoformat()

        try:
            existing_item = self._get_item(key)
            if existing_item is None:
                if self._insert(key, listing, now):
                    return _INSERTED
                logger.warning(f"Listing {key} was inserted concurrently; merging")
                existing_item = self._get_item(key)
                if existing_item is None:
                    raise SyncItemError(key, "Listing vanished after insert conflict")

            existing = self._item_to_listing(existing_item)
            merged = merge_listings(existing, listing)

            # fallbacks is excluded from comparison
            if merged == existing:
                return _UNCHANGED

            self.table.put_item(
                Item=self._listing_to_item(
                    key,
                    merged,
                    created_at=existing_item.get('created_at', now),
                    updated_at=now
                )
            )
            return _MODIFIED

        except (ClientError, BotoCoreError, KeyError, TypeError, ValueError) as e:
            raise SyncItemError(key, str(e)) from e

    def batch_write_listings(
        self,
        rows: List[Tuple[str, Listing, str]]
    ) -> Tuple[List[str], List[str]]:
        """
        Write listings to DynamoDB in batches of 25 items.

        Args:
            rows: (listing_key, listing, created_at) tuples

        Returns:
            Tuple of (written keys, error messages)
        """
        if not rows:
            return [], []

        logger.info(f"Writing {len(rows)} listings to DynamoDB")
        written = []
        errors = []
        now = datetime.now().isoformat()

        # Process in batches of 25 (DynamoDB limit)
        for i in range(0, len(rows), self.BATCH_SIZE):
            batch = rows[i:i + self.BATCH_SIZE]

            try:
                with self.table.batch_writer() as writer:
                    for key, listing, created_at in batch:
                        writer.put_item(
                            Item=self._listing_to_item(key, listing, created_at, now)
                        )
            except (ClientError, BotoCoreError, TypeError, ValueError) as e:
                logger.error(
                    f"Error writing batch {i // self.BATCH_SIZE + 1}: {e}"
                )
                errors.extend(str(SyncItemError(key, str(e))) for key, _, _ in batch)
                # Continue processing remaining batches
                continue

            written.extend(key for key, _, _ in batch)

        logger.info(f"Successfully wrote {len(written)} listings")
        return written, errors

    def _sync_replace(self, listings: List[Listing]) -> SyncResult:
        try:
            existing_items = self._scan_items()
        except (ClientError, BotoCoreError) as e:
            message = f"Error scanning {self.table_name}: {e}"
            logger.error(message)
            return SyncResult(inserted=0, updated=0, modified=0, errors=[message])

        now = datetime.now().isoformat()
        rows = []
        new_keys = set()
        unchanged = 0
        item_errors = []

        for listing in listings:
            key = self.listing_key(listing)
            item = existing_items.get(key)
            if item is None:
                new_keys.add(key)
                rows.append((key, listing, now))
                continue

            try:
                stored = self._item_to_listing(item)
            except (KeyError, TypeError, ValueError) as e:
                # Unreadable rows are skipped, not overwritten
                error = SyncItemError(key, f"Unreadable stored listing: {e}")
                logger.error(f"Failed to sync listing {error}")
                item_errors.append(str(error))
                continue

            if stored == listing:
                unchanged += 1
            else:
                rows.append((key, listing, item.get('created_at', now)))

        written, errors = self.batch_write_listings(rows)
        inserted = sum(1 for key in written if key in new_keys)
        modified = len(written) - inserted
        updated = unchanged + modified

        logger.info(
            f"Replace sync complete: {inserted} inserted, {updated} updated "
            f"({modified} changed), {len(item_errors) + len(errors)} errors"
        )
        return SyncResult(
            inserted=inserted,
            updated=updated,
            modified=modified,
            errors=item_errors + errors
        )

    def _scan_items(self) -> Dict[str, dict]:
        logger.info("Scanning DynamoDB table for all listings")

        # Scan the table, following pagination
        response = self.table.scan()
        items = response.get('Items', [])
        while 'LastEvaluatedKey' in response:
            response = self.table.scan(
                ExclusiveStartKey=response['LastEvaluatedKey']
            )
            items.extend(response.get('Items', []))

        logger.info(f"Retrieved {len(items)} listings from DynamoDB")
        return {item['listing_key']: item for item in items}

    def _get_item(self, key: str) -> Optional[dict]:
        response = self.table.get_item(Key={'listing_key': key})
        return response.get('Item')

    def _insert(self, key: str, listing: Listing, now: str) -> bool:
        """Conditionally put a new row; False if the key already exists."""
        try:
            self.table.put_item(
                Item=self._listing_to_item(key, listing, created_at=now, updated_at=now),
                ConditionExpression='attribute_not_exists(listing_key)'
            )
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException':
                return False
            raise
        return True

    def _item_to_listing(self, item: dict) -> Listing:
        """
        Convert DynamoDB item to Listing object.

        Args:
            item: DynamoDB item dictionary

        Returns:
            Listing object
        """
        def as_float(value):
            return float(value) if value is not None else None

        def as_datetime(value):
            return datetime.fromisoformat(value) if value else None

        hours = item.get('hours')
        if isinstance(hours, dict):
            hours = {str(k): str(v) for k, v in hours.items()}

        return Listing(
            title=item['title'],
            address=item.get('address'),
            city=item.get('city'),
            state=item.get('state'),
            postal_code=item.get('postal_code'),
            start_at=as_datetime(item.get('start_at')),
            end_at=as_datetime(item.get('end_at')),
            hours=hours,
            distance_miles=as_float(item.get('distance_miles')),
            directions_url=item.get('directions_url'),
            latitude=as_float(item.get('latitude')),
            longitude=as_float(item.get('longitude')),
            source_id=item.get('source_id'),
            source_name=item['source_name']
        )

    def _listing_to_item(
        self,
        key: str,
        listing: Listing,
        created_at: str,
        updated_at: str
    ) -> dict:
        """
        Convert Listing object to DynamoDB item.

        Null fields are omitted rather than stored.

        Args:
            key: Table hash key for the listing
            listing: Listing object
            created_at: ISO timestamp of first insert
            updated_at: ISO timestamp of this write

        Returns:
            DynamoDB item dictionary
        """
        item = {
            'listing_key': key,
            'title': listing.title,
            'source_name': listing.source_name,
            'created_at': created_at,
            'updated_at': updated_at
        }

        optional = {
            'address': listing.address,
            'city': listing.city,
            'state': listing.state,
            'postal_code': listing.postal_code,
            'start_at': listing.start_at.isoformat() if listing.start_at else None,
            'end_at': listing.end_at.isoformat() if listing.end_at else None,
            'hours': listing.hours,
            'directions_url': listing.directions_url,
            'source_id': listing.source_id,
        }
        # DynamoDB rejects floats
        for name in ('distance_miles', 'latitude', 'longitude'):
            value = getattr(listing, name)
            optional[name] = Decimal(str(value)) if value is not None else None

        item.update({name: value for name, value in optional.items() if value is not None})
        return item
