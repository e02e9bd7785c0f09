"""AWS Lambda handler for Estate Sales Sync."""
import json
import logging
import os
import time
from datetime import datetime
from typing import Any, Callable, Dict

from config import FatalConfigError, Settings, load_settings
from processor.deduplicator import dedupe_listings
from processor.listing_normalizer import ListingNormalizer
from processor.models import RunOutcome
from scraper.estatesales_net import build_page_source, fetch_pages
from scraper.listing_extractor import ListingExtractor
from storage.listing_store import ListingStore, StoreUnavailable
from storage.run_reporter import RunReporter


STATUS_CODES = {
    'ok': 200,
    'ok:0': 200,
    'partial': 207,
    'failed': 500,
    'fatal': 500,
}
MAX_NOTE_ERRORS = 10

# Attributes every LogRecord carries; anything else came in via extra=
_RESERVED_LOG_ATTRS = set(vars(logging.makeLogRecord({}))) | {'message', 'asctime'}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in vars(record).items():
            if key not in _RESERVED_LOG_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


logger = logging.getLogger(__name__)


def _finish(reporter: RunReporter, **fields) -> RunOutcome:
    outcome = RunOutcome(finished_at=datetime.now(), **fields)
    # record() never raises; its result is ignored
    reporter.record(outcome)
    return outcome


def run_sync(settings: Settings, sleep: Callable[[float], None] = time.sleep) -> RunOutcome:
    """
    Run fetch, extract, normalize, dedupe and sync once.

    Page and item failures are folded into the outcome. An unreachable
    store stops the run before fetching, and any unexpected error ends it
    as fatal; either way the outcome is recorded.

    Args:
        settings: Run settings
        sleep: Sleep function used between page requests

    Returns:
        RunOutcome summarizing the run
    """
    reporter = RunReporter(settings.audit_table_name, region_name=settings.aws_region)

    try:
        return _run_pipeline(settings, reporter, sleep)
    except Exception as e:
        logger.error(f"Run aborted: {e}", extra={'error_type': type(e).__name__}, exc_info=True)
        return _finish(reporter, status='fatal', notes=f"{type(e).__name__}: {e}")


def _run_pipeline(
    settings: Settings,
    reporter: RunReporter,
    sleep: Callable[[float], None]
) -> RunOutcome:
    store = ListingStore(settings.table_name, region_name=settings.aws_region)

    try:
        store.check_available()
    except StoreUnavailable as e:
        logger.error(str(e))
        return _finish(reporter, status='fatal', notes=str(e))

    source = build_page_source(settings)
    batch = fetch_pages(
        source,
        settings.zip_code,
        settings.radius_miles,
        settings.max_pages,
        delay_seconds=settings.request_delay_seconds,
        sleep=sleep
    )

    notes = [f"page {page_index}: {error}" for page_index, error in batch.failures]

    if not batch.pages:
        notes.insert(0, 'All page fetches failed')
        return _finish(reporter, status='failed', notes='; '.join(notes))

    extractor = ListingExtractor()
    normalizer = ListingNormalizer()

    # Page order is kept so later pages win field merges
    candidates = (
        candidate
        for _, html in batch.pages
        for candidate in extractor.extract(html)
    )
    listings = dedupe_listings(normalizer.normalize_all(candidates))
    found = len(listings)
    logger.info(f"Found {found} unique listings", extra={'pages': len(batch.pages)})

    if not found:
        notes.insert(0, 'No listings found')
        return _finish(reporter, status='ok:0', notes='; '.join(notes))

    sync_result = store.sync_listings(listings, strategy=settings.sync_strategy)
    error_count = len(sync_result.errors)

    if error_count == 0:
        status = 'ok'
    elif error_count / found > settings.max_error_rate:
        status = 'failed'
    else:
        status = 'partial'

    notes.insert(
        0,
        f"{settings.sync_strategy} sync: {sync_result.inserted} inserted, "
        f"{sync_result.updated} updated ({sync_result.modified} changed), "
        f"{error_count} errors"
    )
    notes.extend(sync_result.errors[:MAX_NOTE_ERRORS])

    return _finish(
        reporter,
        status=status,
        notes='; '.join(notes),
        found_count=found,
        inserted_count=sync_result.inserted,
        updated_count=sync_result.updated,
        modified_count=sync_result.modified,
        error_count=error_count
    )


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for Estate Sales Sync.

    Args:
        event: EventBridge event payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and run summary
    """
    setup_logging(os.environ.get('LOG_LEVEL', 'INFO'))

    start_time = time.time()
    logger.info("Lambda execution started")

    try:
        settings = load_settings()
    except FatalConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': 'Invalid configuration',
                'error': str(e),
                'error_type': type(e).__name__
            })
        }

    try:
        outcome = run_sync(settings)
    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': 'Sync failed',
                'error': str(e),
                'error_type': type(e).__name__,
                'duration_seconds': round(duration, 2)
            })
        }

    duration = time.time() - start_time
    logger.info(
        "Lambda execution completed",
        extra={
            'duration_seconds': round(duration, 2),
            'status': outcome.status,
            'listings_found': outcome.found_count,
            'listings_inserted': outcome.inserted_count,
            'listings_updated': outcome.updated_count,
            'errors': outcome.error_count
        }
    )

    return {
        'statusCode': STATUS_CODES.get(outcome.status, 500),
        'body': json.dumps({
            'message': f"Sync finished with status {outcome.status}",
            'outcome': outcome.to_dict(),
            'duration_seconds': round(duration, 2)
        })
    }
