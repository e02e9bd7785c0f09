"""Page fetchers for EstateSales.net search results."""
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

import requests

logger = logging.getLogger(__name__)


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36"
)


class FetchError(Exception):
    """Network or HTTP failure while fetching one search page."""

    def __init__(self, http_status: Optional[int], message: str):
        super().__init__(message)
        self.http_status = http_status
        self.message = message

    def __str__(self) -> str:
        if self.http_status is None:
            return self.message
        return f"HTTP {self.http_status}: {self.message}"


class EstateSalesNetFetcher:
    """Fetches live search pages from EstateSales.net."""

    BASE_URL = "https://www.estatesales.net/estates"

    def __init__(
        self,
        timeout: float = 30,
        user_agent: str = DEFAULT_USER_AGENT,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the page fetcher.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
            user_agent: Client identity header sent with every request
            base_url: Override for the search endpoint
            session: Optional requests session to reuse connections
        """
        self.timeout = timeout
        self.user_agent = user_agent
        self.base_url = base_url or self.BASE_URL
        self.session = session or requests.Session()

    def fetch_page(
        self,
        location_query: str,
        radius_miles: int,
        page_index: int
    ) -> str:
        """
        Fetch one search results page.

        Exactly one request is made; retrying is left to the caller.

        Args:
            location_query: Postal code to search around
            radius_miles: Search radius in miles
            page_index: 1-based results page

        Returns:
            HTML content as string

        Raises:
            FetchError: On transport failure, timeout or non-2xx status
        """
        params = {
            'postalCode': location_query,
            'radius': radius_miles,
            'page': page_index
        }
        headers = {
            'User-Agent': self.user_agent,
            'Accept': 'text/html,application/xhtml+xml'
        }

        logger.info(f"Fetching search page {page_index} for {location_query}")
        try:
            response = self.session.get(
                self.base_url,
                params=params,
                headers=headers,
                timeout=self.timeout
            )
        except requests.Timeout as e:
            raise FetchError(None, f"Request timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise FetchError(None, f"Request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise FetchError(
                response.status_code,
                f"Unexpected response from {self.base_url} (page {page_index})"
            )

        return response.text


class FixturePageSource:
    """Serves saved search pages from disk instead of the network."""

    def __init__(self, fixture_dir: str):
        self.fixture_dir = fixture_dir

    def fetch_page(
        self,
        location_query: str,
        radius_miles: int,
        page_index: int
    ) -> str:
        path = os.path.join(self.fixture_dir, f"page-{page_index}.html")
        try:
            with open(path, encoding='utf-8') as handle:
                return handle.read()
        except OSError as e:
            raise FetchError(None, f"Fixture page unavailable: {path}") from e


@dataclass
class PageBatch:
    """Pages fetched during one run, in page order."""
    pages: List[Tuple[int, str]] = field(default_factory=list)
    failures: List[Tuple[int, FetchError]] = field(default_factory=list)


def fetch_pages(
    source,
    location_query: str,
    radius_miles: int,
    max_pages: int,
    delay_seconds: float = 0.4,
    sleep: Callable[[float], None] = time.sleep
) -> PageBatch:
    """
    Fetch search pages 1..max_pages one at a time.

    A failed page is recorded and the remaining pages are still fetched.

    Args:
        source: Object with a fetch_page(location_query, radius_miles, page_index) method
        location_query: Postal code to search around
        radius_miles: Search radius in miles
        max_pages: Number of pages to request
        delay_seconds: Pause between consecutive requests
        sleep: Sleep function (injectable for tests)

    Returns:
        PageBatch with successful pages and per-page failures
    """
    batch = PageBatch()

    for page_index in range(1, max_pages + 1):
        if page_index > 1 and delay_seconds > 0:
            sleep(delay_seconds)

        try:
            html = source.fetch_page(location_query, radius_miles, page_index)
        except FetchError as e:
            logger.warning(f"Failed to fetch page {page_index}: {e}")
            batch.failures.append((page_index, e))
            continue

        batch.pages.append((page_index, html))

    logger.info(
        f"Fetched {len(batch.pages)} of {max_pages} pages "
        f"({len(batch.failures)} failed)"
    )
    return batch


def build_page_source(settings):
    """
    Build the page source selected by configuration.

    Args:
        settings: Settings with data_source, fixture_dir and timeout_seconds

    Returns:
        EstateSalesNetFetcher for 'live', FixturePageSource for 'fixture'
    """
    if settings.data_source == 'fixture':
        logger.info(f"Using fixture pages from {settings.fixture_dir}")
        return FixturePageSource(settings.fixture_dir)
    return EstateSalesNetFetcher(timeout=settings.timeout_seconds)
