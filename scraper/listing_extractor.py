"""Tolerant extraction of estate sale cards from search result HTML."""
import logging
import re
from typing import Callable, Iterator, List, Optional, Sequence
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from processor.listing_normalizer import DATE_TEXT_RE, clean_text, find_time_range
from processor.models import RawCandidate

logger = logging.getLogger(__name__)


# Location types that indicate a sale is not held at a residence
HOME_FILTER_KEYWORDS = (
    'warehouse',
    'consignment',
    'auction house',
    'auction gallery',
    'storage unit',
    'off-site',
    'offsite',
    'off site',
    'by appointment',
    'appointment only',
    'online only',
    'online auction',
    'showroom',
    'storefront',
    'store front',
)

DISTANCE_TEXT_RE = re.compile(r'\d+(?:\.\d+)?\s*(?:mi|miles)\b', re.IGNORECASE)
SALE_LINK_RE = re.compile(r'/\d{5,}/?(?:[?#].*)?$')

Strategy = Callable[[Tag], Optional[str]]


def select_text(selector: str) -> Strategy:
    def strategy(card: Tag) -> Optional[str]:
        elem = card.select_one(selector)
        return clean_text(elem.get_text(' ', strip=True)) if elem else None
    return strategy


def select_attr(selector: str, attr: str) -> Strategy:
    def strategy(card: Tag) -> Optional[str]:
        elem = card.select_one(selector)
        return clean_text(elem.get(attr)) if elem else None
    return strategy


def own_attr(attr: str) -> Strategy:
    def strategy(card: Tag) -> Optional[str]:
        return clean_text(card.get(attr))
    return strategy


def search_text(pattern: re.Pattern) -> Strategy:
    def strategy(card: Tag) -> Optional[str]:
        match = pattern.search(card.get_text(' ', strip=True))
        return clean_text(match.group(0)) if match else None
    return strategy


def hours_in_text(card: Tag) -> Optional[str]:
    match = find_time_range(card.get_text(' ', strip=True))
    return clean_text(match.group(0)) if match else None


def sale_link(card: Tag) -> Optional[str]:
    """First link that looks like a sale detail page."""
    for anchor in card.find_all('a', href=True):
        href = anchor['href']
        if 'maps' not in href and SALE_LINK_RE.search(href):
            return href
    return None


def first_match(card: Tag, strategies: Sequence[Strategy]) -> Optional[str]:
    """Try each strategy in order and return the first non-empty value."""
    for strategy in strategies:
        value = strategy(card)
        if value:
            return value
    return None


class ListingExtractor:
    """Extracts raw listing candidates from EstateSales.net search pages."""

    # Card containers, most specific first
    CARD_SELECTORS = (
        'article.estate-card',
        '[data-sale-id]',
        'div.sale-item, li.sale-item',
        '[itemtype*="schema.org/SaleEvent"], [itemtype*="schema.org/Event"]',
    )

    TITLE_STRATEGIES = (
        select_text('[itemprop="name"]'),
        select_text('a.estate-title'),
        select_text('.sale-title'),
        select_text('h2'),
        select_text('h3'),
    )
    ADDRESS_STRATEGIES = (
        select_text('[itemprop="address"]'),
        select_text('.sale-address'),
        select_text('span.address'),
        select_text('div.location'),
        select_text('.location'),
    )
    WHEN_STRATEGIES = (
        select_text('.sale-dates'),
        select_text('.dates'),
        select_text('time'),
        search_text(DATE_TEXT_RE),
    )
    HOURS_STRATEGIES = (
        select_text('.sale-hours'),
        select_text('.hours'),
        hours_in_text,
    )
    DETAIL_URL_STRATEGIES = (
        select_attr('a.estate-title', 'href'),
        select_attr('a[itemprop="url"]', 'href'),
        sale_link,
    )
    DISTANCE_STRATEGIES = (
        select_text('.sale-distance'),
        select_text('.distance'),
        search_text(DISTANCE_TEXT_RE),
    )
    SOURCE_ID_STRATEGIES = (
        own_attr('data-sale-id'),
        own_attr('data-id'),
    )

    def __init__(
        self,
        base_url: str = 'https://www.estatesales.net',
        disallowed_keywords: Sequence[str] = HOME_FILTER_KEYWORDS
    ):
        """
        Initialize the extractor.

        Args:
            base_url: Used to resolve relative detail links
            disallowed_keywords: Location-type keywords that exclude a card
        """
        self.base_url = base_url
        self.disallowed_keywords = tuple(k.lower() for k in disallowed_keywords)

    def extract(self, html_content: str) -> Iterator[RawCandidate]:
        """
        Lazily extract raw candidates from one search page.

        A page without recognizable cards yields nothing.

        Args:
            html_content: HTML content of a search results page

        Yields:
            RawCandidate objects in page order
        """
        soup = BeautifulSoup(html_content, 'html.parser')
        cards = self._find_cards(soup)

        if not cards:
            logger.info("No listing cards recognized on page")
            return

        for card in cards:
            try:
                candidate = self._extract_candidate(card)
            except Exception as e:
                logger.warning(f"Failed to extract listing card: {e}")
                continue

            if candidate is None:
                continue

            if self.is_excluded_location(candidate.raw_text):
                logger.info(
                    f"Skipping non-residential sale '{candidate.title_text}'"
                )
                continue

            yield candidate

    def is_excluded_location(self, text: str) -> bool:
        """Check card text against the home-location disallow list."""
        lowered = (text or '').lower()
        return any(keyword in lowered for keyword in self.disallowed_keywords)

    def _find_cards(self, soup: BeautifulSoup) -> List[Tag]:
        for selector in self.CARD_SELECTORS:
            cards = soup.select(selector)
            if cards:
                return cards
        return []

    def _extract_candidate(self, card: Tag) -> Optional[RawCandidate]:
        """
        Extract one candidate from a card element.

        Args:
            card: BeautifulSoup element for a single sale

        Returns:
            RawCandidate or None if the card has neither title nor address
        """
        title = first_match(card, self.TITLE_STRATEGIES)
        address = first_match(card, self.ADDRESS_STRATEGIES)

        if not title and not address:
            return None

        detail_url = first_match(card, self.DETAIL_URL_STRATEGIES)
        if detail_url:
            detail_url = urljoin(self.base_url, detail_url)

        return RawCandidate(
            title_text=title,
            address_text=address,
            when_text=first_match(card, self.WHEN_STRATEGIES),
            hours_text=first_match(card, self.HOURS_STRATEGIES),
            detail_url=detail_url,
            distance_text=first_match(card, self.DISTANCE_STRATEGIES),
            source_id_text=first_match(card, self.SOURCE_ID_STRATEGIES),
            raw_text=card.get_text(' ', strip=True)
        )
