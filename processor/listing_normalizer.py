"""Normalizer mapping raw listing candidates to canonical listings."""
import logging
import math
import re
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Tuple
from urllib.parse import quote_plus

from processor.models import (
    PLACEHOLDER_TITLE,
    SOURCE_NAME,
    Hours,
    Listing,
    RawCandidate,
)

logger = logging.getLogger(__name__)


WEEKDAY_PATTERN = (
    r'(?:mon(?:day)?|tue(?:s|sday)?|wed(?:nesday)?|thu(?:rs|rsday)?|'
    r'fri(?:day)?|sat(?:urday)?|sun(?:day)?)\.?'
)
MONTH_PATTERN = (
    r'(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|'
    r'aug(?:ust)?|sept?(?:ember)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)'
)
_DAY_PATTERN = r'\d{1,2}(?:st|nd|rd|th)?\b(?!\s*(?::|[ap]\.?m))'
_RANGE_SEPARATOR = r'(?:-|–|—|to|thru|through)'

# One date: "Nov 8", "Fri, Nov 8th", "November 8, 2025", "11/8", "11/8/25"
DATE_TOKEN_RE = re.compile(
    rf'\b(?:{WEEKDAY_PATTERN},?\s+)?(?P<month>{MONTH_PATTERN})\.?\s+'
    rf'(?P<day>{_DAY_PATTERN})(?:,?\s+(?P<year>\d{{4}}))?'
    r'|\b(?P<num_month>\d{1,2})/(?P<num_day>\d{1,2})(?:/(?P<num_year>\d{4}|\d{2}))?\b',
    re.IGNORECASE
)
# Whole date expression, optionally a range: "Fri Nov 8 - Sun Nov 10", "Nov 8-10"
DATE_TEXT_RE = re.compile(
    rf'\b(?:{WEEKDAY_PATTERN},?\s+)?{MONTH_PATTERN}\.?\s+{_DAY_PATTERN}'
    rf'(?:\s*{_RANGE_SEPARATOR}\s*(?:{WEEKDAY_PATTERN},?\s+)?'
    rf'(?:{MONTH_PATTERN}\.?\s+)?{_DAY_PATTERN})?',
    re.IGNORECASE
)
DAY_CONTINUATION_RE = re.compile(
    rf'\s*{_RANGE_SEPARATOR}\s*(?P<day>{_DAY_PATTERN})',
    re.IGNORECASE
)


def _time_pattern(name: str) -> str:
    return (
        rf'(?P<{name}_hour>\d{{1,2}})(?::(?P<{name}_minute>\d{{2}}))?'
        rf'\s*(?P<{name}_meridiem>[ap]\.?m\.?)?'
    )


TIME_RANGE_RE = re.compile(
    rf'\b{_time_pattern("start")}\s*(?:-|–|—|to)\s*{_time_pattern("end")}(?![\w:])',
    re.IGNORECASE
)
CITY_STATE_ZIP_RE = re.compile(
    r'^(?P<city>.+?),?\s+(?P<state>[A-Z]{2})(?:\s+(?P<postal_code>\d{5}(?:-\d{4})?))?$'
)
SALE_ID_RE = re.compile(r'/(\d{5,})/?(?:[?#].*)?$')
NUMBER_RE = re.compile(r'-?\d+(?:\.\d+)?')

MONTHS = {
    'jan': 1, 'feb': 2, 'mar': 3, 'apr': 4, 'may': 5, 'jun': 6,
    'jul': 7, 'aug': 8, 'sep': 9, 'oct': 10, 'nov': 11, 'dec': 12,
}


def clean_text(value: Optional[str]) -> Optional[str]:
    """Collapse whitespace; empty strings become None."""
    if value is None:
        return None
    return ' '.join(value.split()) or None


def find_time_range(text: Optional[str]) -> Optional[re.Match]:
    """
    Find the first time range carrying at least one am/pm marker.

    Args:
        text: Free text such as "Sat 9am-3pm" or "9:00 AM - 3:00 PM"

    Returns:
        Regex match or None
    """
    if not text:
        return None
    for match in TIME_RANGE_RE.finditer(text):
        if match.group('start_meridiem') or match.group('end_meridiem'):
            return match
    return None


class ListingNormalizer:
    """Maps RawCandidate objects onto the canonical Listing shape."""

    MAX_TITLE_LENGTH = 200
    PAST_ROLLOVER_DAYS = 60
    DIRECTIONS_URL = 'https://www.google.com/maps/dir/?api=1&destination='

    def __init__(
        self,
        reference_date: Optional[date] = None,
        default_start_hour: int = 9,
        default_end_hour: int = 15,
        source_name: str = SOURCE_NAME
    ):
        """
        Initialize the normalizer.

        Args:
            reference_date: Date used to infer missing years (default: today)
            default_start_hour: Start hour when no hours text is usable
            default_end_hour: End hour when no hours text is usable
            source_name: Origin stamped onto every listing
        """
        if not 0 <= default_start_hour < default_end_hour <= 23:
            raise ValueError(
                f"Invalid default hours: {default_start_hour}-{default_end_hour}"
            )
        self.reference_date = reference_date or date.today()
        self.default_start = time(default_start_hour)
        self.default_end = time(default_end_hour)
        self.source_name = source_name

    def normalize_all(self, candidates: Iterable[RawCandidate]) -> List[Listing]:
        """
        Normalize candidates, preserving their order.

        Args:
            candidates: Raw candidates in page-scan order

        Returns:
            List of Listing objects, one per candidate
        """
        listings = [self.normalize(candidate) for candidate in candidates]
        low_confidence = sum(1 for listing in listings if listing.fallbacks)
        logger.info(
            f"Normalized {len(listings)} listings "
            f"({low_confidence} with fallback values)"
        )
        return listings

    def normalize(self, candidate: RawCandidate) -> Listing:
        """
        Normalize a single candidate.

        Every field has a fallback, so this never raises for bad input.

        Args:
            candidate: Raw candidate from the extractor

        Returns:
            Listing object
        """
        fallbacks = []

        title = clean_text(candidate.title_text)
        if title is None:
            title = PLACEHOLDER_TITLE
            fallbacks.append('title')
        title = title[:self.MAX_TITLE_LENGTH]

        address, city, state, postal_code = self.parse_address(
            candidate.address_text
        )

        hours, time_range = self.parse_hours(candidate.hours_text)
        if hours is not None and time_range is None:
            fallbacks.append('hours')

        start_at, end_at = self.parse_date_range(candidate.when_text, time_range)
        if start_at is None:
            fallbacks.append('start_at')

        directions_url = None
        if address:
            directions_url = self.build_directions_url(candidate.address_text)

        return Listing(
            title=title,
            address=address,
            city=city,
            state=state,
            postal_code=postal_code,
            start_at=start_at,
            end_at=end_at,
            hours=hours,
            distance_miles=self.parse_distance(candidate.distance_text),
            directions_url=directions_url,
            source_id=self.parse_source_id(
                candidate.source_id_text, candidate.detail_url
            ),
            source_name=self.source_name,
            fallbacks=tuple(fallbacks)
        )

    def parse_address(
        self,
        address_text: Optional[str]
    ) -> Tuple[Optional[str], Optional[str], Optional[str], Optional[str]]:
        """
        Split an address blob into street, city, state and postal code.

        Args:
            address_text: Text such as "123 Main St, Palmdale, CA 93550"

        Returns:
            Tuple of (address, city, state, postal_code)
        """
        text = clean_text(address_text)
        if not text:
            return None, None, None, None

        segments = [segment.strip() for segment in text.split(',') if segment.strip()]
        if len(segments) < 2:
            return text, None, None, None

        street = segments[0]
        remainder = ', '.join(segments[1:])

        match = CITY_STATE_ZIP_RE.match(remainder)
        if not match:
            return street, remainder, None, None

        return (
            street,
            match.group('city'),
            match.group('state'),
            match.group('postal_code')
        )

    def parse_hours(
        self,
        hours_text: Optional[str]
    ) -> Tuple[Optional[Hours], Optional[Tuple[time, time]]]:
        """
        Parse opening hours.

        Args:
            hours_text: Free text such as "9am-3pm"

        Returns:
            Tuple of (hours value, (start, end) times or None). The hours
            value is {'generic': matched} on success, the raw text when no
            range is recognized, or None without text.
        """
        text = clean_text(hours_text)
        if not text:
            return None, None

        match = find_time_range(text)
        if match is None:
            return text, None

        return {'generic': clean_text(match.group(0))}, self._resolve_time_range(match)

    def parse_date_range(
        self,
        when_text: Optional[str],
        time_range: Optional[Tuple[time, time]] = None
    ) -> Tuple[Optional[datetime], Optional[datetime]]:
        """
        Parse a human date or date range into start and end timestamps.

        Args:
            when_text: Text such as "Nov 8", "Fri Nov 8 - Sun Nov 10"
            time_range: Daily (start, end) times overriding the defaults

        Returns:
            Tuple of (start_at, end_at); both None when unparseable
        """
        text = clean_text(when_text)
        if not text:
            return None, None

        tokens = list(DATE_TOKEN_RE.finditer(text))
        if not tokens:
            return None, None

        start_date, _ = self._token_to_date(tokens[0])
        if start_date is None:
            return None, None

        if len(tokens) > 1:
            end_date, end_explicit = self._token_to_date(tokens[1])
        else:
            continuation = DAY_CONTINUATION_RE.match(text, tokens[0].end())
            if continuation:
                end_date = self._safe_date(
                    start_date.year,
                    start_date.month,
                    int(re.match(r'\d+', continuation.group('day')).group(0))
                )
                end_explicit = False
            else:
                end_date, end_explicit = start_date, True

        if end_date is None:
            return None, None

        if end_date < start_date and not end_explicit:
            end_date = self._safe_date(end_date.year + 1, end_date.month, end_date.day)
            if end_date is None:
                return None, None

        if end_date < start_date:
            return None, None

        start_time, end_time = time_range or (self.default_start, self.default_end)
        start_at = datetime.combine(start_date, start_time)
        end_at = datetime.combine(end_date, end_time)

        if end_at < start_at:
            start_at = datetime.combine(start_date, self.default_start)
            end_at = datetime.combine(end_date, self.default_end)

        return start_at, end_at

    def parse_distance(self, distance_text: Optional[str]) -> Optional[float]:
        if not distance_text:
            return None
        match = NUMBER_RE.search(distance_text)
        if not match:
            return None
        distance = float(match.group(0))
        if not math.isfinite(distance) or distance < 0:
            return None
        return distance

    def parse_source_id(
        self,
        source_id_text: Optional[str],
        detail_url: Optional[str]
    ) -> Optional[str]:
        """Sale id from card attributes, else from the detail link."""
        source_id = clean_text(source_id_text)
        if source_id:
            return source_id
        if detail_url:
            match = SALE_ID_RE.search(detail_url)
            if match:
                return match.group(1)
        return None

    def build_directions_url(self, address_text: str) -> str:
        return self.DIRECTIONS_URL + quote_plus(clean_text(address_text))

    def _token_to_date(self, token: re.Match) -> Tuple[Optional[date], bool]:
        """
        Convert a date token match to a date.

        Returns:
            Tuple of (date or None, whether the year was explicit)
        """
        if token.group('month'):
            month = MONTHS[token.group('month')[:3].lower()]
            day = int(re.match(r'\d+', token.group('day')).group(0))
            year_text = token.group('year')
        else:
            month = int(token.group('num_month'))
            day = int(token.group('num_day'))
            year_text = token.group('num_year')

        if year_text:
            year = int(year_text)
            if year < 100:
                year += 2000
            return self._safe_date(year, month, day), True

        return self._infer_date(month, day), False

    def _infer_date(self, month: int, day: int) -> Optional[date]:
        """Place a month/day in the year nearest ahead of the reference date."""
        year = self.reference_date.year
        candidate = self._safe_date(year, month, day)
        cutoff = self.reference_date - timedelta(days=self.PAST_ROLLOVER_DAYS)
        if candidate is None or candidate < cutoff:
            candidate = self._safe_date(year + 1, month, day)
        return candidate

    @staticmethod
    def _safe_date(year: int, month: int, day: int) -> Optional[date]:
        try:
            return date(year, month, day)
        except ValueError:
            return None

    @staticmethod
    def _resolve_time_range(match: re.Match) -> Optional[Tuple[time, time]]:
        """
        Turn a time range match into (start, end) times.

        A missing am/pm marker borrows the other side's marker, falling back
        to morning starts and afternoon ends.

        Returns:
            (start, end) or None if the range is invalid or inverted
        """
        def meridiem(name):
            value = match.group(f'{name}_meridiem')
            return value[0].lower() if value else None

        def to_minutes(name, marker):
            hour = int(match.group(f'{name}_hour'))
            minute = int(match.group(f'{name}_minute') or 0)
            if minute > 59:
                return None
            if marker:
                if not 1 <= hour <= 12:
                    return None
                hour = hour % 12 + (12 if marker == 'p' else 0)
            elif hour > 23:
                return None
            return hour * 60 + minute

        start_marker = meridiem('start')
        end_marker = meridiem('end')

        if start_marker is None:
            start = to_minutes('start', end_marker)
            end = to_minutes('end', end_marker)
            if start is not None and end is not None and start >= end:
                start = to_minutes('start', 'a')
        elif end_marker is None:
            start = to_minutes('start', start_marker)
            end = to_minutes('end', start_marker)
            if start is not None and end is not None and end <= start:
                end = to_minutes('end', 'p')
        else:
            start = to_minutes('start', start_marker)
            end = to_minutes('end', end_marker)

        if start is None or end is None or end <= start:
            return None

        return time(start // 60, start % 60), time(end // 60, end % 60)
