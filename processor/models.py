"""Data models for estate sale listing processing."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple, Union


SOURCE_NAME = 'estatesales.net'
PLACEHOLDER_TITLE = 'Estate Sale'

Hours = Union[Dict[str, str], str]


@dataclass
class RawCandidate:
    """Unvalidated listing fragment scraped from a search page."""
    title_text: Optional[str] = None
    address_text: Optional[str] = None
    when_text: Optional[str] = None
    hours_text: Optional[str] = None
    detail_url: Optional[str] = None
    distance_text: Optional[str] = None
    source_id_text: Optional[str] = None
    raw_text: str = ''


@dataclass
class Listing:
    """Canonical, normalized estate sale listing."""
    title: str
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    hours: Optional[Hours] = None
    distance_miles: Optional[float] = None
    directions_url: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    source_id: Optional[str] = None
    source_name: str = SOURCE_NAME
    # Fields that fell back to a default during normalization
    fallbacks: Tuple[str, ...] = field(default=(), compare=False)

    def natural_key(self) -> Tuple[Any, ...]:
        """
        Key identifying the same real-world sale across runs.

        Returns:
            (source_name, source_id) when the source id is known,
            otherwise (title, address, start date)
        """
        if self.source_id:
            return (self.source_name, self.source_id)
        # Hours found later move start_at but not the day
        return (self.title, self.address, self.start_at.date() if self.start_at else None)


# Fields combined by the field-level merge; start_at/end_at merge as a pair
MERGE_FIELDS = (
    'address',
    'city',
    'state',
    'postal_code',
    'hours',
    'distance_miles',
    'directions_url',
    'latitude',
    'longitude',
    'source_id',
)


@dataclass
class SyncResult:
    """Result of sync operation."""
    inserted: int
    updated: int
    modified: int
    errors: list[str]


@dataclass(frozen=True)
class RunOutcome:
    """Summary of one pipeline run, written once to the audit table."""
    status: str
    notes: str
    found_count: int = 0
    inserted_count: int = 0
    updated_count: int = 0
    modified_count: int = 0
    error_count: int = 0
    finished_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the outcome for logs and response bodies."""
        return {
            'status': self.status,
            'notes': self.notes,
            'found_count': self.found_count,
            'inserted_count': self.inserted_count,
            'updated_count': self.updated_count,
            'modified_count': self.modified_count,
            'error_count': self.error_count,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
        }
