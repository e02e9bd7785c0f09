"""Run configuration loaded from environment variables."""
import math
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from storage.listing_store import STRATEGY_MERGE, SYNC_STRATEGIES

DATA_SOURCES = ('live', 'fixture')


class FatalConfigError(Exception):
    """Required configuration is missing or invalid."""


@dataclass(frozen=True)
class Settings:
    table_name: str
    zip_code: str
    audit_table_name: str = ''
    radius_miles: int = 50
    max_pages: int = 2
    timeout_seconds: float = 30
    request_delay_seconds: float = 0.4
    data_source: str = 'live'
    fixture_dir: str = ''
    sync_strategy: str = STRATEGY_MERGE
    max_error_rate: float = 0.5
    log_level: str = 'INFO'
    aws_region: Optional[str] = None


def _required(environ: Mapping[str, str], name: str) -> str:
    value = environ.get(name, '').strip()
    if not value:
        raise FatalConfigError(f"Missing required environment variable: {name}")
    return value


def _number(environ: Mapping[str, str], name: str, default: str, cast, minimum):
    raw = environ.get(name, default)
    try:
        value = cast(raw)
    except ValueError:
        raise FatalConfigError(f"{name} must be a number, got {raw!r}") from None
    if not math.isfinite(value):
        raise FatalConfigError(f"{name} must be finite, got {raw!r}")
    if value < minimum:
        raise FatalConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Read run settings from the environment.

    Args:
        environ: Mapping to read from (default: os.environ)

    Returns:
        Settings

    Raises:
        FatalConfigError: If a required value is missing or invalid
    """
    if environ is None:
        environ = os.environ

    data_source = environ.get('DATA_SOURCE', 'live').strip().lower()
    if data_source not in DATA_SOURCES:
        raise FatalConfigError(f"DATA_SOURCE must be one of {DATA_SOURCES}, got {data_source!r}")

    fixture_dir = environ.get('FIXTURE_DIR', '').strip()
    if data_source == 'fixture' and not fixture_dir:
        raise FatalConfigError("FIXTURE_DIR is required when DATA_SOURCE=fixture")

    sync_strategy = environ.get('SYNC_STRATEGY', STRATEGY_MERGE).strip().lower()
    if sync_strategy not in SYNC_STRATEGIES:
        raise FatalConfigError(f"SYNC_STRATEGY must be one of {SYNC_STRATEGIES}, got {sync_strategy!r}")

    max_error_rate = _number(environ, 'MAX_ERROR_RATE', '0.5', float, 0)
    if max_error_rate > 1:
        raise FatalConfigError(f"MAX_ERROR_RATE must be <= 1, got {max_error_rate}")

    return Settings(
        table_name=_required(environ, 'TABLE_NAME'),
        zip_code=_required(environ, 'ZIP_CODE'),
        audit_table_name=environ.get('AUDIT_TABLE_NAME', '').strip(),
        radius_miles=_number(environ, 'RADIUS_MI', '50', int, 1),
        max_pages=_number(environ, 'MAX_PAGES', '2', int, 1),
        timeout_seconds=_number(environ, 'TIMEOUT_SECONDS', '30', float, 1),
        request_delay_seconds=_number(environ, 'REQUEST_DELAY_SECONDS', '0.4', float, 0),
        data_source=data_source,
        fixture_dir=fixture_dir,
        sync_strategy=sync_strategy,
        max_error_rate=max_error_rate,
        log_level=environ.get('LOG_LEVEL', 'INFO'),
        aws_region=environ.get('AWS_REGION') or None
    )
