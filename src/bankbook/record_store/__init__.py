"""
Record Store.

Tables of records with dynamic field maps:
- AirtableRecordStore: hosted base over REST (production)
- SqliteRecordStore: local file (development, tests, flow state)

Typed conversion lives in ``mappers``; field names in ``schemas.tables``.
"""

from .airtable import AirtableRecordStore
from .base import (
    Record,
    RecordNotFoundError,
    RecordStore,
    RecordStoreAPIError,
    RecordStoreConnectionError,
    RecordStoreError,
)
from .filters import And, Contains, Eq, Filter, In, Range
from .sqlite_store import SqliteRecordStore

__all__ = [
    "AirtableRecordStore",
    "And",
    "Contains",
    "Eq",
    "Filter",
    "In",
    "Range",
    "Record",
    "RecordNotFoundError",
    "RecordStore",
    "RecordStoreAPIError",
    "RecordStoreConnectionError",
    "RecordStoreError",
    "SqliteRecordStore",
    "build_record_store",
]


def build_record_store(config) -> RecordStore:
    """Create the primary record store from a RecordStoreConfig."""
    if config.backend == "sqlite":
        return SqliteRecordStore(config.sqlite_path)
    return AirtableRecordStore(
        api_key=config.api_key,
        base_id=config.base_id,
        api_url=config.api_url,
        timeout=config.timeout_seconds,
        max_retries=config.max_retries,
    )
