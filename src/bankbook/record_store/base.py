"""
Record store contract.

A record store holds tables of records; each record is an opaque id plus a
dynamic field map. Typed conversion happens in ``mappers``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from .filters import Filter

SortSpec = Sequence[tuple[str, str]]


class RecordStoreError(Exception):
    """Base exception for record store errors."""

    pass


class RecordStoreAPIError(RecordStoreError):
    """The store rejected a request."""

    def __init__(
        self,
        status_code: int,
        message: str,
        response_body: str | None = None,
        errors: dict | None = None,
    ):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        self.errors = errors or {}
        super().__init__(f"Record store error {status_code}: {message}")


class RecordStoreConnectionError(RecordStoreError):
    """Failed to reach the store."""

    pass


class RecordNotFoundError(RecordStoreError):
    """A record id does not exist in the table."""

    def __init__(self, table: str, record_id: str):
        self.table = table
        self.record_id = record_id
        super().__init__(f"Record {record_id} not found in {table}")


@dataclass
class Record:
    """A stored record."""

    id: str
    fields: dict[str, Any] = field(default_factory=dict)

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    def first_link(self, name: str) -> str | None:
        """First id of a linked-record field."""
        value = self.fields.get(name)
        if isinstance(value, list):
            return value[0] if value else None
        return value


class RecordStore(ABC):
    """
    Abstract record store.

    Backends:
    - AirtableRecordStore: hosted base over REST
    - SqliteRecordStore: local file
    """

    # Largest number of records a single create/destroy call may carry
    max_batch_size: int = 10

    @abstractmethod
    def create(self, table: str, fields: dict[str, Any]) -> str:
        """Create a record and return its id."""

    @abstractmethod
    def update(self, table: str, record_id: str, fields: dict[str, Any]) -> None:
        """Merge fields into an existing record."""

    @abstractmethod
    def find(self, table: str, record_id: str) -> Record:
        """Fetch one record; raises RecordNotFoundError."""

    @abstractmethod
    def query(
        self,
        table: str,
        filter: Filter | None = None,
        sort: SortSpec | None = None,
        limit: int | None = None,
    ) -> list[Record]:
        """Records matching filter, ordered by sort ("asc"/"desc")."""

    @abstractmethod
    def _destroy_batch(self, table: str, record_ids: list[str]) -> None:
        """Delete at most max_batch_size records."""

    @abstractmethod
    def test_connection(self) -> bool:
        """True when the store answers requests."""

    def create_many(self, table: str, rows: Sequence[dict[str, Any]]) -> list[str]:
        """Create records in chunks of max_batch_size; returns ids in input order."""
        ids: list[str] = []
        for chunk in chunked(rows, self.max_batch_size):
            ids.extend(self._create_batch(table, chunk))
        return ids

    def _create_batch(self, table: str, rows: list[dict[str, Any]]) -> list[str]:
        return [self.create(table, row) for row in rows]

    def destroy(self, table: str, record_ids: str | Iterable[str]) -> None:
        """Delete one or more records."""
        if isinstance(record_ids, str):
            record_ids = [record_ids]
        for chunk in chunked(list(record_ids), self.max_batch_size):
            self._destroy_batch(table, chunk)


def chunked(items: Sequence[Any], size: int) -> Iterable[list[Any]]:
    """Split a sequence into lists of at most size items."""
    for start in range(0, len(items), size):
        yield list(items[start : start + size])
