"""
Filter expressions for record-store queries.

The core only ever needs equality, case-insensitive containment, inclusive
ranges, membership and conjunction. Every expression can render itself as an
Airtable formula and evaluate itself against a plain field map, so remote and
local backends answer the same query the same way.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any


def _field_ref(name: str) -> str:
    return "{" + name.replace("}", "\\}") + "}"


def _literal(value: Any) -> str:
    """Render a Python value as a formula literal."""
    if isinstance(value, bool):
        return "TRUE()" if value else "FALSE()"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, (date, datetime)):
        return f"'{value.isoformat()[:10]}'"
    text = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{text}'"


def _coerce(stored: Any, like: Any) -> Any:
    """Convert a stored value to the type of the comparison operand."""
    if stored is None:
        return None
    if isinstance(like, bool):
        return bool(stored)
    if isinstance(like, date):
        if isinstance(stored, datetime):
            return stored.date()
        if isinstance(stored, date):
            return stored
        try:
            return date.fromisoformat(str(stored)[:10])
        except ValueError:
            return None
    if isinstance(like, (int, float, Decimal)):
        try:
            return Decimal(str(stored))
        except InvalidOperation:
            return None
    if isinstance(stored, list):
        # Linked-record fields hold lists of ids
        return stored
    return str(stored)


def _as_comparable(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return Decimal(str(value))
    if isinstance(value, datetime):
        return value.date()
    return value


class Filter(ABC):
    """A query predicate."""

    @abstractmethod
    def to_formula(self) -> str:
        """Render as an Airtable filterByFormula expression."""

    @abstractmethod
    def matches(self, fields: dict[str, Any]) -> bool:
        """Evaluate against a record's field map."""


@dataclass(frozen=True)
class Eq(Filter):
    """Field equals value (dates compare by day)."""

    field: str
    value: Any

    def to_formula(self) -> str:
        if isinstance(self.value, date):
            return f"IS_SAME({_field_ref(self.field)}, {_literal(self.value)}, 'day')"
        return f"{_field_ref(self.field)} = {_literal(self.value)}"

    def matches(self, fields: dict[str, Any]) -> bool:
        stored = _coerce(fields.get(self.field), self.value)
        if isinstance(stored, list):
            return self.value in stored
        return stored == _as_comparable(self.value)


@dataclass(frozen=True)
class Contains(Filter):
    """Case-insensitive substring match."""

    field: str
    value: str

    def to_formula(self) -> str:
        return f"FIND(LOWER({_literal(self.value)}), LOWER({_field_ref(self.field)}))"

    def matches(self, fields: dict[str, Any]) -> bool:
        stored = fields.get(self.field)
        if stored is None:
            return False
        return self.value.lower() in str(stored).lower()


@dataclass(frozen=True)
class Range(Filter):
    """Inclusive numeric or date range; either bound may be open."""

    field: str
    lower: Any = None
    upper: Any = None

    def to_formula(self) -> str:
        ref = _field_ref(self.field)
        clauses = []
        is_date = isinstance(self.lower, date) or isinstance(self.upper, date)
        if self.lower is not None:
            if is_date:
                clauses.append(f"NOT(IS_BEFORE({ref}, {_literal(self.lower)}))")
            else:
                clauses.append(f"{ref} >= {_literal(self.lower)}")
        if self.upper is not None:
            if is_date:
                clauses.append(f"NOT(IS_AFTER({ref}, {_literal(self.upper)}))")
            else:
                clauses.append(f"{ref} <= {_literal(self.upper)}")
        if not clauses:
            return "TRUE()"
        if len(clauses) == 1:
            return clauses[0]
        return f"AND({', '.join(clauses)})"

    def matches(self, fields: dict[str, Any]) -> bool:
        like = self.lower if self.lower is not None else self.upper
        if like is None:
            return True
        stored = _coerce(fields.get(self.field), like)
        if stored is None or isinstance(stored, list):
            return False
        if self.lower is not None and stored < _as_comparable(self.lower):
            return False
        if self.upper is not None and stored > _as_comparable(self.upper):
            return False
        return True


@dataclass(frozen=True)
class In(Filter):
    """Field equals any of the given values."""

    field: str
    values: tuple[Any, ...]

    def to_formula(self) -> str:
        if not self.values:
            return "FALSE()"
        ref = _field_ref(self.field)
        clauses = [f"{ref} = {_literal(v)}" for v in self.values]
        if len(clauses) == 1:
            return clauses[0]
        return f"OR({', '.join(clauses)})"

    def matches(self, fields: dict[str, Any]) -> bool:
        return any(Eq(self.field, v).matches(fields) for v in self.values)


class And(Filter):
    """All clauses hold."""

    def __init__(self, *clauses: Filter):
        self.clauses = clauses

    def __repr__(self) -> str:
        return f"And{self.clauses!r}"

    def to_formula(self) -> str:
        if len(self.clauses) == 1:
            return self.clauses[0].to_formula()
        return f"AND({', '.join(c.to_formula() for c in self.clauses)})"

    def matches(self, fields: dict[str, Any]) -> bool:
        return all(c.matches(fields) for c in self.clauses)
